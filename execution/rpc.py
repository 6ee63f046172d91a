"""
Solana RPC primitives for the exit seller.

- SolanaRpcClient: one-shot JSON-RPC calls over HTTP (aiohttp)
- PubsubClient: account subscriptions over WebSocket, each scoped to an
  `async with` block so the subscription is released on every exit path
"""

import asyncio
import base64
import itertools
import json
import logging
import struct
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Union

import aiohttp
from solders.pubkey import Pubkey
from websockets import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# SPL token account: mint (32) | owner (32) | amount (u64 LE) | ...
SPL_ACCOUNT_SIZE = 165
SPL_AMOUNT_OFFSET = 64


class RpcError(Exception):
    """JSON-RPC call failed or returned an error object."""
    pass


class SubscriptionError(Exception):
    """Opening or reading an account subscription failed."""
    pass


class MalformedNotificationError(SubscriptionError):
    """A pushed message could not be parsed as an account notification."""
    pass


class MalformedAccountDataError(Exception):
    """Account data is not a base64-encoded SPL token account."""
    pass


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Derive the associated token account for (owner, mint)."""
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def decode_spl_token_amount(data: Union[str, list, None]) -> int:
    """
    Decode the token amount from account data delivered as
    `[<base64>, "base64"]`.

    Raises:
        MalformedAccountDataError: If the data is not a base64 SPL account
    """
    if not isinstance(data, (list, tuple)) or len(data) != 2 or data[1] != "base64":
        raise MalformedAccountDataError(f"unexpected account data: {str(data)[:80]}")

    try:
        raw = base64.b64decode(data[0], validate=True)
    except (ValueError, TypeError) as e:
        raise MalformedAccountDataError(f"invalid base64 account data: {e}") from e

    if len(raw) < SPL_ACCOUNT_SIZE:
        raise MalformedAccountDataError(f"account data too short for SPL token: {len(raw)} bytes")

    (amount,) = struct.unpack_from("<Q", raw, SPL_AMOUNT_OFFSET)
    return amount


@dataclass(frozen=True)
class AccountNotification:
    """One pushed account state."""

    lamports: int
    data: Any
    slot: int = 0


class SolanaRpcClient:
    """Minimal async JSON-RPC client."""

    def __init__(self, rpc_url: str, session: aiohttp.ClientSession = None):
        self.rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None
        self._request_id = 0

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def call(self, method: str, params: list) -> Any:
        """
        Perform a JSON-RPC call.

        Raises:
            RpcError: On transport errors or an `error` in the response
        """
        if self._session is None:
            self._session = aiohttp.ClientSession()

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            async with self._session.post(self.rpc_url, json=payload) as response:
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise RpcError(f"{method} request failed: {e}") from e

        if "error" in result:
            raise RpcError(f"{method} failed: {result['error']}")
        return result.get("result")

    async def get_token_account_balance(self, token_account: Pubkey) -> int:
        """Raw (integer) token balance of an SPL token account."""
        result = await self.call(
            "getTokenAccountBalance",
            [str(token_account), {"commitment": "processed"}],
        )
        try:
            return int(result["value"]["amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"unexpected getTokenAccountBalance result: {result}") from e

    async def send_transaction(self, tx_bytes: bytes) -> str:
        """Submit a signed transaction, returning its signature."""
        return await self.call(
            "sendTransaction",
            [
                base64.b64encode(tx_bytes).decode(),
                {"encoding": "base64", "skipPreflight": False, "maxRetries": 3},
            ],
        )


class AccountSubscription:
    """
    A live `accountSubscribe` stream.

    Use through `PubsubClient.account_subscribe()`; iterate it or call
    `next_update()` to receive AccountNotifications.
    """

    def __init__(self, ws, subscription_id: int, account: str, request_ids: Iterator[int]):
        self._ws = ws
        self._request_ids = request_ids
        self.subscription_id = subscription_id
        self.account = account
        self._closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> AccountNotification:
        try:
            return await self.next_update()
        except SubscriptionError:
            if self._closed:
                raise StopAsyncIteration
            raise

    async def next_update(self) -> AccountNotification:
        """
        Wait for the next account notification.

        Raises:
            SubscriptionError: If the connection drops or is closed
            MalformedNotificationError: If a notification cannot be parsed
        """
        while True:
            try:
                message = await self._ws.recv()
            except ConnectionClosed as e:
                self._closed = True
                raise SubscriptionError(f"subscription on {self.account} closed: {e}") from e

            try:
                data = json.loads(message)
                if data.get("method") != "accountNotification":
                    continue

                result = data["params"]["result"]
                value = result["value"]
                return AccountNotification(
                    lamports=value["lamports"],
                    data=value.get("data"),
                    slot=result.get("context", {}).get("slot", 0),
                )
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise MalformedNotificationError(
                    f"unexpected notification on {self.account}: {str(message)[:120]}"
                ) from e

    async def unsubscribe(self) -> None:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": "accountUnsubscribe",
            "params": [self.subscription_id],
        }
        try:
            await self._ws.send(json.dumps(request))
        except ConnectionClosed:
            pass
        finally:
            await self._ws.close()
            self._closed = True


class _AccountSubscriptionContext:
    def __init__(
        self,
        ws_url: str,
        account: str,
        commitment: str,
        encoding: str,
        request_ids: Iterator[int],
        open_timeout: float,
    ):
        self.ws_url = ws_url
        self.request_ids = request_ids
        self.open_timeout = open_timeout
        self.account = account
        self.commitment = commitment
        self.encoding = encoding
        self._subscription: Optional[AccountSubscription] = None

    async def __aenter__(self) -> AccountSubscription:
        try:
            ws = await connect(
                self.ws_url, open_timeout=self.open_timeout, ping_interval=30, ping_timeout=10
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise SubscriptionError(f"could not connect to {self.ws_url[:50]}: {e}") from e

        try:
            await ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": next(self.request_ids),
                "method": "accountSubscribe",
                "params": [
                    self.account,
                    {"commitment": self.commitment, "encoding": self.encoding},
                ],
            }))
            confirmation = json.loads(await ws.recv())
        except (ConnectionClosed, ValueError) as e:
            await ws.close()
            raise SubscriptionError(f"accountSubscribe on {self.account} failed: {e}") from e

        if "error" in confirmation or "result" not in confirmation:
            await ws.close()
            raise SubscriptionError(
                f"accountSubscribe on {self.account} rejected: {confirmation.get('error')}"
            )

        self._subscription = AccountSubscription(
            ws, confirmation["result"], self.account, self.request_ids
        )
        logger.debug(f"Subscribed to account {self.account} ({confirmation['result']})")
        return self._subscription

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._subscription.unsubscribe()
        logger.debug(f"Unsubscribed from account {self.account}")


class PubsubClient:
    """Opens one WebSocket connection per account subscription."""

    def __init__(self, ws_url: str, open_timeout: float = 10.0):
        self.ws_url = ws_url
        self.open_timeout = open_timeout
        self._request_ids = itertools.count(1)

    def account_subscribe(
        self,
        account: Union[Pubkey, str],
        commitment: str = "processed",
        encoding: str = "base64",
    ) -> _AccountSubscriptionContext:
        """
        Subscribe to an account's state.

        Usage:
            async with pubsub.account_subscribe(vault) as subscription:
                async for notification in subscription:
                    ...
        """
        return _AccountSubscriptionContext(
            self.ws_url,
            str(account),
            commitment,
            encoding,
            self._request_ids,
            self.open_timeout,
        )
