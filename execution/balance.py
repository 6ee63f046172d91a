"""Discover how many tokens of a mint the fund wallet holds."""

import asyncio
import logging
from typing import Protocol

from solders.pubkey import Pubkey

from .rpc import (
    MalformedAccountDataError,
    MalformedNotificationError,
    RpcError,
    SubscriptionError,
    decode_spl_token_amount,
    get_associated_token_address,
)

logger = logging.getLogger(__name__)


class BalanceResolutionError(Exception):
    """Base class for balance discovery failures."""
    pass


class BalanceSubscribeError(BalanceResolutionError):
    """The balance query failed and so did the fallback subscription."""
    pass


class BalanceTimeoutError(BalanceResolutionError):
    """No token account update arrived before the deadline."""
    pass


class MalformedBalanceUpdateError(BalanceResolutionError):
    """The token account update could not be decoded."""
    pass


class BalanceRpcProtocol(Protocol):
    async def get_token_account_balance(self, token_account: Pubkey) -> int: ...


class PubsubProtocol(Protocol):
    def account_subscribe(self, account, commitment: str = ..., encoding: str = ...): ...


class BalanceResolver:
    """
    Resolves the raw token balance of the wallet's associated token account.

    A freshly bought position may not be visible to `getTokenAccountBalance`
    yet, so a failed query falls back to subscribing to the token account
    and reading the amount from its first update.
    """

    def __init__(
        self,
        rpc: BalanceRpcProtocol,
        pubsub: PubsubProtocol,
        timeout_seconds: float = 10.0,
    ):
        self.rpc = rpc
        self.pubsub = pubsub
        self.timeout_seconds = timeout_seconds

    async def resolve(self, owner: Pubkey, mint: Pubkey) -> int:
        """
        Get the balance of `mint` held by `owner`.

        Returns:
            Raw token amount (smallest units)

        Raises:
            BalanceResolutionError: If both the query and the fallback fail
        """
        token_account = get_associated_token_address(owner, mint)

        try:
            return await self.rpc.get_token_account_balance(token_account)
        except RpcError as e:
            logger.warning(f"error getting balance: {e}")

        logger.info(f"listening on token account {token_account}")
        return await self.get_spl_balance_stream(token_account)

    async def get_spl_balance_stream(self, token_account: Pubkey) -> int:
        """
        Read the token amount from the first update on `token_account`.

        The deadline covers connecting, subscribing and the first update.
        """
        try:
            return await asyncio.wait_for(
                self._read_first_update(token_account), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"get_spl_balance_stream {token_account}: timeout")
            raise BalanceTimeoutError(
                f"no update on {token_account} within {self.timeout_seconds}s"
            ) from e
        except (MalformedAccountDataError, MalformedNotificationError) as e:
            logger.warning(f"get_spl_balance_stream {token_account}: unexpected data")
            raise MalformedBalanceUpdateError(str(e)) from e
        except SubscriptionError as e:
            raise BalanceSubscribeError(str(e)) from e

    async def _read_first_update(self, token_account: Pubkey) -> int:
        async with self.pubsub.account_subscribe(
            token_account, commitment="processed", encoding="base64"
        ) as subscription:
            notification = await subscription.next_update()
            return decode_spl_token_amount(notification.data)
