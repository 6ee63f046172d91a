"""Solana WebSocket listener feeding confirmed swaps into the price pipeline."""

import json
import logging
from typing import Optional, List

import backoff
from websockets import connect
from websockets.exceptions import ConnectionClosed

from .config import IngestionConfig
from .events import TokenBalance, TransactionUpdate
from .processor import SwapProcessor

logger = logging.getLogger(__name__)


def _parse_token_balances(entries: Optional[list]) -> List[TokenBalance]:
    balances = []
    for entry in entries or []:
        ui_amount = entry.get("uiTokenAmount", {})
        amount = ui_amount.get("uiAmountString")
        if amount is None:
            amount = ui_amount.get("uiAmount") or 0
        balances.append(TokenBalance(
            mint=entry["mint"],
            owner=entry.get("owner", ""),
            amount=float(amount),
        ))
    return balances


def _first_account_key(message: dict) -> str:
    keys = message.get("accountKeys", [])
    if not keys:
        return ""
    first = keys[0]
    # jsonParsed encoding wraps keys in objects
    if isinstance(first, dict):
        return first.get("pubkey", "")
    return first


def parse_transaction_notification(result: dict) -> Optional[TransactionUpdate]:
    """
    Convert a `transactionNotification` result into a TransactionUpdate.

    Returns:
        None for failed transactions or ones without token balance metadata
    """
    wrapper = result.get("transaction", {})
    meta = wrapper.get("meta") or {}

    if meta.get("err") is not None:
        return None
    if meta.get("preTokenBalances") is None or meta.get("postTokenBalances") is None:
        return None

    tx = wrapper.get("transaction", {})
    signature = result.get("signature") or (tx.get("signatures") or [""])[0]

    return TransactionUpdate(
        signature=signature,
        slot=result.get("slot", 0),
        fee_payer=_first_account_key(tx.get("message", {})),
        pre_token_balances=_parse_token_balances(meta["preTokenBalances"]),
        post_token_balances=_parse_token_balances(meta["postTokenBalances"]),
    )


class TransactionListener:
    """
    WebSocket listener for confirmed AMM transactions.

    Subscribes with `transactionSubscribe` (Helius enhanced WebSocket) to
    every transaction touching a monitored program and hands each one to
    the SwapProcessor. Automatically reconnects on connection loss.
    """

    def __init__(self, processor: SwapProcessor, config: IngestionConfig):
        """
        Initialize the WebSocket listener.

        Args:
            processor: Swap processor receiving parsed transactions
            config: Ingestion configuration
        """
        self.processor = processor
        self.config = config

        self._ws = None
        self._running = False
        self._message_count = 0

    @backoff.on_exception(
        backoff.expo,
        (ConnectionClosed, OSError),
        max_time=300,
        on_backoff=lambda details: logger.warning(
            f"WebSocket reconnecting... attempt {details['tries']}"
        ),
    )
    async def start(self) -> None:
        """Connect, subscribe and process notifications until stopped."""
        self._running = True
        ws_url = self.config.helius_ws_url

        logger.info(f"Connecting to Solana WebSocket: {ws_url[:50]}...")

        async with connect(ws_url, ping_interval=30, ping_timeout=10) as ws:
            self._ws = ws
            logger.info("WebSocket connected successfully")

            await self._subscribe_to_programs()
            await self._message_loop()

    async def stop(self) -> None:
        """Stop the WebSocket listener gracefully."""
        self._running = False
        if self._ws:
            await self._ws.close()
            logger.info("WebSocket connection closed")

    async def _subscribe_to_programs(self) -> None:
        request = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "transactionSubscribe",
            "params": [
                {
                    "failed": False,
                    "vote": False,
                    "accountInclude": self.config.monitored_programs,
                },
                {
                    "commitment": "processed",
                    "encoding": "jsonParsed",
                    "transactionDetails": "full",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        }
        await self._ws.send(json.dumps(request))
        logger.info(f"Subscribed to {len(self.config.monitored_programs)} program(s)")

    async def _message_loop(self) -> None:
        try:
            async for message in self._ws:
                if not self._running:
                    break

                self._message_count += 1

                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON received: {message[:100]}")
                    continue

                await self._process_message(data)

        except ConnectionClosed as e:
            logger.warning(f"WebSocket connection closed: {e}")
            if self._running:
                raise  # Trigger reconnection via backoff

    async def _process_message(self, data: dict) -> None:
        if "result" in data and "id" in data:
            logger.debug(f"Subscription confirmed: {data['result']}")
            return

        if data.get("method") != "transactionNotification":
            return

        update = parse_transaction_notification(data.get("params", {}).get("result", {}))
        if update is None:
            return

        try:
            await self.processor.process(update)
        except Exception as e:
            # Sink failures are already counted; keep consuming the stream
            logger.error(f"https://solscan.io/tx/{update.signature} processing failed: {e}")

    @property
    def message_count(self) -> int:
        """Get total number of messages processed."""
        return self._message_count
