"""Swap detection: classify balance diffs, price them, publish the result."""

import logging
import time
from enum import Enum
from typing import Optional, Protocol, Sequence

from .diffs import (
    NonWsolLegError,
    WrongLegCountError,
    get_token_balance_diff,
    process_diffs,
)
from .events import BalanceDiff, PriceUpdate, TransactionUpdate
from .metadata import TokenMetadata
from .metrics import SwapMetrics
from .sol_price import SolPriceUnavailableError

logger = logging.getLogger(__name__)

TINY_DIFF_THRESHOLD = 0.01


class SwapClass(str, Enum):
    """Outcome of classifying a transaction's balance diffs."""
    SKIP_TINY = "skip_tiny"
    SKIP_ZERO = "skip_zero"
    SKIP_UNEXPECTED_COUNT = "skip_unexpected_count"
    MULTI_HOP = "multi_hop"
    TWO_LEG = "two_leg"


# Counter bumped for each non-priced class
_SKIP_COUNTERS = {
    SwapClass.SKIP_TINY: "skipped_tiny_swaps",
    SwapClass.SKIP_ZERO: "skipped_zero_swaps",
    SwapClass.SKIP_UNEXPECTED_COUNT: "skipped_unexpected_number_of_tokens",
    SwapClass.MULTI_HOP: "multi_hop_swaps",
}


def classify_diffs(diffs: Sequence[BalanceDiff]) -> SwapClass:
    """Apply the filtering rules in order; the first match wins."""
    if all(abs(d.diff) < TINY_DIFF_THRESHOLD for d in diffs):
        return SwapClass.SKIP_TINY
    if any(d.diff == 0.0 for d in diffs):
        return SwapClass.SKIP_ZERO
    if len(diffs) not in (2, 3):
        return SwapClass.SKIP_UNEXPECTED_COUNT
    if len(diffs) == 3:
        # Cross-pool routes cannot be priced reliably; counted, never priced
        return SwapClass.MULTI_HOP
    return SwapClass.TWO_LEG


class SolPriceSource(Protocol):
    @property
    def price(self) -> float: ...


class MetadataStoreProtocol(Protocol):
    async def get_token_metadata(self, mint: str) -> Optional[TokenMetadata]: ...


class PublisherProtocol(Protocol):
    async def publish(self, update: PriceUpdate) -> None: ...


class SwapProcessor:
    """
    Turns one transaction's token balance changes into a published
    price update.

    Flow:
        diffs → classify → price → metadata → PriceUpdate → publish

    Every rejection along the way is benign: it is counted, logged at
    debug level and `process()` returns None. Only sink failures raise.
    """

    def __init__(
        self,
        sol_price: SolPriceSource,
        metadata_store: MetadataStoreProtocol,
        publisher: PublisherProtocol,
        metrics: SwapMetrics,
    ):
        self.sol_price = sol_price
        self.metadata_store = metadata_store
        self.publisher = publisher
        self.metrics = metrics

    async def process(self, tx: TransactionUpdate) -> Optional[PriceUpdate]:
        """
        Process a single transaction.

        Returns:
            The published PriceUpdate, or None if the transaction was skipped
        """
        diffs = get_token_balance_diff(tx.pre_token_balances, tx.post_token_balances)
        swap_class = classify_diffs(diffs)

        if swap_class != SwapClass.TWO_LEG:
            self.metrics.increment(_SKIP_COUNTERS[swap_class])
            logger.debug(
                f"https://solscan.io/tx/{tx.signature} {swap_class.value} "
                f"({len(diffs)} diffs)"
            )
            return None

        return await self._process_two_token_swap(diffs, tx, multi_hop=False)

    async def _process_two_token_swap(
        self,
        diffs: Sequence[BalanceDiff],
        tx: TransactionUpdate,
        multi_hop: bool,
    ) -> Optional[PriceUpdate]:
        try:
            sol_price = self.sol_price.price
        except SolPriceUnavailableError:
            self.metrics.increment("skipped_no_sol_price")
            logger.warning(f"https://solscan.io/tx/{tx.signature} skipping, no SOL price yet")
            return None

        try:
            result = process_diffs(diffs, sol_price)
        except NonWsolLegError:
            self.metrics.increment("skipped_non_wsol")
            logger.debug(f"https://solscan.io/tx/{tx.signature} skipping non-SOL swap")
            return None
        except WrongLegCountError:
            self.metrics.increment("skipped_unexpected_number_of_tokens")
            logger.debug(f"https://solscan.io/tx/{tx.signature} skipping wrong leg count")
            return None

        try:
            metadata = await self.metadata_store.get_token_metadata(result.coin_mint)
        except Exception as e:
            logger.warning(
                f"https://solscan.io/tx/{tx.signature} failed to get token metadata: {e}"
            )
            self.metrics.increment("skipped_no_metadata")
            return None

        if metadata is None:
            logger.debug(f"https://solscan.io/tx/{tx.signature} no token metadata")
            self.metrics.increment("skipped_no_metadata")
            return None

        update = PriceUpdate(
            name=metadata.name,
            pubkey=result.coin_mint,
            price=result.price,
            market_cap=result.price * metadata.adjusted_supply,
            timestamp=int(time.time()),
            slot=tx.slot,
            swap_amount=result.swap_amount,
            owner=tx.fee_payer,
            signature=tx.signature,
            multi_hop=multi_hop,
            is_buy=result.is_buy,
            is_pump=metadata.is_pump,
        )

        await self.publisher.publish(update)
        self.metrics.increment("processed_swaps")
        return update
