"""Increment-only counters for the swap pipeline."""

import asyncio
import logging
from collections import Counter
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class SwapMetrics:
    """
    Named counters for every outcome of the swap pipeline.

    Counters only ever go up. Increments happen on the event loop thread,
    so no locking is needed.
    """

    COUNTERS = (
        "processed_swaps",
        "skipped_tiny_swaps",
        "skipped_zero_swaps",
        "skipped_unexpected_number_of_tokens",
        "multi_hop_swaps",
        "skipped_non_wsol",
        "skipped_no_metadata",
        "skipped_no_sol_price",
        "db_insert_success",
        "db_insert_failure",
        "message_send_success",
        "message_send_failure",
        "kv_insert_success",
        "kv_insert_failure",
    )

    def __init__(self):
        self._counts: Counter = Counter({name: 0 for name in self.COUNTERS})
        self._reporter: Optional[asyncio.Task] = None

    def increment(self, name: str) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown metric: {name}")
        self._counts[name] += 1

    def get(self, name: str) -> int:
        return self._counts[name]

    def snapshot(self) -> Dict[str, int]:
        """Copy of all counters."""
        return dict(self._counts)

    def start_reporting(self, interval_seconds: float) -> None:
        """Log a snapshot every `interval_seconds` until stopped."""
        if self._reporter is None:
            self._reporter = asyncio.create_task(self._report_loop(interval_seconds))

    async def stop_reporting(self) -> None:
        if self._reporter:
            self._reporter.cancel()
            try:
                await self._reporter
            except asyncio.CancelledError:
                pass
            self._reporter = None

    async def _report_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            counts = self.snapshot()
            logger.info(
                "📊 Swap metrics: "
                + ", ".join(f"{name}={value}" for name, value in counts.items() if value)
            )
