"""Watch a pool's SOL vault until a take-profit or stop-loss level is hit."""

import logging
from dataclasses import dataclass

from .balance import PubsubProtocol
from .rpc import LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)


class VaultStreamClosedError(Exception):
    """The vault subscription ended before any threshold was reached."""
    pass


@dataclass(frozen=True)
class VaultObservation:
    """A sampled vault state."""

    lamports: int
    slot: int = 0

    @property
    def sol_pooled(self) -> float:
        return self.lamports / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class ExitThresholds:
    """Exit bounds on SOL pooled, relative to the value at entry."""

    take_profit: float
    stop_loss: float

    @classmethod
    def from_entry(
        cls,
        sol_pooled_at_entry: float,
        take_profit_multiplier: float = 1.4,
        stop_loss_multiplier: float = 0.8,
    ) -> "ExitThresholds":
        return cls(
            take_profit=sol_pooled_at_entry * take_profit_multiplier,
            stop_loss=sol_pooled_at_entry * stop_loss_multiplier,
        )

    def is_triggered(self, sol_pooled: float) -> bool:
        return sol_pooled >= self.take_profit or sol_pooled <= self.stop_loss


class VaultWatcher:
    """
    Infers price movement from the SOL reserve of a pool vault.

    More SOL in the vault means the token has been bought up; less means
    it has been sold down. The watch has no timeout and no cancel hook:
    it runs until a threshold fires or the hosting task dies.
    """

    def __init__(
        self,
        pubsub: PubsubProtocol,
        take_profit_multiplier: float = 1.4,
        stop_loss_multiplier: float = 0.8,
    ):
        self.pubsub = pubsub
        self.take_profit_multiplier = take_profit_multiplier
        self.stop_loss_multiplier = stop_loss_multiplier

    async def watch(self, sol_vault, sol_pooled_at_entry: float) -> VaultObservation:
        """
        Block until the vault crosses a threshold.

        Args:
            sol_vault: Vault account address
            sol_pooled_at_entry: SOL pooled when the position was opened

        Returns:
            The first observation at or beyond a threshold

        Raises:
            VaultStreamClosedError: If the stream ends without a trigger
        """
        thresholds = ExitThresholds.from_entry(
            sol_pooled_at_entry,
            self.take_profit_multiplier,
            self.stop_loss_multiplier,
        )

        async with self.pubsub.account_subscribe(
            sol_vault, commitment="processed", encoding="base64"
        ) as subscription:
            logger.debug(
                f"subscribed to sol_vault {sol_vault}, "
                f"tp: {thresholds.take_profit}, sl: {thresholds.stop_loss}"
            )

            async for notification in subscription:
                observation = VaultObservation(
                    lamports=notification.lamports,
                    slot=notification.slot,
                )
                logger.debug(
                    f"{sol_vault} sol_pooled: {observation.sol_pooled}, "
                    f"tp: {thresholds.take_profit}, sl: {thresholds.stop_loss}"
                )

                if thresholds.is_triggered(observation.sol_pooled):
                    return observation

        raise VaultStreamClosedError(f"vault stream for {sol_vault} ended without a trigger")
