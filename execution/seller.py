"""
Exit Seller - watches a freshly opened position and sells it once the
pool's SOL reserve crosses a take-profit or stop-loss level.

Each accepted request becomes one background task:

    RESOLVING_BALANCE → WATCHING_VAULT → EXITING → DONE
            ↓                 ↓             ↓
          FAILED            FAILED        FAILED

The HTTP caller is acknowledged before the task starts, so failures are
only ever reported through the logs.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Optional, Protocol, Set

from pydantic import BaseModel, field_validator
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from .balance import BalanceResolutionError, BalanceResolver
from .jupiter_client import JupiterClient
from .rpc import RpcError, SolanaRpcClient, SubscriptionError
from .vault_watcher import VaultObservation, VaultStreamClosedError, VaultWatcher

logger = logging.getLogger(__name__)


class SellRequest(BaseModel):
    """Wire format of an exit-watch request."""

    amm_pool: str
    input_mint: str
    output_mint: str
    sol_vault: str
    sol_pooled_when_bought: float

    @field_validator("amm_pool", "input_mint", "output_mint", "sol_vault")
    @classmethod
    def _valid_pubkey(cls, value: str) -> str:
        try:
            Pubkey.from_string(value)
        except Exception as e:
            raise ValueError(f"invalid pubkey: {value}") from e
        return value


class WatchState(str, Enum):
    """Lifecycle of one watch task."""
    RESOLVING_BALANCE = "resolving_balance"
    WATCHING_VAULT = "watching_vault"
    EXITING = "exiting"
    DONE = "done"
    FAILED = "failed"


class ExitSwapError(Exception):
    """The liquidating swap could not be built, signed or sent."""
    pass


def load_keypair(path: str) -> Keypair:
    """Load a Solana CLI keypair file (JSON array of 64 bytes)."""
    with open(path) as f:
        return Keypair.from_bytes(bytes(json.load(f)))


class SwapExecutor(Protocol):
    """Build, sign and send a swap; returns the transaction signature."""
    async def swap(
        self, pool_id: str, input_mint: str, output_mint: str, amount: int
    ) -> str: ...


class JupiterSwapExecutor:
    """Swap executor that routes through Jupiter and submits over RPC."""

    def __init__(
        self,
        jupiter: JupiterClient,
        rpc: SolanaRpcClient,
        wallet: Keypair,
        slippage_bps: int = 500,
        priority_fee_lamports: int = 10000,
    ):
        self.jupiter = jupiter
        self.rpc = rpc
        self.wallet = wallet
        self.slippage_bps = slippage_bps
        self.priority_fee_lamports = priority_fee_lamports

    async def swap(self, pool_id: str, input_mint: str, output_mint: str, amount: int) -> str:
        quote = await self.jupiter.get_quote(
            input_mint=input_mint,
            output_mint=output_mint,
            amount=amount,
            slippage_bps=self.slippage_bps,
        )
        if not quote:
            raise ExitSwapError(f"no route for {input_mint} -> {output_mint} (pool {pool_id})")

        tx_bytes = await self.jupiter.get_swap_transaction(
            quote=quote,
            user_public_key=str(self.wallet.pubkey()),
            priority_fee_lamports=self.priority_fee_lamports,
        )
        if not tx_bytes:
            raise ExitSwapError("failed to build swap transaction")

        raw_tx = VersionedTransaction.from_bytes(tx_bytes)
        signed_tx = VersionedTransaction(raw_tx.message, [self.wallet])

        try:
            return await self.rpc.send_transaction(bytes(signed_tx))
        except RpcError as e:
            raise ExitSwapError(str(e)) from e


class ExitTrigger:
    """Sells the whole discovered balance in one swap. No retries."""

    def __init__(self, executor: SwapExecutor):
        self.executor = executor

    async def execute(self, request: SellRequest, balance: int) -> str:
        """
        Sell `balance` of `input_mint` for `output_mint` through `amm_pool`.

        Raises:
            ExitSwapError: If the swap fails for any reason
        """
        try:
            signature = await self.executor.swap(
                pool_id=request.amm_pool,
                input_mint=request.input_mint,
                output_mint=request.output_mint,
                amount=balance,
            )
        except ExitSwapError:
            raise
        except Exception as e:
            raise ExitSwapError(f"swap failed: {e}") from e

        logger.info(f"✅ Exit swap sent: https://solscan.io/tx/{signature}")
        return signature


class SellWatchTask:
    """One exit watch, from balance discovery to the liquidating swap."""

    def __init__(
        self,
        request: SellRequest,
        owner: Pubkey,
        balance_resolver: BalanceResolver,
        vault_watcher: VaultWatcher,
        exit_trigger: ExitTrigger,
    ):
        self.request = request
        self.owner = owner
        self.balance_resolver = balance_resolver
        self.vault_watcher = vault_watcher
        self.exit_trigger = exit_trigger

        self.state = WatchState.RESOLVING_BALANCE
        self.balance: Optional[int] = None
        self.observation: Optional[VaultObservation] = None
        self.signature: Optional[str] = None
        self.error: Optional[str] = None

    def _transition(self, state: WatchState) -> None:
        logger.debug(f"{self.request.input_mint[:16]}... {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, error: Exception, unexpected: bool = False) -> None:
        self.error = str(error) or type(error).__name__
        logger.error(
            f"❌ Sell watch for {self.request.input_mint} failed while "
            f"{self.state.value}: {error!r}",
            exc_info=unexpected,
        )
        self.state = WatchState.FAILED

    async def run(self) -> WatchState:
        """Drive the task to DONE or FAILED. Never raises."""
        mint = self.request.input_mint

        try:
            self.balance = await self.balance_resolver.resolve(
                self.owner, Pubkey.from_string(mint)
            )
        except BalanceResolutionError as e:
            self._fail(e)
            return self.state
        except Exception as e:
            self._fail(e, unexpected=True)
            return self.state
        logger.info(f"balance: {self.balance}")

        self._transition(WatchState.WATCHING_VAULT)
        try:
            self.observation = await self.vault_watcher.watch(
                self.request.sol_vault, self.request.sol_pooled_when_bought
            )
        except (SubscriptionError, VaultStreamClosedError) as e:
            self._fail(e)
            return self.state
        except Exception as e:
            self._fail(e, unexpected=True)
            return self.state
        logger.info(f"selling {mint[:16]}... at {self.observation.sol_pooled} SOL pooled")

        self._transition(WatchState.EXITING)
        try:
            self.signature = await self.exit_trigger.execute(self.request, self.balance)
        except ExitSwapError as e:
            self._fail(e)
            return self.state
        except Exception as e:
            self._fail(e, unexpected=True)
            return self.state

        self._transition(WatchState.DONE)
        return self.state


class SellerService:
    """
    Accepts exit-watch requests and runs each in its own task.

    Requests are not deduplicated: two requests for the same vault run two
    independent watchers and may both sell.
    """

    def __init__(
        self,
        owner: Pubkey,
        balance_resolver: BalanceResolver,
        vault_watcher: VaultWatcher,
        exit_trigger: ExitTrigger,
    ):
        self.owner = owner
        self.balance_resolver = balance_resolver
        self.vault_watcher = vault_watcher
        self.exit_trigger = exit_trigger
        self._tasks: Set[asyncio.Task] = set()

    def trigger(self, request: SellRequest) -> SellWatchTask:
        """Start watching in the background and return immediately."""
        logger.info(f"handling sell_request {request.model_dump_json()}")

        watch = SellWatchTask(
            request=request,
            owner=self.owner,
            balance_resolver=self.balance_resolver,
            vault_watcher=self.vault_watcher,
            exit_trigger=self.exit_trigger,
        )
        task = asyncio.create_task(watch.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return watch

    @property
    def active_watches(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Kill in-flight watches (process exit only)."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
