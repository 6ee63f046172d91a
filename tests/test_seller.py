"""Tests for the exit seller watch task and service."""

import asyncio
import base64
import pytest
from unittest.mock import AsyncMock, MagicMock

from pydantic import ValidationError
from solders.pubkey import Pubkey

from execution.balance import BalanceResolver, BalanceTimeoutError
from execution.jupiter_client import JupiterClient, SwapQuote
from execution.rpc import AccountNotification, RpcError, SubscriptionError
from execution.seller import (
    ExitSwapError,
    ExitTrigger,
    JupiterSwapExecutor,
    SellerService,
    SellRequest,
    SellWatchTask,
    WatchState,
)
from execution.vault_watcher import VaultObservation, VaultStreamClosedError, VaultWatcher

OWNER = Pubkey.from_string("8CNuwDVRshWyZtWRvgb31AMaBge4q6KSRHNPdJHP29HU")
INPUT_MINT = "G6ZaVuWEuGtFRooaiHQWjDzoCzr2f7BWr3PhsQRnjSTE"
WSOL_MINT = "So11111111111111111111111111111111111111112"
AMM_POOL = "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"
SOL_VAULT = "DQyrAcCrDXQ7NeoqGgDCZwBvWDcYmFCjSb9JtteuvPpz"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def sell_request():
    return SellRequest(
        amm_pool=AMM_POOL,
        input_mint=INPUT_MINT,
        output_mint=WSOL_MINT,
        sol_vault=SOL_VAULT,
        sol_pooled_when_bought=85.0,
    )


@pytest.fixture
def mock_balance_resolver():
    resolver = AsyncMock()
    resolver.resolve = AsyncMock(return_value=1_000_000)
    return resolver


@pytest.fixture
def mock_vault_watcher():
    watcher = AsyncMock()
    watcher.watch = AsyncMock(return_value=VaultObservation(lamports=120_000_000_000))
    return watcher


@pytest.fixture
def mock_exit_trigger():
    trigger = AsyncMock()
    trigger.execute = AsyncMock(return_value="5xSig")
    return trigger


@pytest.fixture
def watch_task(sell_request, mock_balance_resolver, mock_vault_watcher, mock_exit_trigger):
    return SellWatchTask(
        request=sell_request,
        owner=OWNER,
        balance_resolver=mock_balance_resolver,
        vault_watcher=mock_vault_watcher,
        exit_trigger=mock_exit_trigger,
    )


# ============================================================================
# Unit Tests - SellRequest
# ============================================================================

class TestSellRequest:
    """Tests for the wire request model."""

    def test_valid(self, sell_request):
        assert sell_request.sol_pooled_when_bought == 85.0

    def test_invalid_pubkey(self):
        with pytest.raises(ValidationError):
            SellRequest(
                amm_pool="not-a-pubkey",
                input_mint=INPUT_MINT,
                output_mint=WSOL_MINT,
                sol_vault=SOL_VAULT,
                sol_pooled_when_bought=85.0,
            )

    def test_missing_field(self):
        with pytest.raises(ValidationError):
            SellRequest(amm_pool=AMM_POOL, input_mint=INPUT_MINT, output_mint=WSOL_MINT, sol_vault=SOL_VAULT)


# ============================================================================
# Unit Tests - SellWatchTask
# ============================================================================

class TestSellWatchTask:
    """Tests for the watch task state machine."""

    def test_initial_state(self, watch_task):
        assert watch_task.state == WatchState.RESOLVING_BALANCE

    @pytest.mark.asyncio
    async def test_happy_path(
        self, watch_task, sell_request, mock_balance_resolver, mock_vault_watcher, mock_exit_trigger
    ):
        assert await watch_task.run() == WatchState.DONE

        mock_balance_resolver.resolve.assert_awaited_once_with(OWNER, Pubkey.from_string(INPUT_MINT))
        mock_vault_watcher.watch.assert_awaited_once_with(SOL_VAULT, 85.0)
        mock_exit_trigger.execute.assert_awaited_once_with(sell_request, 1_000_000)
        assert watch_task.signature == "5xSig"
        assert watch_task.error is None

    @pytest.mark.asyncio
    async def test_balance_failure(self, watch_task, mock_balance_resolver, mock_vault_watcher, mock_exit_trigger):
        mock_balance_resolver.resolve.side_effect = BalanceTimeoutError("timeout")

        assert await watch_task.run() == WatchState.FAILED

        mock_vault_watcher.watch.assert_not_awaited()
        mock_exit_trigger.execute.assert_not_awaited()
        assert "timeout" in watch_task.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        SubscriptionError("connection refused"),
        VaultStreamClosedError("closed"),
    ])
    async def test_vault_failure(self, watch_task, mock_vault_watcher, mock_exit_trigger, error):
        mock_vault_watcher.watch.side_effect = error

        assert await watch_task.run() == WatchState.FAILED

        mock_exit_trigger.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exit_failure(self, watch_task, mock_exit_trigger):
        mock_exit_trigger.execute.side_effect = ExitSwapError("no route")

        assert await watch_task.run() == WatchState.FAILED
        assert watch_task.signature is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage,error", [
        ("resolve", asyncio.TimeoutError()),
        ("watch", TypeError("unsupported operand")),
        ("execute", RuntimeError("boom")),
    ])
    async def test_unexpected_errors_fail_the_task(
        self, watch_task, mock_balance_resolver, mock_vault_watcher, mock_exit_trigger, stage, error
    ):
        mocks = {
            "resolve": mock_balance_resolver.resolve,
            "watch": mock_vault_watcher.watch,
            "execute": mock_exit_trigger.execute,
        }
        mocks[stage].side_effect = error

        assert await watch_task.run() == WatchState.FAILED
        assert watch_task.error

    @pytest.mark.asyncio
    async def test_states_visited_in_order(self, watch_task, mock_balance_resolver, mock_vault_watcher):
        seen = []

        async def resolve(*args):
            seen.append(watch_task.state)
            return 5

        async def watch(*args):
            seen.append(watch_task.state)
            return VaultObservation(lamports=1)

        mock_balance_resolver.resolve.side_effect = resolve
        mock_vault_watcher.watch.side_effect = watch

        await watch_task.run()

        assert seen == [WatchState.RESOLVING_BALANCE, WatchState.WATCHING_VAULT]
        assert watch_task.state == WatchState.DONE

    @pytest.mark.asyncio
    async def test_end_to_end_with_subscriptions(self, sell_request, make_pubsub, mock_exit_trigger):
        """Test balance fallback, vault watch and exit wired together."""
        rpc = AsyncMock()
        rpc.get_token_account_balance = AsyncMock(return_value=3_000)
        pubsub = make_pubsub([
            AccountNotification(lamports=90_000_000_000, data=None),
            AccountNotification(lamports=125_000_000_000, data=None),
        ])

        task = SellWatchTask(
            request=sell_request,
            owner=OWNER,
            balance_resolver=BalanceResolver(rpc, pubsub),
            vault_watcher=VaultWatcher(pubsub),
            exit_trigger=mock_exit_trigger,
        )

        assert await task.run() == WatchState.DONE
        assert task.observation.lamports == 125_000_000_000
        mock_exit_trigger.execute.assert_awaited_once_with(sell_request, 3_000)
        assert pubsub.unsubscribe_count == 1


# ============================================================================
# Unit Tests - ExitTrigger
# ============================================================================

class TestExitTrigger:
    """Tests for the liquidating swap."""

    @pytest.mark.asyncio
    async def test_sells_full_balance(self, sell_request):
        executor = AsyncMock()
        executor.swap = AsyncMock(return_value="5xSig")

        signature = await ExitTrigger(executor).execute(sell_request, 1_234)

        assert signature == "5xSig"
        executor.swap.assert_awaited_once_with(
            pool_id=AMM_POOL,
            input_mint=INPUT_MINT,
            output_mint=WSOL_MINT,
            amount=1_234,
        )

    @pytest.mark.asyncio
    async def test_any_failure_becomes_exit_error(self, sell_request):
        executor = AsyncMock()
        executor.swap = AsyncMock(side_effect=RpcError("blockhash not found"))

        with pytest.raises(ExitSwapError):
            await ExitTrigger(executor).execute(sell_request, 1_234)

        assert executor.swap.await_count == 1


class TestJupiterSwapExecutor:
    """Tests for the Jupiter-backed executor failure paths."""

    @pytest.fixture
    def wallet(self):
        from solders.keypair import Keypair
        return Keypair()

    @pytest.mark.asyncio
    async def test_no_route(self, wallet):
        jupiter = AsyncMock()
        jupiter.get_quote = AsyncMock(return_value=None)
        rpc = AsyncMock()

        executor = JupiterSwapExecutor(jupiter, rpc, wallet)
        with pytest.raises(ExitSwapError):
            await executor.swap(AMM_POOL, INPUT_MINT, WSOL_MINT, 1_000)

        rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_transaction(self, wallet):
        jupiter = AsyncMock()
        jupiter.get_quote = AsyncMock(return_value=object())
        jupiter.get_swap_transaction = AsyncMock(return_value=None)
        rpc = AsyncMock()

        executor = JupiterSwapExecutor(jupiter, rpc, wallet)
        with pytest.raises(ExitSwapError):
            await executor.swap(AMM_POOL, INPUT_MINT, WSOL_MINT, 1_000)

        assert jupiter.get_swap_transaction.await_args.kwargs["user_public_key"] == str(wallet.pubkey())


# ============================================================================
# Unit Tests - SellerService
# ============================================================================

class TestSellerService:
    """Tests for spawning watch tasks."""

    @pytest.fixture
    def service(self, mock_balance_resolver, mock_vault_watcher, mock_exit_trigger):
        return SellerService(
            owner=OWNER,
            balance_resolver=mock_balance_resolver,
            vault_watcher=mock_vault_watcher,
            exit_trigger=mock_exit_trigger,
        )

    @pytest.mark.asyncio
    async def test_trigger_returns_immediately(self, service, sell_request):
        watch = service.trigger(sell_request)

        assert watch.state == WatchState.RESOLVING_BALANCE
        assert service.active_watches == 1

        await asyncio.gather(*list(service._tasks))
        assert watch.state == WatchState.DONE
        assert service.active_watches == 0

    @pytest.mark.asyncio
    async def test_duplicate_requests_not_deduplicated(self, service, sell_request, mock_exit_trigger):
        """Test that two requests for one vault run two independent watchers."""
        first = service.trigger(sell_request)
        second = service.trigger(sell_request)

        assert first is not second
        await asyncio.gather(*list(service._tasks))

        assert mock_exit_trigger.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_shutdown_cancels_watches(self, service, sell_request, mock_vault_watcher):
        async def forever(*args):
            await asyncio.Event().wait()

        mock_vault_watcher.watch.side_effect = forever
        service.trigger(sell_request)
        await asyncio.sleep(0)

        await service.shutdown()

        await asyncio.sleep(0)
        assert service.active_watches == 0


# ============================================================================
# Unit Tests - JupiterClient
# ============================================================================

def mock_http_session(status=200, payload=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value="route not found")

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=ctx)
    session.post = MagicMock(return_value=ctx)
    return session


class TestJupiterClient:
    """Tests for quote and swap transaction requests."""

    @pytest.mark.asyncio
    async def test_quote_uses_direct_routes(self):
        session = mock_http_session(payload={"inAmount": "1000", "outAmount": "52", "priceImpactPct": "0.01"})

        quote = await JupiterClient(session=session).get_quote(INPUT_MINT, WSOL_MINT, 1_000, slippage_bps=300)

        assert quote.out_amount == 52
        assert quote.slippage_bps == 300
        params = session.get.call_args.kwargs["params"]
        assert params["onlyDirectRoutes"] == "true"
        assert params["amount"] == "1000"

    @pytest.mark.asyncio
    async def test_quote_http_error(self):
        session = mock_http_session(status=400)

        assert await JupiterClient(session=session).get_quote(INPUT_MINT, WSOL_MINT, 1_000) is None

    @pytest.mark.asyncio
    async def test_swap_transaction_decoded(self):
        session = mock_http_session(payload={"swapTransaction": base64.b64encode(b"raw-tx").decode()})
        quote = SwapQuote(INPUT_MINT, WSOL_MINT, 1_000, 52, 0.0, 500, {"routePlan": []})

        tx_bytes = await JupiterClient(session=session).get_swap_transaction(quote, str(OWNER))

        assert tx_bytes == b"raw-tx"
        payload = session.post.call_args.kwargs["json"]
        assert payload["wrapAndUnwrapSol"] is True
        assert payload["userPublicKey"] == str(OWNER)

    @pytest.mark.asyncio
    async def test_swap_transaction_missing(self):
        session = mock_http_session(payload={})
        quote = SwapQuote(INPUT_MINT, WSOL_MINT, 1_000, 52, 0.0, 500, {})

        assert await JupiterClient(session=session).get_swap_transaction(quote, str(OWNER)) is None
