"""Tests for the price update fanout."""

import json
import pytest
from unittest.mock import AsyncMock

from ingestion.events import PriceUpdate
from ingestion.metrics import SwapMetrics
from ingestion.publisher import (
    PRICE_CACHE_PREFIX,
    PostgresPriceStore,
    PriceUpdatePublisher,
    RedisKVStore,
    RedisMessageQueue,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def price_update():
    return PriceUpdate(
        name="Test Token",
        pubkey="G6ZaVuWEuGtFRooaiHQWjDzoCzr2f7BWr3PhsQRnjSTE",
        price=0.0758,
        market_cap=75_800_000.0,
        timestamp=1_739_500_000,
        slot=321_000_000,
        swap_amount=675.04,
        owner="8CNuwDVRshWyZtWRvgb31AMaBge4q6KSRHNPdJHP29HU",
        signature="538voMuFQKp3oE6Tu598R8kJN12sum2cGMxZBxrV2Vuip1TL4qdWaXiJ8u3yRxgJy9SFX4faP2zC83oDX68D2wuW",
        multi_hop=False,
        is_buy=False,
        is_pump=True,
    )


@pytest.fixture
def metrics():
    return SwapMetrics()


@pytest.fixture
def async_sinks():
    store = AsyncMock()
    queue = AsyncMock()
    kv = AsyncMock()
    return store, queue, kv


# ============================================================================
# Unit Tests - PriceUpdatePublisher
# ============================================================================

class TestPriceUpdatePublisher:
    """Tests for sequential fanout."""

    @pytest.mark.asyncio
    async def test_all_sinks_written_in_order(self, async_sinks, metrics, price_update):
        store, queue, kv = async_sinks
        order = []
        store.insert_price.side_effect = lambda u: order.append("store")
        queue.publish_price_update.side_effect = lambda u: order.append("queue")
        kv.insert_price.side_effect = lambda u: order.append("kv")

        publisher = PriceUpdatePublisher(store, queue, kv, metrics)
        await publisher.publish(price_update)

        assert order == ["store", "queue", "kv"]
        assert metrics.get("db_insert_success") == 1
        assert metrics.get("message_send_success") == 1
        assert metrics.get("kv_insert_success") == 1

    @pytest.mark.asyncio
    async def test_store_failure_aborts_remaining_sinks(self, async_sinks, metrics, price_update):
        """Test that a failed insert stops the broker and cache writes."""
        store, queue, kv = async_sinks
        store.insert_price.side_effect = ConnectionError("postgres down")

        publisher = PriceUpdatePublisher(store, queue, kv, metrics)
        with pytest.raises(ConnectionError):
            await publisher.publish(price_update)

        queue.publish_price_update.assert_not_awaited()
        kv.insert_price.assert_not_awaited()

        counts = metrics.snapshot()
        assert counts["db_insert_failure"] == 1
        assert counts["db_insert_success"] == 0
        assert counts["message_send_success"] == 0
        assert counts["message_send_failure"] == 0
        assert counts["kv_insert_success"] == 0
        assert counts["kv_insert_failure"] == 0

    @pytest.mark.asyncio
    async def test_queue_failure_skips_cache(self, async_sinks, metrics, price_update):
        store, queue, kv = async_sinks
        queue.publish_price_update.side_effect = ConnectionError("redis down")

        publisher = PriceUpdatePublisher(store, queue, kv, metrics)
        with pytest.raises(ConnectionError):
            await publisher.publish(price_update)

        store.insert_price.assert_awaited_once_with(price_update)
        kv.insert_price.assert_not_awaited()
        assert metrics.get("db_insert_success") == 1
        assert metrics.get("message_send_failure") == 1

    @pytest.mark.asyncio
    async def test_cache_failure_counted(self, async_sinks, metrics, price_update):
        store, queue, kv = async_sinks
        kv.insert_price.side_effect = TimeoutError()

        publisher = PriceUpdatePublisher(store, queue, kv, metrics)
        with pytest.raises(TimeoutError):
            await publisher.publish(price_update)

        assert metrics.get("db_insert_success") == 1
        assert metrics.get("message_send_success") == 1
        assert metrics.get("kv_insert_failure") == 1

    @pytest.mark.asyncio
    async def test_no_retry(self, async_sinks, metrics, price_update):
        store, queue, kv = async_sinks
        store.insert_price.side_effect = ConnectionError("postgres down")

        publisher = PriceUpdatePublisher(store, queue, kv, metrics)
        with pytest.raises(ConnectionError):
            await publisher.publish(price_update)

        assert store.insert_price.await_count == 1


# ============================================================================
# Unit Tests - Sinks
# ============================================================================

class TestSinks:
    """Tests for the concrete sink adapters."""

    @pytest.mark.asyncio
    async def test_postgres_insert(self, price_update):
        pool = AsyncMock()
        store = PostgresPriceStore(pool)

        await store.insert_price(price_update)

        query, *args = pool.execute.await_args.args
        assert "INSERT INTO price_updates" in query
        assert args == [
            price_update.name,
            price_update.pubkey,
            price_update.price,
            price_update.market_cap,
            price_update.timestamp,
            price_update.slot,
            price_update.swap_amount,
            price_update.owner,
            price_update.signature,
            price_update.multi_hop,
            price_update.is_buy,
            price_update.is_pump,
        ]

    @pytest.mark.asyncio
    async def test_postgres_initialize(self):
        pool = AsyncMock()
        await PostgresPriceStore(pool).initialize()

        assert "CREATE TABLE IF NOT EXISTS price_updates" in pool.execute.await_args.args[0]

    @pytest.mark.asyncio
    async def test_message_queue_publish(self, price_update):
        redis_client = AsyncMock()
        queue = RedisMessageQueue(redis_client, channel="price_updates")

        await queue.publish_price_update(price_update)

        channel, message = redis_client.publish.await_args.args
        assert channel == "price_updates"
        assert PriceUpdate.from_json(message) == price_update

    @pytest.mark.asyncio
    async def test_kv_store_upsert(self, price_update):
        redis_client = AsyncMock()
        kv = RedisKVStore(redis_client)

        await kv.insert_price(price_update)

        key, value = redis_client.set.await_args.args
        assert key == f"{PRICE_CACHE_PREFIX}{price_update.pubkey}"
        assert json.loads(value)["price"] == price_update.price


# ============================================================================
# Unit Tests - PriceUpdate
# ============================================================================

class TestPriceUpdate:
    """Tests for the downstream price update contract."""

    def test_field_set(self, price_update):
        assert list(price_update.to_dict()) == [
            "name", "pubkey", "price", "market_cap", "timestamp", "slot",
            "swap_amount", "owner", "signature", "multi_hop", "is_buy", "is_pump",
        ]

    def test_immutable(self, price_update):
        with pytest.raises(AttributeError):
            price_update.price = 1.0

    @pytest.mark.parametrize("field,value", [
        ("price", -1.0),
        ("price", float("inf")),
        ("swap_amount", float("nan")),
    ])
    def test_rejects_invalid_amounts(self, price_update, field, value):
        data = price_update.to_dict()
        data[field] = value
        with pytest.raises(ValueError):
            PriceUpdate(**data)
