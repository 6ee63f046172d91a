"""Price update sinks: analytical store, message queue and kv store."""

import logging
from typing import Protocol

from .events import PriceUpdate
from .metrics import SwapMetrics

logger = logging.getLogger(__name__)


class RedisClientProtocol(Protocol):
    """Protocol for async Redis client."""
    async def publish(self, channel: str, message: str) -> int: ...
    async def set(self, key: str, value: str) -> None: ...


class DatabasePoolProtocol(Protocol):
    """Protocol for asyncpg pool."""
    async def execute(self, query: str, *args) -> str: ...


PRICE_CACHE_PREFIX = "solana:price:"

CREATE_PRICE_TABLE = """
    CREATE TABLE IF NOT EXISTS price_updates (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        pubkey TEXT NOT NULL,
        price DOUBLE PRECISION NOT NULL,
        market_cap DOUBLE PRECISION NOT NULL,
        timestamp BIGINT NOT NULL,
        slot BIGINT NOT NULL,
        swap_amount DOUBLE PRECISION NOT NULL,
        owner TEXT NOT NULL,
        signature TEXT NOT NULL,
        multi_hop BOOLEAN NOT NULL,
        is_buy BOOLEAN NOT NULL,
        is_pump BOOLEAN NOT NULL
    )
"""

INSERT_PRICE = """
    INSERT INTO price_updates (
        name, pubkey, price, market_cap, timestamp, slot,
        swap_amount, owner, signature, multi_hop, is_buy, is_pump
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
"""


class PostgresPriceStore:
    """Analytical store for every priced swap."""

    def __init__(self, pool: DatabasePoolProtocol):
        self.pool = pool

    async def initialize(self) -> None:
        await self.pool.execute(CREATE_PRICE_TABLE)

    async def insert_price(self, update: PriceUpdate) -> None:
        await self.pool.execute(
            INSERT_PRICE,
            update.name,
            update.pubkey,
            update.price,
            update.market_cap,
            update.timestamp,
            update.slot,
            update.swap_amount,
            update.owner,
            update.signature,
            update.multi_hop,
            update.is_buy,
            update.is_pump,
        )


class RedisMessageQueue:
    """Pub/Sub broker for real-time price consumers."""

    def __init__(self, redis_client: RedisClientProtocol, channel: str = "price_updates"):
        self.redis = redis_client
        self.channel = channel

    async def publish_price_update(self, update: PriceUpdate) -> None:
        await self.redis.publish(self.channel, update.to_json())


class RedisKVStore:
    """Latest price per mint."""

    def __init__(self, redis_client: RedisClientProtocol):
        self.redis = redis_client

    async def insert_price(self, update: PriceUpdate) -> None:
        await self.redis.set(f"{PRICE_CACHE_PREFIX}{update.pubkey}", update.to_json())


class PriceUpdatePublisher:
    """
    Writes one price update to all three sinks, strictly in order:
    analytical store, then message queue, then kv store.

    A failing sink is counted and its error re-raised straight away; the
    sinks after it are not attempted. Nothing is retried or rolled back.
    """

    def __init__(
        self,
        store: PostgresPriceStore,
        message_queue: RedisMessageQueue,
        kv_store: RedisKVStore,
        metrics: SwapMetrics,
    ):
        """
        Initialize the publisher.

        Args:
            store: Analytical store (insert)
            message_queue: Broker (publish)
            kv_store: Cache (upsert)
            metrics: Counters for per-sink outcomes
        """
        self.store = store
        self.message_queue = message_queue
        self.kv_store = kv_store
        self.metrics = metrics

    async def publish(self, update: PriceUpdate) -> None:
        """
        Fan a price update out to every sink.

        Raises:
            Exception: Whatever the first failing sink raised
        """
        try:
            await self.store.insert_price(update)
            self.metrics.increment("db_insert_success")
        except Exception as e:
            self.metrics.increment("db_insert_failure")
            logger.error(f"Failed to insert price update {update.signature[:16]}...: {e}")
            raise

        try:
            await self.message_queue.publish_price_update(update)
            self.metrics.increment("message_send_success")
        except Exception as e:
            self.metrics.increment("message_send_failure")
            logger.error(f"Failed to publish price update {update.signature[:16]}...: {e}")
            raise

        try:
            await self.kv_store.insert_price(update)
            self.metrics.increment("kv_insert_success")
        except Exception as e:
            self.metrics.increment("kv_insert_failure")
            logger.error(f"Failed to cache price update {update.signature[:16]}...: {e}")
            raise

        logger.debug(
            f"Published price: {update.pubkey[:16]}... = {update.price} "
            f"({'buy' if update.is_buy else 'sell'} ${update.swap_amount:.2f})"
        )
