#!/usr/bin/env python3
"""
Solana Swap Price Indexer & Exit Seller

Main entry point that orchestrates both pipelines:
- Indexer: WebSocket transaction stream → priced swaps → Postgres / Redis
- Seller: HTTP-triggered vault watches with automated exits

Usage:
    python main.py                  # Run indexer and seller
    python main.py --mode index     # Run price indexer only
    python main.py --mode sell      # Run seller API only
"""

import asyncio
import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("solana-price-indexer")


class SwapIndexerEngine:
    """
    Owns the connections and long-running tasks of the price indexer.

    Every component receives its collaborators explicitly; the SOL price
    refresh and the metrics reporter are tasks started and stopped here.
    """

    def __init__(self, config=None):
        from ingestion.config import IngestionConfig
        from ingestion.metrics import SwapMetrics

        self.config = config or IngestionConfig()
        self.metrics = SwapMetrics()

        self.db_pool = None
        self.redis = None
        self.sol_price = None
        self.listener = None

    async def setup(self) -> None:
        """Initialize all connections and subsystems."""
        import asyncpg
        import redis.asyncio as redis

        from ingestion.listener import TransactionListener
        from ingestion.metadata import RedisMetadataStore
        from ingestion.processor import SwapProcessor
        from ingestion.publisher import (
            PostgresPriceStore,
            PriceUpdatePublisher,
            RedisKVStore,
            RedisMessageQueue,
        )
        from ingestion.sol_price import SolPriceFeed

        logger.info("Setting up connections...")

        try:
            self.db_pool = await asyncpg.create_pool(self.config.postgres_dsn, min_size=2, max_size=10)
            logger.info("✅ PostgreSQL connected")
        except Exception as e:
            logger.error(f"❌ PostgreSQL connection failed: {e}")
            raise

        self.redis = redis.Redis(
            host=self.config.redis_host,
            port=self.config.redis_port,
            decode_responses=True,
        )
        await self.redis.ping()
        logger.info("✅ Redis connected")

        store = PostgresPriceStore(self.db_pool)
        await store.initialize()

        publisher = PriceUpdatePublisher(
            store=store,
            message_queue=RedisMessageQueue(self.redis, self.config.price_channel),
            kv_store=RedisKVStore(self.redis),
            metrics=self.metrics,
        )

        self.sol_price = SolPriceFeed(
            self.config.sol_price_url,
            refresh_seconds=self.config.sol_price_refresh_seconds,
        )
        await self.sol_price.start()

        processor = SwapProcessor(
            sol_price=self.sol_price,
            metadata_store=RedisMetadataStore(self.redis),
            publisher=publisher,
            metrics=self.metrics,
        )
        self.listener = TransactionListener(processor, self.config)
        self.metrics.start_reporting(self.config.metrics_interval_seconds)

        logger.info("✅ Indexer initialized")

    async def run(self) -> None:
        await self.listener.start()

    async def shutdown(self) -> None:
        logger.info("Shutting down indexer...")
        if self.listener:
            await self.listener.stop()
        await self.metrics.stop_reporting()
        if self.sol_price:
            await self.sol_price.stop()
        if self.redis:
            await self.redis.aclose()
        if self.db_pool:
            await self.db_pool.close()
        logger.info("👋 Indexer stopped")


async def run_seller(metrics=None) -> None:
    """Serve the seller API until cancelled."""
    import uvicorn

    from api.server import create_app
    from execution.config import SellerConfig

    config = SellerConfig()
    app = create_app(metrics=metrics, config=config)
    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port))
    logger.info(f"Running seller service on {config.port}")
    await server.serve()


async def run(mode: str) -> None:
    engine: Optional[SwapIndexerEngine] = None
    tasks = []

    try:
        if mode in ("full", "index"):
            engine = SwapIndexerEngine()
            await engine.setup()
            tasks.append(asyncio.create_task(engine.run()))

        if mode in ("full", "sell"):
            tasks.append(asyncio.create_task(run_seller(engine.metrics if engine else None)))

        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        if engine:
            await engine.shutdown()


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Solana Swap Price Indexer & Exit Seller"
    )
    parser.add_argument(
        "--mode",
        choices=["full", "index", "sell"],
        default="full",
        help="Run mode: full (both), index (price indexer only), sell (seller API only)",
    )

    args = parser.parse_args()

    try:
        asyncio.run(run(args.mode))
    except KeyboardInterrupt:
        logger.info("Interrupt received, shutting down...")


if __name__ == "__main__":
    main()
