"""
FastAPI Server for the Exit Seller.

Provides:
- POST /sell: start a background exit watch, acknowledged immediately
- GET /healthz: liveness probe
- GET /api/status: in-flight watches and swap pipeline counters
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
from fastapi import FastAPI, HTTPException

from execution.balance import BalanceResolver
from execution.config import SellerConfig
from execution.jupiter_client import JupiterClient
from execution.rpc import PubsubClient, SolanaRpcClient
from execution.seller import (
    ExitTrigger,
    JupiterSwapExecutor,
    SellRequest,
    SellerService,
    load_keypair,
)
from execution.vault_watcher import VaultWatcher
from ingestion.metrics import SwapMetrics

logger = logging.getLogger("seller-api")


def build_seller_service(config: SellerConfig, session: aiohttp.ClientSession) -> SellerService:
    """Wire the seller from configuration."""
    wallet = load_keypair(config.keypair_path)
    rpc = SolanaRpcClient(config.rpc_url, session=session)
    pubsub = PubsubClient(config.ws_url)

    executor = JupiterSwapExecutor(
        jupiter=JupiterClient(session=session, api_key=config.jupiter_api_key or None),
        rpc=rpc,
        wallet=wallet,
        slippage_bps=config.slippage_bps,
        priority_fee_lamports=config.priority_fee_lamports,
    )

    logger.info(f"✅ Seller wallet: {wallet.pubkey()}")
    return SellerService(
        owner=wallet.pubkey(),
        balance_resolver=BalanceResolver(rpc, pubsub, config.balance_timeout_seconds),
        vault_watcher=VaultWatcher(
            pubsub,
            config.take_profit_multiplier,
            config.stop_loss_multiplier,
        ),
        exit_trigger=ExitTrigger(executor),
    )


def create_app(
    seller: Optional[SellerService] = None,
    metrics: Optional[SwapMetrics] = None,
    config: Optional[SellerConfig] = None,
) -> FastAPI:
    """
    Create the HTTP app.

    Args:
        seller: Seller service (built from config on startup if not provided)
        metrics: Swap pipeline counters to expose on /api/status
        config: Seller configuration
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session = None
        if app.state.seller is None:
            session = aiohttp.ClientSession()
            app.state.seller = build_seller_service(config or SellerConfig(), session)
        logger.info("✅ Seller API ready")

        yield

        await app.state.seller.shutdown()
        if session is not None:
            await session.close()
        logger.info("👋 Shutdown complete")

    app = FastAPI(lifespan=lifespan)
    app.state.seller = seller
    app.state.metrics = metrics

    @app.post("/sell")
    async def handle_sell(request: SellRequest):
        """Start watching the vault; the exit outcome only shows in the logs."""
        if app.state.seller is None:
            raise HTTPException(status_code=503, detail="Seller not initialized")
        app.state.seller.trigger(request)
        return {"status": "OK, triggered sell"}

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/api/status")
    async def get_status():
        """Engine status for dashboards."""
        return {
            "active_watches": app.state.seller.active_watches if app.state.seller else 0,
            "swap_metrics": app.state.metrics.snapshot() if app.state.metrics else {},
        }

    return app
