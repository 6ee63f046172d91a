"""Configuration for the Ingestion Layer."""

import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


@dataclass
class IngestionConfig:
    """Configuration for the swap price indexer."""

    # RPC Configuration
    rpc_ws_url: str = field(
        default_factory=lambda: os.getenv(
            "SOLANA_WS_URL",
            "wss://api.mainnet-beta.solana.com"
        )
    )
    helius_api_key: str = field(
        default_factory=lambda: os.getenv("HELIUS_API_KEY", "")
    )

    # Redis Configuration (message queue + kv store)
    redis_host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    price_channel: str = field(
        default_factory=lambda: os.getenv("PRICE_UPDATES_CHANNEL", "price_updates")
    )

    # PostgreSQL Configuration (analytical store)
    postgres_host: str = field(default_factory=lambda: os.getenv("POSTGRES_HOST", "localhost"))
    postgres_port: int = field(default_factory=lambda: int(os.getenv("POSTGRES_PORT", "5432")))
    postgres_db: str = field(default_factory=lambda: os.getenv("POSTGRES_DB", "solana_prices"))
    postgres_user: str = field(default_factory=lambda: os.getenv("POSTGRES_USER", "admin"))
    postgres_password: str = field(
        default_factory=lambda: os.getenv("POSTGRES_PASSWORD", "password")
    )

    # SOL/USD reference price
    sol_price_url: str = field(
        default_factory=lambda: os.getenv(
            "SOL_PRICE_URL",
            "https://api.jup.ag/price/v2?ids=So11111111111111111111111111111111111111112",
        )
    )
    sol_price_refresh_seconds: float = field(
        default_factory=lambda: float(os.getenv("SOL_PRICE_REFRESH_SECONDS", "10"))
    )

    # Monitored Programs (only AMMs whose swaps settle against a SOL vault)
    monitored_programs: List[str] = field(default_factory=lambda: [
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # Raydium AMM V4
    ])

    # Metrics reporting
    metrics_interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("METRICS_INTERVAL_SECONDS", "60"))
    )

    @property
    def helius_ws_url(self) -> str:
        """Get Helius WebSocket URL if API key is configured."""
        if self.helius_api_key:
            return f"wss://atlas-mainnet.helius-rpc.com/?api-key={self.helius_api_key}"
        return self.rpc_ws_url

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
