"""Configuration for the exit seller."""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


@dataclass
class SellerConfig:
    """Configuration for balance discovery, vault watching and exits."""

    rpc_url: str = field(
        default_factory=lambda: os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
    )
    ws_url: str = field(
        default_factory=lambda: os.getenv("SOLANA_WS_URL", "wss://api.mainnet-beta.solana.com")
    )
    keypair_path: str = field(
        default_factory=lambda: os.getenv("FUND_KEYPAIR_PATH", "")
    )
    jupiter_api_key: str = field(
        default_factory=lambda: os.getenv("JUPITER_API_KEY", "")
    )

    # Exit thresholds relative to SOL pooled at entry
    take_profit_multiplier: float = 1.4
    stop_loss_multiplier: float = 0.8

    # Fallback wait for the first token account update
    balance_timeout_seconds: float = 10.0

    slippage_bps: int = field(
        default_factory=lambda: int(os.getenv("EXIT_SLIPPAGE_BPS", "500"))
    )
    priority_fee_lamports: int = field(
        default_factory=lambda: int(os.getenv("EXIT_PRIORITY_FEE_LAMPORTS", "10000"))
    )

    # HTTP service
    host: str = field(default_factory=lambda: os.getenv("SELLER_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("SELLER_PORT", "8081")))
