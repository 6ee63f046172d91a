"""Execution Layer - Threshold-triggered position exits."""

from .config import SellerConfig
from .rpc import SolanaRpcClient, PubsubClient, RpcError, SubscriptionError
from .balance import BalanceResolver, BalanceResolutionError
from .vault_watcher import VaultWatcher, ExitThresholds, VaultObservation
from .jupiter_client import JupiterClient
from .seller import (
    SellRequest,
    SellWatchTask,
    SellerService,
    ExitTrigger,
    JupiterSwapExecutor,
    WatchState,
    load_keypair,
)

__all__ = [
    "SellerConfig",
    "SolanaRpcClient",
    "PubsubClient",
    "RpcError",
    "SubscriptionError",
    "BalanceResolver",
    "BalanceResolutionError",
    "VaultWatcher",
    "ExitThresholds",
    "VaultObservation",
    "JupiterClient",
    "SellRequest",
    "SellWatchTask",
    "SellerService",
    "ExitTrigger",
    "JupiterSwapExecutor",
    "WatchState",
    "load_keypair",
]
