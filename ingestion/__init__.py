"""Ingestion Layer - Swap detection and pricing from Solana transactions."""

from .config import IngestionConfig
from .events import BalanceDiff, PriceUpdate, SwapPriceResult, TokenBalance, TransactionUpdate
from .diffs import get_token_balance_diff, process_diffs, NonWsolLegError, WrongLegCountError
from .processor import SwapProcessor, SwapClass, classify_diffs
from .publisher import PriceUpdatePublisher, PostgresPriceStore, RedisMessageQueue, RedisKVStore
from .metadata import RedisMetadataStore, TokenMetadata
from .metrics import SwapMetrics
from .sol_price import SolPriceFeed
from .listener import TransactionListener

__all__ = [
    "IngestionConfig",
    "BalanceDiff",
    "PriceUpdate",
    "SwapPriceResult",
    "TokenBalance",
    "TransactionUpdate",
    "get_token_balance_diff",
    "process_diffs",
    "NonWsolLegError",
    "WrongLegCountError",
    "SwapProcessor",
    "SwapClass",
    "classify_diffs",
    "PriceUpdatePublisher",
    "PostgresPriceStore",
    "RedisMessageQueue",
    "RedisKVStore",
    "RedisMetadataStore",
    "TokenMetadata",
    "SwapMetrics",
    "SolPriceFeed",
    "TransactionListener",
]
