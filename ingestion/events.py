"""Event types for the Ingestion Layer."""

from dataclasses import dataclass, field, asdict
from typing import List
import json
import math


@dataclass
class TokenBalance:
    """One entry of a transaction's pre/post token balance list."""

    mint: str
    owner: str
    amount: float  # UI amount (already scaled by decimals)


@dataclass
class TransactionUpdate:
    """The slice of a confirmed transaction the swap pipeline consumes."""

    signature: str
    slot: int
    fee_payer: str
    pre_token_balances: List[TokenBalance] = field(default_factory=list)
    post_token_balances: List[TokenBalance] = field(default_factory=list)


@dataclass
class BalanceDiff:
    """Balance change of a single (mint, owner) pair within one transaction."""

    mint: str
    owner: str
    pre_amount: float
    post_amount: float
    diff: float


@dataclass(frozen=True)
class SwapPriceResult:
    """Outcome of pricing a two-leg swap against SOL."""

    price: float
    swap_amount: float  # USD volume
    coin_mint: str
    is_buy: bool


@dataclass(frozen=True)
class PriceUpdate:
    """
    A priced swap, fanned out to the analytical store, the message queue
    and the kv store.

    The field set is consumed by downstream services and must not change.
    """

    name: str
    pubkey: str
    price: float
    market_cap: float
    timestamp: int
    slot: int
    swap_amount: float
    owner: str
    signature: str
    multi_hop: bool
    is_buy: bool
    is_pump: bool

    def __post_init__(self):
        for attr in ("price", "swap_amount"):
            value = getattr(self, attr)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{attr} must be a non-negative finite number, got {value}")

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        """Serialize to JSON for Redis."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str) -> "PriceUpdate":
        """Deserialize from JSON."""
        parsed = json.loads(data)
        return cls(
            name=parsed["name"],
            pubkey=parsed["pubkey"],
            price=float(parsed["price"]),
            market_cap=float(parsed["market_cap"]),
            timestamp=int(parsed["timestamp"]),
            slot=int(parsed["slot"]),
            swap_amount=float(parsed["swap_amount"]),
            owner=parsed["owner"],
            signature=parsed["signature"],
            multi_hop=bool(parsed["multi_hop"]),
            is_buy=bool(parsed["is_buy"]),
            is_pump=bool(parsed["is_pump"]),
        )
