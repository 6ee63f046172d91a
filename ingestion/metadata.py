"""Token metadata lookup backed by the Redis kv store."""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

METADATA_KEY_PREFIX = "solana:metadata:"


class RedisGetProtocol(Protocol):
    """Protocol for the subset of the async Redis client used here."""
    async def get(self, key: str) -> Optional[str]: ...


@dataclass
class TokenMetadata:
    """On-chain (SPL + Metaplex) and off-chain attributes of a token."""

    mint: str
    name: str
    decimals: int
    supply: int  # raw units
    offchain: dict = field(default_factory=dict)

    @property
    def adjusted_supply(self) -> float:
        return self.supply / (10 ** self.decimals)

    @property
    def is_pump(self) -> bool:
        """True if the token was launched through pump.fun."""
        created_on = self.offchain.get("createdOn")
        return isinstance(created_on, str) and "pump.fun" in created_on

    @classmethod
    def from_json(cls, mint: str, data: str) -> "TokenMetadata":
        parsed = json.loads(data)
        spl = parsed.get("spl", {})
        mpl = parsed.get("mpl", {})
        return cls(
            mint=mint,
            name=mpl.get("name", ""),
            decimals=int(spl["decimals"]),
            supply=int(spl["supply"]),
            offchain=mpl.get("ipfs_metadata") or {},
        )


class RedisMetadataStore:
    """
    Reads token metadata cached by the metadata service.

    Values live under `solana:metadata:<mint>` as JSON with `spl` and `mpl`
    sections.
    """

    def __init__(self, redis_client: RedisGetProtocol):
        self.redis = redis_client

    async def get_token_metadata(self, mint: str) -> Optional[TokenMetadata]:
        """
        Fetch metadata for a mint.

        Returns:
            TokenMetadata, or None if the mint is unknown
        """
        raw = await self.redis.get(f"{METADATA_KEY_PREFIX}{mint}")
        if raw is None:
            return None
        return TokenMetadata.from_json(mint, raw)
