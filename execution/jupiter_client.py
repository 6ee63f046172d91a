"""Jupiter Swap Client - builds the liquidating swap transaction."""

import base64
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any
import aiohttp

logger = logging.getLogger(__name__)


@dataclass
class SwapQuote:
    """Quote response from Jupiter."""

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    slippage_bps: int
    route_data: Dict[str, Any]  # Raw response for swap request


class JupiterClient:
    """
    Client for Jupiter Aggregator API.

    Exits go through a single direct route so the sell settles against
    the pool being watched rather than a multi-hop path.

    API Docs: https://station.jup.ag/docs/apis/swap-api
    """

    BASE_URL = "https://api.jup.ag/swap/v1"

    def __init__(self, session: aiohttp.ClientSession = None, api_key: str = None):
        """
        Initialize Jupiter client.

        Args:
            session: Optional aiohttp session (created if not provided)
            api_key: Jupiter API key
        """
        self._session = session
        self._owns_session = session is None
        self._api_key = api_key

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 500,
    ) -> Optional[SwapQuote]:
        """
        Get a direct-route swap quote.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Input amount in smallest units
            slippage_bps: Slippage tolerance in basis points

        Returns:
            SwapQuote or None if no route found
        """
        try:
            url = f"{self.BASE_URL}/quote"
            params = {
                "inputMint": input_mint,
                "outputMint": output_mint,
                "amount": str(amount),
                "slippageBps": slippage_bps,
                "onlyDirectRoutes": "true",
            }

            async with self._session.get(url, params=params, headers=self._get_headers()) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Jupiter quote failed ({response.status}): {error_text}")
                    return None

                data = await response.json()

            return SwapQuote(
                input_mint=input_mint,
                output_mint=output_mint,
                in_amount=int(data.get("inAmount", amount)),
                out_amount=int(data.get("outAmount", 0)),
                price_impact_pct=float(data.get("priceImpactPct", 0)),
                slippage_bps=slippage_bps,
                route_data=data,
            )

        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Jupiter quote error: {e}")
            return None

    async def get_swap_transaction(
        self,
        quote: SwapQuote,
        user_public_key: str,
        priority_fee_lamports: int = 10000,
    ) -> Optional[bytes]:
        """
        Get a serialized, unsigned swap transaction.

        Returns:
            Serialized transaction bytes or None on error
        """
        try:
            url = f"{self.BASE_URL}/swap"
            payload = {
                "quoteResponse": quote.route_data,
                "userPublicKey": user_public_key,
                "wrapAndUnwrapSol": True,
                "prioritizationFeeLamports": priority_fee_lamports,
                "dynamicComputeUnitLimit": True,
            }

            async with self._session.post(url, json=payload, headers=self._get_headers()) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Jupiter swap failed ({response.status}): {error_text}")
                    return None

                data = await response.json()

            swap_tx_b64 = data.get("swapTransaction")
            if not swap_tx_b64:
                logger.error("No swapTransaction in response")
                return None

            return base64.b64decode(swap_tx_b64)

        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Jupiter swap tx error: {e}")
            return None
