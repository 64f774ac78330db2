"""Jupiter DEX aggregator integration for Solana.

Uses Jupiter Aggregator API for swap quotes on Solana.
API docs: https://station.jup.ag/docs/apis/swap-api
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from payroute.errors import GatewayUnavailable
from payroute.gateways.base import SwapQuote, SwapQuoteSource
from payroute.tokens import TokenInfo

logger = logging.getLogger(__name__)

# Jupiter API endpoints
JUPITER_API_V6 = "https://quote-api.jup.ag/v6"

NO_ROUTE_ERRORS = {"COULD_NOT_FIND_ANY_ROUTE", "NO_ROUTES_FOUND", "TOKEN_NOT_TRADABLE"}


class JupiterSource(SwapQuoteSource):
    """Jupiter DEX aggregator quote source for Solana.

    Jupiter aggregates liquidity from Raydium, Orca and other Solana DEXes.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = JUPITER_API_V6,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "Jupiter"

    def supports_chain(self, chain: str) -> bool:
        return chain == "solana"

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def get_swap_quote(
        self,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[SwapQuote]:
        """Get swap quote from Jupiter.

        Args:
            chain: Must be "solana"
            from_token: Input mint
            to_token: Output mint
            amount: Input in lamports / smallest units
            slippage: Max slippage fraction (0.01 = 1%)

        Returns:
            SwapQuote, or None when Jupiter finds no route
        """
        if not self.supports_chain(chain):
            return None

        # Slippage in basis points
        slippage_bps = int(slippage * 10000)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/quote",
                    headers=self._get_headers(),
                    params={
                        "inputMint": from_token.address,
                        "outputMint": to_token.address,
                        "amount": str(amount),
                        "slippageBps": str(slippage_bps),
                        "onlyDirectRoutes": "false",
                    },
                )
        except httpx.HTTPError as e:
            raise GatewayUnavailable(self.name, "swap quote", f"{type(e).__name__}: {e}") from e

        if response.status_code == 400 and self._is_no_route(response):
            logger.debug(f"Jupiter found no route for {from_token.symbol}->{to_token.symbol}")
            return None
        if response.status_code != 200:
            raise GatewayUnavailable(self.name, "swap quote", f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            out_amount = int(data["outAmount"])
            minimum = int(data.get("otherAmountThreshold") or out_amount)
            # priceImpactPct is a fraction despite its name
            price_impact = abs(Decimal(str(data.get("priceImpactPct") or "0"))) * 100
            platform_fee = data.get("platformFee") or {}
            fee_rate = Decimal(str(platform_fee.get("feeBps") or 0)) / 10000
        except (KeyError, ValueError, TypeError, InvalidOperation) as e:
            raise GatewayUnavailable(self.name, "swap quote", f"malformed response: {e}") from e

        if out_amount <= 0:
            return None

        # Get route info
        path = [from_token.address]
        labels = []
        for step in data.get("routePlan") or []:
            swap_info = step.get("swapInfo", {})
            labels.append(swap_info.get("label", "Unknown"))
            output_mint = swap_info.get("outputMint")
            if output_mint and output_mint != path[-1]:
                path.append(output_mint)
        if path[-1] != to_token.address:
            path.append(to_token.address)

        return SwapQuote(
            source=self.name,
            chain=chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            expected_output=out_amount,
            minimum_output=minimum,
            price_impact=price_impact,
            exchange=labels[0].lower() if labels else "jupiter",
            path=path,
            fee_rate=fee_rate,
        )

    @staticmethod
    def _is_no_route(response: httpx.Response) -> bool:
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("errorCode") in NO_ROUTE_ERRORS
