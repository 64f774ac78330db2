"""1inch DEX aggregator integration.

Quotes same-chain swaps on EVM chains.
API docs: https://portal.1inch.dev/documentation/apis/swap/introduction
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from payroute.chains import get_chain
from payroute.errors import GatewayUnavailable
from payroute.gateways.base import SwapQuote, SwapQuoteSource
from payroute.tokens import TokenInfo, to_base_units

logger = logging.getLogger(__name__)

# 1inch API endpoints
ONEINCH_API_V6 = "https://api.1inch.dev/swap/v6.0"

# Aggregation router v6, deployed at the same address on every supported chain
ONEINCH_ROUTER_V6 = "0x111111125421cA6dc452d289314280a0f8842A65"

# Chains the 1inch swap API serves
SUPPORTED_CHAINS = ["ethereum", "bsc", "polygon", "arbitrum", "optimism", "avalanche", "base"]


class OneInchSource(SwapQuoteSource):
    """1inch DEX aggregator quote source.

    1inch does not report price impact on the quote endpoint, so quotes
    from this source carry a price impact of 0.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = ONEINCH_API_V6,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize 1inch source.

        Args:
            api_key: 1inch API key (required for production)
            base_url: Swap API base URL, without chain id
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "1inch"

    def supports_chain(self, chain: str) -> bool:
        return chain in SUPPORTED_CHAINS

    def _get_headers(self) -> dict:
        """Get API headers with authorization."""
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
        """Get swap quote from 1inch."""
        config = get_chain(chain)
        if config is None or not self.supports_chain(config.key):
            return None

        url = f"{self.base_url}/{config.chain_id}/quote"
        params = {
            "src": from_token.address,
            "dst": to_token.address,
            "amount": str(amount),
            "includeProtocols": "true",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._get_headers(), params=params)
        except httpx.HTTPError as e:
            raise GatewayUnavailable(self.name, "swap quote", f"{type(e).__name__}: {e}") from e

        if response.status_code == 400 and "liquidity" in response.text.lower():
            logger.debug(f"1inch has no liquidity for {from_token.symbol}->{to_token.symbol} on {chain}")
            return None
        if response.status_code != 200:
            raise GatewayUnavailable(self.name, "swap quote", f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            # v6 returns dstAmount, v5 returned toAmount
            expected = int(data.get("dstAmount") or data.get("toAmount") or 0)
        except (ValueError, TypeError) as e:
            raise GatewayUnavailable(self.name, "swap quote", f"malformed response: {e}") from e

        if expected <= 0:
            return None

        path, exchange = self._parse_protocols(data.get("protocols"), from_token, to_token)

        return SwapQuote(
            source=self.name,
            chain=config.key,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            expected_output=expected,
            minimum_output=to_base_units(Decimal(expected) * (1 - slippage), 0),
            price_impact=Decimal("0"),
            exchange=exchange,
            path=path,
            spender=ONEINCH_ROUTER_V6,
        )

    @staticmethod
    def _parse_protocols(protocols, from_token: TokenInfo, to_token: TokenInfo) -> tuple[list[str], str]:
        """Extract the token path and main exchange from a 1inch protocols tree."""
        path = [from_token.address]
        exchange = "1inch"

        # protocols: [route][hop][part] -> {name, part, fromTokenAddress, toTokenAddress}
        if isinstance(protocols, list) and protocols and isinstance(protocols[0], list):
            for hop in protocols[0]:
                if not hop:
                    continue
                main = max(hop, key=lambda p: p.get("part", 0))
                if exchange == "1inch" and main.get("name"):
                    exchange = str(main["name"]).lower()
                to_address = main.get("toTokenAddress")
                if to_address and to_address.lower() != path[-1].lower():
                    path.append(to_address)

        if path[-1].lower() != to_token.address.lower():
            path.append(to_token.address)
        return path, exchange
