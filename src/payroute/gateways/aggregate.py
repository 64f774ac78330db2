"""Quote gateway that aggregates several swap and bridge sources."""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from payroute.errors import GatewayUnavailable
from payroute.gateways.base import (
    BridgeQuote,
    BridgeQuoteSource,
    BridgeStatus,
    QuoteGateway,
    SwapQuote,
    SwapQuoteSource,
)
from payroute.tokens import TokenInfo

logger = logging.getLogger(__name__)


class AggregateQuoteGateway(QuoteGateway):
    """Asks every capable source and keeps the best quote.

    Best swap: highest expected_output. Best bridge: lowest fee, then fastest.
    A source failure is logged and skipped; GatewayUnavailable is raised only
    when every capable source failed.
    """

    def __init__(
        self,
        swap_sources: Optional[list[SwapQuoteSource]] = None,
        bridge_sources: Optional[list[BridgeQuoteSource]] = None,
    ):
        self.swap_sources: list[SwapQuoteSource] = swap_sources or []
        self.bridge_sources: list[BridgeQuoteSource] = bridge_sources or []

    def add_swap_source(self, source: SwapQuoteSource) -> None:
        """Add a swap quote source."""
        self.swap_sources.append(source)

    def add_bridge_source(self, source: BridgeQuoteSource) -> None:
        """Add a bridge quote source."""
        self.bridge_sources.append(source)

    async def get_swap_quote(
        self,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[SwapQuote]:
        sources = [s for s in self.swap_sources if s.supports_chain(chain)]
        if not sources:
            logger.debug(f"No swap sources support {chain}")
            return None

        results = await asyncio.gather(
            *(s.get_swap_quote(chain, from_token, to_token, amount, slippage) for s in sources),
            return_exceptions=True,
        )
        quotes = self._collect(sources, results, f"swap {from_token.symbol}->{to_token.symbol} on {chain}")
        if not quotes:
            return None

        best = max(quotes, key=lambda q: q.expected_output)
        logger.debug(
            f"Best swap quote on {chain}: {best.source} {best.amount_in} {from_token.symbol} -> "
            f"{best.expected_output} {to_token.symbol} (impact {best.price_impact}%)"
        )
        return best

    async def get_bridge_quote(
        self,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[BridgeQuote]:
        sources = [
            s for s in self.bridge_sources
            if s.supports_route(from_chain, to_chain, from_token.symbol)
        ]
        if not sources:
            logger.debug(f"No bridge sources support {from_token.symbol} {from_chain}->{to_chain}")
            return None

        results = await asyncio.gather(
            *(
                s.get_bridge_quote(from_chain, to_chain, from_token, to_token, amount, slippage)
                for s in sources
            ),
            return_exceptions=True,
        )
        quotes = self._collect(sources, results, f"bridge {from_token.symbol} {from_chain}->{to_chain}")
        if not quotes:
            return None

        best = min(quotes, key=lambda q: (q.fee, q.estimated_seconds))
        logger.debug(
            f"Best bridge quote {from_chain}->{to_chain}: {best.bridge} via {best.source} "
            f"fee {best.fee}, ~{best.estimated_seconds}s"
        )
        return best

    async def get_bridge_status(
        self,
        tx_hash: str,
        bridge: Optional[str] = None,
        from_chain: Optional[str] = None,
        to_chain: Optional[str] = None,
    ) -> BridgeStatus:
        candidates = self.bridge_sources
        if bridge:
            named = [s for s in candidates if s.name == bridge]
            candidates = named or candidates
        if not candidates:
            raise GatewayUnavailable("bridge", "status", "no bridge sources configured")

        last_error: Optional[Exception] = None
        for source in candidates:
            try:
                return await source.get_bridge_status(tx_hash, from_chain, to_chain)
            except Exception as e:
                logger.warning(f"{source.name} bridge status failed: {type(e).__name__}: {e}")
                last_error = e

        raise GatewayUnavailable("bridge", "status", str(last_error))

    def _collect(self, sources: list, results: list, label: str) -> list:
        quotes = []
        errors = []

        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                error_msg = f"{source.name} quote failed: {type(result).__name__}: {result}"
                logger.warning(error_msg)
                errors.append(error_msg)
            elif result is not None:
                quotes.append(result)
            else:
                logger.debug(f"{source.name} returned no quote for {label}")

        if not quotes and errors and len(errors) == len(sources):
            raise GatewayUnavailable("quote", label, "; ".join(errors))

        return quotes
