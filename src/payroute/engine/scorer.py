"""Route scoring and ranking.

Turns priced candidate paths into PaymentRoutes and assigns each a scalar
cost:

    cost = sum(hop fee fraction) + time_weight * sum(hop seconds) + risk penalties

Hop fee fraction is the exchange fee plus price impact for swaps and
fee / amount for bridges.
Hop seconds are the chain's block time for approvals, swaps and transfers and
the quoted settlement time for bridges. Risk penalties apply to estimate-only
bridge quotes and to swaps above the price impact threshold.

Ranking is ascending cost, then fewer steps, then fewer bridges, then
discovery order, so equal inputs always rank identically.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from payroute.config import Settings, get_settings
from payroute.engine.graph import CandidatePath, PricedEdge
from payroute.models import ExchangeRoute, PaymentRoute, RouteStep, RouteSummary, StepType
from payroute.tokens import TokenCatalog, format_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredRoute:
    """A route with the cost it was ranked by."""

    route: PaymentRoute
    cost: Decimal
    discovery_order: int = 0

    @property
    def rank_key(self) -> tuple:
        return (self.cost, len(self.route.steps), self.route.bridge_count, self.discovery_order)


class RouteScorer:
    """Converts candidate paths to routes and ranks them by cost."""

    def __init__(self, catalog: TokenCatalog, settings: Optional[Settings] = None):
        self.catalog = catalog
        self.settings = settings or get_settings()

    def score(self, path: CandidatePath, discovery_order: int = 0) -> ScoredRoute:
        route = self.build_route(path)
        cost = self.cost(path)
        logger.debug(f"Scored {RouteSummary.of(route)} at {cost}")
        return ScoredRoute(route=route, cost=cost, discovery_order=discovery_order)

    def rank(self, scored: list[ScoredRoute]) -> list[ScoredRoute]:
        """Sort best first."""
        return sorted(scored, key=lambda s: s.rank_key)

    def cost(self, path: CandidatePath) -> Decimal:
        settings = self.settings
        fee = Decimal("0")
        seconds = 0
        penalty = Decimal("0")

        for edge in path.edges:
            block_time = self._block_time(edge.from_chain)
            if edge.kind == StepType.SWAP:
                quote = edge.swap_quote
                fee += quote.price_impact / 100 + quote.fee_rate
                if quote.price_impact > settings.price_impact_threshold:
                    penalty += settings.high_price_impact_penalty
                seconds += block_time
            elif edge.kind == StepType.BRIDGE:
                quote = edge.bridge_quote
                if edge.amount_in > 0:
                    fee += Decimal(quote.fee) / Decimal(edge.amount_in)
                if not quote.finalized:
                    penalty += settings.estimate_only_bridge_penalty
                seconds += quote.estimated_seconds
            else:
                seconds += block_time

            if self._needs_approval(edge):
                seconds += block_time

        return fee + settings.time_weight * seconds + penalty

    def _block_time(self, chain: str) -> int:
        config = self.catalog.get_chain(chain)
        return config.block_time_seconds if config else 0

    @staticmethod
    def _needs_approval(edge: PricedEdge) -> bool:
        return edge.kind in (StepType.SWAP, StepType.BRIDGE) and not edge.from_token.is_native

    def build_route(self, path: CandidatePath) -> PaymentRoute:
        """Lay out the ordered steps for a path."""
        steps: list[RouteStep] = []
        exchange_routes: list[ExchangeRoute] = []

        for edge in path.edges:
            if self._needs_approval(edge):
                steps.append(self._approve_step(edge))
            if edge.kind == StepType.SWAP:
                step, exchange_route = self._swap_step(edge)
                steps.append(step)
                exchange_routes.append(exchange_route)
            elif edge.kind == StepType.BRIDGE:
                steps.append(self._bridge_step(edge))
            else:
                steps.append(self._transfer_step(edge))

        source = path.source
        target = path.target
        is_direct = len(path.edges) == 1
        has_approval = any(s.type == StepType.APPROVE for s in steps)

        return PaymentRoute(
            blockchain=source.chain,
            from_address=source.address,
            from_token=source.token,
            from_amount=format_units(path.amount_in, source.token.decimals),
            from_decimals=source.token.decimals,
            to_token=target.token,
            to_amount=format_units(path.amount_out, target.token.decimals),
            to_decimals=target.token.decimals,
            to_address=target.receiver,
            exchange_routes=tuple(exchange_routes),
            steps=tuple(steps),
            estimated_fee=self._estimated_fee(path),
            approval_required=None if is_direct else has_approval,
        )

    def _approve_step(self, edge: PricedEdge) -> RouteStep:
        quote = edge.swap_quote if edge.kind == StepType.SWAP else edge.bridge_quote
        protocol = quote.exchange if edge.kind == StepType.SWAP else quote.bridge
        data = {
            "chain": edge.from_chain,
            "token": edge.from_token.address,
            "symbol": edge.from_token.symbol,
            "protocol": protocol,
            "amount": str(edge.amount_in),
        }
        # Without a quoted contract the signer resolves the protocol's spender
        if quote.spender:
            data["spender"] = quote.spender
        return RouteStep(
            type=StepType.APPROVE,
            description=f"Approve {edge.from_token.symbol} for {protocol} on {edge.from_chain}",
            data=data,
        )

    def _swap_step(self, edge: PricedEdge) -> tuple[RouteStep, ExchangeRoute]:
        quote = edge.swap_quote
        exchange_route = ExchangeRoute(
            exchange=quote.exchange,
            path=tuple(quote.path),
            expected_output=str(quote.expected_output),
            minimum_output=str(quote.minimum_output),
            price_impact=quote.price_impact,
        )
        step = RouteStep(
            type=StepType.SWAP,
            description=(
                f"Swap {format_units(edge.amount_in, edge.from_token.decimals)} {edge.from_token.symbol} "
                f"for {edge.to_token.symbol} on {quote.exchange} ({edge.from_chain})"
            ),
            data={
                "chain": edge.from_chain,
                "exchange": quote.exchange,
                "fromToken": edge.from_token.address,
                "toToken": edge.to_token.address,
                "path": list(quote.path),
                "amountIn": str(edge.amount_in),
                "expectedOutput": str(quote.expected_output),
                "minimumOutput": str(quote.minimum_output),
                "priceImpact": str(quote.price_impact),
                "quotedAt": quote.quoted_at,
            },
        )
        return step, exchange_route

    def _bridge_step(self, edge: PricedEdge) -> RouteStep:
        quote = edge.bridge_quote
        return RouteStep(
            type=StepType.BRIDGE,
            description=(
                f"Bridge {format_units(edge.amount_in, edge.from_token.decimals)} {edge.from_token.symbol} "
                f"from {edge.from_chain} to {edge.to_chain} via {quote.bridge}"
            ),
            data={
                "chain": edge.from_chain,
                "toChain": edge.to_chain,
                "token": edge.from_token.address,
                "toToken": edge.to_token.address,
                "symbol": edge.from_token.symbol,
                "amount": str(edge.amount_in),
                "amountOut": str(edge.amount_out),
                "bridge": quote.bridge,
                "fee": str(quote.fee),
                "estimatedSeconds": quote.estimated_seconds,
                "routeId": quote.route_id,
                "finalized": quote.finalized,
            },
        )

    def _transfer_step(self, edge: PricedEdge) -> RouteStep:
        return RouteStep(
            type=StepType.TRANSFER,
            description=(
                f"Transfer {format_units(edge.amount_in, edge.from_token.decimals)} {edge.from_token.symbol} "
                f"to {edge.receiver} on {edge.from_chain}"
            ),
            data={
                "chain": edge.from_chain,
                "token": edge.from_token.address,
                "symbol": edge.from_token.symbol,
                "amount": str(edge.amount_in),
                "to": edge.receiver,
            },
        )

    @staticmethod
    def _estimated_fee(path: CandidatePath) -> Optional[str]:
        """Total bridge fee in human units, when every bridge charges the same token."""
        bridges = [e for e in path.edges if e.kind == StepType.BRIDGE]
        if not bridges:
            return None

        fee_tokens: set[str] = {e.from_token.symbol for e in bridges}
        if len(fee_tokens) != 1:
            return None

        total = sum(
            (Decimal(e.bridge_quote.fee).scaleb(-e.from_token.decimals) for e in bridges),
            Decimal("0"),
        )
        return format(total.normalize(), "f")

