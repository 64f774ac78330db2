"""Route graph construction.

Nodes are (chain, token) pairs. From one candidate source the builder walks
a bounded graph toward each accepted target:

- swap edges stay on a chain and only lead to the target token or one of the
  chain's bridge-liquid intermediates
- bridge edges move the same symbol to the target chain, or to a hub chain
  for the first bridge
- at most max_bridge_hops bridges and max_swap_hops swaps per path
- a path never revisits a node and ends as soon as it reaches a target
- each hop is planned on what the previous hop guarantees: a swap's
  minimum output, a bridge's quoted delivery
- a path that delivers less than the target amount is re-priced with a
  proportionally larger input; the final transfer pays exactly the target

Sibling edges are priced concurrently. A failed or timed-out quote drops only
that edge.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, Decimal
from typing import Optional

from payroute.config import Settings, get_settings
from payroute.errors import GatewayUnavailable
from payroute.gateways.base import BridgeQuote, QuoteGateway, SwapQuote
from payroute.models import ResolvedTarget, StepType, ValidatedRequest
from payroute.tokens import TokenCatalog, TokenInfo, convert_decimals

logger = logging.getLogger(__name__)

Node = tuple[str, tuple]

# Re-pricing attempts for a path that falls short of the target amount
MAX_RESIZE_ROUNDS = 3


@dataclass(frozen=True)
class CandidateSource:
    """A funding holding: `balance` smallest units of `token` at `address` on `chain`."""

    address: str
    chain: str
    token: TokenInfo
    balance: int

    @property
    def node(self) -> Node:
        return (self.chain, self.token.key)

    def __str__(self) -> str:
        return f"{self.address} {self.token.symbol}@{self.chain}"


@dataclass
class PricedEdge:
    """One hop with the quote that priced it."""

    kind: StepType
    from_chain: str
    to_chain: str
    from_token: TokenInfo
    to_token: TokenInfo
    amount_in: int
    amount_out: int
    quoted_at: float
    swap_quote: Optional[SwapQuote] = None
    bridge_quote: Optional[BridgeQuote] = None
    receiver: Optional[str] = None

    @property
    def label(self) -> str:
        if self.kind == StepType.BRIDGE:
            return f"bridge {self.from_token.symbol} {self.from_chain}->{self.to_chain}"
        if self.kind == StepType.SWAP:
            return f"swap {self.from_token.symbol}->{self.to_token.symbol} on {self.from_chain}"
        return f"transfer {self.from_token.symbol} on {self.from_chain}"


@dataclass
class CandidatePath:
    """A complete priced path from a source to a target, ending in a transfer."""

    source: CandidateSource
    target: ResolvedTarget
    edges: list[PricedEdge]

    @property
    def amount_in(self) -> int:
        return self.edges[0].amount_in

    @property
    def amount_out(self) -> int:
        return self.edges[-1].amount_out

    @property
    def bridge_count(self) -> int:
        return sum(1 for e in self.edges if e.kind == StepType.BRIDGE)

    @property
    def swap_count(self) -> int:
        return sum(1 for e in self.edges if e.kind == StepType.SWAP)

    def describe(self) -> str:
        return " -> ".join(e.label for e in self.edges)


@dataclass
class SourcePaths:
    """Everything one source's search produced, including its gateway call tally."""

    source: CandidateSource
    paths: list[CandidatePath] = field(default_factory=list)
    calls_ok: int = 0
    calls_failed: int = 0


@dataclass
class _Search:
    source: CandidateSource
    target: ResolvedTarget
    blocked: set
    slippage: Decimal
    tally: SourcePaths


class RouteGraphBuilder:
    """Expands one candidate source into priced candidate paths."""

    def __init__(
        self,
        quotes: QuoteGateway,
        catalog: TokenCatalog,
        settings: Optional[Settings] = None,
    ):
        self.quotes = quotes
        self.catalog = catalog
        self.settings = settings or get_settings()

    async def build(self, source: CandidateSource, request: ValidatedRequest) -> SourcePaths:
        """Find every bounded path from `source` to any accepted target."""
        result = SourcePaths(source=source)
        target_nodes = {(t.chain, t.token.key) for t in request.targets}

        for target in request.targets:
            family = self.catalog.get_chain(target.chain).family
            if family != self.catalog.get_chain(source.chain).family:
                continue

            required = await self._required_input(source, target, request.slippage, result)
            if required is None:
                continue
            if required > source.balance:
                logger.debug(
                    f"{source} cannot cover {target.amount} {target.token.symbol}@{target.chain}: "
                    f"needs {required}, has {source.balance}"
                )
                continue

            search = _Search(
                source=source,
                target=target,
                blocked=target_nodes - {(target.chain, target.token.key)},
                slippage=request.slippage,
                tally=result,
            )
            paths = await self._walk(search, source.chain, source.token, required, [], {source.node})
            for path in await asyncio.gather(*(self._resize(search, p) for p in paths)):
                if path is not None:
                    result.paths.append(path)

        logger.debug(
            f"{source}: {len(result.paths)} path(s), "
            f"{result.calls_ok} quote call(s) ok, {result.calls_failed} failed"
        )
        return result

    async def _required_input(
        self,
        source: CandidateSource,
        target: ResolvedTarget,
        slippage: Decimal,
        tally: SourcePaths,
    ) -> Optional[int]:
        """First estimate of the source token to spend for a target.

        Same symbol: the target amount itself. Otherwise a reverse quote selling
        the target amount for the source token, padded by the slippage. Fees
        along the path are made up afterwards by _resize.
        """
        target_units = target.amount_units
        if source.token.symbol == target.token.symbol:
            return convert_decimals(target_units, target.token.decimals, source.token.decimals)

        for chain in self._pricing_chains(source.chain, target.chain):
            sell = self.catalog.resolve(target.token.symbol, chain)
            buy = self.catalog.resolve(source.token.symbol, chain)
            if sell is None or buy is None:
                continue

            amount = convert_decimals(target_units, target.token.decimals, sell.decimals)
            quote = await self._call(
                self.quotes.get_swap_quote(chain, sell, buy, amount, slippage),
                f"sizing {target.token.symbol}->{source.token.symbol} on {chain}",
                tally,
            )
            if quote is None:
                return None
            needed = convert_decimals(quote.expected_output, buy.decimals, source.token.decimals)
            padded = Decimal(needed) * (1 + slippage)
            return int(padded.to_integral_value(rounding=ROUND_CEILING))

        logger.debug(f"No chain prices {target.token.symbol} against {source.token.symbol}")
        return None

    def _pricing_chains(self, source_chain: str, target_chain: str) -> list[str]:
        chains = [source_chain] if source_chain == target_chain else [source_chain, target_chain]
        chains.extend(c for c in self.catalog.chains if c not in chains)
        return chains

    async def _walk(
        self,
        search: _Search,
        chain: str,
        token: TokenInfo,
        amount: int,
        edges: list[PricedEdge],
        visited: set,
    ) -> list[CandidatePath]:
        target = search.target
        if chain == target.chain and token == target.token:
            return [self._complete(search, edges, amount)]

        pending = self._expand(search, chain, token, amount, edges, visited)
        if not pending:
            return []

        children = []
        for edge in await asyncio.gather(*pending):
            if edge is None or edge.amount_out <= 0:
                continue
            node = (edge.to_chain, edge.to_token.key)
            children.append(
                self._walk(search, edge.to_chain, edge.to_token, edge.amount_out, edges + [edge], visited | {node})
            )

        paths: list[CandidatePath] = []
        for found in await asyncio.gather(*children):
            paths.extend(found)
        return paths

    def _complete(self, search: _Search, edges: list[PricedEdge], amount: int) -> CandidatePath:
        """Close a path with the transfer to the receiver, paying at most the target amount."""
        target = search.target
        paid = min(amount, target.amount_units)
        transfer = PricedEdge(
            kind=StepType.TRANSFER,
            from_chain=target.chain,
            to_chain=target.chain,
            from_token=target.token,
            to_token=target.token,
            amount_in=paid,
            amount_out=paid,
            quoted_at=edges[-1].quoted_at if edges else 0.0,
            receiver=target.receiver,
        )
        return CandidatePath(source=search.source, target=target, edges=edges + [transfer])

    async def _resize(self, search: _Search, path: CandidatePath) -> Optional[CandidatePath]:
        """Scale a short path's input until it delivers the target amount.

        Returns None when the larger input exceeds the source balance, a
        re-quote fails, or the path is still short after MAX_RESIZE_ROUNDS.
        """
        target_units = search.target.amount_units
        for _ in range(MAX_RESIZE_ROUNDS):
            if path.amount_out >= target_units:
                return path

            scaled = Decimal(path.amount_in) * target_units / path.amount_out
            amount = int(scaled.to_integral_value(rounding=ROUND_CEILING))
            if amount > search.source.balance:
                logger.debug(f"{search.source}: {path.describe()} needs {amount}, has {search.source.balance}")
                return None

            path = await self._reprice(search, path, amount)
            if path is None:
                return None

        if path.amount_out >= target_units:
            return path
        logger.debug(f"{search.source}: dropping {path.describe()}, delivers {path.amount_out} of {target_units}")
        return None

    async def _reprice(self, search: _Search, path: CandidatePath, amount: int) -> Optional[CandidatePath]:
        """Re-quote every hop of a path for a new input amount."""
        edges: list[PricedEdge] = []
        for edge in path.edges[:-1]:
            if edge.kind == StepType.SWAP:
                priced = await self._price_swap(search, edge.from_chain, edge.from_token, edge.to_token, amount)
            else:
                priced = await self._price_bridge(
                    search, edge.from_chain, edge.to_chain, edge.from_token, edge.to_token, amount
                )
            if priced is None or priced.amount_out <= 0:
                return None
            edges.append(priced)
            amount = priced.amount_out
        return self._complete(search, edges, amount)

    def _expand(
        self,
        search: _Search,
        chain: str,
        token: TokenInfo,
        amount: int,
        edges: list[PricedEdge],
        visited: set,
    ) -> list:
        """List coroutines pricing every admissible edge from a node."""
        settings = self.settings
        target = search.target
        swaps = sum(1 for e in edges if e.kind == StepType.SWAP)
        bridges = sum(1 for e in edges if e.kind == StepType.BRIDGE)
        on_target_chain = chain == target.chain

        def admissible(next_chain: str, next_token: TokenInfo) -> bool:
            node = (next_chain, next_token.key)
            return node not in visited and node not in search.blocked

        pending = []

        # Swap edges
        if swaps < settings.max_swap_hops:
            outputs: list[TokenInfo] = []
            if on_target_chain:
                outputs.append(target.token)
                if swaps + 1 < settings.max_swap_hops:
                    outputs.extend(self.catalog.intermediates(chain))
            elif bridges < settings.max_bridge_hops:
                same_symbol = self.catalog.resolve(target.token.symbol, chain)
                if same_symbol is not None:
                    outputs.append(same_symbol)
                # Any other intermediate still needs a swap after the bridge
                if swaps + 1 < settings.max_swap_hops:
                    outputs.extend(self.catalog.intermediates(chain))

            seen = set()
            for out in outputs:
                if out == token or out.key in seen or not admissible(chain, out):
                    continue
                seen.add(out.key)
                pending.append(self._price_swap(search, chain, token, out, amount))

        # Bridge edges
        if bridges < settings.max_bridge_hops:
            destinations: list[str] = []
            if not on_target_chain:
                destinations.append(target.chain)
            if bridges == 0 and bridges + 1 < settings.max_bridge_hops:
                family = self.catalog.get_chain(chain).family
                for hub in settings.hub_chain_list:
                    hub_config = self.catalog.get_chain(hub)
                    if hub_config is None or hub_config.family != family:
                        continue
                    if hub_config.key not in (chain, target.chain) and hub_config.key not in destinations:
                        destinations.append(hub_config.key)

            for destination in destinations:
                landed = self.catalog.resolve(token.symbol, destination)
                if landed is None or not admissible(destination, landed):
                    continue
                # Landing on the target chain with the wrong token needs a swap left
                if destination == target.chain and landed != target.token and swaps >= settings.max_swap_hops:
                    continue
                pending.append(self._price_bridge(search, chain, destination, token, landed, amount))

        return pending

    async def _price_swap(
        self,
        search: _Search,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
    ) -> Optional[PricedEdge]:
        quote = await self._call(
            self.quotes.get_swap_quote(chain, from_token, to_token, amount, search.slippage),
            f"swap {from_token.symbol}->{to_token.symbol} on {chain}",
            search.tally,
        )
        if quote is None:
            return None
        return PricedEdge(
            kind=StepType.SWAP,
            from_chain=chain,
            to_chain=chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            amount_out=quote.minimum_output,
            quoted_at=quote.quoted_at,
            swap_quote=quote,
        )

    async def _price_bridge(
        self,
        search: _Search,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
    ) -> Optional[PricedEdge]:
        quote = await self._call(
            self.quotes.get_bridge_quote(from_chain, to_chain, from_token, to_token, amount, search.slippage),
            f"bridge {from_token.symbol} {from_chain}->{to_chain}",
            search.tally,
        )
        if quote is None:
            return None
        return PricedEdge(
            kind=StepType.BRIDGE,
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            amount_out=quote.amount_out,
            quoted_at=quote.quoted_at,
            bridge_quote=quote,
        )

    async def _call(self, coro, label: str, tally: SourcePaths):
        """Await one gateway call under the gateway timeout, tallying the outcome.

        Failures are logged and reported as None so only this edge is lost.
        """
        timeout = self.settings.gateway_timeout
        try:
            result = await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            tally.calls_failed += 1
            logger.warning(str(GatewayUnavailable("quote", label, f"timed out after {timeout}s")))
            return None
        except GatewayUnavailable as e:
            tally.calls_failed += 1
            logger.warning(str(e))
            return None
        except Exception as e:
            tally.calls_failed += 1
            logger.warning(str(GatewayUnavailable("quote", label, f"{type(e).__name__}: {e}")))
            return None

        tally.calls_ok += 1
        return result
