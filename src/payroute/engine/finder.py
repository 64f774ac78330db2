"""Route discovery orchestration.

Flow:
1. Validate the request once (payroute.validation)
2. Read balances for every (address, chain, token) candidate
3. Build and price paths for every funded source, concurrently, under a
   worker cap and an overall deadline
4. Score, rank and optionally gas-annotate the resulting routes

Discovery is best-effort: sources that fail or time out are dropped. Only a
run where every attempted gateway call failed is reported as an error.
"""

import asyncio
import dataclasses
import logging
from decimal import InvalidOperation
from typing import Optional, Union

from payroute.config import Settings, get_settings
from payroute.engine.graph import CandidateSource, RouteGraphBuilder, SourcePaths
from payroute.engine.scorer import RouteScorer, ScoredRoute
from payroute.errors import GatewayUnavailable, NoWorkingGateway
from payroute.gateways.base import BalanceGateway, ProviderAdapter, QuoteGateway, UnsignedTransaction
from payroute.models import PaymentRequest, PaymentRoute, RouteSummary, ValidatedRequest
from payroute.tokens import TokenCatalog, TokenInfo, default_catalog, to_base_units
from payroute.validation import address_family, validate_request

logger = logging.getLogger(__name__)

RequestLike = Union[PaymentRequest, dict, None]


@dataclasses.dataclass
class _BalanceScan:
    address: str
    sources: list[CandidateSource] = dataclasses.field(default_factory=list)
    calls_ok: int = 0
    calls_failed: int = 0


class RouteFinder:
    """Finds and ranks payment routes across every candidate source."""

    def __init__(
        self,
        quotes: QuoteGateway,
        balances: BalanceGateway,
        catalog: Optional[TokenCatalog] = None,
        settings: Optional[Settings] = None,
        provider: Optional[ProviderAdapter] = None,
    ):
        self.quotes = quotes
        self.balances = balances
        self.catalog = catalog or default_catalog()
        self.settings = settings or get_settings()
        self.provider = provider
        self.builder = RouteGraphBuilder(quotes, self.catalog, self.settings)
        self.scorer = RouteScorer(self.catalog, self.settings)

    async def find_all_routes(self, request: RequestLike) -> list[PaymentRoute]:
        """All routes for a request, best first. Empty when nothing is feasible."""
        return [scored.route for scored in await self.find_scored_routes(request)]

    async def find_best_route(self, request: RequestLike) -> Optional[PaymentRoute]:
        """The cheapest route, or None."""
        routes = await self.find_all_routes(request)
        return routes[0] if routes else None

    async def find_scored_routes(self, request: RequestLike) -> list[ScoredRoute]:
        """Ranked routes together with their costs.

        Raises:
            InvalidRequest: the request cannot be interpreted at all
            NoWorkingGateway: gateway calls were made and every one failed
        """
        validated = validate_request(request, self.catalog, self.settings)

        if not validated.sources:
            logger.info("No valid source addresses; no routes")
            return []
        if not validated.targets:
            logger.info("No acceptable targets resolved; no routes")
            return []

        logger.info(
            f"Finding routes from {len(validated.sources)} address(es) to "
            f"{len(validated.targets)} target(s) on {validated.target_chains}"
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.discovery_timeout
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_sources)

        scans = await self._run_until(
            [self._scan_address(address, validated, semaphore) for address in validated.sources],
            deadline,
            "balance scan",
        )
        sources = [source for scan in scans for source in scan.sources]
        calls_ok = sum(p.calls_ok for p in scans)
        calls_failed = sum(p.calls_failed for p in scans)

        logger.info(f"Found {len(sources)} funded candidate source(s)")

        results: list[SourcePaths] = await self._run_until(
            [self._build_source(source, validated, semaphore) for source in sources],
            deadline,
            "path search",
        )
        calls_ok += sum(r.calls_ok for r in results)
        calls_failed += sum(r.calls_failed for r in results)

        if calls_failed and not calls_ok:
            raise NoWorkingGateway(attempted=calls_failed)

        scored = []
        for result in results:
            for path in result.paths:
                scored.append(self.scorer.score(path, discovery_order=len(scored)))
        ranked = self.scorer.rank(scored)

        if self.provider is not None and ranked:
            ranked = await self._annotate_gas(ranked)

        if ranked:
            best = ranked[0]
            logger.info(
                f"Found {len(ranked)} route(s); best: {RouteSummary.of(best.route)} "
                f"cost {best.cost}"
            )
        else:
            logger.info("No route reaches any accepted target")
        return ranked

    async def _run_until(self, coros: list, deadline: float, stage: str) -> list:
        """Run coroutines concurrently until the deadline; keep finished results in order."""
        if not coros:
            return []

        tasks = [asyncio.ensure_future(c) for c in coros]
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        done, pending = await asyncio.wait(tasks, timeout=remaining)

        if pending:
            logger.warning(f"Discovery deadline reached: abandoning {len(pending)} {stage} task(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for task in tasks:
            if task not in done or task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"{stage} task failed: {type(error).__name__}: {error}")
                continue
            results.append(task.result())
        return results

    def _scan_tokens(self, chain: str, request: ValidatedRequest) -> list[TokenInfo]:
        """Tokens worth probing on a chain, deduplicated, in priority order."""
        tokens: list[TokenInfo] = [t.token for t in request.targets_on(chain)]
        if request.token:
            requested = self.catalog.resolve(request.token, chain)
            if requested is not None:
                tokens.append(requested)
        native = self.catalog.native(chain)
        if native is not None:
            tokens.append(native)
        tokens.extend(self.catalog.intermediates(chain))

        unique: list[TokenInfo] = []
        for token in tokens:
            if token not in unique:
                unique.append(token)
        return unique

    async def _scan_address(
        self,
        address: str,
        request: ValidatedRequest,
        semaphore: asyncio.Semaphore,
    ) -> _BalanceScan:
        scan = _BalanceScan(address=address)
        family = address_family(address, strict=self.settings.strict_address_validation)

        candidates = [
            (chain, token)
            for chain in self.catalog.chains
            if self.catalog.get_chain(chain).family == family
            for token in self._scan_tokens(chain, request)
        ]

        async with semaphore:
            balances = await asyncio.gather(
                *(self._read_balance(address, token, chain) for chain, token in candidates),
                return_exceptions=True,
            )

        for (chain, token), balance in zip(candidates, balances):
            if isinstance(balance, BaseException):
                scan.calls_failed += 1
                error = balance
                if not isinstance(error, GatewayUnavailable):
                    error = GatewayUnavailable("balance", f"{token.symbol}@{chain}", f"{type(balance).__name__}: {balance}")
                logger.warning(f"Skipping source {address} {token.symbol}@{chain}: {error}")
                continue

            scan.calls_ok += 1
            if balance > 0:
                scan.sources.append(CandidateSource(address=address, chain=chain, token=token, balance=balance))

        logger.debug(f"{address}: {len(scan.sources)} funded source(s) of {len(candidates)} checked")
        return scan

    async def _read_balance(self, address: str, token: TokenInfo, chain: str) -> int:
        raw = await asyncio.wait_for(
            self.balances.get_balance(address, token, chain),
            timeout=self.settings.gateway_timeout,
        )
        try:
            return to_base_units(raw, token.decimals)
        except (ValueError, InvalidOperation) as e:
            raise GatewayUnavailable("balance", f"{token.symbol}@{chain}", f"unreadable balance {raw!r}") from e

    async def _build_source(
        self,
        source: CandidateSource,
        request: ValidatedRequest,
        semaphore: asyncio.Semaphore,
    ) -> SourcePaths:
        async with semaphore:
            return await self.builder.build(source, request)

    async def _annotate_gas(self, ranked: list[ScoredRoute]) -> list[ScoredRoute]:
        """Attach estimated gas to routes whose every step could be estimated."""
        annotated = []
        for scored in ranked:
            route = scored.route
            estimates = await asyncio.gather(
                *(
                    asyncio.wait_for(
                        self.provider.estimate_gas(
                            step.chain,
                            UnsignedTransaction(
                                chain=step.chain,
                                from_address=route.from_address,
                                step_type=step.type.value,
                                params=dict(step.data or {}),
                                step_index=index,
                            ),
                        ),
                        timeout=self.settings.gateway_timeout,
                    )
                    for index, step in enumerate(route.steps)
                ),
                return_exceptions=True,
            )
            failed = [e for e in estimates if isinstance(e, BaseException)]
            if failed:
                logger.debug(f"Gas estimate unavailable for {RouteSummary.of(route)}: {failed[0]}")
                annotated.append(scored)
                continue
            route = dataclasses.replace(route, estimated_gas=str(sum(estimates)))
            annotated.append(dataclasses.replace(scored, route=route))
        return annotated
