"""Route execution.

Steps run strictly in order. Each step moves through:

    PENDING -> SUBMITTED -> CONFIRMING -> CONFIRMED | FAILED

- approve / swap / transfer are confirmed by polling the provider adapter
- bridge transfers are confirmed by polling bridge status until settled
- a swap whose quote is older than quote_max_age_seconds is re-quoted once
- transient submission errors are retried with exponential backoff
- the first failed step halts the route; confirmed steps are never undone

The result always reports how far execution got, so callers can see that
funds moved even when the route as a whole did not finish.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import httpx

from payroute.config import Settings, get_settings
from payroute.errors import (
    LockTimeoutError,
    QuoteExpiredError,
    StepExecutionFailed,
    TransientSubmissionError,
)
from payroute.gateways.base import (
    BridgeState,
    ProviderAdapter,
    QuoteGateway,
    TransactionSigner,
    TxState,
    UnsignedTransaction,
)
from payroute.models import PaymentRoute, RouteStep, RouteSummary, StepType
from payroute.tokens import TokenCatalog, default_catalog
from payroute.utils.locks import AddressLockRegistry

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TransientSubmissionError, asyncio.TimeoutError, httpx.TransportError)


class StepState(str, Enum):
    """Per-step execution states."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Overall outcome of a route execution."""

    NOT_STARTED = "not_started"  # nothing was broadcast
    PARTIAL = "partial"  # something was broadcast, not every step confirmed
    COMPLETED = "completed"


@dataclass
class StepRecord:
    """What happened to one route step."""

    index: int
    type: StepType
    state: StepState = StepState.PENDING
    tx_hash: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "index": self.index,
            "type": self.type.value,
            "state": self.state.value,
            "attempts": self.attempts,
        }
        if self.tx_hash is not None:
            result["txHash"] = self.tx_hash
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class ExecutionResult:
    """Outcome of executing a route."""

    status: ExecutionStatus
    steps: list[StepRecord] = field(default_factory=list)
    failed_step: Optional[int] = None
    last_confirmed_step: Optional[int] = None
    settlement_hash: Optional[str] = None
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def confirmed_steps(self) -> list[int]:
        return [r.index for r in self.steps if r.state == StepState.CONFIRMED]

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "status": self.status.value,
            "steps": [r.to_dict() for r in self.steps],
            "cancelled": self.cancelled,
        }
        if self.failed_step is not None:
            result["failedStep"] = self.failed_step
        if self.last_confirmed_step is not None:
            result["lastConfirmedStep"] = self.last_confirmed_step
        if self.settlement_hash is not None:
            result["settlementHash"] = self.settlement_hash
        if self.error is not None:
            result["error"] = self.error
        return result


class RouteExecutor:
    """Executes routes step by step against the signer, provider and bridge status."""

    def __init__(
        self,
        signer: TransactionSigner,
        provider: ProviderAdapter,
        quotes: QuoteGateway,
        catalog: Optional[TokenCatalog] = None,
        settings: Optional[Settings] = None,
        locks: Optional[AddressLockRegistry] = None,
    ):
        self.signer = signer
        self.provider = provider
        self.quotes = quotes
        self.catalog = catalog or default_catalog()
        self.settings = settings or get_settings()
        self.locks = locks or AddressLockRegistry()

    async def execute_route(
        self,
        route: PaymentRoute,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionResult:
        """Execute every step of a route in order.

        Never raises for step failures; the returned result says which steps
        confirmed, which failed and which never ran.
        """
        result = ExecutionResult(
            status=ExecutionStatus.NOT_STARTED,
            steps=[StepRecord(index=i, type=step.type) for i, step in enumerate(route.steps)],
        )
        summary = RouteSummary.of(route)
        logger.info(f"Executing route {summary} from {route.from_address}")

        try:
            async with self.locks.hold(
                route.from_address,
                timeout=self.settings.execution_lock_timeout,
                operation=f"execute {summary}",
            ):
                await self._run_steps(route, result, cancel_event)
        except LockTimeoutError as e:
            result.error = str(e)
            logger.error(f"Route {summary} not started: {e}")
            return result

        if any(r.tx_hash is not None for r in result.steps):
            result.status = ExecutionStatus.PARTIAL
        if result.steps and all(r.state == StepState.CONFIRMED for r in result.steps):
            result.status = ExecutionStatus.COMPLETED
            result.settlement_hash = result.steps[-1].tx_hash

        logger.info(
            f"Route {summary} finished: {result.status.value} "
            f"({len(result.confirmed_steps)}/{len(result.steps)} steps confirmed)"
        )
        return result

    async def _run_steps(
        self,
        route: PaymentRoute,
        result: ExecutionResult,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        for index, step in enumerate(route.steps):
            record = result.steps[index]

            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"Execution cancelled before step {index} ({step.type.value})")
                return

            try:
                await self._execute_step(route, index, step, record)
            except StepExecutionFailed as e:
                self._fail(result, record, e)
                return
            except Exception as e:
                self._fail(result, record, StepExecutionFailed(f"{type(e).__name__}: {e}", step_index=index))
                return

            result.last_confirmed_step = index

    @staticmethod
    def _fail(result: ExecutionResult, record: StepRecord, error: StepExecutionFailed) -> None:
        record.state = StepState.FAILED
        record.error = error.reason
        result.failed_step = record.index
        result.error = str(error)
        logger.error(f"Step {record.index} ({record.type.value}) failed: {error.reason}")

    async def _execute_step(self, route: PaymentRoute, index: int, step: RouteStep, record: StepRecord) -> None:
        params = dict(step.data or {})
        if step.type == StepType.SWAP:
            params = await self._refresh_swap(step, params, index)

        tx = UnsignedTransaction(
            chain=step.chain,
            from_address=route.from_address,
            step_type=step.type.value,
            params=params,
            step_index=index,
        )
        record.tx_hash = await self._submit(tx, record)
        record.state = StepState.SUBMITTED
        logger.info(f"Step {index} ({step.type.value}) submitted on {step.chain}: {record.tx_hash}")

        record.state = StepState.CONFIRMING
        if step.type == StepType.BRIDGE:
            await self._wait_for_bridge(params, record.tx_hash, index)
        else:
            await self._wait_for_confirmation(step.chain, record.tx_hash, index)

        record.state = StepState.CONFIRMED
        logger.info(f"Step {index} ({step.type.value}) confirmed")

    async def _submit(self, tx: UnsignedTransaction, record: StepRecord) -> str:
        """Sign and broadcast, retrying transient failures with backoff."""
        settings = self.settings
        max_attempts = settings.max_submission_retries

        for attempt in range(1, max_attempts + 1):
            record.attempts = attempt
            try:
                payload = await self.signer.sign(tx)
                return await asyncio.wait_for(
                    self.provider.send_transaction(tx.chain, payload),
                    timeout=settings.gateway_timeout,
                )
            except TRANSIENT_ERRORS as e:
                reason = str(e) or type(e).__name__
                if attempt >= max_attempts:
                    raise StepExecutionFailed(
                        f"submission failed after {attempt} attempts: {reason}",
                        step_index=tx.step_index,
                    ) from e
                delay = settings.retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    f"Transient error submitting step {tx.step_index} (attempt {attempt}/{max_attempts}): "
                    f"{reason}; retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        raise StepExecutionFailed("no submission attempts configured", step_index=tx.step_index)

    async def _refresh_swap(self, step: RouteStep, params: dict, index: int) -> dict:
        """Re-quote a swap once if its quote has gone stale."""
        quoted_at = params.get("quotedAt")
        age = time.time() - float(quoted_at) if quoted_at is not None else None
        if age is not None and age <= self.settings.quote_max_age_seconds:
            return params

        chain = step.chain
        if age is None:
            logger.info(f"Swap quote for step {index} has no timestamp; re-quoting")
        else:
            logger.info(f"Swap quote for step {index} is {age:.0f}s old; re-quoting")

        from_token = self.catalog.resolve(params.get("fromToken"), chain)
        to_token = self.catalog.resolve(params.get("toToken"), chain)
        if from_token is None or to_token is None:
            raise QuoteExpiredError("stale quote and swap tokens are unknown", step_index=index)

        expected = int(params["expectedOutput"])
        minimum = int(params["minimumOutput"])
        slippage = 1 - Decimal(minimum) / Decimal(expected) if expected else self.settings.default_slippage

        try:
            quote = await asyncio.wait_for(
                self.quotes.get_swap_quote(chain, from_token, to_token, int(params["amountIn"]), slippage),
                timeout=self.settings.gateway_timeout,
            )
        except Exception as e:
            raise QuoteExpiredError(f"stale quote and re-quote failed: {type(e).__name__}: {e}", step_index=index) from e

        if quote is None:
            raise QuoteExpiredError("stale quote and no fresh quote available", step_index=index)
        if quote.expected_output < minimum:
            raise QuoteExpiredError(
                f"price moved beyond slippage: expected {quote.expected_output} < minimum {minimum}",
                step_index=index,
            )

        # Later steps spend the planned minimum, so the fill must never go below it
        refreshed = dict(params)
        refreshed.update(
            {
                "exchange": quote.exchange,
                "path": list(quote.path),
                "expectedOutput": str(quote.expected_output),
                "minimumOutput": str(max(quote.minimum_output, minimum)),
                "priceImpact": str(quote.price_impact),
                "quotedAt": quote.quoted_at,
            }
        )
        return refreshed

    async def _wait_for_confirmation(self, chain: str, tx_hash: str, index: int) -> None:
        """Poll the provider until the transaction confirms, fails or times out."""
        settings = self.settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.confirmation_timeout

        while True:
            try:
                status = await asyncio.wait_for(
                    self.provider.get_transaction_status(chain, tx_hash),
                    timeout=settings.gateway_timeout,
                )
            except Exception as e:
                logger.warning(f"Status poll for {tx_hash} failed: {type(e).__name__}: {e}")
                status = None

            if status is not None:
                if status.state == TxState.CONFIRMED:
                    return
                if status.state == TxState.FAILED:
                    raise StepExecutionFailed(status.error or "transaction reverted", step_index=index)

            if loop.time() >= deadline:
                raise StepExecutionFailed(
                    f"transaction {tx_hash} not confirmed after {settings.confirmation_timeout}s",
                    step_index=index,
                )
            await asyncio.sleep(settings.confirmation_poll_interval)

    async def _wait_for_bridge(self, params: dict, tx_hash: str, index: int) -> None:
        """Poll bridge status until the transfer settles, fails or times out."""
        settings = self.settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.bridge_timeout

        while True:
            try:
                status = await asyncio.wait_for(
                    self.quotes.get_bridge_status(
                        tx_hash,
                        bridge=params.get("bridge"),
                        from_chain=params.get("chain"),
                        to_chain=params.get("toChain"),
                    ),
                    timeout=settings.gateway_timeout,
                )
            except Exception as e:
                logger.warning(f"Bridge status poll for {tx_hash} failed: {type(e).__name__}: {e}")
                status = None

            if status is not None:
                if status.status == BridgeState.COMPLETED:
                    logger.info(f"Bridge transfer {tx_hash} settled ({status.receiving_tx_hash})")
                    return
                if status.status == BridgeState.FAILED:
                    raise StepExecutionFailed(status.error or "bridge transfer failed", step_index=index)
                logger.debug(f"Bridge transfer {tx_hash} pending (eta {status.estimated_time}s)")

            if loop.time() >= deadline:
                raise StepExecutionFailed(
                    f"bridge transfer {tx_hash} not settled after {settings.bridge_timeout}s",
                    step_index=index,
                )
            await asyncio.sleep(settings.bridge_poll_interval)
