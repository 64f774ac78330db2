"""Error taxonomy for route discovery and execution.

"No route found" is not an exception: discovery reports it as an empty
result. Everything here is either an uninterpretable request, a gateway
failure, or a step failure during execution.
"""

from typing import Optional


class RoutingError(Exception):
    """Base class for payment routing errors."""


class InvalidRequest(RoutingError, ValueError):
    """Raised when a payment request cannot be interpreted at all."""


class GatewayUnavailable(RoutingError):
    """An external gateway call failed or timed out.

    Localized to the edge or source that made the call; discovery logs it and
    carries on with the remaining candidates.
    """

    def __init__(self, gateway: str, operation: str, reason: str = ""):
        self.gateway = gateway
        self.operation = operation
        self.reason = reason
        message = f"{gateway} {operation} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NoWorkingGateway(GatewayUnavailable):
    """Every gateway call made during discovery failed.

    Distinguishes a misconfigured system from a request with no liquidity.
    """

    def __init__(self, attempted: int, reason: str = ""):
        self.attempted = attempted
        super().__init__(
            "all gateways",
            "discovery",
            reason or f"{attempted} call(s) attempted, none succeeded",
        )


class TransientSubmissionError(RoutingError):
    """Retryable submission failure (nonce race, gas underpriced, RPC hiccup)."""


class StepExecutionFailed(RoutingError):
    """Deterministic step failure (reverted, slippage violated, insufficient funds)."""

    def __init__(self, reason: str, step_index: Optional[int] = None):
        self.reason = reason
        self.step_index = step_index
        prefix = f"Step {step_index} failed" if step_index is not None else "Step failed"
        super().__init__(f"{prefix}: {reason}")


class QuoteExpiredError(StepExecutionFailed):
    """A swap quote went stale and could not be refreshed before submission."""


class LockTimeoutError(RoutingError):
    """Raised when an execution lock cannot be acquired within the timeout period."""
