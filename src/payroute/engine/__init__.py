"""Route engine: graph building, scoring, discovery and execution.

Flow:
1. RouteFinder validates the request and reads balances
2. RouteGraphBuilder prices candidate paths per funded source
3. RouteScorer turns paths into ranked PaymentRoutes
4. RouteExecutor runs a chosen route step by step
"""

from payroute.engine.executor import (
    ExecutionResult,
    ExecutionStatus,
    RouteExecutor,
    StepRecord,
    StepState,
)
from payroute.engine.finder import RouteFinder
from payroute.engine.graph import CandidatePath, CandidateSource, PricedEdge, RouteGraphBuilder
from payroute.engine.scorer import RouteScorer, ScoredRoute

__all__ = [
    "CandidatePath",
    "CandidateSource",
    "ExecutionResult",
    "ExecutionStatus",
    "PricedEdge",
    "RouteExecutor",
    "RouteFinder",
    "RouteGraphBuilder",
    "RouteScorer",
    "ScoredRoute",
    "StepRecord",
    "StepState",
]
