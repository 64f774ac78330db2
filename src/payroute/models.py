"""Payment request and route models.

PaymentRequest/AcceptTarget are the pydantic input contract. They are
deliberately permissive: missing or malformed entries are filtered once by
payroute.validation, which produces the ValidatedRequest the engine consumes.

PaymentRoute/RouteStep/ExchangeRoute are the output contract. They serialize
with camelCase keys and omit optional fields that do not apply.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from payroute.tokens import TokenInfo, to_base_units


def _stringify_amount(value: Any) -> Any:
    """Accept numeric amounts by turning them into decimal strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return value


DecimalText = Annotated[Optional[str], BeforeValidator(_stringify_amount)]


class AcceptTarget(BaseModel):
    """One acceptable destination (chain, token, receiver) for a payment."""

    model_config = ConfigDict(extra="ignore")

    blockchain: Optional[str] = Field(None, description="Destination chain key (e.g., ethereum)")
    token: Optional[str] = Field(None, description="Token symbol or address accepted on that chain")
    receiver: Optional[str] = Field(None, description="Override receiver address")
    amount: DecimalText = Field(None, description="Required amount (defaults to request amount)")


class PaymentRequest(BaseModel):
    """Request to pay `amount` of `token` to `to` from any of the `from` addresses."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_: list[Any] = Field(default_factory=list, alias="from", description="Candidate funding addresses")
    to: Optional[str] = Field(None, description="Recipient address")
    amount: DecimalText = Field(None, description="Amount in human-readable token units")
    token: Optional[str] = Field(None, description="Token symbol to pay with")
    blockchain: Optional[str] = Field(None, description="Destination chain when no accept list is given")
    accept: list[Optional[AcceptTarget]] = Field(
        default_factory=list, description="Alternative acceptable destinations (any one suffices)"
    )
    slippage: Optional[Decimal] = Field(None, ge=0, lt=1, description="Slippage tolerance fraction")

    @field_validator("from_", "accept", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


@dataclass(frozen=True)
class ResolvedTarget:
    """An accept entry whose chain and token resolved in the catalog."""

    chain: str
    token: TokenInfo
    receiver: str
    amount: Decimal

    @property
    def amount_units(self) -> int:
        return to_base_units(self.amount, self.token.decimals)


@dataclass(frozen=True)
class ValidatedRequest:
    """A payment request after the single central validation pass."""

    sources: tuple[str, ...]
    receiver: Optional[str]
    amount: Optional[Decimal]
    token: Optional[str]
    targets: tuple[ResolvedTarget, ...]
    slippage: Decimal
    rejected: tuple[str, ...] = ()

    @property
    def is_routable(self) -> bool:
        return bool(self.sources) and bool(self.targets)

    @property
    def target_chains(self) -> list[str]:
        chains: list[str] = []
        for target in self.targets:
            if target.chain not in chains:
                chains.append(target.chain)
        return chains

    def targets_on(self, chain: str) -> list[ResolvedTarget]:
        return [t for t in self.targets if t.chain == chain]


class StepType(str, Enum):
    """Kinds of route steps."""

    APPROVE = "approve"
    SWAP = "swap"
    BRIDGE = "bridge"
    TRANSFER = "transfer"


@dataclass(frozen=True)
class RouteStep:
    """A single ordered action within a route.

    `data` always carries `chain`: the chain the step is submitted on
    (the source chain for bridges).
    """

    type: StepType
    description: str
    data: Optional[dict] = None

    @property
    def chain(self) -> Optional[str]:
        return self.data.get("chain") if self.data else None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"type": self.type.value, "description": self.description}
        if self.data is not None:
            result["data"] = dict(self.data)
        return result


@dataclass(frozen=True)
class ExchangeRoute:
    """Swap metadata: amounts are base-unit integer strings."""

    exchange: str
    path: tuple[str, ...]
    expected_output: str
    minimum_output: str
    price_impact: Decimal

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange,
            "path": list(self.path),
            "expectedOutput": self.expected_output,
            "minimumOutput": self.minimum_output,
            "priceImpact": float(self.price_impact),
        }


@dataclass(frozen=True)
class PaymentRoute:
    """A complete ordered step sequence from a source holding to an accepted asset.

    `from_amount`/`to_amount` are human-readable decimal strings; the matching
    `*_decimals` fields travel with them. Optional fields stay None when they
    do not apply and are left out of `to_dict()`.
    """

    blockchain: str
    from_address: str
    from_token: TokenInfo
    from_amount: str
    from_decimals: int
    to_token: TokenInfo
    to_amount: str
    to_decimals: int
    to_address: str
    exchange_routes: tuple[ExchangeRoute, ...] = ()
    steps: tuple[RouteStep, ...] = ()
    estimated_gas: Optional[str] = None
    estimated_fee: Optional[str] = None
    approval_required: Optional[bool] = None

    @property
    def from_units(self) -> int:
        return to_base_units(self.from_amount, self.from_decimals)

    @property
    def to_units(self) -> int:
        return to_base_units(self.to_amount, self.to_decimals)

    @property
    def step_types(self) -> list[StepType]:
        return [step.type for step in self.steps]

    @property
    def bridge_count(self) -> int:
        return sum(1 for step in self.steps if step.type == StepType.BRIDGE)

    @property
    def swap_count(self) -> int:
        return sum(1 for step in self.steps if step.type == StepType.SWAP)

    @property
    def is_direct_transfer(self) -> bool:
        return self.step_types == [StepType.TRANSFER]

    def to_dict(self) -> dict:
        """Convert to the caller-facing serialization contract."""
        result: dict[str, Any] = {
            "blockchain": self.blockchain,
            "fromAddress": self.from_address,
            "fromToken": self.from_token.to_dict(),
            "fromAmount": self.from_amount,
            "fromDecimals": self.from_decimals,
            "toToken": self.to_token.to_dict(),
            "toAmount": self.to_amount,
            "toDecimals": self.to_decimals,
            "toAddress": self.to_address,
            "exchangeRoutes": [r.to_dict() for r in self.exchange_routes],
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.estimated_gas is not None:
            result["estimatedGas"] = self.estimated_gas
        if self.estimated_fee is not None:
            result["estimatedFee"] = self.estimated_fee
        if self.approval_required is not None:
            result["approvalRequired"] = self.approval_required
        return result


@dataclass
class RouteSummary:
    """Compact description of a route for logs."""

    blockchain: str
    steps: list[str] = field(default_factory=list)

    @classmethod
    def of(cls, route: PaymentRoute) -> "RouteSummary":
        return cls(blockchain=route.blockchain, steps=[s.type.value for s in route.steps])

    def __str__(self) -> str:
        return f"{self.blockchain}: {' -> '.join(self.steps)}"
