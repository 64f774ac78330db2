"""Tests for request parsing and route serialization."""

from decimal import Decimal

from conftest import MERCHANT, PAYER
from payroute.models import (
    ExchangeRoute,
    PaymentRequest,
    PaymentRoute,
    RouteStep,
    RouteSummary,
    StepType,
)


def _route(catalog, steps, **kwargs) -> PaymentRoute:
    usdc = catalog.resolve("USDC", "ethereum")
    values = dict(
        blockchain="ethereum",
        from_address=PAYER,
        from_token=usdc,
        from_amount="100",
        from_decimals=6,
        to_token=usdc,
        to_amount="100",
        to_decimals=6,
        to_address=MERCHANT,
        steps=tuple(steps),
    )
    values.update(kwargs)
    return PaymentRoute(**values)


class TestPaymentRequest:
    """Tests for the pydantic input contract."""

    def test_from_alias(self):
        request = PaymentRequest.model_validate({"from": [PAYER], "to": MERCHANT, "amount": "1", "token": "USDC"})
        assert request.from_ == [PAYER]

    def test_numeric_amounts_become_strings(self):
        request = PaymentRequest.model_validate(
            {"from": [], "amount": 12.5, "accept": [{"blockchain": "base", "token": "USDC", "amount": 3}]}
        )
        assert request.amount == "12.5"
        assert request.accept[0].amount == "3"

    def test_missing_fields_are_permissive(self):
        request = PaymentRequest.model_validate({})
        assert request.from_ == []
        assert request.accept == []
        assert request.to is None

    def test_unknown_fields_ignored(self):
        request = PaymentRequest.model_validate({"from": [PAYER], "memo": "invoice 42"})
        assert not hasattr(request, "memo")


class TestRouteSerialization:
    """Tests for PaymentRoute.to_dict()."""

    def test_direct_transfer_omits_optional_fields(self, catalog):
        step = RouteStep(type=StepType.TRANSFER, description="Transfer 100 USDC", data={"chain": "ethereum"})
        data = _route(catalog, [step]).to_dict()

        assert "estimatedGas" not in data
        assert "estimatedFee" not in data
        assert "approvalRequired" not in data
        assert None not in data.values()
        assert data["fromAmount"] == "100"
        assert data["fromToken"]["chainId"] == 1
        assert data["steps"] == [
            {"type": "transfer", "description": "Transfer 100 USDC", "data": {"chain": "ethereum"}}
        ]

    def test_step_without_data_omits_key(self):
        step = RouteStep(type=StepType.APPROVE, description="Approve")
        assert step.to_dict() == {"type": "approve", "description": "Approve"}
        assert step.chain is None

    def test_optional_fields_present_when_set(self, catalog):
        route = _route(
            catalog,
            [RouteStep(type=StepType.TRANSFER, description="t", data={"chain": "ethereum"})],
            estimated_gas="65000",
            estimated_fee="0.1",
            approval_required=False,
        )
        data = route.to_dict()
        assert data["estimatedGas"] == "65000"
        assert data["estimatedFee"] == "0.1"
        assert data["approvalRequired"] is False

    def test_exchange_route(self):
        route = ExchangeRoute(
            exchange="uniswap_v3",
            path=("0xa", "0xb"),
            expected_output="99500000",
            minimum_output="99002500",
            price_impact=Decimal("0.1"),
        )
        assert route.to_dict() == {
            "exchange": "uniswap_v3",
            "path": ["0xa", "0xb"],
            "expectedOutput": "99500000",
            "minimumOutput": "99002500",
            "priceImpact": 0.1,
        }

    def test_units_and_counts(self, catalog):
        steps = [
            RouteStep(type=StepType.APPROVE, description="a", data={"chain": "polygon"}),
            RouteStep(type=StepType.BRIDGE, description="b", data={"chain": "polygon"}),
            RouteStep(type=StepType.TRANSFER, description="t", data={"chain": "ethereum"}),
        ]
        route = _route(catalog, steps, from_amount="100", to_amount="99.9")
        assert route.from_units == 100_000_000
        assert route.to_units == 99_900_000
        assert route.bridge_count == 1
        assert route.swap_count == 0
        assert not route.is_direct_transfer
        assert str(RouteSummary.of(route)) == "ethereum: approve -> bridge -> transfer"
