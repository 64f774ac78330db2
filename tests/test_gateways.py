"""Tests for quote sources, the aggregate gateway and the simulated collaborators."""

import json
from decimal import Decimal

import httpx
import pytest

from conftest import make_settings
from payroute.errors import GatewayUnavailable, StepExecutionFailed, TransientSubmissionError
from payroute.gateways.aggregate import AggregateQuoteGateway
from payroute.gateways.base import BridgeState, TxState, UnsignedTransaction
from payroute.gateways.factory import create_bridge_sources, create_quote_gateway, create_swap_sources
from payroute.gateways.jupiter import JupiterSource
from payroute.gateways.lifi import LiFiSource
from payroute.gateways.oneinch import ONEINCH_ROUTER_V6, OneInchSource
from payroute.gateways.simulated import (
    SimulatedBalanceGateway,
    SimulatedBridgeSource,
    SimulatedProvider,
    SimulatedSigner,
    SimulatedSwapSource,
)

SLIPPAGE = Decimal("0.005")
LIFI_DIAMOND = "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE"


class TestSimulatedSwapSource:
    """Tests for the price-table swap source."""

    @pytest.mark.asyncio
    async def test_quote_basic(self, catalog):
        source = SimulatedSwapSource()
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")

        quote = await source.get_swap_quote("ethereum", usdc, usdt, 100_000_000, SLIPPAGE)

        assert quote is not None
        assert quote.is_simulated is True
        assert quote.exchange == "uniswap_v3"
        # 0.3% fee and 0.1% impact
        assert quote.expected_output == 99_600_300
        assert quote.minimum_output == int(Decimal(99_600_300) * (1 - SLIPPAGE))
        assert quote.path == [usdc.address, usdt.address]
        assert quote.fee_rate == Decimal("0.003")
        assert quote.spender is None

    @pytest.mark.asyncio
    async def test_quote_across_decimals(self, catalog):
        source = SimulatedSwapSource(fee_percent=Decimal("0"), price_impact=Decimal("0"))
        eth = catalog.native("ethereum")
        usdc = catalog.resolve("USDC", "ethereum")

        quote = await source.get_swap_quote("ethereum", eth, usdc, 10**18, SLIPPAGE)
        assert quote.expected_output == 3900 * 10**6

    @pytest.mark.asyncio
    async def test_same_token_and_zero_amount(self, catalog):
        source = SimulatedSwapSource()
        usdc = catalog.resolve("USDC", "ethereum")
        assert await source.get_swap_quote("ethereum", usdc, usdc, 1_000_000, SLIPPAGE) is None
        assert await source.get_swap_quote("ethereum", usdc, catalog.native("ethereum"), 0, SLIPPAGE) is None

    @pytest.mark.asyncio
    async def test_outage(self, catalog):
        source = SimulatedSwapSource()
        source.fail_chains.add("polygon")
        usdc = catalog.resolve("USDC", "polygon")
        usdt = catalog.resolve("USDT", "polygon")
        with pytest.raises(GatewayUnavailable):
            await source.get_swap_quote("polygon", usdc, usdt, 1_000_000, SLIPPAGE)


class TestSimulatedBridgeSource:
    """Tests for the simulated bridges."""

    @pytest.mark.asyncio
    async def test_quote(self, catalog):
        bridge = SimulatedBridgeSource("stargate")
        usdc_polygon = catalog.resolve("USDC", "polygon")
        usdc_bsc = catalog.resolve("USDC", "bsc")

        quote = await bridge.get_bridge_quote("polygon", "bsc", usdc_polygon, usdc_bsc, 100_000_000, SLIPPAGE)

        assert quote.fee == 100_000
        # bsc USDC has 18 decimals
        assert quote.amount_out == 99_900_000 * 10**12
        assert quote.finalized is True
        assert quote.route_id == "stargate-polygon-bsc-USDC"

    def test_support_matrix(self):
        bridge = SimulatedBridgeSource("across")
        assert bridge.supports_route("polygon", "optimism", "usdc")
        assert not bridge.supports_route("polygon", "polygon", "USDC")
        assert not bridge.supports_route("polygon", "solana", "USDC")
        assert not bridge.supports_route("polygon", "optimism", "USDT")

    @pytest.mark.asyncio
    async def test_estimate_only(self, catalog):
        bridge = SimulatedBridgeSource("hop", finalized=False)
        usdc = catalog.resolve("USDC", "polygon")
        quote = await bridge.get_bridge_quote(
            "polygon", "arbitrum", usdc, catalog.resolve("USDC", "arbitrum"), 1_000_000, SLIPPAGE
        )
        assert quote.finalized is False
        assert quote.spender is None
        assert quote.route_id is None

    @pytest.mark.asyncio
    async def test_status_pending_then_completed(self):
        bridge = SimulatedBridgeSource("across", pending_polls=2)
        first = await bridge.get_bridge_status("0xabc")
        second = await bridge.get_bridge_status("0xabc")
        third = await bridge.get_bridge_status("0xabc")

        assert first.status == BridgeState.PENDING
        assert second.status == BridgeState.PENDING
        assert third.status == BridgeState.COMPLETED
        assert third.is_terminal
        assert third.receiving_tx_hash.startswith("0x")


class TestSimulatedBalances:
    """Tests for the in-memory balance gateway."""

    @pytest.mark.asyncio
    async def test_balances(self, catalog):
        balances = SimulatedBalanceGateway({("0xAbc", "Ethereum", "usdc"): "12.5"})
        usdc = catalog.resolve("USDC", "ethereum")
        assert await balances.get_balance("0xabc", usdc, "ethereum") == "12.5"
        assert await balances.get_balance("0xabc", catalog.native("ethereum"), "ethereum") == "0"

    @pytest.mark.asyncio
    async def test_outage(self, catalog):
        balances = SimulatedBalanceGateway()
        balances.fail_chains.add("ethereum")
        with pytest.raises(GatewayUnavailable):
            await balances.get_balance("0xabc", catalog.native("ethereum"), "ethereum")


class TestSimulatedProvider:
    """Tests for failure injection in the simulated provider."""

    def _tx(self, index: int = 0) -> UnsignedTransaction:
        return UnsignedTransaction(
            chain="ethereum", from_address="0xabc", step_type="transfer", params={"amount": "1"}, step_index=index
        )

    @pytest.mark.asyncio
    async def test_send_and_confirm(self):
        provider = SimulatedProvider(pending_polls=1)
        payload = await SimulatedSigner().sign(self._tx())
        assert json.loads(payload)["step_type"] == "transfer"

        tx_hash = await provider.send_transaction("ethereum", payload)
        assert (await provider.get_transaction_status("ethereum", tx_hash)).state == TxState.PENDING
        assert (await provider.get_transaction_status("ethereum", tx_hash)).state == TxState.CONFIRMED
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_transient_then_success(self):
        provider = SimulatedProvider()
        provider.transient_failures[0] = 1
        payload = await SimulatedSigner().sign(self._tx())

        with pytest.raises(TransientSubmissionError):
            await provider.send_transaction("ethereum", payload)
        assert await provider.send_transaction("ethereum", payload)

    @pytest.mark.asyncio
    async def test_rejected_and_reverted(self):
        provider = SimulatedProvider()
        provider.rejected_steps[0] = "insufficient funds"
        provider.reverted_steps[1] = "slippage bound violated"
        signer = SimulatedSigner()

        with pytest.raises(StepExecutionFailed, match="insufficient funds"):
            await provider.send_transaction("ethereum", await signer.sign(self._tx(0)))

        tx_hash = await provider.send_transaction("ethereum", await signer.sign(self._tx(1)))
        status = await provider.get_transaction_status("ethereum", tx_hash)
        assert status.state == TxState.FAILED
        assert status.error == "slippage bound violated"

    @pytest.mark.asyncio
    async def test_estimate_gas(self):
        provider = SimulatedProvider()
        assert await provider.estimate_gas("ethereum", self._tx()) == 65000
        assert await provider.estimate_gas("solana", self._tx()) == 5000


class TestAggregateQuoteGateway:
    """Tests for best-quote selection and failure isolation."""

    @pytest.mark.asyncio
    async def test_best_swap_is_highest_output(self, catalog):
        cheap = SimulatedSwapSource(fee_percent=Decimal("0.001"))
        pricey = SimulatedSwapSource(fee_percent=Decimal("0.01"))
        gateway = AggregateQuoteGateway(swap_sources=[pricey, cheap])
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")

        quote = await gateway.get_swap_quote("ethereum", usdc, usdt, 100_000_000, SLIPPAGE)
        direct = await cheap.get_swap_quote("ethereum", usdc, usdt, 100_000_000, SLIPPAGE)
        assert quote.expected_output == direct.expected_output

    @pytest.mark.asyncio
    async def test_one_failing_source_is_skipped(self, catalog):
        broken = SimulatedSwapSource()
        broken.fail_chains.add("ethereum")
        gateway = AggregateQuoteGateway(swap_sources=[broken, SimulatedSwapSource()])
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")

        assert await gateway.get_swap_quote("ethereum", usdc, usdt, 1_000_000, SLIPPAGE) is not None

    @pytest.mark.asyncio
    async def test_all_sources_failing_raises(self, catalog):
        broken = SimulatedSwapSource()
        broken.fail_chains.add("ethereum")
        gateway = AggregateQuoteGateway(swap_sources=[broken])
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")

        with pytest.raises(GatewayUnavailable):
            await gateway.get_swap_quote("ethereum", usdc, usdt, 1_000_000, SLIPPAGE)

    @pytest.mark.asyncio
    async def test_no_capable_source(self, catalog):
        gateway = AggregateQuoteGateway(swap_sources=[SimulatedSwapSource(chains=["polygon"])])
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")
        assert await gateway.get_swap_quote("ethereum", usdc, usdt, 1_000_000, SLIPPAGE) is None

    @pytest.mark.asyncio
    async def test_best_bridge_is_cheapest_then_fastest(self, catalog):
        gateway = AggregateQuoteGateway(
            bridge_sources=[
                SimulatedBridgeSource("stargate", fee_rate=Decimal("0.002")),
                SimulatedBridgeSource("hop"),
                SimulatedBridgeSource("across"),
            ]
        )
        usdc = catalog.resolve("USDC", "polygon")
        quote = await gateway.get_bridge_quote(
            "polygon", "arbitrum", usdc, catalog.resolve("USDC", "arbitrum"), 100_000_000, SLIPPAGE
        )
        # hop and across tie on fee; across settles faster
        assert quote.bridge == "across"

    @pytest.mark.asyncio
    async def test_bridge_status_prefers_named_bridge(self):
        slow = SimulatedBridgeSource("hop", pending_polls=5)
        fast = SimulatedBridgeSource("across")
        gateway = AggregateQuoteGateway(bridge_sources=[slow, fast])

        status = await gateway.get_bridge_status("0xabc", bridge="across")
        assert status.status == BridgeState.COMPLETED

    @pytest.mark.asyncio
    async def test_bridge_status_without_sources(self):
        with pytest.raises(GatewayUnavailable):
            await AggregateQuoteGateway().get_bridge_status("0xabc")


class TestOneInchSource:
    """Tests for the 1inch quote source over a mock transport."""

    @pytest.mark.asyncio
    async def test_quote(self, catalog):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json={
                    "dstAmount": "99500000",
                    "protocols": [[[
                        {"name": "UNISWAP_V3", "part": 100, "fromTokenAddress": "0xa", "toTokenAddress": "0xb"}
                    ]]],
                },
            )

        source = OneInchSource(api_key="secret", transport=httpx.MockTransport(handler))
        usdc = catalog.resolve("USDC", "ethereum")
        usdt = catalog.resolve("USDT", "ethereum")

        quote = await source.get_swap_quote("ethereum", usdc, usdt, 100_000_000, SLIPPAGE)

        assert seen["path"] == "/swap/v6.0/1/quote"
        assert seen["params"]["src"] == usdc.address
        assert seen["params"]["amount"] == "100000000"
        assert seen["auth"] == "Bearer secret"
        assert quote.expected_output == 99_500_000
        assert quote.minimum_output == 99_002_500
        assert quote.price_impact == 0
        assert quote.exchange == "uniswap_v3"
        assert quote.path[0] == usdc.address
        assert quote.path[-1] == usdt.address
        assert quote.spender == ONEINCH_ROUTER_V6
        assert quote.fee_rate == 0

    @pytest.mark.asyncio
    async def test_no_liquidity(self, catalog):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(400, json={"description": "insufficient liquidity"})
        )
        source = OneInchSource(transport=transport)
        usdc = catalog.resolve("USDC", "ethereum")
        assert await source.get_swap_quote("ethereum", usdc, catalog.native("ethereum"), 1, SLIPPAGE) is None

    @pytest.mark.asyncio
    async def test_server_error(self, catalog):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        source = OneInchSource(transport=transport)
        usdc = catalog.resolve("USDC", "ethereum")
        with pytest.raises(GatewayUnavailable, match="HTTP 500"):
            await source.get_swap_quote("ethereum", usdc, catalog.native("ethereum"), 1, SLIPPAGE)

    @pytest.mark.asyncio
    async def test_connection_error(self, catalog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        source = OneInchSource(transport=httpx.MockTransport(handler))
        usdc = catalog.resolve("USDC", "ethereum")
        with pytest.raises(GatewayUnavailable):
            await source.get_swap_quote("ethereum", usdc, catalog.native("ethereum"), 1, SLIPPAGE)

    @pytest.mark.asyncio
    async def test_unsupported_chain_makes_no_call(self, catalog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no HTTP call expected")

        source = OneInchSource(transport=httpx.MockTransport(handler))
        usdc = catalog.resolve("USDC", "solana")
        assert not source.supports_chain("solana")
        assert await source.get_swap_quote("solana", usdc, catalog.native("solana"), 1, SLIPPAGE) is None


class TestJupiterSource:
    """Tests for the Jupiter quote source over a mock transport."""

    @pytest.mark.asyncio
    async def test_quote(self, catalog):
        sol = catalog.native("solana")
        usdc = catalog.resolve("USDC", "solana")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={
                    "outAmount": "225000000",
                    "otherAmountThreshold": "223875000",
                    "priceImpactPct": "0.0012",
                    "platformFee": {"amount": "22500", "feeBps": 10},
                    "routePlan": [{"swapInfo": {"label": "Orca", "outputMint": usdc.address}}],
                },
            )

        source = JupiterSource(transport=httpx.MockTransport(handler))
        quote = await source.get_swap_quote("solana", sol, usdc, 10**9, SLIPPAGE)

        assert seen["params"]["slippageBps"] == "50"
        assert seen["params"]["inputMint"] == sol.address
        assert quote.expected_output == 225_000_000
        assert quote.minimum_output == 223_875_000
        assert quote.price_impact == Decimal("0.12")
        assert quote.exchange == "orca"
        assert quote.path == [sol.address, usdc.address]
        assert quote.fee_rate == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_no_route(self, catalog):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(400, json={"errorCode": "COULD_NOT_FIND_ANY_ROUTE"})
        )
        source = JupiterSource(transport=transport)
        assert await source.get_swap_quote(
            "solana", catalog.native("solana"), catalog.resolve("USDT", "solana"), 1, SLIPPAGE
        ) is None

    @pytest.mark.asyncio
    async def test_malformed_response(self, catalog):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
        source = JupiterSource(transport=transport)
        with pytest.raises(GatewayUnavailable, match="malformed"):
            await source.get_swap_quote(
                "solana", catalog.native("solana"), catalog.resolve("USDT", "solana"), 1, SLIPPAGE
            )

    def test_solana_only(self):
        source = JupiterSource()
        assert source.supports_chain("solana")
        assert not source.supports_chain("ethereum")


class TestLiFiSource:
    """Tests for the LI.FI bridge source over a mock transport."""

    @pytest.mark.asyncio
    async def test_quote(self, catalog):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={
                    "id": "route-1",
                    "tool": "stargate",
                    "estimate": {
                        "toAmount": "99800000",
                        "executionDuration": 240,
                        "approvalAddress": LIFI_DIAMOND,
                    },
                    "transactionRequest": {"data": "0x"},
                },
            )

        source = LiFiSource(transport=httpx.MockTransport(handler))
        quote = await source.get_bridge_quote(
            "polygon",
            "optimism",
            catalog.resolve("USDC", "polygon"),
            catalog.resolve("USDC", "optimism"),
            100_000_000,
            SLIPPAGE,
        )

        assert seen["path"] == "/v1/quote"
        assert seen["params"]["fromChain"] == "137"
        assert seen["params"]["toChain"] == "10"
        assert quote.bridge == "stargate"
        assert quote.amount_out == 99_800_000
        assert quote.fee == 200_000
        assert quote.estimated_seconds == 240
        assert quote.route_id == "route-1"
        assert quote.finalized is True
        assert quote.spender == LIFI_DIAMOND

    @pytest.mark.asyncio
    async def test_estimate_only_quote(self, catalog):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"tool": "hop", "estimate": {"toAmount": "990000"}})
        )
        source = LiFiSource(transport=transport)
        quote = await source.get_bridge_quote(
            "polygon",
            "arbitrum",
            catalog.resolve("USDC", "polygon"),
            catalog.resolve("USDC", "arbitrum"),
            1_000_000,
            SLIPPAGE,
        )
        assert quote.finalized is False
        assert quote.spender is None

    @pytest.mark.asyncio
    async def test_no_route(self, catalog):
        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "No available quotes"}))
        source = LiFiSource(transport=transport)
        assert await source.get_bridge_quote(
            "polygon",
            "arbitrum",
            catalog.resolve("USDC", "polygon"),
            catalog.resolve("USDC", "arbitrum"),
            1_000_000,
            SLIPPAGE,
        ) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"status": "DONE", "receiving": {"txHash": "0xdest"}}, BridgeState.COMPLETED),
            ({"status": "PENDING"}, BridgeState.PENDING),
            ({"status": "NOT_FOUND"}, BridgeState.PENDING),
            ({"status": "FAILED", "substatusMessage": "refunded"}, BridgeState.FAILED),
        ],
    )
    async def test_status(self, payload, expected):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=payload)

        source = LiFiSource(transport=httpx.MockTransport(handler))
        status = await source.get_bridge_status("0xabc", "solana", "ethereum")

        assert seen["params"] == {"txHash": "0xabc", "fromChain": "SOL", "toChain": "1"}
        assert status.status == expected
        if expected == BridgeState.COMPLETED:
            assert status.receiving_tx_hash == "0xdest"
        if expected == BridgeState.FAILED:
            assert status.error == "refunded"

    @pytest.mark.asyncio
    async def test_status_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="maintenance"))
        with pytest.raises(GatewayUnavailable):
            await LiFiSource(transport=transport).get_bridge_status("0xabc")


class TestFactory:
    """Tests for gateway creation from settings."""

    def test_dry_run_uses_simulated_sources(self):
        settings = make_settings(dry_run=True)
        assert [s.name for s in create_swap_sources(settings)] == ["simulated"]
        assert {s.name for s in create_bridge_sources(settings)} == {"stargate", "across", "hop", "wormhole"}

    def test_live_uses_http_sources(self):
        settings = make_settings(dry_run=False, oneinch_api_key="key")
        gateway = create_quote_gateway(settings)
        assert [s.name for s in gateway.swap_sources] == ["1inch", "Jupiter"]
        assert [s.name for s in gateway.bridge_sources] == ["lifi"]
        assert gateway.swap_sources[0].api_key == "key"

    def test_safe_dict_masks_api_key(self):
        settings = make_settings(oneinch_api_key="super-secret")
        assert "super-secret" not in json.dumps(settings.get_safe_dict())
