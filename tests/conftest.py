"""Pytest configuration and fixtures."""

import dataclasses
import os
from typing import Optional

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ["DRY_RUN"] = "true"

from payroute.config import Settings
from payroute.engine import RouteExecutor, RouteFinder
from payroute.gateways.aggregate import AggregateQuoteGateway
from payroute.gateways.base import BridgeQuote, QuoteGateway, SwapQuote
from payroute.gateways.simulated import (
    SimulatedBalanceGateway,
    SimulatedBridgeSource,
    SimulatedProvider,
    SimulatedSigner,
    SimulatedSwapSource,
    create_simulated_quote_gateway,
)
from payroute.tokens import TokenCatalog, default_catalog

PAYER = "0x1111111111111111111111111111111111111111"
PAYER_2 = "0x3333333333333333333333333333333333333333"
MERCHANT = "0x2222222222222222222222222222222222222222"
SOL_PAYER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
SOL_MERCHANT = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"

PINNED_QUOTE_TIME = 1_700_000_000.0


def make_settings(**overrides) -> Settings:
    """Settings tuned for fast tests: no backoff, instant polling, short timeouts."""
    values = dict(
        environment="test",
        debug=False,
        dry_run=True,
        discovery_timeout=5.0,
        gateway_timeout=2.0,
        retry_backoff_seconds=0.0,
        confirmation_timeout=1.0,
        confirmation_poll_interval=0.0,
        bridge_timeout=1.0,
        bridge_poll_interval=0.0,
        execution_lock_timeout=1.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class PinnedQuoteGateway(QuoteGateway):
    """Wraps a gateway and stamps every quote with a fixed time.

    Makes discovery output byte-identical across runs.
    """

    def __init__(self, inner: QuoteGateway, quoted_at: float = PINNED_QUOTE_TIME):
        self.inner = inner
        self.quoted_at = quoted_at

    async def get_swap_quote(self, chain, from_token, to_token, amount, slippage) -> Optional[SwapQuote]:
        quote = await self.inner.get_swap_quote(chain, from_token, to_token, amount, slippage)
        return dataclasses.replace(quote, quoted_at=self.quoted_at) if quote else None

    async def get_bridge_quote(
        self, from_chain, to_chain, from_token, to_token, amount, slippage
    ) -> Optional[BridgeQuote]:
        quote = await self.inner.get_bridge_quote(from_chain, to_chain, from_token, to_token, amount, slippage)
        return dataclasses.replace(quote, quoted_at=self.quoted_at) if quote else None

    async def get_bridge_status(self, tx_hash, bridge=None, from_chain=None, to_chain=None):
        return await self.inner.get_bridge_status(tx_hash, bridge, from_chain, to_chain)


@pytest.fixture
def settings() -> Settings:
    """Test settings."""
    return make_settings()


@pytest.fixture
def catalog() -> TokenCatalog:
    """Catalog over every registered chain."""
    return default_catalog()


@pytest.fixture
def swap_source() -> SimulatedSwapSource:
    """Deterministic price-table swap source."""
    return SimulatedSwapSource()


@pytest.fixture
def quotes(swap_source) -> AggregateQuoteGateway:
    """Simulated quote gateway with every simulated bridge."""
    return create_simulated_quote_gateway(swap_source)


@pytest.fixture
def pinned_quotes(quotes) -> PinnedQuoteGateway:
    """Simulated quotes with a fixed quote timestamp."""
    return PinnedQuoteGateway(quotes)


@pytest.fixture
def balances() -> SimulatedBalanceGateway:
    """Empty in-memory balances."""
    return SimulatedBalanceGateway()


@pytest.fixture
def provider() -> SimulatedProvider:
    """In-memory provider that confirms everything."""
    return SimulatedProvider()


@pytest.fixture
def signer() -> SimulatedSigner:
    return SimulatedSigner()


@pytest.fixture
def finder(quotes, balances, catalog, settings) -> RouteFinder:
    """Route finder over simulated gateways."""
    return RouteFinder(quotes, balances, catalog=catalog, settings=settings)


@pytest.fixture
def executor(signer, provider, quotes, catalog, settings) -> RouteExecutor:
    """Route executor over simulated gateways."""
    return RouteExecutor(signer, provider, quotes, catalog=catalog, settings=settings)


def single_bridge_gateway(bridge: str = "across", **kwargs) -> AggregateQuoteGateway:
    """Simulated quotes with exactly one bridge."""
    return AggregateQuoteGateway(
        swap_sources=[SimulatedSwapSource()],
        bridge_sources=[SimulatedBridgeSource(bridge, **kwargs)],
    )


def payment(amount="100", token="USDC", chain="ethereum", sources=None, to=MERCHANT, **extra) -> dict:
    """Build a payment request dict with a single accept target."""
    request = {
        "from": sources if sources is not None else [PAYER],
        "to": to,
        "amount": amount,
        "token": token,
        "accept": [{"blockchain": chain, "token": token, "receiver": to}],
    }
    request.update(extra)
    return request
