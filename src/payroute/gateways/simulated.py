"""Simulated gateways for dry runs and tests.

Quotes come from a fixed USD price table, balances from an in-memory map and
transactions from an in-memory provider. Everything is deterministic unless
random variance is switched on, so repeated discovery over unchanged state
produces identical routes.
"""

import asyncio
import hashlib
import json
import logging
import random
from decimal import Decimal
from typing import Optional, Union

from payroute.chains import get_chain
from payroute.errors import GatewayUnavailable, StepExecutionFailed, TransientSubmissionError
from payroute.gateways.aggregate import AggregateQuoteGateway
from payroute.gateways.base import (
    BalanceGateway,
    BridgeQuote,
    BridgeQuoteSource,
    BridgeState,
    BridgeStatus,
    ProviderAdapter,
    SwapQuote,
    SwapQuoteSource,
    TransactionSigner,
    TransactionStatus,
    TxState,
    UnsignedTransaction,
)
from payroute.tokens import TokenInfo, convert_decimals, to_base_units

logger = logging.getLogger(__name__)


# Simulated market prices in USD, for demonstration only
SIMULATED_PRICES: dict[str, Decimal] = {
    # ========== Native coins ==========
    "ETH": Decimal("3900.00"),
    "MATIC": Decimal("0.62"),
    "BNB": Decimal("710.00"),
    "AVAX": Decimal("52.00"),
    "SOL": Decimal("225.00"),

    # ========== Stablecoins ==========
    "USDC": Decimal("1.00"),
    "USDT": Decimal("1.00"),
    "DAI": Decimal("1.00"),

    # ========== Wrapped & DeFi ==========
    "WETH": Decimal("3900.00"),
    "WBTC": Decimal("100000.00"),
    "LINK": Decimal("28.00"),
}

# Bridge support matrix: chains, tokens and typical settlement time
BRIDGE_SUPPORT: dict[str, dict] = {
    "stargate": {
        "chains": ["ethereum", "polygon", "arbitrum", "optimism", "avalanche", "bsc"],
        "tokens": ["USDC", "USDT"],
        "estimated_seconds": 300,
    },
    "across": {
        "chains": ["ethereum", "polygon", "arbitrum", "optimism", "base"],
        "tokens": ["USDC", "ETH", "WETH", "DAI", "WBTC"],
        "estimated_seconds": 180,
    },
    "hop": {
        "chains": ["ethereum", "polygon", "arbitrum", "optimism", "base"],
        "tokens": ["USDC", "USDT", "DAI", "ETH", "MATIC"],
        "estimated_seconds": 600,
    },
    "wormhole": {
        "chains": ["ethereum", "polygon", "avalanche", "bsc", "solana"],
        "tokens": ["USDC", "USDT", "ETH", "SOL"],
        "estimated_seconds": 900,
    },
}

# Simulated gas units per step type
SIMULATED_GAS: dict[str, int] = {
    "approve": 46000,
    "swap": 180000,
    "bridge": 250000,
    "transfer": 65000,
}


class SimulatedSwapSource(SwapQuoteSource):
    """Price-table swap quotes.

    Output = input value at table prices, less the exchange fee and the
    configured price impact.
    """

    def __init__(
        self,
        fee_percent: Decimal = Decimal("0.003"),
        price_impact: Decimal = Decimal("0.10"),
        chains: Optional[list[str]] = None,
        add_random_variance: bool = False,
        delay: float = 0.0,
    ):
        self.fee_percent = fee_percent
        self.price_impact = price_impact
        self.chains = chains
        self.add_random_variance = add_random_variance
        self.delay = delay
        self.fail_chains: set[str] = set()
        self.calls = 0
        self._prices = SIMULATED_PRICES.copy()

    @property
    def name(self) -> str:
        return "simulated"

    def supports_chain(self, chain: str) -> bool:
        return self.chains is None or chain in self.chains

    def set_price(self, symbol: str, price: Decimal) -> None:
        """Set simulated price for a token."""
        self._prices[symbol.upper()] = price

    def get_price(self, symbol: str) -> Optional[Decimal]:
        """Get simulated price for a token."""
        return self._prices.get(symbol.upper())

    async def get_swap_quote(
        self,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[SwapQuote]:
        """Generate a simulated swap quote."""
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        if chain in self.fail_chains:
            raise GatewayUnavailable(self.name, "swap quote", f"simulated outage on {chain}")

        from_price = self.get_price(from_token.symbol)
        to_price = self.get_price(to_token.symbol)
        if from_price is None or to_price is None or from_token == to_token:
            return None
        if amount <= 0:
            return None

        usd_value = Decimal(amount).scaleb(-from_token.decimals) * from_price
        base_out = usd_value / to_price

        impact = self.price_impact
        if self.add_random_variance:
            impact += Decimal(str(random.uniform(0, float(slippage) * 100)))

        out_amount = base_out * (1 - self.fee_percent) * (1 - impact / 100)
        expected = to_base_units(out_amount, to_token.decimals)
        if expected <= 0:
            return None

        minimum = to_base_units(Decimal(expected) * (1 - slippage), 0)
        config = get_chain(chain)
        exchange = config.primary_exchange if config and config.primary_exchange else self.name

        return SwapQuote(
            source=self.name,
            chain=chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            expected_output=expected,
            minimum_output=minimum,
            price_impact=impact.quantize(Decimal("0.0001")),
            exchange=exchange,
            path=[from_token.address, to_token.address],
            fee_rate=self.fee_percent,
            is_simulated=True,
        )


class SimulatedBridgeSource(BridgeQuoteSource):
    """One simulated bridge from the support matrix.

    Charges a flat 0.1% fee in the bridged token. Status polls report
    PENDING `pending_polls` times per transfer, then COMPLETED.
    """

    def __init__(
        self,
        bridge: str = "stargate",
        fee_rate: Decimal = Decimal("0.001"),
        finalized: bool = True,
        pending_polls: int = 0,
        support: Optional[dict] = None,
    ):
        self.bridge = bridge
        self.fee_rate = fee_rate
        self.finalized = finalized
        self.pending_polls = pending_polls
        self.support = support or BRIDGE_SUPPORT[bridge]
        self.fail_routes: set[tuple[str, str]] = set()
        self.failed_transfers: set[str] = set()
        self._polls: dict[str, int] = {}

    @property
    def name(self) -> str:
        return self.bridge

    def supports_route(self, from_chain: str, to_chain: str, symbol: str) -> bool:
        chains = self.support["chains"]
        return (
            from_chain != to_chain
            and from_chain in chains
            and to_chain in chains
            and symbol.upper() in self.support["tokens"]
        )

    async def get_bridge_quote(
        self,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[BridgeQuote]:
        if (from_chain, to_chain) in self.fail_routes:
            raise GatewayUnavailable(self.name, "bridge quote", f"simulated outage {from_chain}->{to_chain}")
        if from_token.symbol != to_token.symbol or amount <= 0:
            return None

        fee = to_base_units(Decimal(amount) * self.fee_rate, 0)
        amount_out = convert_decimals(amount - fee, from_token.decimals, to_token.decimals)
        if amount_out <= 0:
            return None

        return BridgeQuote(
            source=self.name,
            bridge=self.bridge,
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            amount_out=amount_out,
            fee=fee,
            estimated_seconds=self.support["estimated_seconds"],
            route_id=f"{self.bridge}-{from_chain}-{to_chain}-{from_token.symbol}" if self.finalized else None,
            finalized=self.finalized,
            is_simulated=True,
        )

    async def get_bridge_status(
        self,
        tx_hash: str,
        from_chain: Optional[str] = None,
        to_chain: Optional[str] = None,
    ) -> BridgeStatus:
        polls = self._polls.get(tx_hash, 0) + 1
        self._polls[tx_hash] = polls

        if tx_hash in self.failed_transfers:
            return BridgeStatus(status=BridgeState.FAILED, error="simulated bridge failure")
        if polls <= self.pending_polls:
            remaining = self.support["estimated_seconds"] * (self.pending_polls - polls + 1) // (self.pending_polls + 1)
            return BridgeStatus(status=BridgeState.PENDING, confirmations=polls, estimated_time=remaining)

        return BridgeStatus(
            status=BridgeState.COMPLETED,
            confirmations=polls,
            receiving_tx_hash=f"0x{hashlib.sha256(f'{tx_hash}:dest'.encode()).hexdigest()}",
        )


class SimulatedBalanceGateway(BalanceGateway):
    """In-memory balances keyed by (address, chain, symbol)."""

    def __init__(self, balances: Optional[dict[tuple[str, str, str], str]] = None):
        self._balances: dict[tuple[str, str, str], str] = {}
        self.fail_chains: set[str] = set()
        self.fail_addresses: set[str] = set()
        self.calls = 0
        for (address, chain, symbol), amount in (balances or {}).items():
            self.set_balance(address, chain, symbol, amount)

    @staticmethod
    def _key(address: str, chain: str, symbol: str) -> tuple[str, str, str]:
        address = address.lower() if address.startswith("0x") else address
        return (address, chain.lower(), symbol.upper())

    def set_balance(self, address: str, chain: str, symbol: str, amount: Union[str, Decimal, int]) -> None:
        """Set the balance of a token (human units)."""
        self._balances[self._key(address, chain, symbol)] = str(amount)

    async def get_balance(self, address: str, token: TokenInfo, chain: str) -> str:
        self.calls += 1
        if chain in self.fail_chains or address in self.fail_addresses:
            raise GatewayUnavailable("simulated_balances", "balance", f"{address} on {chain}")
        return self._balances.get(self._key(address, chain, token.symbol), "0")


class SimulatedSigner(TransactionSigner):
    """Serializes transactions as JSON instead of signing them."""

    async def sign(self, tx: UnsignedTransaction) -> str:
        return json.dumps(
            {
                "chain": tx.chain,
                "from": tx.from_address,
                "step_type": tx.step_type,
                "step_index": tx.step_index,
                "params": tx.params,
            },
            sort_keys=True,
            default=str,
        )


class SimulatedProvider(ProviderAdapter):
    """In-memory broadcast provider with failure injection.

    Failure injection is keyed by step index (read from the SimulatedSigner
    payload):
    - transient_failures[i] = n: first n submissions raise TransientSubmissionError
    - rejected_steps[i] = reason: submission raises StepExecutionFailed
    - reverted_steps[i] = reason: submission succeeds, confirmation reports FAILED
    - pending_polls: status polls that report PENDING before CONFIRMED
    """

    def __init__(self, pending_polls: int = 0):
        self.pending_polls = pending_polls
        self.transient_failures: dict[int, int] = {}
        self.rejected_steps: dict[int, str] = {}
        self.reverted_steps: dict[int, str] = {}
        self.sent: list[dict] = []
        self._attempts: dict[int, int] = {}
        self._transactions: dict[str, dict] = {}
        self._polls: dict[str, int] = {}

    async def send_transaction(self, chain: str, signed_payload: str) -> str:
        payload = json.loads(signed_payload)
        index = payload.get("step_index", 0)
        attempt = self._attempts.get(index, 0) + 1
        self._attempts[index] = attempt

        if attempt <= self.transient_failures.get(index, 0):
            raise TransientSubmissionError(f"nonce too low (simulated, attempt {attempt})")
        if index in self.rejected_steps:
            raise StepExecutionFailed(self.rejected_steps[index], step_index=index)

        tx_hash = f"0x{hashlib.sha256(f'{signed_payload}:{attempt}'.encode()).hexdigest()}"
        self._transactions[tx_hash] = payload
        self.sent.append(payload)
        logger.debug(f"Simulated {payload.get('step_type')} on {chain}: {tx_hash}")
        return tx_hash

    async def estimate_gas(self, chain: str, tx: UnsignedTransaction) -> int:
        config = get_chain(chain)
        if config is not None and not config.is_evm:
            return 5000
        return SIMULATED_GAS.get(tx.step_type, 21000)

    async def get_transaction_status(self, chain: str, tx_hash: str) -> TransactionStatus:
        payload = self._transactions.get(tx_hash)
        if payload is None:
            return TransactionStatus(state=TxState.FAILED, error="unknown transaction")

        polls = self._polls.get(tx_hash, 0) + 1
        self._polls[tx_hash] = polls
        if polls <= self.pending_polls:
            return TransactionStatus(state=TxState.PENDING, confirmations=0)

        index = payload.get("step_index", 0)
        if index in self.reverted_steps:
            return TransactionStatus(state=TxState.FAILED, error=self.reverted_steps[index])
        return TransactionStatus(state=TxState.CONFIRMED, confirmations=1)


def create_simulated_quote_gateway(
    swap_source: Optional[SimulatedSwapSource] = None,
    bridges: Optional[list[str]] = None,
) -> AggregateQuoteGateway:
    """Create a quote gateway backed by the simulated swap source and bridges."""
    gateway = AggregateQuoteGateway()
    gateway.add_swap_source(swap_source or SimulatedSwapSource())
    for bridge in bridges or list(BRIDGE_SUPPORT.keys()):
        gateway.add_bridge_source(SimulatedBridgeSource(bridge))
    return gateway
