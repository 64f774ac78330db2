"""Collaborator interfaces for route discovery and execution.

Discovery reads from three gateways:
1. BalanceGateway - spendable balance per (address, token, chain)
2. QuoteGateway   - swap quotes, bridge quotes and bridge status
3. TokenCatalog   - symbol/address resolution (payroute.tokens)

Execution additionally needs:
4. TransactionSigner - turns an UnsignedTransaction into a signed payload
5. ProviderAdapter   - broadcasts payloads and reports transaction status

All amounts crossing these interfaces are integers of the token's smallest
unit, except BalanceGateway.get_balance which reports a decimal string.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from payroute.tokens import TokenInfo

logger = logging.getLogger(__name__)


@dataclass
class SwapQuote:
    """A same-chain swap quote."""

    source: str  # e.g., "1inch", "Jupiter", "simulated"
    chain: str
    from_token: TokenInfo
    to_token: TokenInfo
    amount_in: int
    expected_output: int
    minimum_output: int
    price_impact: Decimal  # percent, 1.5 = 1.5%
    exchange: str
    path: list[str] = field(default_factory=list)
    fee_rate: Decimal = Decimal("0")  # exchange fee as a fraction of the input, 0.003 = 0.3%
    spender: Optional[str] = None  # contract the input token must be approved for
    quoted_at: float = field(default_factory=time.time)
    is_simulated: bool = False


@dataclass
class BridgeQuote:
    """A cross-chain transfer quote for one token.

    `fee` is denominated in the source token; `finalized` is False for
    estimate-only quotes that came back without an executable route.
    """

    source: str
    bridge: str
    from_chain: str
    to_chain: str
    from_token: TokenInfo
    to_token: TokenInfo
    amount_in: int
    amount_out: int
    fee: int
    estimated_seconds: int
    route_id: Optional[str] = None
    finalized: bool = True
    spender: Optional[str] = None
    quoted_at: float = field(default_factory=time.time)
    is_simulated: bool = False


class BridgeState(str, Enum):
    """Bridge transfer states reported by status polling."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BridgeStatus:
    """Status of a submitted bridge transfer."""

    status: BridgeState
    confirmations: int = 0
    estimated_time: Optional[int] = None
    receiving_tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (BridgeState.COMPLETED, BridgeState.FAILED)


class TxState(str, Enum):
    """On-chain transaction states reported by a provider."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class TransactionStatus:
    """Status of a submitted same-chain transaction."""

    state: TxState
    confirmations: int = 0
    error: Optional[str] = None


@dataclass
class UnsignedTransaction:
    """A route step prepared for signing.

    Attributes:
        chain: Chain key the transaction is submitted on
        from_address: Funding address (owner of the nonce sequence)
        step_type: approve / swap / bridge / transfer
        params: Step parameters (RouteStep.data, refreshed quote fields merged in)
        step_index: Position of the step in its route
    """

    chain: str
    from_address: str
    step_type: str
    params: dict[str, Any]
    step_index: int = 0


class BalanceGateway(ABC):
    """Reads spendable balances."""

    @abstractmethod
    async def get_balance(self, address: str, token: TokenInfo, chain: str) -> str:
        """Get the spendable balance of a token as a human-readable decimal string.

        Raises on network failure; callers treat that as "unknown".
        """
        pass


class SwapQuoteSource(ABC):
    """A single DEX or aggregator able to quote swaps on some chains."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name identifier."""
        pass

    @abstractmethod
    def supports_chain(self, chain: str) -> bool:
        """Check if this source quotes swaps on the chain."""
        pass

    @abstractmethod
    async def get_swap_quote(
        self,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[SwapQuote]:
        """
        Get a swap quote.

        Args:
            chain: Chain key both tokens live on
            from_token: Token sold
            to_token: Token bought
            amount: Input in smallest units of from_token
            slippage: Tolerance fraction used to derive minimum_output

        Returns:
            SwapQuote if a route exists, None otherwise
        """
        pass


class BridgeQuoteSource(ABC):
    """A bridge or bridge aggregator."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def supports_route(self, from_chain: str, to_chain: str, symbol: str) -> bool:
        pass

    @abstractmethod
    async def get_bridge_quote(
        self,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[BridgeQuote]:
        pass

    @abstractmethod
    async def get_bridge_status(
        self,
        tx_hash: str,
        from_chain: Optional[str] = None,
        to_chain: Optional[str] = None,
    ) -> BridgeStatus:
        pass


class QuoteGateway(ABC):
    """Uniform interface to swap quotes, bridge quotes and bridge status."""

    @abstractmethod
    async def get_swap_quote(
        self,
        chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[SwapQuote]:
        pass

    @abstractmethod
    async def get_bridge_quote(
        self,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[BridgeQuote]:
        pass

    @abstractmethod
    async def get_bridge_status(
        self,
        tx_hash: str,
        bridge: Optional[str] = None,
        from_chain: Optional[str] = None,
        to_chain: Optional[str] = None,
    ) -> BridgeStatus:
        pass


class TransactionSigner(ABC):
    """Signs prepared transactions.

    Implementations own key material; the engine only ever sees payloads.
    """

    @abstractmethod
    async def sign(self, tx: UnsignedTransaction) -> str:
        """Sign a transaction and return the serialized payload."""
        pass


class ProviderAdapter(ABC):
    """Per-chain broadcast and status provider.

    Nonce/sequence management for an address belongs to the adapter.
    """

    @abstractmethod
    async def send_transaction(self, chain: str, signed_payload: str) -> str:
        """Broadcast a signed payload and return its transaction hash.

        Raises TransientSubmissionError for retryable failures and
        StepExecutionFailed for deterministic rejections.
        """
        pass

    @abstractmethod
    async def estimate_gas(self, chain: str, tx: UnsignedTransaction) -> int:
        pass

    @abstractmethod
    async def get_transaction_status(self, chain: str, tx_hash: str) -> TransactionStatus:
        pass
