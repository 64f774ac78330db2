"""Gateway interfaces and implementations for quotes, balances and broadcasting."""

from payroute.gateways.aggregate import AggregateQuoteGateway
from payroute.gateways.base import (
    BalanceGateway,
    BridgeQuote,
    BridgeQuoteSource,
    BridgeState,
    BridgeStatus,
    ProviderAdapter,
    QuoteGateway,
    SwapQuote,
    SwapQuoteSource,
    TransactionSigner,
    TransactionStatus,
    TxState,
    UnsignedTransaction,
)
from payroute.gateways.factory import create_quote_gateway

__all__ = [
    "AggregateQuoteGateway",
    "BalanceGateway",
    "BridgeQuote",
    "BridgeQuoteSource",
    "BridgeState",
    "BridgeStatus",
    "ProviderAdapter",
    "QuoteGateway",
    "SwapQuote",
    "SwapQuoteSource",
    "TransactionSigner",
    "TransactionStatus",
    "TxState",
    "UnsignedTransaction",
    "create_quote_gateway",
]
