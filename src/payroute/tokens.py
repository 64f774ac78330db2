"""Token catalog and unit conversion.

Resolves token symbols and contract addresses to TokenInfo records per chain.
All routing math happens on integers of the token's smallest unit; the helpers
here convert to and from human-readable decimal strings.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from payroute.chains import (
    EVM_NATIVE_ADDRESS,
    SOLANA_NATIVE_MINT,
    ChainConfig,
    ChainId,
    get_all_chains,
)

logger = logging.getLogger(__name__)

NATIVE_ADDRESSES = {EVM_NATIVE_ADDRESS.lower(), SOLANA_NATIVE_MINT.lower()}


@dataclass(frozen=True, eq=False)
class TokenInfo:
    """Token on a specific chain.

    Two TokenInfo records with the same address and chain id are the same
    asset. EVM addresses compare case-insensitively; chain ids compare by
    plain equality, so ``1`` and ``"solana"`` are both valid and never coerced.
    """

    address: str
    symbol: str
    name: str
    decimals: int
    chain_id: ChainId

    @property
    def key(self) -> tuple[str, ChainId]:
        address = self.address.lower() if self.address.startswith("0x") else self.address
        return (address, self.chain_id)

    @property
    def is_native(self) -> bool:
        """Native coins need no approval before being spent."""
        return self.address.lower() in NATIVE_ADDRESSES

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenInfo):
            return NotImplemented
        return self.key == other.key and type(self.chain_id) is type(other.chain_id)

    def __hash__(self) -> int:
        return hash(self.key)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "chainId": self.chain_id,
        }


# Contract addresses and decimals per chain: symbol -> chain -> (address, decimals)
TOKEN_REGISTRY: dict[str, dict[str, tuple[str, int]]] = {
    "USDC": {
        "ethereum": ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
        "polygon": ("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", 6),
        "arbitrum": ("0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6),
        "optimism": ("0x7F5c764cBc14f9669B88837ca1490cCa17c31607", 6),
        "base": ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6),
        "bsc": ("0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
        "avalanche": ("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", 6),
        "solana": ("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
    },
    "USDT": {
        "ethereum": ("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
        "polygon": ("0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6),
        "arbitrum": ("0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6),
        "optimism": ("0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6),
        "bsc": ("0x55d398326f99059fF775485246999027B3197955", 18),
        "avalanche": ("0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7", 6),
        "solana": ("Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
    },
    "WETH": {
        "ethereum": ("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
        "polygon": ("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", 18),
        "arbitrum": ("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18),
        "optimism": ("0x4200000000000000000000000000000000000006", 18),
        "base": ("0x4200000000000000000000000000000000000006", 18),
        "avalanche": ("0x49D5c2BdFfac6CE2BFdB6640F4F80f226bc10bAB", 18),
    },
    "DAI": {
        "ethereum": ("0x6B175474E89094C44Da98b954EedeAC495271d0F", 18),
        "polygon": ("0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", 18),
    },
    "WBTC": {
        "ethereum": ("0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", 8),
    },
    "LINK": {
        "ethereum": ("0x514910771AF9Ca656af840dff83E8264EcF986CA", 18),
    },
}

TOKEN_NAMES = {
    "USDC": "USD Coin",
    "USDT": "Tether USD",
    "WETH": "Wrapped Ether",
    "DAI": "Dai Stablecoin",
    "WBTC": "Wrapped BTC",
    "LINK": "Chainlink",
}


def to_base_units(amount: Union[str, Decimal, int], decimals: int) -> int:
    """Convert a human-readable amount to an integer of smallest units (rounded down)."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def format_units(value: int, decimals: int) -> str:
    """Format smallest units as a plain decimal string without trailing zeros."""
    return format(Decimal(value).scaleb(-decimals).normalize(), "f")


def convert_decimals(value: int, from_decimals: int, to_decimals: int) -> int:
    """Re-express an integer amount in another decimal precision (rounded down)."""
    if to_decimals >= from_decimals:
        return value * 10 ** (to_decimals - from_decimals)
    return value // 10 ** (from_decimals - to_decimals)


class TokenCatalog:
    """Resolves symbols and addresses to TokenInfo records per chain."""

    def __init__(
        self,
        chains: Optional[Iterable[ChainConfig]] = None,
        registry: Optional[dict[str, dict[str, tuple[str, int]]]] = None,
    ):
        self._chains: dict[str, ChainConfig] = {
            c.key: c for c in (chains if chains is not None else get_all_chains())
        }
        self._tokens: dict[str, dict[str, TokenInfo]] = {key: {} for key in self._chains}

        for chain in self._chains.values():
            self._tokens[chain.key][chain.native_symbol] = TokenInfo(
                address=chain.native_address,
                symbol=chain.native_symbol,
                name=chain.native_name,
                decimals=chain.native_decimals,
                chain_id=chain.chain_id,
            )

        for symbol, per_chain in (registry if registry is not None else TOKEN_REGISTRY).items():
            for chain_key, (address, decimals) in per_chain.items():
                chain = self._chains.get(chain_key)
                if chain is None:
                    continue
                self._tokens[chain_key][symbol] = TokenInfo(
                    address=address,
                    symbol=symbol,
                    name=TOKEN_NAMES.get(symbol, symbol),
                    decimals=decimals,
                    chain_id=chain.chain_id,
                )

    @property
    def chains(self) -> list[str]:
        """Chain keys known to the catalog, in registry order."""
        return list(self._chains.keys())

    def get_chain(self, chain: Optional[str]) -> Optional[ChainConfig]:
        if not chain:
            return None
        return self._chains.get(chain.strip().lower())

    def has_chain(self, chain: Optional[str]) -> bool:
        return self.get_chain(chain) is not None

    def register(self, chain: str, token: TokenInfo) -> None:
        """Add or replace a token on a chain."""
        config = self.get_chain(chain)
        if config is None:
            raise KeyError(f"Unknown chain: {chain}")
        if token.chain_id != config.chain_id:
            raise ValueError(
                f"Token {token.symbol} chain id {token.chain_id!r} does not match {config.key}"
            )
        self._tokens[config.key][token.symbol.upper()] = token

    def resolve(self, symbol_or_address: Optional[str], chain: Optional[str]) -> Optional[TokenInfo]:
        """Resolve a token symbol or contract address on a chain.

        Returns None when the chain or token is unknown.
        """
        config = self.get_chain(chain)
        if config is None or not symbol_or_address:
            return None

        needle = symbol_or_address.strip()
        tokens = self._tokens[config.key]

        by_symbol = tokens.get(needle.upper())
        if by_symbol is not None:
            return by_symbol

        lowered = needle.lower()
        for token in tokens.values():
            if token.address == needle or (needle.startswith("0x") and token.address.lower() == lowered):
                return token

        logger.debug(f"Token {symbol_or_address} not found on {config.key}")
        return None

    def native(self, chain: str) -> Optional[TokenInfo]:
        config = self.get_chain(chain)
        if config is None:
            return None
        return self._tokens[config.key][config.native_symbol]

    def intermediates(self, chain: str) -> list[TokenInfo]:
        """Bridge-liquid intermediate tokens configured for a chain."""
        config = self.get_chain(chain)
        if config is None:
            return []
        result = []
        for symbol in config.intermediates:
            token = self._tokens[config.key].get(symbol)
            if token is not None:
                result.append(token)
        return result

    def chain_of(self, token: TokenInfo) -> Optional[str]:
        """Find the chain key a token lives on."""
        for key, config in self._chains.items():
            if config.chain_id == token.chain_id and type(config.chain_id) is type(token.chain_id):
                return key
        return None


def default_catalog() -> TokenCatalog:
    """Catalog over every registered chain and token."""
    return TokenCatalog()


__all__ = [
    "TokenInfo",
    "TokenCatalog",
    "TOKEN_REGISTRY",
    "default_catalog",
    "to_base_units",
    "format_units",
    "convert_decimals",
]
