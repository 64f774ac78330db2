"""Chain registry for the payment routing engine.

Supports 8 chains:
- EVM: ethereum, polygon, arbitrum, optimism, base, bsc, avalanche
- Solana

Each chain lists the exchanges its swap quotes come from and a small
allow-list of bridge-liquid intermediate assets. Swap edges only ever
target the requested token or one of these intermediates.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

ChainId = Union[int, str]

EVM_NATIVE_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
SOLANA_NATIVE_MINT = "So11111111111111111111111111111111111111112"


class AddressFamily:
    """Address formats understood by the validation pass."""

    EVM = "evm"
    SOLANA = "solana"


@dataclass
class ChainConfig:
    """Configuration for a blockchain."""

    # Required fields (no defaults) - must come first
    key: str
    name: str
    chain_id: ChainId
    family: str
    native_symbol: str
    native_name: str
    native_address: str
    explorer_url: str

    # Optional fields (with defaults)
    native_decimals: int = 18
    block_time_seconds: int = 12
    exchanges: list[str] = field(default_factory=list)
    intermediates: list[str] = field(default_factory=list)

    @property
    def is_evm(self) -> bool:
        return self.family == AddressFamily.EVM

    @property
    def primary_exchange(self) -> Optional[str]:
        return self.exchanges[0] if self.exchanges else None


# ======================
# Chain Configurations
# ======================

CHAINS: dict[str, ChainConfig] = {
    "ethereum": ChainConfig(
        key="ethereum",
        name="Ethereum",
        chain_id=1,
        family=AddressFamily.EVM,
        native_symbol="ETH",
        native_name="Ethereum",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://etherscan.io",
        block_time_seconds=12,
        exchanges=["uniswap_v3", "uniswap_v2", "sushiswap", "1inch"],
        intermediates=["USDC", "USDT", "WETH"],
    ),
    "polygon": ChainConfig(
        key="polygon",
        name="Polygon",
        chain_id=137,
        family=AddressFamily.EVM,
        native_symbol="MATIC",
        native_name="Polygon",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://polygonscan.com",
        block_time_seconds=2,
        exchanges=["quickswap", "sushiswap", "1inch"],
        intermediates=["USDC", "USDT", "WETH"],
    ),
    "arbitrum": ChainConfig(
        key="arbitrum",
        name="Arbitrum One",
        chain_id=42161,
        family=AddressFamily.EVM,
        native_symbol="ETH",
        native_name="Ethereum",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://arbiscan.io",
        block_time_seconds=1,
        exchanges=["uniswap_v3", "sushiswap", "camelot"],
        intermediates=["USDC", "USDT", "WETH"],
    ),
    "optimism": ChainConfig(
        key="optimism",
        name="Optimism",
        chain_id=10,
        family=AddressFamily.EVM,
        native_symbol="ETH",
        native_name="Ethereum",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://optimistic.etherscan.io",
        block_time_seconds=2,
        exchanges=["uniswap_v3", "velodrome"],
        intermediates=["USDC", "USDT", "WETH"],
    ),
    "base": ChainConfig(
        key="base",
        name="Base",
        chain_id=8453,
        family=AddressFamily.EVM,
        native_symbol="ETH",
        native_name="Ethereum",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://basescan.org",
        block_time_seconds=2,
        exchanges=["uniswap_v3", "aerodrome"],
        intermediates=["USDC", "WETH"],
    ),
    "bsc": ChainConfig(
        key="bsc",
        name="BNB Smart Chain",
        chain_id=56,
        family=AddressFamily.EVM,
        native_symbol="BNB",
        native_name="BNB",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://bscscan.com",
        block_time_seconds=3,
        exchanges=["pancakeswap", "1inch"],
        intermediates=["USDC", "USDT"],
    ),
    "avalanche": ChainConfig(
        key="avalanche",
        name="Avalanche C-Chain",
        chain_id=43114,
        family=AddressFamily.EVM,
        native_symbol="AVAX",
        native_name="Avalanche",
        native_address=EVM_NATIVE_ADDRESS,
        explorer_url="https://snowtrace.io",
        block_time_seconds=2,
        exchanges=["traderjoe", "pangolin"],
        intermediates=["USDC", "USDT", "WETH"],
    ),
    "solana": ChainConfig(
        key="solana",
        name="Solana",
        chain_id="solana",
        family=AddressFamily.SOLANA,
        native_symbol="SOL",
        native_name="Solana",
        native_address=SOLANA_NATIVE_MINT,
        explorer_url="https://solscan.io",
        native_decimals=9,
        block_time_seconds=1,
        exchanges=["jupiter", "orca", "raydium"],
        intermediates=["USDC", "USDT"],
    ),
}


# ======================
# Helper Functions
# ======================

def get_chain(key: Optional[str]) -> Optional[ChainConfig]:
    """Get chain configuration by key (case-insensitive)."""
    if not key:
        return None
    return CHAINS.get(key.strip().lower())


def get_all_chains() -> list[ChainConfig]:
    """Get all chain configurations in registry order."""
    return list(CHAINS.values())


def get_chains_for_family(family: str) -> list[ChainConfig]:
    """Get chains whose addresses use the given family."""
    return [c for c in CHAINS.values() if c.family == family]


def get_chain_by_id(chain_id: ChainId) -> Optional[ChainConfig]:
    """Get chain configuration by its chain id (compared by equality, never coerced)."""
    for chain in CHAINS.values():
        if chain.chain_id == chain_id:
            return chain
    return None
