"""LI.FI bridge aggregator integration.

Quotes cross-chain transfers of one token and reports transfer status.
API docs: https://docs.li.fi/li.fi-api/li.fi-api
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from payroute.chains import get_chain
from payroute.errors import GatewayUnavailable
from payroute.gateways.base import BridgeQuote, BridgeQuoteSource, BridgeState, BridgeStatus
from payroute.tokens import TokenInfo, convert_decimals

logger = logging.getLogger(__name__)

LIFI_API_V1 = "https://li.quest/v1"

# LI.FI chain keys where they differ from numeric EVM chain ids
LIFI_CHAIN_KEYS = {"solana": "SOL"}

# Quotes are requested on behalf of a placeholder; the executing wallet
# re-quotes with its own address when it builds the transaction.
QUOTE_ADDRESSES = {
    "evm": "0x0000000000000000000000000000000000000001",
    "solana": "11111111111111111111111111111111",
}

STATUS_MAP = {
    "DONE": BridgeState.COMPLETED,
    "FAILED": BridgeState.FAILED,
    "INVALID": BridgeState.FAILED,
    "PENDING": BridgeState.PENDING,
    "NOT_FOUND": BridgeState.PENDING,
}


class LiFiSource(BridgeQuoteSource):
    """LI.FI bridge quote and status source.

    A quote that comes back without a transactionRequest is estimate-only
    and is marked `finalized=False`.
    """

    def __init__(
        self,
        integrator: str = "payroute",
        base_url: str = LIFI_API_V1,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.integrator = integrator
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "lifi"

    def supports_route(self, from_chain: str, to_chain: str, symbol: str) -> bool:
        return from_chain != to_chain and get_chain(from_chain) is not None and get_chain(to_chain) is not None

    @staticmethod
    def _chain_key(chain: str) -> str:
        if chain in LIFI_CHAIN_KEYS:
            return LIFI_CHAIN_KEYS[chain]
        config = get_chain(chain)
        return str(config.chain_id) if config else chain

    async def _get(self, path: str, params: dict, operation: str) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.get(
                    f"{self.base_url}{path}",
                    headers={"Accept": "application/json", "x-lifi-integrator": self.integrator},
                    params=params,
                )
        except httpx.HTTPError as e:
            raise GatewayUnavailable(self.name, operation, f"{type(e).__name__}: {e}") from e

    async def get_bridge_quote(
        self,
        from_chain: str,
        to_chain: str,
        from_token: TokenInfo,
        to_token: TokenInfo,
        amount: int,
        slippage: Decimal,
    ) -> Optional[BridgeQuote]:
        source_config = get_chain(from_chain)
        if source_config is None or get_chain(to_chain) is None:
            return None

        params = {
            "fromChain": self._chain_key(from_chain),
            "toChain": self._chain_key(to_chain),
            "fromToken": from_token.address,
            "toToken": to_token.address,
            "fromAmount": str(amount),
            "fromAddress": QUOTE_ADDRESSES[source_config.family],
            "slippage": str(slippage),
            "integrator": self.integrator,
        }
        response = await self._get("/quote", params, "bridge quote")

        if response.status_code == 404:
            logger.debug(f"LI.FI has no route for {from_token.symbol} {from_chain}->{to_chain}")
            return None
        if response.status_code != 200:
            raise GatewayUnavailable(self.name, "bridge quote", f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            estimate = data["estimate"]
            amount_out = int(estimate["toAmount"])
            estimated_seconds = int(estimate.get("executionDuration") or 0)
        except (KeyError, ValueError, TypeError) as e:
            raise GatewayUnavailable(self.name, "bridge quote", f"malformed response: {e}") from e

        # Fee in source token units: whatever did not arrive on the other side
        received = convert_decimals(amount_out, to_token.decimals, from_token.decimals)
        fee = max(amount - received, 0)

        return BridgeQuote(
            source=self.name,
            bridge=str(data.get("tool") or self.name),
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            amount_out=amount_out,
            fee=fee,
            estimated_seconds=estimated_seconds,
            route_id=data.get("id"),
            finalized=bool(data.get("transactionRequest")),
            spender=estimate.get("approvalAddress"),
        )

    async def get_bridge_status(
        self,
        tx_hash: str,
        from_chain: Optional[str] = None,
        to_chain: Optional[str] = None,
    ) -> BridgeStatus:
        params = {"txHash": tx_hash}
        if from_chain:
            params["fromChain"] = self._chain_key(from_chain)
        if to_chain:
            params["toChain"] = self._chain_key(to_chain)

        response = await self._get("/status", params, "bridge status")
        if response.status_code != 200:
            raise GatewayUnavailable(self.name, "bridge status", f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            raw_status = str(data["status"]).upper()
        except (KeyError, ValueError, TypeError) as e:
            raise GatewayUnavailable(self.name, "bridge status", f"malformed response: {e}") from e

        status = STATUS_MAP.get(raw_status, BridgeState.PENDING)
        receiving = data.get("receiving") or {}
        logger.debug(f"LI.FI status for {tx_hash}: {raw_status} ({data.get('substatus')})")

        return BridgeStatus(
            status=status,
            receiving_tx_hash=receiving.get("txHash"),
            error=data.get("substatusMessage") if status == BridgeState.FAILED else None,
        )
