"""Factory for creating quote gateways.

Creates real httpx-backed sources unless dry_run is enabled, in which case
the simulated price-table sources are used.
"""

import logging
from typing import Optional

from payroute.config import Settings, get_settings
from payroute.gateways.aggregate import AggregateQuoteGateway
from payroute.gateways.base import BridgeQuoteSource, SwapQuoteSource

logger = logging.getLogger(__name__)


def create_swap_sources(settings: Optional[Settings] = None) -> list[SwapQuoteSource]:
    """Create swap quote sources (1inch for EVM chains, Jupiter for Solana)."""
    settings = settings or get_settings()

    if settings.dry_run:
        from payroute.gateways.simulated import SimulatedSwapSource

        return [SimulatedSwapSource()]

    from payroute.gateways.jupiter import JupiterSource
    from payroute.gateways.oneinch import OneInchSource

    if not settings.oneinch_api_key:
        logger.warning("ONEINCH_API_KEY not set; 1inch quotes will likely be rejected")

    return [
        OneInchSource(
            api_key=settings.oneinch_api_key or None,
            base_url=settings.oneinch_api_url,
            timeout=settings.gateway_timeout,
        ),
        JupiterSource(base_url=settings.jupiter_api_url, timeout=settings.gateway_timeout),
    ]


def create_bridge_sources(settings: Optional[Settings] = None) -> list[BridgeQuoteSource]:
    """Create bridge quote sources (LI.FI, or every simulated bridge)."""
    settings = settings or get_settings()

    if settings.dry_run:
        from payroute.gateways.simulated import BRIDGE_SUPPORT, SimulatedBridgeSource

        return [SimulatedBridgeSource(bridge) for bridge in BRIDGE_SUPPORT]

    from payroute.gateways.lifi import LiFiSource

    return [
        LiFiSource(
            integrator=settings.lifi_integrator,
            base_url=settings.lifi_api_url,
            timeout=settings.gateway_timeout,
        )
    ]


def create_quote_gateway(settings: Optional[Settings] = None) -> AggregateQuoteGateway:
    """Create the aggregate quote gateway for the configured mode."""
    settings = settings or get_settings()
    gateway = AggregateQuoteGateway(
        swap_sources=create_swap_sources(settings),
        bridge_sources=create_bridge_sources(settings),
    )
    mode = "dry-run" if settings.dry_run else "live"
    logger.info(
        f"Quote gateway ({mode}): swaps via {[s.name for s in gateway.swap_sources]}, "
        f"bridges via {[s.name for s in gateway.bridge_sources]}"
    )
    return gateway
