#!/usr/bin/env python3
"""Dry-run walkthrough: discover routes for a sample payment and execute the best one.

Uses the simulated gateways, so nothing touches a real chain.

Usage:
    python scripts/route_demo.py
    python scripts/route_demo.py --amount 250 --token USDC --chain polygon --execute
"""

import argparse
import asyncio
import json
import logging

from payroute.config import get_settings
from payroute.engine import RouteExecutor, RouteFinder
from payroute.gateways.simulated import (
    SimulatedBalanceGateway,
    SimulatedProvider,
    SimulatedSigner,
    create_simulated_quote_gateway,
)

logger = logging.getLogger(__name__)

PAYER = "0x1111111111111111111111111111111111111111"
MERCHANT = "0x2222222222222222222222222222222222222222"


def build_balances() -> SimulatedBalanceGateway:
    """Payer holds a little of everything, spread over a few chains."""
    balances = SimulatedBalanceGateway()
    balances.set_balance(PAYER, "ethereum", "ETH", "0.5")
    balances.set_balance(PAYER, "ethereum", "USDC", "40")
    balances.set_balance(PAYER, "polygon", "USDC", "300")
    balances.set_balance(PAYER, "arbitrum", "USDT", "500")
    balances.set_balance(PAYER, "base", "ETH", "0.2")
    return balances


async def main(args: argparse.Namespace) -> None:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    quotes = create_simulated_quote_gateway()
    balances = build_balances()
    provider = SimulatedProvider()
    finder = RouteFinder(quotes, balances, settings=settings, provider=provider)

    request = {
        "from": [PAYER],
        "to": MERCHANT,
        "amount": args.amount,
        "token": args.token,
        "blockchain": args.chain,
    }
    logger.info(f"Request: {json.dumps(request)}")

    routes = await finder.find_all_routes(request)
    if not routes:
        print("No route found")
        return

    print(f"\nFound {len(routes)} route(s):")
    for i, route in enumerate(routes[: args.show], start=1):
        kinds = " -> ".join(step.type.value for step in route.steps)
        print(f"  {i}. {route.from_amount} {route.from_token.symbol}@{route.blockchain} "
              f"=> {route.to_amount} {route.to_token.symbol} [{kinds}]")

    best = routes[0]
    print("\nBest route:")
    print(json.dumps(best.to_dict(), indent=2, default=str))

    if args.execute:
        executor = RouteExecutor(SimulatedSigner(), provider, quotes, settings=settings)
        result = await executor.execute_route(best)
        print("\nExecution:")
        print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Payment routing dry run")
    parser.add_argument("--amount", default="100", help="Amount to pay (human units)")
    parser.add_argument("--token", default="USDC", help="Token the merchant accepts")
    parser.add_argument("--chain", default="optimism", help="Chain the merchant accepts on")
    parser.add_argument("--show", type=int, default=5, help="Routes to list")
    parser.add_argument("--execute", action="store_true", help="Execute the best route")
    asyncio.run(main(parser.parse_args()))
