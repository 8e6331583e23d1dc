"""Command line entry point.

Usage:
    swapflow quote --network bsc --from-token 0x0000000000000000000000000000000000000000 \\
        --to-token 0x55d398326f99059fF775485246999027B3197955 --amount 0.5 --signer 0x...
    swapflow convert 1.5 --decimals 18
    swapflow convert 1500000000000000000 --decimals 18 --from-base
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional

from swapflow.amounts import format_amount, from_base_units, to_base_units
from swapflow.chains import NETWORKS, get_network
from swapflow.config import get_settings
from swapflow.errors import SwapError, describe_error
from swapflow.routing.base import SwapRequest
from swapflow.routing.factory import create_aggregator
from swapflow.slippage import SlippageMode, SlippagePolicy
from swapflow.tokens import Token

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    settings = get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _percent(value: str) -> Decimal:
    try:
        percent = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if not percent.is_finite():
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    return percent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swapflow", description="Swap quote and execution engine")
    commands = parser.add_subparsers(dest="command", required=True)

    quote = commands.add_parser("quote", help="Get a quote and the minimum output")
    quote.add_argument("--network", required=True, choices=sorted(NETWORKS), help="Source network")
    quote.add_argument("--to-network", choices=sorted(NETWORKS), help="Destination network (default: same)")
    quote.add_argument("--from-token", required=True, help="Source token address")
    quote.add_argument("--from-decimals", type=int, help="Source token decimals (default: native)")
    quote.add_argument("--to-token", required=True, help="Destination token address")
    quote.add_argument("--to-decimals", type=int, help="Destination token decimals (default: native)")
    quote.add_argument("--amount", required=True, help="Amount in decimal units")
    quote.add_argument("--signer", required=True, help="Signer address")
    quote.add_argument("--recipient", help="Recipient address (default: signer)")
    quote.add_argument("--slippage", type=_percent, help="Fixed slippage percent (default: automatic)")

    convert = commands.add_parser("convert", help="Convert between decimal amounts and base units")
    convert.add_argument("amount", help="Amount to convert")
    convert.add_argument("--decimals", type=int, required=True, help="Token decimals")
    convert.add_argument("--from-base", action="store_true", help="Input is in base units")

    return parser


def _token(network_key: str, address: str, decimals: Optional[int]) -> Token:
    network = get_network(network_key)
    return Token(
        network=network,
        address=address,
        decimals=network.native_decimals if decimals is None else decimals,
    )


async def run_quote(args: argparse.Namespace) -> int:
    request = SwapRequest(
        from_token=_token(args.network, args.from_token, args.from_decimals),
        to_token=_token(args.to_network or args.network, args.to_token, args.to_decimals),
        from_amount_decimal=args.amount,
        signer_address=args.signer,
        recipient_address=args.recipient,
    )

    if args.slippage is not None:
        try:
            policy = SlippagePolicy(SlippageMode.FIXED, fixed_percent=args.slippage)
        except ValueError as e:
            print(f"Invalid slippage: {e}", file=sys.stderr)
            return 1
    else:
        policy = SlippagePolicy()

    aggregator = create_aggregator()
    quote = await aggregator.get_quote(request)
    result = policy.evaluate(quote)
    decimals = request.to_token.decimals

    print(f"Venue:           {quote.venue}")
    print(f"Path:            {quote.describe_path()}")
    print(f"Expected output: {format_amount(quote.expected_output_decimal)}")
    print(f"Price impact:    {quote.price_impact_percent}%")
    print(f"Slippage:        {result.slippage_percent}%")
    print(f"Minimum output:  {format_amount(from_base_units(result.amount_out_min_base_units, decimals))}")
    for warning in result.warnings:
        print(f"Warning:         {warning}")
    return 0


def run_convert(args: argparse.Namespace) -> int:
    if args.from_base:
        print(from_base_units(args.amount, args.decimals))
    else:
        print(to_base_units(args.amount, args.decimals, require_positive=False))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Run the command line interface."""
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        if args.command == "quote":
            return asyncio.run(run_quote(args))
        return run_convert(args)
    except SwapError as e:
        info = describe_error(e)
        print(f"{info.title}: {info.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
