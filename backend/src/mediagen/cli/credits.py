"""CLI commands for operating owner credit accounts.

Usage:
    python -m mediagen.cli <command> OWNER_ID [OPTIONS]

Examples:
    # Create an account at the free tier allowance
    python -m mediagen.cli init 5f0c...-uuid

    # Add a purchased credit pack
    python -m mediagen.cli grant 5f0c...-uuid --amount 1000

    # Billing-cycle reset of the subscription bucket
    python -m mediagen.cli reset 5f0c...-uuid --tier pro

    # Show balances
    python -m mediagen.cli balance 5f0c...-uuid
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Optional, Sequence
from uuid import UUID

import structlog

from mediagen.core.config import Settings, configure_logging
from mediagen.core.database import setup_db_session
from mediagen.services.credits import SUBSCRIPTION_TIER_CREDITS, CreditBalance, CreditLedger
from mediagen.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: Optional[Sequence[str]] = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Manage owner credit balances")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create an account at a tier allowance")
    init.add_argument("owner_id", type=UUID)
    init.add_argument("--tier", choices=sorted(SUBSCRIPTION_TIER_CREDITS), default="free")

    grant = commands.add_parser("grant", help="Add purchased credits")
    grant.add_argument("owner_id", type=UUID)
    grant.add_argument("--amount", type=int, required=True)

    reset = commands.add_parser("reset", help="Reset subscription credits to a tier allowance")
    reset.add_argument("owner_id", type=UUID)
    reset.add_argument("--tier", choices=sorted(SUBSCRIPTION_TIER_CREDITS), required=True)

    balance = commands.add_parser("balance", help="Show balances")
    balance.add_argument("owner_id", type=UUID)

    return parser.parse_args(argv)


async def run_command(args: Namespace, ledger: CreditLedger) -> CreditBalance:
    """Execute one parsed command against the ledger."""
    if args.command == "init":
        return await ledger.initialize_account(args.owner_id, tier=args.tier)
    if args.command == "grant":
        return await ledger.add_purchased(args.owner_id, args.amount)
    if args.command == "reset":
        return await ledger.reset_subscription(args.owner_id, args.tier)
    return await ledger.get_balance(args.owner_id)


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    ledger = CreditLedger(create_uow_factory(session_factory))

    logger.info("cli.started", command=args.command, owner_id=str(args.owner_id))

    try:
        balance = await run_command(args, ledger)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    print(f"Owner:        {args.owner_id}")
    print(f"Subscription: {balance.subscription}")
    print(f"Purchased:    {balance.purchased}")
    print(f"Total:        {balance.total}")
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
