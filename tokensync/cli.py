"""
Command line entry point: `tokensync <command> ...`.
"""
import argparse
import asyncio
import sys

from tokensync.core.errors import ConfigurationError
from tokensync.core.logging_config import get_logger, setup_logging

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tokensync", description="Token balance and transfer sync jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-db", help="Create database tables")
    init.add_argument("--reset", action="store_true", help="Drop all tables first")

    accounts = sub.add_parser("sync-accounts", help="Discover accounts and transactions up to a day")
    accounts.add_argument("end_date", help="YYYY-MM-DD, interpreted as 00:00 UTC")
    accounts.add_argument("--force-one-day", action="store_true", help="Only sync END_DATE, ignoring the watermark")
    accounts.add_argument("--mint-id", type=int, default=None, help="Restrict to one tracked token id")

    balances = sub.add_parser("sync-balances", help="Resolve daily pool balances for a date range")
    balances.add_argument("earliest", help="YYYY-MM-DD")
    balances.add_argument("latest", help="YYYY-MM-DD")
    balances.add_argument("--ids", type=int, nargs="*", default=None, help="Liquidity pool ids")

    since = sub.add_parser("sync-balances-since", help="Extend every pool's balances up to a day")
    since.add_argument("latest", help="YYYY-MM-DD")

    events = sub.add_parser("sync-events", help="Ingest EVM contract event logs")
    events.add_argument("--contract", dest="contracts", action="append", required=True)
    events.add_argument("--to-block", type=int, required=True)
    events.add_argument("--from-block", type=int, default=None)

    sub.add_parser("daily", help="Run the scheduled daily sync once")
    return parser


async def run_command(args) -> object:
    # Imported here so `--help` works without a configured database
    from tokensync.core.database import db_manager
    from tokensync.db.init_db import init_db
    from tokensync.ingestion import pipeline
    from tokensync.ingestion.contract_events import sync_contract_events
    from tokensync.ingestion.sources.evm_rpc import EvmRpcClient

    try:
        if args.command == "init-db":
            await init_db(reset=args.reset)
            return "ok"
        if args.command == "sync-accounts":
            return await pipeline.sync_accounts_for_end_date(args.end_date, args.force_one_day, args.mint_id)
        if args.command == "sync-balances":
            return await pipeline.sync_balances_for_date_range(args.earliest, args.latest, args.ids)
        if args.command == "sync-balances-since":
            return await pipeline.sync_balances_since_last_fetch(args.latest)
        if args.command == "sync-events":
            rpc = EvmRpcClient()
            try:
                return await sync_contract_events(rpc, args.contracts, args.to_block, args.from_block)
            finally:
                await rpc.aclose()
        if args.command == "daily":
            return await pipeline.run_daily_sync()
        raise ValueError(f"Unknown command {args.command}")
    finally:
        await db_manager.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        result = asyncio.run(run_command(args))
    except ConfigurationError as e:
        logger.error("invalid_invocation", command=args.command, error=str(e))
        return 2
    logger.info("command_finished", command=args.command, result=result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
