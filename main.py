#!/usr/bin/env python3
"""
FlowGate - Main Entry Point

Account pool failover and job resolution for Flow generation.

Usage:
    # Start the HTTP API
    python main.py server

    # Show the account order the next dispatch would use
    python main.py accounts

    # Poll one operation once
    python main.py status <operation_name> <account_id>

    # Refund jobs stuck in processing for a user
    python main.py reconcile <user_id>
"""

import argparse
import asyncio
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("flowgate")


async def _create_pool():
    import asyncpg
    from core.config import get_config

    config = get_config()
    if not config.database.url:
        logger.error("DATABASE_URL not configured")
        sys.exit(1)
    return await asyncpg.create_pool(
        config.database.url,
        min_size=1,
        max_size=config.database.pool_max_size,
    )


def start_server(host: str, port: int):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    logger.info(f"FlowGate server running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port, log_level="info")


async def list_accounts(ignore_quota: bool = False) -> int:
    from core.background import drain
    from core.config import get_config
    from core.errors import NoAccountsAvailable
    from services.account_pool import AccountSelector, PostgresAccountStore

    pool = await _create_pool()
    try:
        store = PostgresAccountStore(pool, get_config().pool.default_usage_limit)
        try:
            accounts = await AccountSelector(store).select_accounts(ignore_quota=ignore_quota)
        except NoAccountsAvailable as e:
            print(f"No accounts: {e.message}")
            return 1

        print(f"{len(accounts)} candidate accounts:")
        for account in accounts:
            project = account.project_id or "-"
            print(f"  {account.id:<12} project={project:<40} usage={account.usage_count}/{account.usage_limit}")
        # A quota rollover may have been scheduled
        await drain()
        return 0
    finally:
        await pool.close()


async def check_operation(operation_name: str, account_id: str) -> int:
    from core.config import get_config
    from services.account_pool import AccountSelector, FailoverExecutor, PostgresAccountStore
    from services.flow import FlowOperations, FlowTransport
    from services.generation import GenerationService

    config = get_config()
    pool = await _create_pool()
    transport = FlowTransport(config.flow)
    try:
        store = PostgresAccountStore(pool, config.pool.default_usage_limit)
        service = GenerationService(AccountSelector(store), FailoverExecutor(store), FlowOperations(transport))
        status = await service.check_operation_status(operation_name, account_id)
        print(status.model_dump_json(indent=2, exclude_none=True, by_alias=True))
        return 0 if status.status != "failed" else 1
    finally:
        await transport.close()
        await pool.close()


async def reconcile(user_id: str) -> int:
    from services.reconciliation import CreditReconciler, PostgresJobLedger, PostgresRefundGateway

    pool = await _create_pool()
    try:
        reconciler = CreditReconciler(PostgresJobLedger(pool), PostgresRefundGateway(pool))
        refunded = await reconciler.sweep_stuck_jobs(user_id)
        print(f"Refunded {len(refunded)} stuck jobs for user {user_id}")
        for job_id in refunded:
            print(f"  - {job_id}")
        return 0
    finally:
        await pool.close()


def main():
    parser = argparse.ArgumentParser(
        description="FlowGate - Account pool failover and job resolution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the API on a custom port
    python main.py server --port 9000

    # Accounts in store order, quota ignored
    python main.py accounts --all

    # Poll an operation
    python main.py status operations/abc123 42

    # Stuck job sweep
    python main.py reconcile 7f1c...
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start HTTP API")
    server_parser.add_argument("--host", default=None, help="Host to bind")
    server_parser.add_argument("--port", type=int, default=None, help="Port to bind")

    # Accounts command
    accounts_parser = subparsers.add_parser("accounts", help="Show candidate account order")
    accounts_parser.add_argument("--all", action="store_true", help="Ignore quota (status polling order)")

    # Status command
    status_parser = subparsers.add_parser("status", help="Poll one operation once")
    status_parser.add_argument("operation_name", help="Upstream operation name")
    status_parser.add_argument("account_id", help="Account that accepted the job")

    # Reconcile command
    reconcile_parser = subparsers.add_parser("reconcile", help="Refund stuck jobs for a user")
    reconcile_parser.add_argument("user_id", help="User whose jobs to sweep")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run appropriate command
    if args.command == "server":
        from core.config import get_config

        server = get_config().server
        start_server(host=args.host or server.host, port=args.port or server.port)

    elif args.command == "accounts":
        sys.exit(asyncio.run(list_accounts(ignore_quota=args.all)))

    elif args.command == "status":
        sys.exit(asyncio.run(check_operation(args.operation_name, args.account_id)))

    elif args.command == "reconcile":
        sys.exit(asyncio.run(reconcile(args.user_id)))


if __name__ == "__main__":
    main()
