"""
Account Store - persistence for provider accounts.

The store is the only shared mutable resource of the pool. It is reached
through three independent calls with no transaction around them:

- list active accounts with credentials, most recently updated first
- bump the usage counter of one account
- reset usage counters of every active account

Concurrent dispatches may both read the same under-quota account and both
increment it; the quota is advisory, not a hard cap.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .models import Account, DEFAULT_USAGE_LIMIT

logger = logging.getLogger(__name__)

# Connection-level failures worth a second attempt on read-only queries
TRANSIENT_DB_ERRORS = (asyncpg.PostgresConnectionError, ConnectionError, asyncio.TimeoutError)


class AccountStore(ABC):
    """Narrow read/patch interface over the account table."""

    @abstractmethod
    async def list_active_accounts(self) -> list[Account]:
        """Active accounts with an access token, newest update first."""

    @abstractmethod
    async def increment_usage(self, account_id: str) -> Optional[int]:
        """Add one to the account's usage counter; returns the new value if known."""

    @abstractmethod
    async def reset_usage(self) -> int:
        """Set usage_count = 0 for all active accounts; returns rows touched."""


class PostgresAccountStore(AccountStore):
    """
    Account store backed by the ``video_accounts`` table.

    Usage:
        pool = await asyncpg.create_pool(config.database.url)
        store = PostgresAccountStore(pool)
        accounts = await store.list_active_accounts()
    """

    def __init__(self, db_pool: asyncpg.Pool, default_usage_limit: int = DEFAULT_USAGE_LIMIT):
        self.db_pool = db_pool
        self.default_usage_limit = default_usage_limit

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(TRANSIENT_DB_ERRORS),
        reraise=True,
    )
    async def list_active_accounts(self) -> list[Account]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, access_token, auth_cookies, project_id,
                       usage_count, usage_limit, is_active
                FROM video_accounts
                WHERE is_active = TRUE
                  AND access_token IS NOT NULL
                ORDER BY updated_at DESC NULLS LAST, id ASC
                """
            )
        return [Account.from_row(dict(row), self.default_usage_limit) for row in rows]

    async def increment_usage(self, account_id: str) -> Optional[int]:
        async with self.db_pool.acquire() as conn:
            new_count = await conn.fetchval(
                """
                UPDATE video_accounts
                SET usage_count = COALESCE(usage_count, 0) + 1
                WHERE id::text = $1
                RETURNING usage_count
                """,
                str(account_id),
            )
        logger.debug(f"Account {account_id} usage -> {new_count}")
        return new_count

    async def reset_usage(self) -> int:
        async with self.db_pool.acquire() as conn:
            status = await conn.execute(
                """
                UPDATE video_accounts
                SET usage_count = 0
                WHERE is_active = TRUE
                """
            )
        # asyncpg returns the command tag, e.g. "UPDATE 12"
        touched = int(status.split()[-1]) if status else 0
        logger.info(f"Reset usage counters for {touched} active accounts")
        return touched
