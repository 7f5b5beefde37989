"""
Failover Executor

Drives one operation across an ordered account list:
- accounts are tried strictly one after another, never in parallel
- the first success wins; no other account is touched afterwards
- retryable failures (auth, rate limit, server error, resource exhausted)
  advance to the next account, anything else aborts immediately
- quota-consuming operations bump the account's usage before the call
  returns (fire-and-forget, may overshoot on failure)
"""

import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from core.background import fire_and_forget
from core.errors import AllAccountsFailed, FlowGateError

from .models import Account, OperationKind, QUOTA_CONSUMING_OPERATIONS
from .store import AccountStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

AccountOperation = Callable[[Account], Awaitable[T]]


def is_retryable_error(error: BaseException) -> bool:
    """Only typed upstream errors can be retried on another account."""
    return isinstance(error, FlowGateError) and error.retryable


class FailoverExecutor:
    """
    Usage:
        executor = FailoverExecutor(store)
        result = await executor.execute(
            accounts,
            OperationKind.CREATE_VIDEO,
            lambda account: adapters.create_video(account, request),
        )
    """

    def __init__(self, store: AccountStore):
        self.store = store

    async def _record_usage(self, account: Account, operation: OperationKind):
        try:
            await self.store.increment_usage(account.id)
        except Exception as e:
            logger.warning(
                f"Usage increment failed for account {account.id} ({operation.value}): {e}"
            )

    async def execute(
        self,
        accounts: Sequence[Account],
        operation: OperationKind,
        func: AccountOperation,
    ) -> T:
        last_error: Optional[BaseException] = None
        consumes_quota = operation in QUOTA_CONSUMING_OPERATIONS

        for account in accounts:
            if not account.can_generate:
                logger.debug(f"Skipping account {account.id}: no project id")
                continue

            if consumes_quota:
                fire_and_forget(
                    self._record_usage(account, operation),
                    name=f"usage-{account.id}",
                )

            try:
                result = await func(account)
            except Exception as e:
                last_error = e
                if is_retryable_error(e):
                    logger.warning(
                        f"{operation.value} failed on account {account.id}, "
                        f"trying next account: {e}"
                    )
                    continue
                logger.error(f"{operation.value} failed on account {account.id} (fatal): {e}")
                raise

            logger.info(f"{operation.value} succeeded on account {account.id}")
            return result

        logger.error(f"{operation.value}: all accounts failed (last error: {last_error})")
        raise AllAccountsFailed(operation.value, last_error)
