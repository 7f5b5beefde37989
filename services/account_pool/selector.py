"""
Account Selector

Builds the candidate ordering for one dispatch:
- fresh read from the store on every call (no in-process cache)
- quota filter, with a pool-wide rollover when every account is exhausted
- uniform shuffle so concurrent callers spread across accounts
"""

import logging
import random
from typing import Optional

from core.background import fire_and_forget
from core.errors import NoAccountsAvailable

from .models import Account
from .store import AccountStore

logger = logging.getLogger(__name__)


class AccountSelector:
    """
    Usage:
        selector = AccountSelector(store)

        # Quota-filtered, shuffled (generation)
        accounts = await selector.select_accounts()

        # Everything, store order (status polling)
        accounts = await selector.select_accounts(ignore_quota=True)
    """

    def __init__(self, store: AccountStore, rng: Optional[random.Random] = None):
        self.store = store
        self._rng = rng or random.Random()

    async def select_accounts(self, ignore_quota: bool = False) -> list[Account]:
        try:
            accounts = await self.store.list_active_accounts()
        except Exception as e:
            logger.error(f"Account fetch failed: {type(e).__name__}: {e}")
            raise NoAccountsAvailable(f"Account fetch error: {type(e).__name__}") from e

        accounts = [acc for acc in accounts if acc.is_active and acc.access_token]
        if not accounts:
            raise NoAccountsAvailable()

        if ignore_quota:
            return accounts

        available = [acc for acc in accounts if acc.has_quota]
        if not available:
            logger.warning(
                f"All {len(accounts)} accounts exhausted their quota, resetting pool usage"
            )
            fire_and_forget(self.store.reset_usage(), name="account-pool-reset")
            available = [acc.with_usage(0) for acc in accounts]

        self._rng.shuffle(available)
        return available

    async def select_for_project(self, project_id: Optional[str]) -> list[Account]:
        """
        Accounts owning ``project_id`` (quota ignored), or the whole pool when
        none match. Used for operations on media that lives in one project.
        """
        accounts = await self.select_accounts(ignore_quota=True)
        if project_id:
            pinned = [acc for acc in accounts if acc.project_id == project_id]
            if pinned:
                return pinned
        return accounts
