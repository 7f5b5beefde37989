"""
Shared fixtures: an in-memory account store and account factories.
"""

import os
import sys
from typing import Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.account_pool.models import Account
from services.account_pool.store import AccountStore


class InMemoryAccountStore(AccountStore):
    """Account store double that records every call."""

    def __init__(self, accounts: Optional[list[Account]] = None):
        self.accounts = {acc.id: acc for acc in accounts or []}
        self.increments: list[str] = []
        self.reset_calls = 0
        self.list_calls = 0
        self.fail_listing: Optional[Exception] = None

    async def list_active_accounts(self) -> list[Account]:
        self.list_calls += 1
        if self.fail_listing:
            raise self.fail_listing
        return [acc for acc in self.accounts.values() if acc.is_active]

    async def increment_usage(self, account_id: str) -> Optional[int]:
        self.increments.append(account_id)
        account = self.accounts[account_id]
        self.accounts[account_id] = account.with_usage(account.usage_count + 1)
        return account.usage_count + 1

    async def reset_usage(self) -> int:
        self.reset_calls += 1
        for account_id, account in list(self.accounts.items()):
            if account.is_active:
                self.accounts[account_id] = account.with_usage(0)
        return len(self.accounts)


def build_account(account_id: str, **kwargs) -> Account:
    values = {
        "access_token": f"token-{account_id}",
        "auth_cookies": f"SID={account_id}",
        "project_id": f"project-{account_id}",
        "usage_count": 0,
        "usage_limit": 50,
    }
    values.update(kwargs)
    return Account(id=account_id, **values)


@pytest.fixture
def make_account():
    """Factory: make_account("a1", usage_count=50)."""
    return build_account


@pytest.fixture
def make_store():
    """Factory: make_store([account, ...]) -> InMemoryAccountStore."""
    return InMemoryAccountStore
