"""
Account Pool

Provider accounts, their selection order and failover execution:
- store: persisted accounts and quota counters
- selector: quota-filtered, shuffled candidate lists
- executor: sequential failover across candidates
"""

from .models import Account, OperationKind, QUOTA_CONSUMING_OPERATIONS
from .store import AccountStore, PostgresAccountStore
from .selector import AccountSelector
from .executor import FailoverExecutor, is_retryable_error

__all__ = [
    "Account",
    "OperationKind",
    "QUOTA_CONSUMING_OPERATIONS",
    "AccountStore",
    "PostgresAccountStore",
    "AccountSelector",
    "FailoverExecutor",
    "is_retryable_error",
]
