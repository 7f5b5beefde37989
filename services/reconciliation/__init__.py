"""
Credit Reconciliation

Refunds for billed jobs that fail or never finish.
"""

from .ledger import (
    GenerationJob,
    JobLedger,
    PostgresJobLedger,
    PostgresRefundGateway,
    RefundGateway,
)
from .reconciler import CreditReconciler, STUCK_JOB_MESSAGE

__all__ = [
    "CreditReconciler",
    "GenerationJob",
    "JobLedger",
    "PostgresJobLedger",
    "PostgresRefundGateway",
    "RefundGateway",
    "STUCK_JOB_MESSAGE",
]
