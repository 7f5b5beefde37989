"""
Job Ledger - persistence for billed generation jobs and credit refunds.

A job row is written by the billing side before dispatch (status
``processing``, ``cost`` and the ``usage_log_id`` of the debit). This module
only settles rows:

- completed: status + result url
- failed: status + error message, claimed exactly once via ``refunded_at``

The failure claim and the ``refund_credits`` call share one database
transaction. A refund that raises rolls the claim back, so the job stays in
``processing`` and the next settler or sweep refunds it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

import asyncpg

logger = logging.getLogger(__name__)

# Runs after a won claim, inside the claim's unit of work (the connection on Postgres)
ClaimHook = Callable[[Any], Awaitable[None]]


@dataclass
class GenerationJob:
    """A billed job as seen by reconciliation."""
    id: str
    user_id: str
    tool_id: Optional[str] = None
    status: str = "processing"
    cost: float = 0
    usage_log_id: Optional[str] = None
    created_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "GenerationJob":
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            tool_id=row.get("tool_id"),
            status=row.get("status") or "processing",
            cost=float(row.get("cost") or 0),
            usage_log_id=str(row["usage_log_id"]) if row.get("usage_log_id") else None,
            created_at=row.get("created_at"),
            refunded_at=row.get("refunded_at"),
        )

    @property
    def refundable(self) -> bool:
        return bool(self.usage_log_id) and self.cost > 0


class JobLedger(ABC):

    @abstractmethod
    async def list_processing_jobs(self, user_id: str, created_before: datetime) -> list[GenerationJob]:
        """Jobs of ``user_id`` still processing and created before the cutoff."""

    @abstractmethod
    async def claim_failure(self, job_id: str, error_message: str,
                            on_claim: Optional[ClaimHook] = None) -> bool:
        """
        Mark the job failed if nobody settled it yet. True if this call won.

        ``on_claim`` runs after a won claim. If it raises, the claim is undone
        and the exception propagates.
        """

    @abstractmethod
    async def mark_completed(self, job_id: str, result_url: Optional[str]) -> None:
        """Record a successful job."""


class RefundGateway(ABC):

    @abstractmethod
    async def refund(self, user_id: str, amount: float, description: str,
                     usage_log_id: Optional[str], conn: Any = None) -> None:
        """
        Return ``amount`` credits to ``user_id`` against a usage log entry.

        ``conn`` is the claim's unit of work when the refund runs inside
        ``JobLedger.claim_failure``.
        """


class PostgresJobLedger(JobLedger):
    """
    Ledger backed by the ``generation_jobs`` table.

    Usage:
        ledger = PostgresJobLedger(db_pool)
        await ledger.claim_failure(
            job.id, "Generation Failed",
            on_claim=lambda conn: refunds.refund(job.user_id, job.cost, "...", job.usage_log_id, conn=conn),
        )
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_processing_jobs(self, user_id: str, created_before: datetime) -> list[GenerationJob]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, user_id, tool_id, status, cost, usage_log_id,
                       created_at, refunded_at
                FROM generation_jobs
                WHERE user_id::text = $1
                  AND status = 'processing'
                  AND created_at < $2
                ORDER BY created_at ASC
                """,
                str(user_id),
                created_before,
            )
        return [GenerationJob.from_row(dict(row)) for row in rows]

    async def claim_failure(self, job_id: str, error_message: str,
                            on_claim: Optional[ClaimHook] = None) -> bool:
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                claimed = await conn.fetchval(
                    """
                    UPDATE generation_jobs SET
                        status = 'failed',
                        error_message = $2,
                        refunded_at = now(),
                        updated_at = now()
                    WHERE id::text = $1
                      AND refunded_at IS NULL
                      AND status <> 'completed'
                    RETURNING id
                    """,
                    str(job_id),
                    error_message,
                )
                if claimed is not None and on_claim is not None:
                    await on_claim(conn)
        if claimed is None:
            logger.info(f"Job {job_id} already settled, skipping")
            return False
        logger.info(f"Job {job_id} marked failed: {error_message}")
        return True

    async def mark_completed(self, job_id: str, result_url: Optional[str]) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE generation_jobs SET
                    status = 'completed',
                    result_url = COALESCE($2, result_url),
                    error_message = NULL,
                    updated_at = now()
                WHERE id::text = $1
                  AND refunded_at IS NULL
                """,
                str(job_id),
                result_url,
            )
        logger.info(f"Job {job_id} marked completed")


class PostgresRefundGateway(RefundGateway):
    """Calls ``refund_credits(p_user_id, p_amount, p_description, p_usage_log_id)``."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def _call_refund(self, conn, user_id: str, amount: float, description: str,
                           usage_log_id: Optional[str]) -> None:
        await conn.execute(
            "SELECT refund_credits($1::uuid, $2, $3, $4::uuid)",
            str(user_id),
            amount,
            description,
            usage_log_id,
        )

    async def refund(self, user_id: str, amount: float, description: str,
                     usage_log_id: Optional[str], conn: Any = None) -> None:
        if conn is not None:
            await self._call_refund(conn, user_id, amount, description, usage_log_id)
        else:
            async with self.db_pool.acquire() as own_conn:
                await self._call_refund(own_conn, user_id, amount, description, usage_log_id)
        logger.info(f"Refunded {amount} credits to user {user_id} (log {usage_log_id})")
