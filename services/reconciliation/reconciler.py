"""
Credit Reconciler

Settles billed jobs against the ledger:

    dispatch raised FlowGateError  -> refund_dispatch_failure
    poll returned failed           -> settle (refund)
    poll returned completed        -> settle (mark completed)
    row stuck in processing        -> sweep_stuck_jobs (refund)

A job is refunded exactly once. The refund runs inside the ledger claim
(``refunded_at IS NULL``): two settlers racing on the same job refund it a
single time, and a failed refund leaves the job open for the next sweep.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.config import ReconciliationConfig, get_config
from core.errors import FlowGateError
from services.flow.models import JobStatus

from .ledger import GenerationJob, JobLedger, RefundGateway

logger = logging.getLogger(__name__)

STUCK_JOB_MESSAGE = "System Timeout: Auto-refunded due to inactivity"
TIMEOUT_REFUND_DESCRIPTION = "Automatic refund: processing timeout"
FAILURE_REFUND_DESCRIPTION = "Automatic refund: generation failed"


class CreditReconciler:
    """
    Usage:
        reconciler = CreditReconciler(PostgresJobLedger(pool), PostgresRefundGateway(pool))

        status = await watcher.wait_for_video(handle)
        await reconciler.settle(job, status)

        refunded = await reconciler.sweep_stuck_jobs(user_id)
    """

    def __init__(
        self,
        ledger: JobLedger,
        refunds: RefundGateway,
        config: Optional[ReconciliationConfig] = None,
    ):
        self.ledger = ledger
        self.refunds = refunds
        self.config = config or get_config().reconciliation

    async def _fail_and_refund(self, job: GenerationJob, message: str, description: str) -> bool:
        """Claim the job as failed and refund within the claim. True if refunded."""
        if not job.refundable:
            if await self.ledger.claim_failure(job.id, message):
                logger.info(f"Job {job.id} failed without a refundable charge")
            return False

        async def refund(conn) -> None:
            await self.refunds.refund(job.user_id, job.cost, description, job.usage_log_id, conn=conn)

        return await self.ledger.claim_failure(job.id, message, on_claim=refund)

    async def settle(self, job: GenerationJob, status: JobStatus) -> bool:
        """Apply a poll result to the ledger. Returns True if credits were refunded."""
        if status.status == "completed":
            result_url = status.video_url or (status.media_urls[0] if status.media_urls else None)
            await self.ledger.mark_completed(job.id, result_url)
            return False

        if status.status == "failed":
            message = status.message or "Generation Failed"
            return await self._fail_and_refund(job, message, FAILURE_REFUND_DESCRIPTION)

        return False

    async def refund_dispatch_failure(self, job: GenerationJob, error: FlowGateError) -> bool:
        """The job never reached upstream; give the charge back."""
        logger.warning(f"Dispatch failed for job {job.id} ({error.error_code}): {error.message}")
        return await self._fail_and_refund(job, error.message, FAILURE_REFUND_DESCRIPTION)

    def _is_stuck(self, job: GenerationJob, now: datetime) -> bool:
        if job.created_at is None:
            return False
        created_at = job.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        limit = self.config.stuck_after_minutes
        if job.tool_id in self.config.video_tool_ids:
            limit = self.config.video_stuck_after_minutes
        return now - created_at >= timedelta(minutes=limit)

    async def sweep_stuck_jobs(self, user_id: str, now: Optional[datetime] = None) -> list[str]:
        """Refund and fail every job of ``user_id`` stuck in processing. Returns refunded job ids."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=self.config.stuck_after_minutes)

        jobs = await self.ledger.list_processing_jobs(user_id, cutoff)
        if jobs:
            logger.info(f"Found {len(jobs)} potentially stuck jobs for user {user_id}")

        refunded = []
        for job in jobs:
            if not self._is_stuck(job, now):
                continue
            try:
                if await self._fail_and_refund(job, STUCK_JOB_MESSAGE, TIMEOUT_REFUND_DESCRIPTION):
                    refunded.append(job.id)
            except Exception as e:
                # One broken row must not block the rest of the sweep
                logger.error(f"Refund of stuck job {job.id} failed, left for the next sweep: {type(e).__name__}: {e}")

        return refunded
