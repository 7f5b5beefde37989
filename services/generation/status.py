"""
Job Resolution

Turns upstream status payloads into the three-state ``JobStatus``:

    processing -> keep polling
    completed  -> media is available (never without a media URL)
    failed     -> terminal, carries a classifiable message

Polling is read-only and safe to repeat indefinitely. Status checks are
pinned to the account that accepted the job and never fail over.
"""

import json
import logging
import time
from typing import Any, Optional, Sequence

from core.errors import AllAccountsFailed, FlowGateError, UpstreamError
from services.account_pool.executor import FailoverExecutor
from services.account_pool.models import Account, OperationKind
from services.flow.adapters import FlowOperations
from services.flow.models import JobStatus, OperationHandle
from services.flow.transport import FlowTransport

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({
    "MEDIA_GENERATION_STATUS_SUCCESSFUL",
    "MEDIA_GENERATION_STATUS_COMPLETED",
    "DONE",
})
FAILED_STATUS = "MEDIA_GENERATION_STATUS_FAILED"

# Known locations of the playable video URL, first present wins
VIDEO_URL_PATHS = (
    ("operation", "metadata", "video", "fifeUrl"),
    ("result", "video", "url"),
    ("result", "video", "fifeUrl"),
    ("operation", "response", "video", "url"),
    ("videoFiles", 0, "url"),
    ("response", "videoUrl"),
)

MEDIA_ID_PATHS = (
    ("mediaGenerationId",),
    ("result", "id"),
    ("response", "id"),
    ("operation", "response", "id"),
)

TASK_DONE_STATUSES = frozenset({"COMPLETED", "SUCCEEDED", "DONE"})

PREVIEW_LENGTH = 200

NAME_CACHE_TTL_SECONDS = 600


def dig(data: Any, *path) -> Any:
    """Follow a path of dict keys / list indexes, returning None on any miss."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
        if data is None:
            return None
    return data


def as_text(value: Any) -> Optional[str]:
    """Scalar upstream value as a string; None for empty, nested or boolean values."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value) or None


def _first_present(data: dict, paths) -> Optional[str]:
    for path in paths:
        value = as_text(dig(data, *path))
        if value:
            return value
    return None


def normalize_operation_status(operation: dict) -> JobStatus:
    """Map one raw operation entry from the sandbox status endpoint."""
    status = as_text(operation.get("status"))

    if status in SUCCESS_STATUSES:
        video_url = _first_present(operation, VIDEO_URL_PATHS)
        media_id = _first_present(operation, MEDIA_ID_PATHS)
        if video_url:
            return JobStatus(status="completed", video_url=video_url, media_id=media_id)
        preview = json.dumps(operation)[:PREVIEW_LENGTH]
        logger.warning(f"Operation reported {status} without a video URL")
        return JobStatus.failed(
            f"Video URL not found in successful response. Preview: {preview}...",
            "MISSING_MEDIA_URL",
        )

    if status == FAILED_STATUS:
        message = (
            as_text(dig(operation, "operation", "error", "message"))
            or as_text(dig(operation, "error", "message"))
            or "Generation Failed"
        )
        return JobStatus.failed(message, "GENERATION_FAILED")

    return JobStatus.processing("Generation in progress")


def normalize_task_status(data: dict) -> JobStatus:
    """Map a task proxy status payload (Flow image create / upscale)."""
    result = data.get("result") if isinstance(data.get("result"), dict) else {}

    error = result.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        status = error.get("status")
        message = error.get("message")
        if code == 503 or status == "UNAVAILABLE":
            return JobStatus.processing("Service unavailable, still waiting")
        if code == 400 or status == "INVALID_ARGUMENT":
            return JobStatus.failed(
                f"UPLOAD FAILED: {message or 'Safety Policy Violation or Bad Request'}",
                "INVALID_ARGUMENT",
            )
        if code == 429 or status == "RESOURCE_EXHAUSTED":
            return JobStatus.failed(
                f"Quota exceeded, retry the operation: {message or 'RESOURCE_EXHAUSTED'}",
                "RESOURCE_EXHAUSTED",
            )
        return JobStatus.failed(
            f"Upstream processing error: {message or 'Unknown error'} (Code: {code})",
            "UPSTREAM_PROCESSING_ERROR",
        )

    if data.get("code") == "processing":
        return JobStatus.processing("Processing")

    urls: list[str] = []
    media_ids: list[str] = []
    for item in result.get("media") or []:
        if not isinstance(item, dict):
            continue
        media_id = (
            as_text(item.get("mediaGenerationId"))
            or as_text(item.get("id"))
            or as_text(dig(item, "image", "generatedImage", "mediaGenerationId"))
        )
        if media_id:
            media_ids.append(media_id)
        encoded = as_text(item.get("encodedImage")) or as_text(dig(item, "image", "generatedImage", "encodedImage"))
        url = as_text(item.get("fifeUrl")) or as_text(dig(item, "image", "generatedImage", "fifeUrl"))
        if encoded:
            urls.append(f"data:image/jpeg;base64,{encoded}")
        elif url:
            urls.append(url)

    fallback_image = as_text(result.get("encodedImage"))
    if not urls and fallback_image:
        urls.append(f"data:image/jpeg;base64,{fallback_image}")
        fallback_id = as_text(result.get("mediaGenerationId"))
        if fallback_id:
            media_ids.append(fallback_id)

    if urls:
        # Preserve order, drop duplicates
        urls = list(dict.fromkeys(urls))
        return JobStatus(
            status="completed",
            media_urls=urls,
            media_ids=media_ids,
            media_id=media_ids[0] if media_ids else None,
        )

    task_state = str(data.get("status") or "").upper()
    if task_state == "FAILED":
        return JobStatus.failed("Task failed on the server", "GENERATION_FAILED")
    if task_state in TASK_DONE_STATUSES:
        return JobStatus.failed("Task completed but returned no media", "MISSING_MEDIA_URL")

    return JobStatus.processing("Waiting for result")


class JobResolutionPoller:
    """
    Usage:
        poller = JobResolutionPoller(executor, operations, transport)
        accounts = await selector.select_accounts(ignore_quota=True)
        status = await poller.check_status(accounts, handle)
    """

    def __init__(
        self,
        executor: FailoverExecutor,
        operations: FlowOperations,
        transport: FlowTransport,
        name_cache_ttl: float = NAME_CACHE_TTL_SECONDS,
    ):
        self.executor = executor
        self.operations = operations
        self.transport = transport
        self.name_cache_ttl = name_cache_ttl
        # task id -> (operation name, expiry on the monotonic clock)
        self._names: dict[str, tuple[str, float]] = {}

    def _cached_name(self, task_id: str) -> Optional[str]:
        entry = self._names.get(task_id)
        if entry is None:
            return None
        name, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._names[task_id]
            return None
        return name

    def _remember_name(self, task_id: str, name: str) -> None:
        # Expired entries are dropped on every insert
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._names.items() if now >= expires_at]
        for key in expired:
            del self._names[key]
        self._names[task_id] = (name, now + self.name_cache_ttl)

    async def check_status(self, accounts: Sequence[Account], handle: OperationHandle) -> JobStatus:
        return await self.check_operation_status(accounts, handle.task_id, handle.account_id)

    async def check_operation_status(
        self,
        accounts: Sequence[Account],
        operation_name: str,
        account_id: str,
    ) -> JobStatus:
        target = next((acc for acc in accounts if str(acc.id) == str(account_id)), None)
        if target is None:
            return JobStatus.failed(
                f"Original account (ID: {account_id}) not found or unavailable.",
                "ACCOUNT_NOT_FOUND",
            )

        try:
            operation = await self.executor.execute(
                [target],
                OperationKind.CHECK_STATUS,
                lambda account: self.operations.fetch_operation(account, operation_name),
            )
        except AllAccountsFailed as e:
            return self._status_from_exhaustion(e, target)
        except FlowGateError as e:
            logger.warning(f"Status check for {operation_name} failed: {e}")
            return JobStatus.failed(e.message, e.error_code)

        return normalize_operation_status(operation)

    def _status_from_exhaustion(self, error: AllAccountsFailed, account: Account) -> JobStatus:
        last = error.last_error
        if last is None:
            return JobStatus.failed(
                f"Account (ID: {account.id}) cannot be used for status checks.",
                "ACCOUNT_UNUSABLE",
            )
        if isinstance(last, UpstreamError) and last.status_code == 403:
            return JobStatus.failed(last.message, last.error_code)
        # Rate limits and server errors on the owning account: not terminal
        logger.warning(f"Transient status check failure on account {account.id}: {last}")
        return JobStatus(
            status="processing",
            message=f"Status check temporarily unavailable: {last}",
            error_code=getattr(last, "error_code", None),
        )

    async def check_task_status(self, task_id: str) -> JobStatus:
        """Status of a Flow image task held by the task proxy."""
        try:
            data = await self.transport.get_proxy_status(task_id)
        except FlowGateError as e:
            if e.retryable:
                return JobStatus(status="processing", message=f"Check Status Failed: {e}", error_code=e.error_code)
            return JobStatus.failed(f"Check Status Failed: {e}", e.error_code)
        return normalize_task_status(data)

    async def resolve_operation_name(self, task_id: str) -> tuple[str, Optional[str]]:
        """
        Map a proxy task id to the upstream operation name.

        Returns ("success", name) once the proxy has forwarded the request,
        ("pending", None) while it is still queued or the proxy is unhappy.
        """
        cached = self._cached_name(task_id)
        if cached:
            return "success", cached

        try:
            data = await self.transport.get_proxy_status(task_id)
        except FlowGateError as e:
            logger.debug(f"Name resolution for {task_id} not ready: {e}")
            return "pending", None

        if data.get("success"):
            first = dig(data, "result", "operations", 0)
            name = as_text(dig(first, "operation", "name")) or as_text(dig(first, "name"))
            if name:
                self._remember_name(task_id, name)
                return "success", name
        return "pending", None
