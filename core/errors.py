"""
Error taxonomy for account-pool dispatch.

Every failure carries a stable ``error_code`` and a ``category`` so that the
failover executor can classify it without looking at message text, and the
reconciliation layer can decide whether charged credits must be refunded.

Categories:
- transient: the same request may succeed on another account
- fatal: the request itself is bad or the protocol did not match
- pool_exhausted: no account could serve the request
- invalid_request: the caller sent something unusable
"""

from typing import Optional

# HTTP statuses that mean "this account, not this request, is the problem"
RETRYABLE_STATUS_CODES = frozenset({401, 403, 429, 500, 502})
RETRYABLE_UPSTREAM_CODES = frozenset({"RESOURCE_EXHAUSTED"})


class FlowGateError(Exception):
    """Base class for all dispatch and resolution failures."""

    category = "fatal"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "error": True,
            "message": self.message,
            "error_code": self.error_code,
            "category": self.category,
        }


class UpstreamError(FlowGateError):
    """An upstream call failed with a known HTTP status and/or upstream code."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        upstream_code: Optional[str] = None,
        account_id: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.upstream_code = upstream_code
        self.account_id = account_id
        super().__init__(message, error_code or f"UPSTREAM_{status_code or 'ERROR'}")

    @property
    def retryable(self) -> bool:
        return is_retryable(self.status_code, self.upstream_code)

    @property
    def category(self) -> str:
        return "transient" if self.retryable else "fatal"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status_code"] = self.status_code
        if self.account_id is not None:
            data["account_id"] = self.account_id
        return data


class UpstreamMalformedResponse(UpstreamError):
    """Upstream answered with HTML or a body that is not valid JSON."""


class MissingTaskId(FlowGateError):
    """Upstream accepted the call but returned no task identifier."""

    def __init__(self, message: str = "Proxy response missing taskId"):
        super().__init__(message, "NO_TASK_ID")


class ReferenceUploadFailed(FlowGateError):
    """None of the reference images could be uploaded."""

    def __init__(self, message: str = "Failed to upload reference images."):
        super().__init__(message, "REFERENCE_UPLOAD_FAILED")


class InvalidRequest(FlowGateError):
    category = "invalid_request"

    def __init__(self, message: str):
        super().__init__(message, "INVALID_REQUEST")


class NoAccountsAvailable(FlowGateError):
    """The account store returned no usable rows (or could not be read)."""

    category = "pool_exhausted"

    def __init__(self, message: str = "No provider accounts available"):
        super().__init__(message, "NO_ACCOUNTS")


class AllAccountsFailed(FlowGateError):
    """Every candidate account failed with a retryable error."""

    category = "pool_exhausted"

    def __init__(self, operation: str, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.last_error = last_error
        if last_error is not None:
            message = f"All accounts failed for {operation}: {last_error}"
        else:
            message = f"All accounts failed for {operation}: no eligible account"
        super().__init__(message, "ALL_ACCOUNTS_FAILED")

    def to_dict(self) -> dict:
        data = super().to_dict()
        if isinstance(self.last_error, FlowGateError):
            data["last_error"] = self.last_error.to_dict()
        return data


def is_retryable(status_code: Optional[int], upstream_code: Optional[str] = None) -> bool:
    """Pure classification of an upstream failure signal."""
    if status_code in RETRYABLE_STATUS_CODES:
        return True
    return upstream_code in RETRYABLE_UPSTREAM_CODES
