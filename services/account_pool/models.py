"""
Account pool data model.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional


class OperationKind(str, Enum):
    """Operations the failover executor can drive against an account."""
    UPLOAD_IMAGE = "UploadImage"
    CREATE_VIDEO = "CreateVideo"
    CREATE_VIDEO_WITH_REFS = "CreateVideoWithRefs"
    CREATE_FLOW_IMAGE = "CreateFlowImage"
    UPSCALE_FLOW_IMAGE = "UpscaleFlowImage"
    UPSCALE_VIDEO = "UpscaleVideo"
    UPSCALE = "Upscale"  # legacy alias kept for old callers
    CHECK_STATUS = "CheckStatus"


# Operations that count against an account's usage quota
QUOTA_CONSUMING_OPERATIONS = frozenset({
    OperationKind.CREATE_VIDEO,
    OperationKind.CREATE_FLOW_IMAGE,
    OperationKind.UPSCALE_FLOW_IMAGE,
    OperationKind.UPSCALE_VIDEO,
    OperationKind.UPSCALE,
    OperationKind.CREATE_VIDEO_WITH_REFS,
})

DEFAULT_USAGE_LIMIT = 50


def clean_token(token: Optional[str]) -> str:
    """Strip whitespace and stray surrounding quotes from a stored credential."""
    if not token:
        return ""
    token = token.strip()
    if token[:1] in ("'", '"'):
        token = token[1:]
    if token[-1:] in ("'", '"'):
        token = token[:-1]
    return token


@dataclass(frozen=True)
class Account:
    """One provider identity with its credentials and quota counters."""
    id: str
    access_token: str
    auth_cookies: Optional[str] = None
    project_id: Optional[str] = None
    usage_count: int = 0
    usage_limit: int = DEFAULT_USAGE_LIMIT
    is_active: bool = True

    @classmethod
    def from_row(cls, row: Mapping[str, Any], default_usage_limit: int = DEFAULT_USAGE_LIMIT) -> "Account":
        """Build an account from a store row, applying quota defaults."""
        return cls(
            id=str(row["id"]),
            access_token=clean_token(row.get("access_token")),
            auth_cookies=row.get("auth_cookies"),
            project_id=row.get("project_id") or None,
            usage_count=row.get("usage_count") or 0,
            usage_limit=row.get("usage_limit") or default_usage_limit,
            is_active=row.get("is_active", True),
        )

    @property
    def has_quota(self) -> bool:
        return self.usage_count < self.usage_limit

    @property
    def can_generate(self) -> bool:
        return bool(self.project_id)

    def with_usage(self, usage_count: int) -> "Account":
        return replace(self, usage_count=usage_count)

    def __repr__(self) -> str:
        # Never leak credentials into logs
        return (
            f"Account(id={self.id!r}, project_id={self.project_id!r}, "
            f"usage={self.usage_count}/{self.usage_limit})"
        )
