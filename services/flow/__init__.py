"""
Flow upstream integration

Transport, model routing and per-account operation adapters for the Flow
sandbox API and its task proxy.
"""

from .adapters import FlowOperations
from .models import (
    FlowImageRequest,
    FlowTask,
    JobStatus,
    OperationHandle,
    ReferenceImage,
    VideoRequest,
)
from .routing import (
    ImageAspectRatio,
    VideoAspectRatio,
    VideoInputKind,
    VideoRoute,
    VIDEO_ROUTES,
    classify_video_input,
    resolve_video_route,
)
from .transport import FlowTransport

__all__ = [
    "FlowOperations",
    "FlowTransport",
    "FlowImageRequest",
    "FlowTask",
    "JobStatus",
    "OperationHandle",
    "ReferenceImage",
    "VideoRequest",
    "ImageAspectRatio",
    "VideoAspectRatio",
    "VideoInputKind",
    "VideoRoute",
    "VIDEO_ROUTES",
    "classify_video_input",
    "resolve_video_route",
]
