"""
Request and result types for Flow operations.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .routing import ImageAspectRatio, VideoAspectRatio


# ============================================================
# Requests
# ============================================================

@dataclass
class ReferenceImage:
    """An image to upload before generation (base64, data URI allowed)."""
    data: str
    aspect_ratio: Optional[str] = None


@dataclass
class VideoRequest:
    """Request for one video generation."""
    prompt: str
    aspect_ratio: VideoAspectRatio = VideoAspectRatio.LANDSCAPE

    # Already-uploaded start frame, or raw image data to upload per account
    media_id: Optional[str] = None
    image: Optional[str] = None
    end_image: Optional[str] = None
    image_aspect_ratio: Optional[str] = None

    # Reference-image (asset) generation
    reference_images: list[ReferenceImage] = field(default_factory=list)


@dataclass
class FlowImageRequest:
    """Request for Flow image generation."""
    prompt: str = "enhance"
    image_aspect_ratio: str = ImageAspectRatio.LANDSCAPE.value
    number_of_images: int = 1
    image_model_name: str = "GEM_PIX_2"
    images: list[str] = field(default_factory=list)


# ============================================================
# Results
# ============================================================

class OperationHandle(BaseModel):
    """What a caller must keep to poll a dispatched job."""
    task_id: str
    scene_id: Optional[str] = None
    account_id: str


class FlowTask(BaseModel):
    """Pending Flow image task (create or upscale). Serialized as taskId / projectId / accountId."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["pending"] = "pending"
    task_id: str
    project_id: Optional[str] = None
    account_id: str


class JobStatus(BaseModel):
    """Normalized result of one poll."""
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["processing", "completed", "failed"]
    video_url: Optional[str] = None
    # Status clients read ``video_url`` but ``mediaId``
    media_id: Optional[str] = Field(None, alias="mediaId")
    media_urls: list[str] = []
    media_ids: list[str] = []
    message: Optional[str] = None
    error_code: Optional[str] = None
    step: str = "checking_status"

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"

    @classmethod
    def processing(cls, message: Optional[str] = None) -> "JobStatus":
        return cls(status="processing", message=message)

    @classmethod
    def failed(cls, message: str, error_code: Optional[str] = None) -> "JobStatus":
        return cls(status="failed", message=message, error_code=error_code)
