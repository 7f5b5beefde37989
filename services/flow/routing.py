"""
Video model routing table.

The upstream route and model key are a pure function of two inputs:

    input kind  : text | start image | start + end image | reference images
    orientation : landscape | portrait

All eight combinations are listed explicitly so the mapping is total and can
be checked exhaustively.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class VideoAspectRatio(str, Enum):
    LANDSCAPE = "VIDEO_ASPECT_RATIO_LANDSCAPE"
    PORTRAIT = "VIDEO_ASPECT_RATIO_PORTRAIT"

    @classmethod
    def parse(cls, value: Optional[str]) -> "VideoAspectRatio":
        """Accept enum names or the '16:9' / '9:16' shorthand; default landscape."""
        if not value:
            return cls.LANDSCAPE
        if value in ("9:16", "portrait", cls.PORTRAIT.value):
            return cls.PORTRAIT
        return cls.LANDSCAPE


class ImageAspectRatio(str, Enum):
    LANDSCAPE = "IMAGE_ASPECT_RATIO_LANDSCAPE"
    PORTRAIT = "IMAGE_ASPECT_RATIO_PORTRAIT"
    SQUARE = "IMAGE_ASPECT_RATIO_SQUARE"


class VideoInputKind(str, Enum):
    TEXT = "text"
    START_IMAGE = "start_image"
    START_END_IMAGE = "start_end_image"
    REFERENCE_IMAGES = "reference_images"


@dataclass(frozen=True)
class VideoRoute:
    model_key: str
    path: str


_TEXT_PATH = "/v1/video:batchAsyncGenerateVideoText"
_START_PATH = "/v1/video:batchAsyncGenerateVideoStartImage"
_START_END_PATH = "/v1/video:batchAsyncGenerateVideoStartAndEndImage"
_REFERENCE_PATH = "/v1/video:batchAsyncGenerateVideoReferenceImages"

VIDEO_ROUTES: dict[tuple[VideoInputKind, VideoAspectRatio], VideoRoute] = {
    (VideoInputKind.TEXT, VideoAspectRatio.LANDSCAPE): VideoRoute("veo_3_1_t2v_fast_ultra", _TEXT_PATH),
    (VideoInputKind.TEXT, VideoAspectRatio.PORTRAIT): VideoRoute("veo_3_1_t2v_fast_portrait_ultra", _TEXT_PATH),
    (VideoInputKind.START_IMAGE, VideoAspectRatio.LANDSCAPE): VideoRoute("veo_3_1_i2v_s_fast_ultra", _START_PATH),
    (VideoInputKind.START_IMAGE, VideoAspectRatio.PORTRAIT): VideoRoute("veo_3_1_i2v_s_fast_portrait_ultra", _START_PATH),
    (VideoInputKind.START_END_IMAGE, VideoAspectRatio.LANDSCAPE): VideoRoute("veo_3_1_i2v_s_fast_ultra_fl", _START_END_PATH),
    (VideoInputKind.START_END_IMAGE, VideoAspectRatio.PORTRAIT): VideoRoute("veo_3_1_i2v_s_fast_portrait_ultra_fl", _START_END_PATH),
    (VideoInputKind.REFERENCE_IMAGES, VideoAspectRatio.LANDSCAPE): VideoRoute("veo_3_1_r2v_fast_landscape_ultra", _REFERENCE_PATH),
    (VideoInputKind.REFERENCE_IMAGES, VideoAspectRatio.PORTRAIT): VideoRoute("veo_3_1_r2v_fast_portrait_ultra", _REFERENCE_PATH),
}

# Video upscaling uses a single fixed upsampler
UPSCALE_VIDEO_MODEL_KEY = "veo_2_1080p_upsampler_8s"


def classify_video_input(
    start_media_id: Optional[str],
    end_media_id: Optional[str],
    has_references: bool = False,
) -> VideoInputKind:
    """An end media id without a start media id routes as text-to-video."""
    if has_references:
        return VideoInputKind.REFERENCE_IMAGES
    if start_media_id and end_media_id:
        return VideoInputKind.START_END_IMAGE
    if start_media_id:
        return VideoInputKind.START_IMAGE
    return VideoInputKind.TEXT


def resolve_video_route(kind: VideoInputKind, aspect_ratio: VideoAspectRatio) -> VideoRoute:
    return VIDEO_ROUTES[(kind, aspect_ratio)]
