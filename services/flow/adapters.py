"""
Flow operation adapters.

Each public method takes one ``Account`` plus the request payload, performs
the upstream call(s) with that account's credentials and returns a normalized
result. Adapters never catch upstream errors: classification and failover
belong to the executor.

Shared rules:
- every generation request carries a fresh scene id and a time-based
  session marker
- input and reference images are uploaded one by one with the same account
  before the generation call (media ids are project-scoped)
- a successful call must yield a task id, otherwise ``MissingTaskId``
"""

import logging
import random
import time
import uuid
from typing import Any, Optional

from core.errors import FlowGateError, MissingTaskId, ReferenceUploadFailed, UpstreamError
from services.account_pool.models import Account

from .models import FlowImageRequest, FlowTask, OperationHandle, VideoRequest
from .routing import (
    ImageAspectRatio,
    UPSCALE_VIDEO_MODEL_KEY,
    VideoAspectRatio,
    classify_video_input,
    resolve_video_route,
)
from .transport import FlowTransport

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/v1:uploadUserImage"
UPSCALE_VIDEO_PATH = "/v1/video:batchAsyncGenerateVideoUpsampleVideo"
CHECK_STATUS_PATH = "/v1:batchCheckAsyncVideoGenerationStatus"
UPSAMPLE_IMAGE_PATH = "/v1/flow/upsampleImage"

DEFAULT_UPSCALE_RESOLUTION = "UPSAMPLE_IMAGE_RESOLUTION_2K"


def new_session_id() -> str:
    return f";{int(time.time() * 1000)}"


def new_scene_id() -> str:
    return str(uuid.uuid4())


def strip_data_uri(data: str) -> str:
    return data.split(",", 1)[1] if "," in data else data


def _extract_media_id(data: dict) -> Optional[str]:
    media = data.get("mediaGenerationId")
    if isinstance(media, dict):
        media = media.get("mediaGenerationId")
    if media:
        return media
    return ((data.get("imageOutput") or {}).get("image") or {}).get("id")


class FlowOperations:
    """
    Per-account upstream operations run under the failover executor.

    Usage:
        ops = FlowOperations(transport)
        handle = await executor.execute(
            accounts, OperationKind.CREATE_VIDEO,
            lambda account: ops.create_video(account, request),
        )
    """

    def __init__(self, transport: FlowTransport):
        self.transport = transport

    @property
    def config(self):
        return self.transport.config

    def _client_context(self, account: Account, session_id: str, project_id: Optional[str] = None,
                        with_tier: bool = True, with_recaptcha: bool = False) -> dict:
        context: dict[str, Any] = {}
        if with_recaptcha:
            context["recaptchaToken"] = ""
        context.update({
            "sessionId": session_id,
            "projectId": project_id or account.project_id,
            "tool": self.config.tool,
        })
        if with_tier:
            context["userPaygateTier"] = self.config.paygate_tier
        return context

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _upload(self, account: Account, image_data: str, aspect_ratio: Optional[str]) -> Optional[str]:
        payload = {
            "imageInput": {
                "aspectRatio": aspect_ratio or ImageAspectRatio.LANDSCAPE.value,
                "isUserUploaded": True,
                "mimeType": "image/jpeg",
                "rawImageBytes": strip_data_uri(image_data),
            },
            "clientContext": self._client_context(account, new_session_id()),
        }
        data = await self.transport.post_sandbox(account, UPLOAD_PATH, payload, label="Upload")
        media_id = _extract_media_id(data)
        if not media_id:
            logger.warning(f"Upload on account {account.id} returned no media id")
        return media_id

    async def upload_image(self, account: Account, image_data: str, aspect_ratio: Optional[str] = None) -> str:
        media_id = await self._upload(account, image_data, aspect_ratio)
        if not media_id:
            raise FlowGateError("Upload response missing media id", "NO_MEDIA_ID")
        return media_id

    # ------------------------------------------------------------------
    # Video generation
    # ------------------------------------------------------------------

    async def _submit_video(self, account: Account, route_path: str, request_item: dict, session_id: str,
                            scene_id: str) -> OperationHandle:
        body_json = {
            "clientContext": self._client_context(account, session_id, with_recaptcha=True),
            "requests": [request_item],
        }
        flow_url = self.transport.sandbox_url(route_path)
        data = await self.transport.post_proxy(account, flow_url, body_json, label="Proxy trigger")

        task_id = data.get("taskId")
        if not task_id:
            raise MissingTaskId()
        logger.info(f"Video task {task_id} created on account {account.id} (scene {scene_id})")
        return OperationHandle(task_id=str(task_id), scene_id=scene_id, account_id=account.id)

    async def create_video(self, account: Account, request: VideoRequest) -> OperationHandle:
        """
        Text, start-image or start+end-image video.

        A supplied frame that cannot be uploaded aborts the dispatch instead
        of degrading to text-to-video. An end frame without a start frame is
        ignored and never uploaded.
        """
        start_media_id = request.media_id
        if request.image:
            start_media_id = await self._upload(account, request.image, request.image_aspect_ratio)
            if not start_media_id:
                raise ReferenceUploadFailed("Failed to upload start image.")

        end_media_id = None
        if request.end_image and start_media_id:
            end_media_id = await self._upload(account, request.end_image, request.image_aspect_ratio)
            if not end_media_id:
                raise ReferenceUploadFailed("Failed to upload end image.")

        aspect = VideoAspectRatio.parse(request.aspect_ratio)
        kind = classify_video_input(start_media_id, end_media_id)
        route = resolve_video_route(kind, aspect)

        scene_id = new_scene_id()
        request_item: dict[str, Any] = {
            "aspectRatio": aspect.value,
            "seed": int(time.time()),
            "textInput": {"prompt": request.prompt},
            "videoModelKey": route.model_key,
            "metadata": {"sceneId": scene_id},
        }
        if start_media_id:
            request_item["startImage"] = {"mediaId": start_media_id}
            if end_media_id:
                request_item["endImage"] = {"mediaId": end_media_id}

        logger.info(f"CreateVideo route={kind.value} model={route.model_key} account={account.id}")
        return await self._submit_video(account, route.path, request_item, new_session_id(), scene_id)

    async def create_video_with_refs(self, account: Account, request: VideoRequest) -> OperationHandle:
        """Video conditioned on uploaded reference (asset) images."""
        media_ids = []
        for image in request.reference_images:
            if not image or not image.data:
                continue
            media_id = await self._upload(account, image.data, image.aspect_ratio)
            if media_id:
                media_ids.append(media_id)

        if not media_ids:
            raise ReferenceUploadFailed()

        aspect = VideoAspectRatio.parse(request.aspect_ratio)
        route = resolve_video_route(classify_video_input(None, None, has_references=True), aspect)

        scene_id = new_scene_id()
        request_item = {
            "aspectRatio": aspect.value,
            "seed": int(time.time()),
            "textInput": {"prompt": request.prompt},
            "videoModelKey": route.model_key,
            "metadata": {"sceneId": scene_id},
            "referenceImages": [
                {"imageUsageType": "IMAGE_USAGE_TYPE_ASSET", "mediaId": mid} for mid in media_ids
            ],
        }
        logger.info(f"CreateVideoWithRefs refs={len(media_ids)} model={route.model_key} account={account.id}")
        return await self._submit_video(account, route.path, request_item, new_session_id(), scene_id)

    async def upscale_video(self, account: Account, media_id: str) -> OperationHandle:
        scene_id = new_scene_id()
        payload = {
            "requests": [{
                "aspectRatio": VideoAspectRatio.LANDSCAPE.value,
                "seed": int(time.time()),
                "videoInput": {"mediaId": media_id},
                "videoModelKey": UPSCALE_VIDEO_MODEL_KEY,
                "metadata": {"sceneId": scene_id},
            }],
            "clientContext": self._client_context(account, new_session_id()),
        }
        data = await self.transport.post_sandbox(account, UPSCALE_VIDEO_PATH, payload, label="Upscale trigger")

        operations = data.get("operations") or [{}]
        first = operations[0] or {}
        operation_name = (first.get("operation") or {}).get("name") or first.get("name")
        if not operation_name:
            raise MissingTaskId("Upscale response missing operation name")
        return OperationHandle(task_id=operation_name, scene_id=scene_id, account_id=account.id)

    # ------------------------------------------------------------------
    # Flow images
    # ------------------------------------------------------------------

    async def create_flow_image(self, account: Account, request: FlowImageRequest) -> FlowTask:
        image_inputs = []
        for image in request.images:
            if not image:
                continue
            media_id = await self._upload(account, image, request.image_aspect_ratio)
            if not media_id:
                continue
            image_inputs.append({"name": media_id, "imageInputType": "IMAGE_INPUT_TYPE_REFERENCE"})

        project_id = account.project_id
        base_seed = random.randint(0, 999_999)
        session_id = new_session_id()
        context = self._client_context(account, session_id, with_tier=False)
        requests = [
            {
                "clientContext": context,
                "seed": base_seed + i,
                "imageModelName": request.image_model_name,
                "imageAspectRatio": request.image_aspect_ratio or ImageAspectRatio.LANDSCAPE.value,
                "prompt": request.prompt or "enhance",
                "imageInputs": image_inputs,
            }
            for i in range(max(1, request.number_of_images))
        ]
        flow_url = self.transport.sandbox_url(f"/v1/projects/{project_id}/flowMedia:batchGenerateImages")
        data = await self.transport.post_proxy(
            account, flow_url, {"clientContext": context, "requests": requests}, label="Flow media trigger"
        )
        if not (data.get("success") and data.get("taskId")):
            raise MissingTaskId("Invalid response from Flow Proxy")
        return FlowTask(task_id=str(data["taskId"]), project_id=project_id, account_id=account.id)

    async def upscale_flow_image(self, account: Account, media_id: str, project_id: Optional[str] = None,
                                 target_resolution: Optional[str] = None) -> FlowTask:
        active_project_id = project_id or account.project_id
        body_json = {
            "clientContext": self._client_context(account, new_session_id(), active_project_id, with_tier=False),
            "mediaId": media_id,
            "targetResolution": target_resolution or DEFAULT_UPSCALE_RESOLUTION,
        }
        data = await self.transport.post_proxy(
            account, self.transport.sandbox_url(UPSAMPLE_IMAGE_PATH), body_json, label="Flow upscale"
        )
        if not (data.get("success") and data.get("taskId")):
            raise MissingTaskId("Invalid response from Flow Proxy")
        return FlowTask(task_id=str(data["taskId"]), project_id=active_project_id, account_id=account.id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def fetch_operation(self, account: Account, operation_name: str) -> dict:
        """
        Read one operation's raw status entry.

        A 403/404 means the account no longer sees this operation. It is
        raised as a retryable 403 tagged ``ACCOUNT_LOST_ACCESS``.
        """
        payload = {
            "operations": [{
                "operation": {"name": operation_name},
                "status": "MEDIA_GENERATION_STATUS_ACTIVE",
            }]
        }
        try:
            data = await self.transport.post_sandbox(
                account, CHECK_STATUS_PATH, payload, label="Check Status", include_cookies=False
            )
        except UpstreamError as e:
            if e.status_code in (403, 404):
                raise UpstreamError(
                    f"NotFound/Permission (Account ID: {account.id})",
                    status_code=403,
                    upstream_code="PERMISSION_DENIED",
                    account_id=account.id,
                    error_code="ACCOUNT_LOST_ACCESS",
                ) from e
            raise

        operations = data.get("operations") or []
        if not operations or not isinstance(operations[0], dict):
            raise FlowGateError("Operation not found in response", "OPERATION_NOT_FOUND")
        return operations[0]
