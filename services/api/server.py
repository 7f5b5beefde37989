"""
FlowGate HTTP Server

FastAPI surface over the generation service:
- POST /upload - Upload one image, returns its media id
- POST /create - Video generation (text, image, start+end, reference images)
- POST /flow-create - Flow image generation
- POST /flow-upscale - Flow image upscale (pinned to the media's project)
- POST /flow-check - Flow image task status
- POST /upscale - Video upscale
- POST /check-name - Resolve a proxy task id into an operation name
- POST /check-status - Operation status on the account that owns it
- GET /health - Health check

Request bodies accept the camelCase field names used by the web clients.

Usage:
    # Start server
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 8787

    # Or via main.py
    python main.py server
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.background import drain
from core.config import get_config
from core.errors import FlowGateError, InvalidRequest
from services.account_pool import AccountSelector, FailoverExecutor, PostgresAccountStore
from services.flow import (
    FlowImageRequest,
    FlowOperations,
    FlowTask,
    FlowTransport,
    JobStatus,
    OperationHandle,
    ReferenceImage,
    VideoAspectRatio,
    VideoRequest,
)
from services.generation import GenerationService

logger = logging.getLogger(__name__)

# Set by the lifespan (or by tests through dependency overrides)
_service: Optional[GenerationService] = None


def get_service() -> GenerationService:
    if _service is None:
        raise RuntimeError("Generation service not initialized")
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    global _service
    config = get_config()

    logger.info("Starting FlowGate server...")
    for issue in config.validate():
        logger.warning(f"Config issue: {issue}")

    db_pool = await asyncpg.create_pool(
        config.database.url,
        min_size=config.database.pool_min_size,
        max_size=config.database.pool_max_size,
    )
    store = PostgresAccountStore(db_pool, config.pool.default_usage_limit)
    transport = FlowTransport(config.flow)
    _service = GenerationService(
        AccountSelector(store),
        FailoverExecutor(store),
        FlowOperations(transport),
    )

    yield

    logger.info("Shutting down FlowGate server...")
    await drain()
    await transport.close()
    await db_pool.close()
    _service = None


app = FastAPI(
    title="FlowGate API",
    description="Account pool failover and job resolution for Flow generation",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================
# Request models
# ============================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UploadBody(CamelModel):
    image: str = ""
    image_aspect_ratio: Optional[str] = Field(None, alias="imageAspectRatio")


class ReferenceImageBody(CamelModel):
    data: str
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")


class CreateBody(CamelModel):
    prompt: str = ""
    video_aspect_ratio: Optional[str] = Field(None, alias="videoAspectRatio")
    media_id: Optional[str] = Field(None, alias="mediaId")
    image: Optional[str] = None
    end_image: Optional[str] = Field(None, alias="endImage")
    image_aspect_ratio: Optional[str] = Field(None, alias="imageAspectRatio")
    reference_images: Optional[list[ReferenceImageBody]] = Field(None, alias="referenceImages")


class FlowCreateBody(CamelModel):
    prompt: str = "enhance"
    image: Optional[str] = None
    images: list[str] = []
    image_aspect_ratio: Optional[str] = Field(None, alias="imageAspectRatio")
    number_of_images: int = Field(1, alias="numberOfImages")
    image_model_name: str = Field("GEM_PIX_2", alias="imageModelName")


class FlowUpscaleBody(CamelModel):
    media_id: str = Field("", alias="mediaId")
    project_id: Optional[str] = Field(None, alias="projectId")
    target_resolution: Optional[str] = Field(None, alias="targetResolution")


class TaskBody(CamelModel):
    task_id: str = Field("", alias="taskId")


class UpscaleBody(CamelModel):
    media_id: str = Field("", alias="mediaId")


class CheckStatusBody(CamelModel):
    name: str = ""
    account_id: str = ""


# ============================================================
# Error rendering
# ============================================================

def _http_status(error: FlowGateError) -> int:
    if error.category == "invalid_request":
        return 400
    if error.category == "pool_exhausted":
        return 503
    return 502


@app.exception_handler(FlowGateError)
async def flowgate_error_handler(request: Request, exc: FlowGateError):
    status_code = _http_status(exc)
    logger.warning(f"{request.url.path} -> {status_code} {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ============================================================
# Routes
# ============================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "flowgate",
        "config_issues": get_config().validate(),
    }


@app.post("/upload")
async def upload(body: UploadBody, service: GenerationService = Depends(get_service)):
    result = await service.upload_image(body.image, body.image_aspect_ratio)
    return {"mediaId": result["media_id"], **result}


@app.post("/create", response_model=OperationHandle)
async def create(body: CreateBody, service: GenerationService = Depends(get_service)):
    request = VideoRequest(
        prompt=body.prompt,
        aspect_ratio=VideoAspectRatio.parse(body.video_aspect_ratio),
        media_id=body.media_id,
        image=body.image,
        end_image=body.end_image,
        image_aspect_ratio=body.image_aspect_ratio,
        reference_images=[
            ReferenceImage(data=ref.data, aspect_ratio=ref.aspect_ratio)
            for ref in body.reference_images or []
        ],
    )
    if body.reference_images is not None and not request.reference_images:
        raise InvalidRequest("referenceImages must not be empty")
    return await service.create_generation(request)


@app.post("/flow-create", response_model=FlowTask)
async def flow_create(body: FlowCreateBody, service: GenerationService = Depends(get_service)):
    images = list(body.images)
    if body.image and body.image not in images:
        images.insert(0, body.image)

    request = FlowImageRequest(
        prompt=body.prompt or "enhance",
        number_of_images=body.number_of_images,
        image_model_name=body.image_model_name or "GEM_PIX_2",
        images=images,
    )
    if body.image_aspect_ratio:
        request.image_aspect_ratio = body.image_aspect_ratio
    return await service.create_flow_image(request)


@app.post("/flow-upscale", response_model=FlowTask)
async def flow_upscale(body: FlowUpscaleBody, service: GenerationService = Depends(get_service)):
    return await service.upscale_image(body.media_id, body.project_id, body.target_resolution)


@app.post("/flow-check", response_model=JobStatus)
async def flow_check(body: TaskBody, service: GenerationService = Depends(get_service)):
    try:
        return await service.check_task_status(body.task_id)
    except InvalidRequest as e:
        return JobStatus.failed(e.message, e.error_code)


@app.post("/upscale", response_model=OperationHandle)
async def upscale(body: UpscaleBody, service: GenerationService = Depends(get_service)):
    return await service.upscale_video(body.media_id)


@app.post("/check-name")
async def check_name(body: TaskBody, service: GenerationService = Depends(get_service)):
    state, name = await service.resolve_operation_name(body.task_id)
    if state == "success":
        return {"status": state, "name": name}
    return {"status": state, "message": "Resolving name..."}


@app.post("/check-status", response_model=JobStatus)
async def check_status(body: CheckStatusBody, service: GenerationService = Depends(get_service)):
    try:
        return await service.check_operation_status(body.name, body.account_id)
    except InvalidRequest as e:
        return JobStatus.failed(e.message, e.error_code)
