"""
Generation Service

Caller-facing surface of the engine. Each method:

1. validates its input (``InvalidRequest``)
2. builds a fresh candidate list from the account selector
3. runs one adapter under the failover executor

Status methods never raise on upstream trouble; they return a ``JobStatus``.
"""

import logging
from typing import Optional

from core.errors import InvalidRequest, NoAccountsAvailable
from services.account_pool.executor import FailoverExecutor
from services.account_pool.models import OperationKind
from services.account_pool.selector import AccountSelector
from services.flow.adapters import FlowOperations
from services.flow.models import FlowImageRequest, FlowTask, JobStatus, OperationHandle, VideoRequest

from .status import JobResolutionPoller

logger = logging.getLogger(__name__)


class GenerationService:
    """
    Usage:
        service = GenerationService(selector, executor, FlowOperations(transport))

        handle = await service.create_generation(VideoRequest(prompt="a red fox"))
        status = await service.check_operation_status(name, handle.account_id)
    """

    def __init__(
        self,
        selector: AccountSelector,
        executor: FailoverExecutor,
        operations: FlowOperations,
        poller: Optional[JobResolutionPoller] = None,
    ):
        self.selector = selector
        self.executor = executor
        self.operations = operations
        self.poller = poller or JobResolutionPoller(executor, operations, operations.transport)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def upload_image(self, image: str, aspect_ratio: Optional[str] = None) -> dict:
        """Upload one image; returns the media id and the account that owns it."""
        if not image:
            raise InvalidRequest("Missing image data")

        accounts = await self.selector.select_accounts()

        async def _upload(account):
            media_id = await self.operations.upload_image(account, image, aspect_ratio)
            return {"media_id": media_id, "account_id": account.id, "project_id": account.project_id}

        return await self.executor.execute(accounts, OperationKind.UPLOAD_IMAGE, _upload)

    async def create_generation(self, request: VideoRequest) -> OperationHandle:
        if not request.prompt:
            raise InvalidRequest("Missing prompt")

        accounts = await self.selector.select_accounts()

        if request.reference_images:
            return await self.executor.execute(
                accounts,
                OperationKind.CREATE_VIDEO_WITH_REFS,
                lambda account: self.operations.create_video_with_refs(account, request),
            )

        return await self.executor.execute(
            accounts,
            OperationKind.CREATE_VIDEO,
            lambda account: self.operations.create_video(account, request),
        )

    async def create_flow_image(self, request: FlowImageRequest) -> FlowTask:
        if request.number_of_images < 1:
            raise InvalidRequest("number_of_images must be at least 1")

        accounts = await self.selector.select_accounts()
        return await self.executor.execute(
            accounts,
            OperationKind.CREATE_FLOW_IMAGE,
            lambda account: self.operations.create_flow_image(account, request),
        )

    async def upscale_image(
        self,
        media_id: str,
        project_id: Optional[str] = None,
        target_resolution: Optional[str] = None,
    ) -> FlowTask:
        """Upscale a Flow image on an account that can see its project."""
        if not media_id:
            raise InvalidRequest("Missing media id")

        accounts = await self.selector.select_for_project(project_id)
        return await self.executor.execute(
            accounts,
            OperationKind.UPSCALE_FLOW_IMAGE,
            lambda account: self.operations.upscale_flow_image(
                account, media_id, project_id, target_resolution
            ),
        )

    async def upscale_video(self, media_id: str) -> OperationHandle:
        if not media_id:
            raise InvalidRequest("Missing media id")

        accounts = await self.selector.select_accounts()
        return await self.executor.execute(
            accounts,
            OperationKind.UPSCALE_VIDEO,
            lambda account: self.operations.upscale_video(account, media_id),
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def check_task_status(self, task_id: str) -> JobStatus:
        if not task_id:
            raise InvalidRequest("Missing task id")
        return await self.poller.check_task_status(task_id)

    async def resolve_operation_name(self, task_id: str) -> tuple[str, Optional[str]]:
        if not task_id:
            raise InvalidRequest("Missing task id")
        return await self.poller.resolve_operation_name(task_id)

    async def check_operation_status(self, operation_name: str, account_id: str) -> JobStatus:
        if not operation_name:
            raise InvalidRequest("Missing operation name")
        if not account_id:
            raise InvalidRequest("Missing account id")

        try:
            accounts = await self.selector.select_accounts(ignore_quota=True)
        except NoAccountsAvailable as e:
            logger.warning(f"Status check for {operation_name} without accounts: {e}")
            accounts = []
        return await self.poller.check_operation_status(accounts, operation_name, account_id)
