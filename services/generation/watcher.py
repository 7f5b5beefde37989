"""
Job Watcher

Client-side polling until a dispatched job reaches a terminal state.

Video jobs are polled in two phases:
1. resolve the proxy task id into the upstream operation name
2. poll the operation status on the account that accepted the job

Limits come from ``PollingConfig``. Hitting a limit yields a ``failed``
status so the caller can settle credits.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.config import PollingConfig, get_config
from services.flow.models import FlowTask, JobStatus, OperationHandle

from .service import GenerationService

logger = logging.getLogger(__name__)


class JobWatcher:
    """
    Usage:
        watcher = JobWatcher(service)
        handle = await service.create_generation(request)
        status = await watcher.wait_for_video(handle)
    """

    def __init__(
        self,
        service: GenerationService,
        config: Optional[PollingConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.service = service
        self.config = config or get_config().polling
        self._sleep = sleep

    async def wait_for_operation_name(self, task_id: str) -> Optional[str]:
        for attempt in range(1, self.config.max_name_attempts + 1):
            state, name = await self.service.resolve_operation_name(task_id)
            if state == "success" and name:
                logger.info(f"Task {task_id} resolved to {name} after {attempt} checks")
                return name
            await self._sleep(self.config.interval_seconds)
        return None

    async def wait_for_video(self, handle: OperationHandle) -> JobStatus:
        name = await self.wait_for_operation_name(handle.task_id)
        if not name:
            logger.warning(f"Task {handle.task_id} never left the proxy queue")
            return JobStatus.failed(
                f"Timeout waiting for operation name (task {handle.task_id})",
                "NAME_TIMEOUT",
            )
        return await self.wait_for_operation(name, handle.account_id)

    async def wait_for_operation(self, operation_name: str, account_id: str) -> JobStatus:
        status = None
        for attempt in range(1, self.config.max_status_attempts + 1):
            status = await self.service.check_operation_status(operation_name, account_id)
            if status.is_terminal:
                logger.info(f"{operation_name} finished as {status.status} after {attempt} checks")
                return status
            await self._sleep(self.config.interval_seconds)

        logger.warning(f"{operation_name} still processing after {self.config.max_status_attempts} checks")
        return JobStatus.failed(
            f"Timeout waiting for generation (last message: {status.message if status else None})",
            "STATUS_TIMEOUT",
        )

    async def wait_for_task(self, task: FlowTask) -> JobStatus:
        """Poll a Flow image task (create or upscale) until it settles."""
        for _ in range(self.config.max_status_attempts):
            status = await self.service.check_task_status(task.task_id)
            if status.is_terminal:
                return status
            await self._sleep(self.config.interval_seconds)
        return JobStatus.failed(f"Timeout waiting for task {task.task_id}", "STATUS_TIMEOUT")
