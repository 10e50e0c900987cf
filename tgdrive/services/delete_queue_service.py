"""Delete Queue Service - durable FIFO queue of delete operations that survives bad connectivity"""

import asyncio
import inspect
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from tgdrive.config import settings
from tgdrive.exceptions import StorageTimeoutError, is_retryable
from tgdrive.models.delete_task import DeleteTask, TaskStatus
from tgdrive.models.file_record import FileRecord, utc_now
from tgdrive.models.network_status import QUALITY_RANK, NetworkQuality, NetworkStatus
from tgdrive.services.client_storage_service import ClientStorage
from tgdrive.services.network_monitor_service import NetworkMonitorService
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)

DeleteOperation = Callable[[DeleteTask], Awaitable[Any]]
SuccessCallback = Callable[[DeleteTask], Any]
ErrorCallback = Callable[[DeleteTask, Exception], Any]


class DeleteQueueService:
    """
    Queue of pending deletes, drained one task at a time in insertion order.

    Task records are persisted to client storage after every change so a
    restart resumes whatever is still retryable. Callbacks cannot be
    persisted; they live in an in-memory registry keyed by task id and are
    lost on restart.
    """

    def __init__(
        self,
        delete_operation: DeleteOperation,
        monitor: Optional[NetworkMonitorService] = None,
        client_storage: Optional[ClientStorage] = None,
        config: Any = settings,
    ):
        self.delete_operation = delete_operation
        self.monitor = monitor
        self.client_storage = client_storage
        self.config = config
        self.max_retries = config.delete_queue_max_retries
        self.retry_delay = config.delete_queue_retry_delay
        self.storage_key = config.delete_queue_storage_key

        self.queue: List[DeleteTask] = []
        self._callbacks: Dict[str, Tuple[Optional[SuccessCallback], Optional[ErrorCallback]]] = {}
        self._processing = False
        self._drain_task: Optional[asyncio.Task] = None
        self._network_status: Optional[NetworkStatus] = None
        self._started = False

    async def start(self):
        """Restore persisted tasks and subscribe to network status changes"""
        if self._started:
            return
        self._started = True

        self.load_from_storage()
        if self.monitor:
            await self.monitor.add_listener(self.handle_network_status_change)

        logger.info(
            f"Delete queue service started "
            f"({len(self.queue)} restored tasks, max retries: {self.max_retries}, "
            f"retry delay: {self.retry_delay}s)"
        )
        if self.queue:
            self._schedule_processing()

    async def stop(self):
        """Stop processing; pending tasks stay persisted"""
        if not self._started:
            return
        self._started = False

        if self.monitor:
            self.monitor.remove_listener(self.handle_network_status_change)
        if self._drain_task and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        self._drain_task = None
        self.save_to_storage()

        logger.info("Delete queue service stopped")

    def is_online(self) -> bool:
        """True when deletes may be attempted (connected and quality better than poor)"""
        status = self._network_status
        if status is None and self.monitor:
            status = self.monitor.get_status()
        if status is None:
            return True
        return status.is_online and QUALITY_RANK[status.quality] >= QUALITY_RANK[NetworkQuality.FAIR]

    async def handle_network_status_change(self, status: NetworkStatus):
        was_online = self._network_status is not None and self.is_online()
        self._network_status = status
        now_online = self.is_online()

        if now_online and not was_online:
            if self.queue:
                logger.info("Network is back, processing delete queue")
                self._schedule_processing()
        elif not now_online and was_online:
            logger.info("Network lost, pausing delete queue")
        elif now_online and status.quality == NetworkQuality.EXCELLENT and self.queue:
            logger.info("Network quality improved, processing delete queue")
            self._schedule_processing()

    def _schedule_processing(self):
        if self._drain_task and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self.process_queue())

    async def add_task(
        self,
        file_info: FileRecord,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> str:
        """
        Queue a delete and start draining if connectivity allows

        Args:
            file_info: Snapshot of the record being deleted
            on_success: Called with the task once the delete succeeds
            on_error: Called with the task and the last error, at most once

        Returns:
            Task id
        """
        task = DeleteTask(
            id=f"delete_{file_info.file_id}_{uuid.uuid4().hex[:8]}",
            file_id=file_info.file_id,
            file_info=file_info,
        )
        self.queue.append(task)
        self._callbacks[task.id] = (on_success, on_error)
        self.save_to_storage()

        logger.info(f"Queued delete of {file_info.file_name} ({file_info.file_id})")

        if self.is_online():
            self._schedule_processing()
        return task.id

    async def process_queue(self):
        """Drain the queue head first; never runs two deletes at once"""
        if self._processing or not self.is_online():
            return

        self._processing = True
        logger.info(f"Processing delete queue, {len(self.queue)} tasks")
        try:
            while self.queue:
                if not self.is_online():
                    logger.info("Network unavailable, pausing delete queue")
                    break

                task = self.queue[0]
                if task.status == TaskStatus.COMPLETED:
                    self.queue.pop(0)
                    self.save_to_storage()
                    continue

                if not await self._process_task(task):
                    break
        finally:
            self._processing = False

        logger.info("Delete queue processing finished")

    async def _process_task(self, task: DeleteTask) -> bool:
        """
        Attempt the head task once

        Returns:
            False when draining should pause (offline after a retryable failure)
        """
        task.status = TaskStatus.PROCESSING
        task.last_attempt = utc_now()
        self.save_to_storage()
        logger.info(
            f"Deleting {task.file_info.file_name} "
            f"(attempt {task.retries + 1}/{self.max_retries})"
        )

        try:
            await asyncio.wait_for(self.delete_operation(task), timeout=self.config.delete_timeout)
        except asyncio.CancelledError:
            task.status = TaskStatus.PENDING
            self.save_to_storage()
            raise
        except Exception as e:
            error = e
            if isinstance(e, asyncio.TimeoutError):
                error = StorageTimeoutError(
                    f"Delete of {task.file_info.file_name} timed out after {self.config.delete_timeout}s",
                    original=e,
                )
            return await self._handle_failure(task, error)

        task.status = TaskStatus.COMPLETED
        self.queue.pop(0)
        self.save_to_storage()
        logger.info(f"Delete completed: {task.file_info.file_name}")

        on_success, _ = self._callbacks.pop(task.id, (None, None))
        await self._run_callback(on_success, task)
        return True

    async def _handle_failure(self, task: DeleteTask, error: Exception) -> bool:
        task.status = TaskStatus.FAILED
        task.last_error = str(error)
        task.last_attempt = utc_now()

        if not is_retryable(error):
            logger.error(f"Delete of {task.file_info.file_name} failed permanently: {error}")
            self.queue.pop(0)
            self.save_to_storage()
            _, on_error = self._callbacks.pop(task.id, (None, None))
            await self._run_callback(on_error, task, error)
            return True

        task.retries += 1
        logger.warning(
            f"Delete of {task.file_info.file_name} failed "
            f"(retry {task.retries}/{self.max_retries}): {error}"
        )

        if task.retries >= self.max_retries:
            logger.error(f"Delete task {task.id} reached max retries, dropping it")
            self.queue.pop(0)
            self.save_to_storage()
            _, on_error = self._callbacks.pop(task.id, (None, None))
            await self._run_callback(on_error, task, error)
            return True

        self.save_to_storage()
        logger.info(f"Retrying task {task.id} in {self.retry_delay}s")
        await asyncio.sleep(self.retry_delay)

        task.status = TaskStatus.PENDING
        self.save_to_storage()
        return self.is_online()

    async def _run_callback(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Delete queue callback failed: {e}", exc_info=True)

    async def wait_until_idle(self):
        """Wait for a scheduled drain to finish"""
        if self._drain_task:
            await self._drain_task

    def save_to_storage(self):
        """Persist task records (callbacks excluded)"""
        if not self.client_storage:
            return
        try:
            self.client_storage.set_item(self.storage_key, [task.to_storage() for task in self.queue])
        except Exception as e:
            logger.warning(f"Failed to persist delete queue: {e}")

    def load_from_storage(self):
        """Restore tasks that can still be retried"""
        if not self.client_storage:
            return
        stored = self.client_storage.get_item(self.storage_key)
        if not stored:
            return

        restored: List[DeleteTask] = []
        for data in stored:
            try:
                task = DeleteTask.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable delete task: {e}")
                continue
            if task.status == TaskStatus.COMPLETED or task.retries >= self.max_retries:
                continue
            if task.status == TaskStatus.PROCESSING:
                # Interrupted mid-attempt
                task.status = TaskStatus.PENDING
            restored.append(task)

        self.queue = restored
        self.save_to_storage()
        logger.info(f"Restored {len(restored)} delete tasks from client storage")

    def clear_queue(self):
        """Drop every queued task"""
        self.queue = []
        self._callbacks.clear()
        self.save_to_storage()
        logger.info("Delete queue cleared")

    async def retry_failed_tasks(self) -> int:
        """
        Put failed tasks back to pending and drain again

        Retry counters are kept, so a task never exceeds max retries in total.

        Returns:
            Number of tasks reset
        """
        failed = [task for task in self.queue if task.status == TaskStatus.FAILED]
        for task in failed:
            task.status = TaskStatus.PENDING
        self.save_to_storage()

        logger.info(f"Reset {len(failed)} failed delete tasks")
        if failed and self.is_online():
            self._schedule_processing()
        return len(failed)

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            "total": len(self.queue),
            "pending": sum(1 for t in self.queue if t.status == TaskStatus.PENDING),
            "processing": sum(1 for t in self.queue if t.status == TaskStatus.PROCESSING),
            "failed": sum(1 for t in self.queue if t.status == TaskStatus.FAILED),
            "isProcessing": self._processing,
            "isOnline": self.is_online(),
        }
