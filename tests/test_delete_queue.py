"""Unit tests for the delete queue service"""

import asyncio

import pytest
from unittest.mock import Mock

from tgdrive.database import DatabaseService
from tgdrive.exceptions import NotFoundError, StorageTimeoutError
from tgdrive.models.delete_task import TaskStatus
from tgdrive.models.file_record import FileRecord
from tgdrive.models.network_status import NetworkQuality, NetworkStatus
from tgdrive.services.client_storage_service import ClientStorage
from tgdrive.services.delete_queue_service import DeleteQueueService
from tests.fakes import CHAT_ID

OFFLINE = NetworkStatus(is_online=False, quality=NetworkQuality.OFFLINE)
POOR = NetworkStatus(is_online=True, quality=NetworkQuality.POOR)
EXCELLENT = NetworkStatus(is_online=True, quality=NetworkQuality.EXCELLENT)


def make_record(file_id: str, message_id: str = "1") -> FileRecord:
    return FileRecord(file_id=file_id, message_id=message_id, file_name=f"{file_id}.txt", file_size=10, chat_id=CHAT_ID)


@pytest.fixture
def client_storage():
    database = DatabaseService("sqlite:///:memory:")
    database.initialize()
    yield ClientStorage(database)
    database.close()


class RecordingDelete:
    """Delete operation that records attempts and fails for selected files"""

    def __init__(self, failures=None):
        self.attempts = []
        self.failures = failures or {}

    async def __call__(self, task):
        self.attempts.append(task.file_id)
        error = self.failures.get(task.file_id)
        if error is not None:
            raise error
        return True


class TestDeleteQueueProcessing:
    """Test draining, retries and callbacks"""

    @pytest.mark.asyncio
    async def test_successful_delete(self, client_storage, test_settings):
        operation = RecordingDelete()
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        on_success = Mock()

        task_id = await queue.add_task(make_record("A"), on_success=on_success)
        await queue.wait_until_idle()

        assert task_id.startswith("delete_A_")
        assert operation.attempts == ["A"]
        on_success.assert_called_once()
        assert queue.queue == []
        assert client_storage.get_item(test_settings.delete_queue_storage_key) == []

    @pytest.mark.asyncio
    async def test_fifo_with_failing_middle_task(self, client_storage, test_settings):
        operation = RecordingDelete({"B": ConnectionResetError("Connection reset by peer")})
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        on_error = Mock()
        on_success = Mock()

        await queue.handle_network_status_change(OFFLINE)
        await queue.add_task(make_record("A"), on_success=on_success)
        await queue.add_task(make_record("B"), on_error=on_error)
        await queue.add_task(make_record("C"), on_success=on_success)
        assert operation.attempts == []

        await queue.handle_network_status_change(EXCELLENT)
        await queue.wait_until_idle()

        assert operation.attempts == ["A", "B", "B", "B", "C"]
        on_error.assert_called_once()
        failed_task, error = on_error.call_args[0]
        assert failed_task.file_id == "B"
        assert failed_task.retries == test_settings.delete_queue_max_retries
        assert isinstance(error, ConnectionResetError)
        assert on_success.call_count == 2

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self, client_storage, test_settings):
        operation = RecordingDelete({"A": NotFoundError("File not found")})
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        on_error = Mock()

        await queue.add_task(make_record("A"), on_error=on_error)
        await queue.wait_until_idle()

        assert operation.attempts == ["A"]
        on_error.assert_called_once()
        assert queue.queue == []

    @pytest.mark.asyncio
    async def test_exhausted_task_never_resumed_after_reload(self, client_storage, test_settings):
        operation = RecordingDelete({"A": ConnectionResetError("reset")})
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        on_error = Mock()

        await queue.add_task(make_record("A"), on_error=on_error)
        await queue.wait_until_idle()

        reloaded = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        await reloaded.start()
        await reloaded.wait_until_idle()

        assert operation.attempts == ["A"] * test_settings.delete_queue_max_retries
        assert reloaded.queue == []
        on_error.assert_called_once()
        await reloaded.stop()

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_failure(self, client_storage, test_settings):
        async def hanging_delete(task):
            await asyncio.sleep(5)

        config = test_settings.model_copy(update={"delete_timeout": 0.05})
        queue = DeleteQueueService(hanging_delete, client_storage=client_storage, config=config)
        on_error = Mock()

        await queue.add_task(make_record("A"), on_error=on_error)
        await queue.wait_until_idle()

        on_error.assert_called_once()
        task, error = on_error.call_args[0]
        assert isinstance(error, StorageTimeoutError)
        assert task.retries == config.delete_queue_max_retries
        assert "timed out" in task.last_error

    @pytest.mark.asyncio
    async def test_going_offline_pauses_after_failed_attempt(self, client_storage, test_settings):
        queue = None
        attempts = []

        async def flaky_delete(task):
            attempts.append(task.file_id)
            await queue.handle_network_status_change(OFFLINE)
            raise ConnectionResetError("reset")

        queue = DeleteQueueService(flaky_delete, client_storage=client_storage, config=test_settings)
        await queue.add_task(make_record("A"))
        await queue.wait_until_idle()

        assert attempts == ["A"]
        assert len(queue.queue) == 1
        assert queue.queue[0].retries == 1
        assert queue.queue[0].status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_poor_quality_blocks_processing(self, client_storage, test_settings):
        operation = RecordingDelete()
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)

        await queue.handle_network_status_change(POOR)
        await queue.add_task(make_record("A"))
        await queue.process_queue()

        assert operation.attempts == []
        assert queue.get_queue_status()["isOnline"] is False

    @pytest.mark.asyncio
    async def test_unknown_quality_before_first_check_allows_processing(self, client_storage, test_settings):
        operation = RecordingDelete()
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)

        await queue.handle_network_status_change(NetworkStatus(is_online=True, quality=NetworkQuality.UNKNOWN))
        await queue.add_task(make_record("A"))
        await queue.wait_until_idle()

        assert operation.attempts == ["A"]
        assert queue.get_queue_status()["isOnline"] is True

    @pytest.mark.asyncio
    async def test_async_callbacks_and_callback_failures(self, client_storage, test_settings):
        queue = DeleteQueueService(RecordingDelete(), client_storage=client_storage, config=test_settings)
        done = []

        async def on_success(task):
            done.append(task.file_id)

        await queue.add_task(make_record("A"), on_success=Mock(side_effect=RuntimeError("boom")))
        await queue.add_task(make_record("B"), on_success=on_success)
        await queue.wait_until_idle()

        assert done == ["B"]
        assert queue.queue == []


class TestDeleteQueuePersistence:
    """Test client storage persistence"""

    @pytest.mark.asyncio
    async def test_persisted_format_excludes_callbacks(self, client_storage, test_settings):
        queue = DeleteQueueService(RecordingDelete(), client_storage=client_storage, config=test_settings)
        await queue.handle_network_status_change(OFFLINE)

        await queue.add_task(make_record("A", "42"), on_success=Mock())

        stored = client_storage.get_item(test_settings.delete_queue_storage_key)
        assert len(stored) == 1
        assert set(stored[0]) == {"id", "fileId", "fileInfo", "retries", "createdAt", "status"}
        assert stored[0]["fileInfo"]["messageId"] == "42"
        assert stored[0]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_reload_resumes_retryable_tasks_only(self, client_storage, test_settings):
        key = test_settings.delete_queue_storage_key
        base = make_record("X").to_index()
        client_storage.set_item(key, [
            {"id": "t1", "fileId": "A", "fileInfo": {**base, "fileId": "A"}, "retries": 1, "createdAt": "2024-05-01T12:00:00Z", "status": "failed", "lastError": "reset"},
            {"id": "t2", "fileId": "B", "fileInfo": {**base, "fileId": "B"}, "retries": 0, "createdAt": "2024-05-01T12:00:00Z", "status": "completed"},
            {"id": "t3", "fileId": "C", "fileInfo": {**base, "fileId": "C"}, "retries": 3, "createdAt": "2024-05-01T12:00:00Z", "status": "failed"},
            {"id": "t4", "fileId": "D", "fileInfo": {**base, "fileId": "D"}, "retries": 0, "createdAt": "2024-05-01T12:00:00Z", "status": "processing"},
        ])
        operation = RecordingDelete()
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)

        queue.load_from_storage()

        assert [t.id for t in queue.queue] == ["t1", "t4"]
        assert queue.queue[1].status == TaskStatus.PENDING

        await queue.start()
        await queue.wait_until_idle()
        assert operation.attempts == ["A", "D"]
        assert client_storage.get_item(key) == []
        await queue.stop()


class TestDeleteQueueManagement:
    """Test status, clear and manual retry"""

    @pytest.mark.asyncio
    async def test_queue_status(self, client_storage, test_settings):
        queue = DeleteQueueService(RecordingDelete(), client_storage=client_storage, config=test_settings)
        await queue.handle_network_status_change(OFFLINE)
        await queue.add_task(make_record("A"))
        await queue.add_task(make_record("B"))
        queue.queue[1].status = TaskStatus.FAILED

        assert queue.get_queue_status() == {
            "total": 2,
            "pending": 1,
            "processing": 0,
            "failed": 1,
            "isProcessing": False,
            "isOnline": False,
        }

    @pytest.mark.asyncio
    async def test_clear_queue(self, client_storage, test_settings):
        queue = DeleteQueueService(RecordingDelete(), client_storage=client_storage, config=test_settings)
        await queue.handle_network_status_change(OFFLINE)
        await queue.add_task(make_record("A"))

        queue.clear_queue()

        assert queue.queue == []
        assert client_storage.get_item(test_settings.delete_queue_storage_key) == []

    @pytest.mark.asyncio
    async def test_retry_failed_tasks_keeps_retry_count(self, client_storage, test_settings):
        operation = RecordingDelete()
        queue = DeleteQueueService(operation, client_storage=client_storage, config=test_settings)
        await queue.handle_network_status_change(OFFLINE)
        await queue.add_task(make_record("A"))
        queue.queue[0].status = TaskStatus.FAILED
        queue.queue[0].retries = 2

        await queue.handle_network_status_change(POOR)
        assert await queue.retry_failed_tasks() == 1
        assert queue.queue[0].status == TaskStatus.PENDING
        assert queue.queue[0].retries == 2

        await queue.handle_network_status_change(EXCELLENT)
        await queue.wait_until_idle()
        assert operation.attempts == ["A"]


class TestDeleteQueueWithStorage:
    """Test the queue driving real storage deletes"""

    @pytest.mark.asyncio
    async def test_queue_deletes_uploaded_file(self, storage, client_storage, test_settings):
        result = await storage.upload_file(b"data", "a.txt")
        record = await storage.get_file_info(result["fileId"])

        async def delete_operation(task):
            return await storage.delete_file(task.file_info.message_id)

        queue = DeleteQueueService(delete_operation, client_storage=client_storage, config=test_settings)
        on_success = Mock()
        on_error = Mock()

        await queue.add_task(record, on_success=on_success)
        await queue.add_task(record, on_error=on_error)
        await queue.wait_until_idle()

        on_success.assert_called_once()
        on_error.assert_called_once()
        assert isinstance(on_error.call_args[0][1], NotFoundError)
        assert await storage.list_files() == []
