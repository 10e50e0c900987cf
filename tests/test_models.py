"""Unit tests for storage models"""

from datetime import datetime, timedelta, timezone

from tgdrive.models import (
    DeleteTask,
    FileRecord,
    NetworkQuality,
    NetworkStatus,
    ShortLinkDescriptor,
    TaskStatus,
)
from tgdrive.models.network_status import QUALITY_RANK


def make_record(**overrides) -> FileRecord:
    data = {
        "fileId": "F1",
        "messageId": "17",
        "fileName": "report.pdf",
        "fileSize": 2048,
        "uploadTime": "2024-05-01T12:00:00Z",
        "chatId": "-1001",
    }
    data.update(overrides)
    return FileRecord.from_index(data)


def test_file_record_from_index_aliases():
    record = make_record()

    assert record.file_id == "F1"
    assert record.message_id == "17"
    assert record.file_size == 2048
    assert record.upload_time == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert record.short_link is None


def test_file_record_to_index_uses_camel_case_and_skips_empty_link():
    data = make_record().to_index()

    assert data["fileId"] == "F1"
    assert data["chatId"] == "-1001"
    assert "shortLink" not in data
    assert "file_id" not in data


def test_file_record_with_short_link():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    record = make_record(shortLink={
        "shortId": "ab12cd34",
        "createdAt": now.isoformat(),
        "expiresAt": (now + timedelta(hours=1)).isoformat(),
    })

    assert record.short_link.short_id == "ab12cd34"
    assert record.short_link.access_count == 0
    assert record.to_index()["shortLink"]["shortId"] == "ab12cd34"


def test_short_link_activity():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    link = ShortLinkDescriptor(short_id="ab12cd34", created_at=now, expires_at=now + timedelta(seconds=1))

    assert link.is_active(now) is True
    assert link.is_active(now + timedelta(seconds=1)) is False


def test_delete_task_storage_format():
    task = DeleteTask(id="delete_F1_1", file_id="F1", file_info=make_record())

    data = task.to_storage()

    assert data["status"] == "pending"
    assert data["retries"] == 0
    assert data["fileInfo"]["messageId"] == "17"
    assert "lastError" not in data
    assert DeleteTask.model_validate(data).status == TaskStatus.PENDING


def test_network_status_serialization():
    status = NetworkStatus(is_online=True, quality=NetworkQuality.GOOD, response_time=120.5, success_rate=1.0)

    data = status.model_dump(by_alias=True, mode="json")

    assert data["isOnline"] is True
    assert data["quality"] == "good"
    assert data["responseTime"] == 120.5
    assert data["successRate"] == 1.0


def test_every_quality_has_a_rank():
    assert set(QUALITY_RANK) == set(NetworkQuality)
    assert QUALITY_RANK[NetworkQuality.UNKNOWN] == QUALITY_RANK[NetworkQuality.FAIR]
    assert QUALITY_RANK[NetworkQuality.POOR] < QUALITY_RANK[NetworkQuality.UNKNOWN]
