"""Models module"""

from tgdrive.models.file_record import FileRecord, ShortLinkDescriptor, LegacyShortLink
from tgdrive.models.delete_task import DeleteTask, TaskStatus
from tgdrive.models.network_status import NetworkStatus, NetworkQuality
from tgdrive.models.client_storage import StoredItem

__all__ = [
    "FileRecord",
    "ShortLinkDescriptor",
    "LegacyShortLink",
    "DeleteTask",
    "TaskStatus",
    "NetworkStatus",
    "NetworkQuality",
    "StoredItem",
]
