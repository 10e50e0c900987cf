"""Delete queue task model"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from tgdrive.models.file_record import FileRecord, utc_now


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DeleteTask(BaseModel):
    """
    Serializable part of a queued delete.

    Callbacks are kept out of this record (see DeleteQueueService) so a task
    can be written to client storage as-is.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_id: str = Field(alias="fileId")
    file_info: FileRecord = Field(alias="fileInfo")
    retries: int = 0
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    status: TaskStatus = TaskStatus.PENDING
    last_error: Optional[str] = Field(default=None, alias="lastError")
    last_attempt: Optional[datetime] = Field(default=None, alias="lastAttempt")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
