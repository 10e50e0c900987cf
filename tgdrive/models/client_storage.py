"""Key/value rows backing durable client-side storage"""

from datetime import datetime
from sqlmodel import SQLModel, Field

from tgdrive.models.file_record import utc_now


class StoredItem(SQLModel, table=True):
    """A single client storage entry (JSON text keyed by name)"""

    __tablename__ = "client_storage"

    key: str = Field(primary_key=True)
    value: str  # JSON string
    updated_at: datetime = Field(default_factory=utc_now)
