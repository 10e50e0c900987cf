"""File record models mirrored from Telegram into the KV index"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


class ShortLinkDescriptor(BaseModel):
    """Share link embedded in a file record"""

    model_config = ConfigDict(populate_by_name=True)

    short_id: str = Field(alias="shortId")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    access_count: int = Field(default=0, alias="accessCount")
    last_access_at: Optional[datetime] = Field(default=None, alias="lastAccessAt")

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """A descriptor is active until its expiry instant"""
        return self.expires_at > (now or utc_now())


class LegacyShortLink(BaseModel):
    """Standalone short link entry stored under short:{shortId} by older releases"""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    access_count: int = Field(default=0, alias="accessCount")
    last_access_at: Optional[datetime] = Field(default=None, alias="lastAccessAt")


class FileRecord(BaseModel):
    """Metadata for a document stored as a Telegram message attachment"""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")  # Telegram file_id
    message_id: str = Field(alias="messageId")
    file_name: str = Field(alias="fileName")
    file_size: int = Field(default=0, alias="fileSize")
    upload_time: datetime = Field(default_factory=utc_now, alias="uploadTime")
    chat_id: str = Field(alias="chatId")
    short_link: Optional[ShortLinkDescriptor] = Field(default=None, alias="shortLink")

    def to_index(self) -> dict:
        """Serializable form stored in the KV index"""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)

    @classmethod
    def from_index(cls, data: dict) -> "FileRecord":
        return cls.model_validate(data)
