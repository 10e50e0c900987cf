"""Short link service - expiring share links embedded in file records"""

import math
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tgdrive.config import settings
from tgdrive.exceptions import ExpiredError, NotFoundError
from tgdrive.models.file_record import (
    FileRecord,
    LegacyShortLink,
    ShortLinkDescriptor,
    utc_now,
)
from tgdrive.services.kv_store import (
    LEGACY_SHORT_LINK_PATTERN,
    KVStore,
    file_key,
    legacy_short_link_key,
)
from tgdrive.services.telegram_storage_service import TelegramStorageService
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)


class ShortLinkResult(BaseModel):
    """Outcome of issuing a short link"""

    model_config = ConfigDict(populate_by_name=True)

    short_id: str = Field(alias="shortId")
    short_url: str = Field(alias="shortUrl")
    expires_at: datetime = Field(alias="expiresAt")
    expires_in: int = Field(alias="expiresIn")
    is_existing: bool = Field(alias="isExisting")


class ShortLinkService:
    """
    Issues and resolves short links.

    A link lives inside its file record (file:{fileId}.shortLink). Older
    releases stored links as standalone short:{shortId} keys with their own
    TTL; those are still resolved until migrate_legacy_links() or
    cleanup_legacy_links() has run.
    """

    def __init__(
        self,
        storage: TelegramStorageService,
        kv: KVStore,
        config: Any = settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.kv = kv
        self.config = config
        self._clock = clock

    def _new_short_id(self) -> str:
        return secrets.token_hex(self.config.short_link_bytes)

    def build_short_url(self, short_id: str) -> str:
        return f"{self.config.public_base_url.rstrip('/')}/api/download?s={short_id}"

    async def issue(self, file_id: str, ttl_seconds: Optional[int] = None) -> ShortLinkResult:
        """
        Issue a short link for a file

        Re-issuing while a link is active returns it unchanged, so access
        counters and expiry are never reset.

        Args:
            file_id: Telegram file_id
            ttl_seconds: Link lifetime (default: short_link_default_ttl)

        Raises:
            NotFoundError: If the file is not indexed
        """
        if ttl_seconds is None:
            ttl_seconds = self.config.short_link_default_ttl
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        record = await self.storage.get_file_info(file_id)
        now = self._clock()

        if record.short_link and record.short_link.is_active(now):
            link = record.short_link
            logger.info(f"Reusing short link {link.short_id} -> {file_id}")
            return ShortLinkResult(
                short_id=link.short_id,
                short_url=self.build_short_url(link.short_id),
                expires_at=link.expires_at,
                expires_in=math.floor((link.expires_at - now).total_seconds()),
                is_existing=True,
            )

        link = ShortLinkDescriptor(
            short_id=self._new_short_id(),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            access_count=0,
        )
        await self.storage.save_file_info(record.model_copy(update={"short_link": link}))

        logger.info(f"Issued short link {link.short_id} -> {file_id}, expires in {ttl_seconds}s")
        return ShortLinkResult(
            short_id=link.short_id,
            short_url=self.build_short_url(link.short_id),
            expires_at=link.expires_at,
            expires_in=ttl_seconds,
            is_existing=False,
        )

    async def resolve(self, short_id: str) -> str:
        """
        Resolve a short id to its file_id and record the access

        Raises:
            ExpiredError: If the link existed but is past its expiry (it is cleared)
            NotFoundError: If no link with this id exists
        """
        file_id = await self._resolve_legacy(short_id)
        if file_id is not None:
            return file_id

        now = self._clock()
        for listed in await self.storage.list_files():
            try:
                record = await self.storage.get_file_info(listed.file_id)
            except NotFoundError:
                continue

            link = record.short_link
            if link is None or link.short_id != short_id:
                continue

            if not link.is_active(now):
                await self.storage.save_file_info(record.model_copy(update={"short_link": None}))
                logger.info(f"Short link {short_id} expired, cleared from {record.file_id}")
                raise ExpiredError(f"Short link expired: {short_id}")

            link = link.model_copy(update={"access_count": link.access_count + 1, "last_access_at": now})
            await self.storage.save_file_info(record.model_copy(update={"short_link": link}))
            logger.info(f"Short link {short_id} -> {record.file_id}, access count {link.access_count}")
            return record.file_id

        raise NotFoundError(f"Short link not found: {short_id}")

    async def _resolve_legacy(self, short_id: str) -> Optional[str]:
        key = legacy_short_link_key(short_id)
        data = await self.kv.get(key)
        if not data:
            return None

        try:
            legacy = LegacyShortLink.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Dropping invalid legacy short link {key}: {e}")
            await self.kv.delete(key)
            return None

        now = self._clock()
        if legacy.expires_at <= now:
            await self.kv.delete(key)
            raise ExpiredError(f"Short link expired: {short_id}")

        legacy.access_count += 1
        legacy.last_access_at = now
        remaining = max(1, math.floor((legacy.expires_at - now).total_seconds()))
        await self.kv.set(key, legacy.model_dump(by_alias=True, mode="json", exclude_none=True), ttl=remaining)

        logger.info(f"Legacy short link {short_id} -> {legacy.file_id}, access count {legacy.access_count}")
        return legacy.file_id

    async def cleanup_legacy_links(self) -> Dict[str, int]:
        """
        Delete every standalone short:{shortId} key

        Returns:
            Dict with scannedCount and deletedCount
        """
        keys = await self.kv.scan_keys(LEGACY_SHORT_LINK_PATTERN)
        deleted = 0
        for key in keys:
            if await self.kv.delete(key):
                deleted += 1

        logger.info(f"Legacy short link cleanup: scanned {len(keys)}, deleted {deleted}")
        return {"scannedCount": len(keys), "deletedCount": deleted}

    async def migrate_legacy_links(self) -> Dict[str, int]:
        """
        Move still-valid legacy links into their file records, then drop the legacy keys

        A file that already carries an active embedded link keeps it.

        Returns:
            Dict with scannedCount, migratedCount and deletedCount
        """
        keys = await self.kv.scan_keys(LEGACY_SHORT_LINK_PATTERN)
        now = self._clock()
        migrated = 0

        for key in keys:
            data = await self.kv.get(key)
            if not data:
                continue
            try:
                legacy = LegacyShortLink.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping invalid legacy short link {key}: {e}")
                continue
            if legacy.expires_at <= now:
                continue

            record_data = await self.kv.get(file_key(legacy.file_id))
            if not record_data:
                logger.warning(f"Legacy short link {key} points at unindexed file {legacy.file_id}")
                continue
            record = FileRecord.from_index(record_data)
            if record.short_link and record.short_link.is_active(now):
                continue

            link = ShortLinkDescriptor(
                short_id=key.split(":", 1)[1],
                created_at=legacy.created_at or now,
                expires_at=legacy.expires_at,
                access_count=legacy.access_count,
                last_access_at=legacy.last_access_at,
            )
            await self.storage.save_file_info(record.model_copy(update={"short_link": link}))
            migrated += 1

        result = await self.cleanup_legacy_links()
        result["migratedCount"] = migrated
        logger.info(f"Migrated {migrated} legacy short links")
        return result
