"""Rebuilds the KV index from recent Telegram history"""

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from tgdrive.config import settings
from tgdrive.models.file_record import FileRecord
from tgdrive.services.kv_store import KVStore, file_key, file_list_key
from tgdrive.utils.logger import get_logger
from tgdrive.utils.retry import retry_operation

logger = get_logger(__name__)


class SyncService:
    """
    Reconciles the file index against the chat's message history.

    Only a bounded window of recent updates is visible through getUpdates,
    so a sync can add missing records but never proves a file is gone.
    Re-running a sync never duplicates records: entries are keyed on the
    Telegram file_id.
    """

    def __init__(self, bot: Any, chat_id: str, kv: KVStore, config: Any = settings):
        self.bot = bot
        self.chat_id = str(chat_id)
        self.kv = kv
        self.config = config

    def project_update(self, update: Any) -> Optional[FileRecord]:
        """
        Turn a single update into a FileRecord

        Returns:
            FileRecord, or None when the update carries no document from our chat
        """
        message = getattr(update, "message", None) or getattr(update, "channel_post", None)
        if message is None or getattr(message, "document", None) is None:
            return None
        if str(message.chat.id) != self.chat_id:
            return None

        document = message.document
        sent_at = message.date
        if isinstance(sent_at, (int, float)):
            sent_at = datetime.fromtimestamp(sent_at, tz=timezone.utc)
        elif sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=timezone.utc)

        return FileRecord(
            file_id=document.file_id,
            message_id=str(message.message_id),
            file_name=document.file_name or f"document_{document.file_id[-8:]}",
            file_size=document.file_size or 0,
            upload_time=sent_at,
            chat_id=self.chat_id,
        )

    async def sync_from_telegram(self, exclude_message_ids: Iterable[str] = ()) -> List[FileRecord]:
        """
        Pull recent history and index every document not indexed yet

        Args:
            exclude_message_ids: Messages deleted by this process; never re-indexed

        Returns:
            Records found in the history window (new and already known)
        """
        excluded = {str(message_id) for message_id in exclude_message_ids}

        try:
            updates = await retry_operation(
                lambda: self.bot.get_updates(
                    limit=self.config.sync_history_limit,
                    allowed_updates=["message", "channel_post"],
                    request_timeout=self.config.telegram_request_timeout,
                ),
                "sync files from Telegram",
                max_retries=self.config.telegram_max_retries,
                retry_delay=self.config.telegram_retry_delay,
                backoff_multiplier=self.config.telegram_backoff_multiplier,
            )
        except Exception as e:
            logger.error(f"Failed to sync files from Telegram: {e}")
            return []

        list_key = file_list_key(self.chat_id)
        existing = await self.kv.list_range(list_key)
        known_ids = {entry.get("fileId") for entry in existing if isinstance(entry, dict)}

        synced: List[FileRecord] = []
        added = 0
        for update in updates:
            record = self.project_update(update)
            if record is None or record.message_id in excluded:
                continue

            synced.append(record)
            if record.file_id in known_ids:
                continue

            known_ids.add(record.file_id)
            await self.kv.list_push(list_key, record.to_index())
            # Keep an existing single-record key: it may carry a short link
            if await self.kv.get(file_key(record.file_id)) is None:
                await self.kv.set(file_key(record.file_id), record.to_index(), ttl=self.config.file_record_ttl)
            added += 1

        logger.info(f"Synced {len(synced)} files from Telegram ({added} new)")
        return synced
