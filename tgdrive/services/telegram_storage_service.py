"""Telegram Storage Service - files stored as document messages in one chat"""

import asyncio
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Set

import aiohttp
from aiogram import Bot
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.types import BufferedInputFile
from pydantic import ValidationError

from tgdrive.config import settings
from tgdrive.exceptions import (
    ConfigError,
    DeleteFailedError,
    DownloadFailedError,
    ErrorType,
    KVStoreError,
    NotFoundError,
    UploadFailedError,
    classify_transport_error,
)
from tgdrive.models.file_record import FileRecord, utc_now
from tgdrive.services.kv_store import (
    LEGACY_SHORT_LINK_PATTERN,
    KVStore,
    file_key,
    file_list_key,
)
from tgdrive.services.sync_service import SyncService
from tgdrive.utils.logger import get_logger
from tgdrive.utils.mime_types import get_file_category
from tgdrive.utils.retry import retry_operation

logger = get_logger(__name__)


# Failures worth running network diagnostics for
NETWORK_ERROR_TYPES = {
    ErrorType.NETWORK_TIMEOUT,
    ErrorType.SERVICE_UNAVAILABLE,
    ErrorType.NETWORK_ERROR,
    ErrorType.CONNECTION_RESET,
    ErrorType.API_CONNECTION_ERROR,
}

DELETE_ERROR_MESSAGES = {
    ErrorType.NETWORK_TIMEOUT: "Network timed out while deleting {name} after several retries. Check the connection and try again later.",
    ErrorType.SERVICE_UNAVAILABLE: "Cannot reach the Telegram servers, the service may be temporarily unavailable. Try again later.",
    ErrorType.NETWORK_ERROR: "Network failure, the server address could not be resolved. Check network and DNS settings.",
    ErrorType.CONNECTION_RESET: "The connection was reset, the network may be unstable. Try again later.",
    ErrorType.API_CONNECTION_ERROR: "Telegram API connection failed. Check the connection or try again later.",
    ErrorType.PERMISSION_DENIED: "The bot is not allowed to delete {name}: {error}. Check its admin rights and TELEGRAM_CHAT_ID.",
}


def create_bot(config: Any = settings) -> Bot:
    """
    Build the aiogram Bot used as the blob store client

    Raises:
        ConfigError: If the bot token is not configured
    """
    if not config.telegram_bot_token:
        raise ConfigError("Missing environment variable TELEGRAM_BOT_TOKEN")
    session = AiohttpSession(timeout=config.telegram_request_timeout)
    return Bot(token=config.telegram_bot_token, session=session)


class TelegramStorageService:
    """
    Blob store adapter: every file is a document message in a fixed chat.

    File metadata is mirrored into the KV index under two keys, the
    per-chat list (files:{chatId}) and a single-record key (file:{fileId})
    used as the fast lookup path.
    """

    def __init__(
        self,
        bot: Any,
        kv: KVStore,
        chat_id: Optional[str] = None,
        config: Any = settings,
        sync: Optional[SyncService] = None,
    ):
        chat_id = chat_id or config.telegram_chat_id
        if not chat_id:
            raise ConfigError("Missing environment variable TELEGRAM_CHAT_ID")

        self.bot = bot
        self.kv = kv
        self.chat_id = str(chat_id)
        self.config = config
        self.sync = sync or SyncService(bot, self.chat_id, kv, config)
        # Messages deleted through this process; never served or re-indexed again.
        # Oldest ids are evicted past deleted_message_cache_size.
        self._deleted_message_ids: "OrderedDict[str, None]" = OrderedDict()

    def _remember_deleted(self, message_id: str) -> None:
        self._deleted_message_ids[message_id] = None
        self._deleted_message_ids.move_to_end(message_id)
        while len(self._deleted_message_ids) > self.config.deleted_message_cache_size:
            self._deleted_message_ids.popitem(last=False)

    async def _retry(self, operation, operation_name: str):
        return await retry_operation(
            operation,
            operation_name,
            max_retries=self.config.telegram_max_retries,
            retry_delay=self.config.telegram_retry_delay,
            backoff_multiplier=self.config.telegram_backoff_multiplier,
        )

    async def close(self):
        """Close the Bot API session"""
        session = getattr(self.bot, "session", None)
        if session is not None:
            await session.close()

    async def upload_file(self, data: bytes, file_name: str) -> Dict[str, str]:
        """
        Send a file to the storage chat and index it

        Args:
            data: File content
            file_name: Original file name

        Returns:
            Dict with fileId and messageId

        Raises:
            UploadFailedError: If Telegram rejects or never acknowledges the upload
        """
        logger.info(f"Uploading {file_name} ({len(data)} bytes) to Telegram")

        try:
            message = await self._retry(
                lambda: self.bot.send_document(
                    chat_id=self.chat_id,
                    document=BufferedInputFile(data, filename=file_name),
                    request_timeout=self.config.telegram_request_timeout,
                ),
                f"upload {file_name}",
            )
        except Exception as e:
            logger.error(f"Failed to upload {file_name} to Telegram: {e}")
            raise UploadFailedError(
                f"Upload failed: {e}", classify_transport_error(e), original=e
            ) from e

        document = getattr(message, "document", None)
        if document is None or not document.file_id:
            raise UploadFailedError(f"Upload failed: Telegram returned no document for {file_name}")

        record = FileRecord(
            file_id=document.file_id,
            message_id=str(message.message_id),
            file_name=file_name,
            file_size=document.file_size or len(data),
            upload_time=utc_now(),
            chat_id=self.chat_id,
        )

        try:
            await self.kv.list_push(file_list_key(self.chat_id), record.to_index())
            await self.kv.set(file_key(record.file_id), record.to_index(), ttl=self.config.file_record_ttl)
        except KVStoreError as e:
            # The document is stored; a forced sync will index it
            logger.error(f"Uploaded {file_name} but failed to index it: {e}")

        logger.info(f"✅ File uploaded: {file_name} (fileId: {record.file_id})")
        return {"fileId": record.file_id, "messageId": record.message_id}

    async def download_file(self, file_id: str) -> str:
        """
        Resolve a short-lived download URL for a file

        The URL embeds the bot token and expires on Telegram's side, so it
        is never cached here.

        Raises:
            NotFoundError: If Telegram does not know the file
            DownloadFailedError: On transport failures
        """
        try:
            file = await self._retry(
                lambda: self.bot.get_file(file_id, request_timeout=self.config.telegram_request_timeout),
                f"resolve file {file_id}",
            )
        except Exception as e:
            raise self._download_error(file_id, e) from e

        return self.bot.session.api.file_url(self.bot.token, file.file_path)

    async def download_bytes(self, file_id: str) -> bytes:
        """Fetch the full content of a file"""
        try:
            buffer = await self._retry(
                lambda: self.bot.download(file_id, timeout=self.config.telegram_request_timeout),
                f"download file {file_id}",
            )
        except Exception as e:
            raise self._download_error(file_id, e) from e

        return buffer.read()

    def _download_error(self, file_id: str, error: Exception) -> Exception:
        error_type = classify_transport_error(error)
        logger.error(f"Failed to download {file_id} from Telegram: {error}")
        if error_type == ErrorType.FILE_NOT_FOUND:
            return NotFoundError(f"File not found: {file_id}", original=error)
        return DownloadFailedError(f"Download failed: {error}", error_type, original=error)

    async def get_file_info(self, file_id: str) -> FileRecord:
        """
        Get a file record, falling back to the file list on a cache miss

        Raises:
            NotFoundError: If the file is not indexed even after listing
        """
        key = file_key(file_id)
        data = await self.kv.get(key)
        if data:
            try:
                record = FileRecord.from_index(data)
                if record.message_id not in self._deleted_message_ids:
                    return record
            except ValidationError as e:
                logger.warning(f"Dropping invalid file record {key}: {e}")
                await self.kv.delete(key)

        files = await self.list_files()
        record = next((f for f in files if f.file_id == file_id), None)
        if record is None:
            raise NotFoundError(f"File info not found: {file_id}")

        await self.kv.set(key, record.to_index(), ttl=self.config.file_record_ttl)
        return record

    async def save_file_info(self, record: FileRecord) -> None:
        """Replace the single-record key of a file"""
        await self.kv.set(file_key(record.file_id), record.to_index(), ttl=self.config.file_record_ttl)

    async def list_files(self, force_refresh: bool = False) -> List[FileRecord]:
        """
        List indexed files, newest first

        The index is rebuilt from Telegram only when it is empty or when
        force_refresh is set; history scans are costly and bounded.
        """
        key = file_list_key(self.chat_id)
        entries = await self.kv.list_range(key)

        if force_refresh or not entries:
            if not entries:
                logger.info("File index is empty, syncing from Telegram...")
            await self.sync.sync_from_telegram(exclude_message_ids=self._deleted_message_ids)
            entries = await self.kv.list_range(key)

        files: List[FileRecord] = []
        seen: Set[str] = set()
        for entry in entries:
            try:
                record = FileRecord.from_index(entry)
            except ValidationError as e:
                logger.warning(f"Skipping invalid file list entry: {e}")
                continue
            if record.file_id in seen or record.message_id in self._deleted_message_ids:
                continue
            seen.add(record.file_id)
            files.append(record)

        files.sort(key=lambda f: f.upload_time, reverse=True)
        return files

    async def delete_file(self, message_id: str) -> bool:
        """
        Delete a file's message, then drop it from the index

        Index cleanup is best effort: once the message is gone the delete
        has succeeded, and a stale index entry is only logged.

        Raises:
            NotFoundError: If the message does not exist (or was already deleted)
            DeleteFailedError: On transport failures, with a stable error_type
        """
        message_id = str(message_id)
        if message_id in self._deleted_message_ids or not message_id.lstrip("-").isdigit():
            raise NotFoundError(f"File not found or already deleted (message {message_id})")

        list_key = file_list_key(self.chat_id)
        try:
            entries = await self.kv.list_range(list_key)
        except KVStoreError as e:
            logger.warning(f"Could not read file index before delete: {e}")
            entries = []
        matches = [e for e in entries if isinstance(e, dict) and str(e.get("messageId")) == message_id]
        file_name = matches[0].get("fileName", "file") if matches else "file"

        try:
            await self._retry(
                lambda: self.bot.delete_message(
                    chat_id=self.chat_id,
                    message_id=int(message_id),
                    request_timeout=self.config.telegram_request_timeout,
                ),
                f"delete Telegram message {message_id} ({file_name})",
            )
        except Exception as e:
            logger.error(f"Failed to delete message {message_id} from Telegram: {e}")
            error_type = classify_transport_error(e)

            if error_type == ErrorType.FILE_NOT_FOUND:
                raise NotFoundError(
                    f"File not found or already deleted (message {message_id})", original=e
                ) from e

            diagnostics = None
            if error_type in NETWORK_ERROR_TYPES:
                logger.info("Network error detected, running diagnostics...")
                try:
                    diagnostics = await self.diagnose_network_connection()
                except Exception as diag_error:
                    logger.error(f"Network diagnostics failed: {diag_error}")

            template = DELETE_ERROR_MESSAGES.get(error_type, "Failed to delete {name}: {error}")
            raise DeleteFailedError(
                template.format(name=file_name, error=e),
                error_type,
                original=e,
                diagnostics=diagnostics,
            ) from e

        self._remember_deleted(message_id)

        try:
            for entry in matches:
                await self.kv.list_remove(list_key, entry)
                if entry.get("fileId"):
                    await self.kv.delete(file_key(entry["fileId"]))
            if matches:
                logger.info(f"Removed {file_name} from file index")
        except KVStoreError as e:
            logger.error(
                f"Message {message_id} deleted but index cleanup failed, "
                f"a forced sync will reconcile it: {e}"
            )

        return True

    async def diagnose_network_connection(self) -> Dict[str, Any]:
        """
        Check DNS, general internet access and Bot API reachability

        Returns:
            Dict with per-check booleans and human readable details
        """
        diagnostics: Dict[str, Any] = {
            "timestamp": utc_now().isoformat(),
            "telegramApiReachable": False,
            "dnsResolution": False,
            "internetConnection": False,
            "details": [],
        }
        details = diagnostics["details"]

        try:
            await asyncio.get_running_loop().getaddrinfo("api.telegram.org", 443)
            diagnostics["dnsResolution"] = True
            details.append({"status": "success", "message": "DNS resolution OK"})
        except OSError as e:
            details.append({"status": "error", "message": f"DNS resolution failed: {e}"})

        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.head("https://www.google.com/"):
                    diagnostics["internetConnection"] = True
            details.append({"status": "success", "message": "Internet connection OK"})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            details.append({"status": "error", "message": f"Internet connection failed: {e or 'timeout'}"})

        try:
            await self.bot.get_me(request_timeout=10)
            diagnostics["telegramApiReachable"] = True
            details.append({"status": "success", "message": "Telegram API reachable"})
        except Exception as e:
            details.append({"status": "error", "message": f"Telegram API unreachable: {e}"})
            error_type = classify_transport_error(e)
            if error_type == ErrorType.NETWORK_TIMEOUT:
                details.append({"status": "warning", "message": "Possible cause: timeout, check firewall or proxy settings"})
            elif error_type == ErrorType.SERVICE_UNAVAILABLE:
                details.append({"status": "warning", "message": "Possible cause: connection refused, the network may be restricted"})
            elif error_type == ErrorType.NETWORK_ERROR:
                details.append({"status": "warning", "message": "Possible cause: DNS failure or unreachable network"})

        logger.info("network_diagnostics", **{k: v for k, v in diagnostics.items() if k != "details"})
        return diagnostics

    async def health_check(self) -> bool:
        """True if the Bot API answers getMe"""
        try:
            await self.bot.get_me(request_timeout=10)
            return True
        except Exception as e:
            logger.warning(f"Telegram health check failed: {e}")
            return False

    async def get_storage_stats(self, files: Optional[List[FileRecord]] = None) -> Dict[str, Any]:
        """
        Get storage statistics

        Args:
            files: Already listed files (listed from the index when omitted)

        Returns:
            Dict with totals, per-category counts and short link counts
        """
        if files is None:
            files = await self.list_files()

        file_types: Dict[str, int] = {}
        short_links = 0
        now = utc_now()
        for record in files:
            category = get_file_category(record.file_name)
            file_types[category] = file_types.get(category, 0) + 1

            data = await self.kv.get(file_key(record.file_id))
            if data and data.get("shortLink"):
                stored = FileRecord.from_index(data)
                if stored.short_link and stored.short_link.is_active(now):
                    short_links += 1

        legacy_links = len(await self.kv.scan_keys(LEGACY_SHORT_LINK_PATTERN))

        return {
            "totalFiles": len(files),
            "totalSize": sum(f.file_size for f in files),
            "fileTypes": file_types,
            "shortLinks": short_links + legacy_links,
            "legacyShortLinks": legacy_links,
            "kvBackend": self.kv.backend,
            "lastUpdated": now.isoformat(),
        }
