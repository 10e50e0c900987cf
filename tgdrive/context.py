"""Application context - service handles built once at startup"""

from dataclasses import dataclass
from typing import Any, Optional

from tgdrive.config import settings as default_settings
from tgdrive.database import DatabaseService
from tgdrive.models.delete_task import DeleteTask
from tgdrive.services.client_storage_service import ClientStorage
from tgdrive.services.delete_queue_service import DeleteQueueService
from tgdrive.services.kv_store import KVStore, create_kv_store
from tgdrive.services.network_monitor_service import NetworkMonitorService
from tgdrive.services.short_link_service import ShortLinkService
from tgdrive.services.telegram_storage_service import TelegramStorageService, create_bot
from tgdrive.utils.logger import get_logger, log_storage_config

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Every long-lived service, passed explicitly to whoever needs it"""

    settings: Any
    kv: KVStore
    storage: TelegramStorageService
    short_links: ShortLinkService
    monitor: NetworkMonitorService
    delete_queue: DeleteQueueService
    database: DatabaseService
    client_storage: ClientStorage

    async def start(self):
        """Start background services"""
        try:
            await self.monitor.start()
        except Exception as e:
            logger.error(f"Failed to start network monitor: {e}")
        await self.delete_queue.start()
        logger.info("✅ Storage services started")

    async def stop(self):
        """Stop background services and release connections"""
        await self.delete_queue.stop()
        await self.monitor.stop()
        await self.storage.close()
        await self.kv.close()
        self.database.close()
        logger.info("✅ Storage services stopped")


def create_context(
    settings: Any = default_settings,
    bot: Any = None,
    kv: Optional[KVStore] = None,
    monitor: Optional[NetworkMonitorService] = None,
) -> AppContext:
    """
    Wire every service from settings

    Args:
        settings: Settings instance
        bot: Bot API client (built from the token when omitted)
        kv: KV index (chosen from the Redis credentials when omitted)
        monitor: Network monitor (default probes when omitted)

    Raises:
        ConfigError: If Telegram credentials are missing
    """
    log_storage_config(logger, settings)

    if bot is None:
        bot = create_bot(settings)
    if kv is None:
        kv = create_kv_store(settings)

    storage = TelegramStorageService(bot, kv, config=settings)
    short_links = ShortLinkService(storage, kv, config=settings)

    database = DatabaseService(settings.database_url)
    database.initialize()
    client_storage = ClientStorage(database)

    if monitor is None:
        monitor = NetworkMonitorService(settings)

    async def delete_operation(task: DeleteTask):
        return await storage.delete_file(task.file_info.message_id)

    delete_queue = DeleteQueueService(
        delete_operation,
        monitor=monitor,
        client_storage=client_storage,
        config=settings,
    )

    return AppContext(
        settings=settings,
        kv=kv,
        storage=storage,
        short_links=short_links,
        monitor=monitor,
        delete_queue=delete_queue,
        database=database,
        client_storage=client_storage,
    )
