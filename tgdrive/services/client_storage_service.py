"""Durable client-side key/value storage (localStorage semantics)"""

import json
from typing import Any, Optional
from sqlmodel import select

from tgdrive.database import DatabaseService
from tgdrive.models.client_storage import StoredItem
from tgdrive.models.file_record import utc_now
from tgdrive.utils.logger import get_logger

logger = get_logger(__name__)


class ClientStorage:
    """Small persistent key/value store used by the delete queue"""

    def __init__(self, database: DatabaseService):
        self.database = database

    def get_item(self, key: str) -> Optional[Any]:
        """
        Read and decode a stored value

        Args:
            key: Storage key

        Returns:
            Decoded JSON value, or None if the key is missing or unreadable
        """
        with self.database.get_session() as session:
            item = session.exec(select(StoredItem).where(StoredItem.key == key)).first()
            if not item:
                return None
            try:
                return json.loads(item.value)
            except ValueError as e:
                logger.warning(f"Discarding unreadable client storage entry {key}: {e}")
                return None

    def set_item(self, key: str, value: Any) -> None:
        """Encode and store a value, replacing any previous one"""
        payload = json.dumps(value, ensure_ascii=False)
        with self.database.get_session() as session:
            item = session.get(StoredItem, key)
            if item:
                item.value = payload
                item.updated_at = utc_now()
            else:
                item = StoredItem(key=key, value=payload)
            session.add(item)
            session.commit()

    def remove_item(self, key: str) -> None:
        with self.database.get_session() as session:
            item = session.get(StoredItem, key)
            if item:
                session.delete(item)
                session.commit()
