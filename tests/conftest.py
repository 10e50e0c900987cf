"""Pytest configuration and shared fixtures"""

import os
from typing import Generator

import pytest

from tgdrive.config import Settings
from tgdrive.services.kv_store import InMemoryKVStore
from tgdrive.services.short_link_service import ShortLinkService
from tgdrive.services.telegram_storage_service import TelegramStorageService

from tests.fakes import BOT_TOKEN, CHAT_ID, FakeBot, FakeClock


@pytest.fixture(autouse=True)
def reset_env_vars() -> Generator[None, None, None]:
    """Reset environment variables before each test"""
    # Store original env vars
    original_env = os.environ.copy()

    # Clear storage-related env vars
    storage_vars = [
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
        "REDIS_URL",
        "REDIS_TOKEN",
        "ENVIRONMENT",
        "NODE_ENV",
        "LOG_LEVEL",
        "DELETE_QUEUE_MAX_RETRIES",
        "NETWORK_CHECK_INTERVAL",
    ]

    for var in storage_vars:
        os.environ.pop(var, None)

    yield

    # Restore original env vars
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        telegram_bot_token=BOT_TOKEN,
        telegram_chat_id=CHAT_ID,
        telegram_retry_delay=0,
        telegram_max_retries=3,
        delete_queue_retry_delay=0,
        delete_queue_max_retries=3,
        delete_timeout=1.0,
        network_reconnect_delay=0.01,
        network_max_reconnect_delay=0.05,
        database_url="sqlite:///:memory:",
        public_base_url="https://files.example.com",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()


@pytest.fixture
def kv(clock) -> InMemoryKVStore:
    return InMemoryKVStore(clock=clock.time)


@pytest.fixture
def storage(fake_bot, kv, test_settings) -> TelegramStorageService:
    return TelegramStorageService(fake_bot, kv, config=test_settings)


@pytest.fixture
def short_links(storage, kv, test_settings, clock) -> ShortLinkService:
    return ShortLinkService(storage, kv, config=test_settings, clock=clock.now)
