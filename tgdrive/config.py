"""Configuration management using pydantic-settings"""

import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, model_validator, field_validator
from typing import List, Optional


class ProbeEndpoint(BaseModel):
    """Reference endpoint used by the network quality monitor"""

    url: str
    timeout: float = 5.0


DEFAULT_PROBE_ENDPOINTS = [
    ProbeEndpoint(url="https://www.google.com/favicon.ico", timeout=3.0),
    ProbeEndpoint(url="https://api.telegram.org", timeout=5.0),
    ProbeEndpoint(url="http://localhost:8916/api/health", timeout=2.0),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Telegram (blob store) Configuration
    telegram_bot_token: Optional[str] = Field(default=None, description="Bot token used to talk to the Bot API")
    telegram_chat_id: Optional[str] = Field(default=None, description="Chat or channel that holds the stored documents")
    telegram_request_timeout: int = Field(default=60, description="Timeout for a single Bot API request (seconds)")
    telegram_max_retries: int = Field(default=5, description="Attempts per Bot API operation")
    telegram_retry_delay: float = Field(default=3.0, description="Initial delay between attempts (seconds)")
    telegram_backoff_multiplier: float = Field(default=1.5, description="Backoff multiplier between attempts")
    sync_history_limit: int = Field(default=100, description="Number of recent updates scanned during a sync")

    # Redis (KV index) Configuration
    redis_url: Optional[str] = Field(default=None, description="Redis URL; in-memory index is used when unset")
    redis_token: Optional[str] = Field(default=None, description="Redis password / access token")
    file_record_ttl: int = Field(default=86400 * 30, description="TTL for single file record keys (seconds)")
    deleted_message_cache_size: int = Field(default=10000, description="Deleted message ids remembered to keep them out of the index")

    # Short Link Configuration
    short_link_default_ttl: int = Field(default=3600, description="Default short link lifetime (seconds)")
    short_link_bytes: int = Field(default=4, description="Random bytes per short id (hex encoded)")
    public_base_url: str = Field(default="http://localhost:3000", description="Base URL used to build short links")

    # Delete Queue Configuration
    delete_queue_max_retries: int = Field(default=3, description="Attempts before a delete task is dropped")
    delete_queue_retry_delay: float = Field(default=5.0, description="Delay between delete attempts (seconds)")
    delete_queue_storage_key: str = Field(default="tg-delete-queue", description="Client storage key for the queue")
    delete_timeout: float = Field(default=30.0, description="Timeout for a single delete attempt (seconds)")

    # Network Monitor Configuration
    network_check_interval: int = Field(default=30, description="Seconds between connection quality checks")
    network_probe_endpoints: List[ProbeEndpoint] = Field(default_factory=lambda: list(DEFAULT_PROBE_ENDPOINTS))
    network_fair_latency_ms: float = Field(default=5000, description="Mean latency above which quality is fair")
    network_good_latency_ms: float = Field(default=2000, description="Mean latency above which quality is good")
    network_max_reconnect_attempts: int = 5
    network_reconnect_delay: float = 1.0
    network_max_reconnect_delay: float = 30.0

    # Client Storage Configuration
    database_url: str = "sqlite:///./data/client.db"

    # Server Configuration
    port: int = 8916
    host: str = "0.0.0.0"

    # Application Configuration
    environment: str = Field(default="production", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="error", description="Log level: debug, info, warning, error (default: error for production)")

    @model_validator(mode="before")
    @classmethod
    def map_node_env(cls, data: dict) -> dict:
        """Map NODE_ENV to ENVIRONMENT if ENVIRONMENT is not set"""
        if isinstance(data, dict):
            if "ENVIRONMENT" not in data and "environment" not in data:
                node_env = data.get("NODE_ENV") or os.getenv("NODE_ENV")
                if node_env:
                    data["ENVIRONMENT"] = node_env
        return data

    @field_validator("telegram_chat_id", mode="before")
    @classmethod
    def validate_chat_id(cls, v):
        """Chat ids may arrive as ints (e.g. -100123...); keep them as strings"""
        if v == "" or v is None:
            return None
        return str(v).strip()

    @field_validator("redis_url", "redis_token", "telegram_bot_token", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        """Convert empty strings to None so unset credentials look unset"""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def set_environment_defaults(self) -> "Settings":
        """Set environment-specific defaults for log level"""
        if self.environment == "production" and not os.getenv("LOG_LEVEL"):
            # Default to error in production if not explicitly set
            self.log_level = "error"
        if self.network_good_latency_ms > self.network_fair_latency_ms:
            raise ValueError(
                "network_good_latency_ms must not exceed network_fair_latency_ms"
            )
        return self

    @property
    def kv_backend(self) -> str:
        """Name of the KV index backend selected by the current credentials"""
        return "redis" if self.redis_url else "memory"


# Global settings instance
settings = Settings()
