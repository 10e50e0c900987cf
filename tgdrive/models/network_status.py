"""Network status model"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from tgdrive.models.file_record import utc_now


class NetworkQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    OFFLINE = "offline"
    UNKNOWN = "unknown"  # before the first probe completes


# Higher is better; used to compare tiers. Unknown ranks as fair until probed.
QUALITY_RANK = {
    NetworkQuality.OFFLINE: 0,
    NetworkQuality.POOR: 1,
    NetworkQuality.FAIR: 2,
    NetworkQuality.UNKNOWN: 2,
    NetworkQuality.GOOD: 3,
    NetworkQuality.EXCELLENT: 4,
}


class NetworkStatus(BaseModel):
    """Snapshot delivered to network monitor listeners"""

    model_config = ConfigDict(populate_by_name=True)

    is_online: bool = Field(alias="isOnline")
    quality: NetworkQuality
    timestamp: datetime = Field(default_factory=utc_now)
    response_time: Optional[float] = Field(default=None, alias="responseTime")  # ms
    success_rate: Optional[float] = Field(default=None, alias="successRate")
    reconnect_attempts: int = Field(default=0, alias="reconnectAttempts")
    error: Optional[str] = None
