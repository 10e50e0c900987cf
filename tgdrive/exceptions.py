"""Storage error taxonomy and transport error classification"""

import asyncio
import socket
from enum import Enum
from typing import Optional, NamedTuple

import aiohttp
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramNotFound,
    TelegramRetryAfter,
    TelegramServerError,
)


class ErrorType(str, Enum):
    """Stable kinds attached to transport failures"""

    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_RESET = "CONNECTION_RESET"
    API_CONNECTION_ERROR = "API_CONNECTION_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorHint(NamedTuple):
    """How a failure kind is surfaced to users"""

    status_code: int
    retryable: bool
    retry_delay_ms: Optional[int]
    suggestion: str


ERROR_HINTS = {
    ErrorType.NETWORK_TIMEOUT: ErrorHint(
        408, True, 5000, "Network connection is unstable, retry later or check the connection"
    ),
    ErrorType.SERVICE_UNAVAILABLE: ErrorHint(
        503, True, 10000, "Telegram is temporarily unavailable, retry later"
    ),
    ErrorType.NETWORK_ERROR: ErrorHint(
        502, True, 3000, "Network problem, check network/DNS settings or retry later"
    ),
    ErrorType.CONNECTION_RESET: ErrorHint(
        502, True, 3000, "Connection was reset, retry later"
    ),
    ErrorType.API_CONNECTION_ERROR: ErrorHint(
        502, True, 5000, "Could not reach the Telegram API, retry later"
    ),
    ErrorType.FILE_NOT_FOUND: ErrorHint(
        404, False, None, "The file may have already been deleted"
    ),
    ErrorType.PERMISSION_DENIED: ErrorHint(
        403, False, None, "The bot cannot delete this message, check its admin rights and the chat id"
    ),
    ErrorType.UNKNOWN_ERROR: ErrorHint(
        500, False, None, "Unexpected error, contact the administrator"
    ),
}


class StorageError(Exception):
    """Base class for storage failures"""

    error_type: ErrorType = ErrorType.UNKNOWN_ERROR

    def __init__(self, message: str, error_type: Optional[ErrorType] = None, original: Optional[BaseException] = None):
        super().__init__(message)
        if error_type is not None:
            self.error_type = error_type
        self.original = original

    @property
    def hint(self) -> ErrorHint:
        return ERROR_HINTS[self.error_type]

    @property
    def retryable(self) -> bool:
        return self.hint.retryable

    def to_dict(self) -> dict:
        """Error payload used by the HTTP layer"""
        hint = self.hint
        payload = {
            "success": False,
            "error": str(self),
            "errorType": self.error_type.value,
            "retryable": hint.retryable,
            "suggestion": hint.suggestion,
        }
        if hint.retry_delay_ms is not None:
            payload["retryDelay"] = hint.retry_delay_ms
        return payload


class NotFoundError(StorageError):
    """Raised when a file record, message or short link does not exist"""

    error_type = ErrorType.FILE_NOT_FOUND


class ExpiredError(StorageError):
    """Raised when a short link existed but is past its expiry"""


class UploadFailedError(StorageError):
    """Raised when sending a document to Telegram fails"""


class DownloadFailedError(StorageError):
    """Raised when resolving or fetching a document fails"""


class DeleteFailedError(StorageError):
    """Raised when deleting a message fails"""

    def __init__(self, message: str, error_type: Optional[ErrorType] = None, original: Optional[BaseException] = None, diagnostics: Optional[dict] = None):
        super().__init__(message, error_type, original)
        self.diagnostics = diagnostics


class StorageTimeoutError(StorageError):
    """Raised when an operation exceeds its timeout"""

    error_type = ErrorType.NETWORK_TIMEOUT


class ConfigError(Exception):
    """Raised when required credentials are missing"""


class KVStoreError(Exception):
    """Raised when the KV index backend fails"""


NOT_FOUND_MARKERS = (
    "message to delete not found",
    "message_id_invalid",
    "file not found",
)

# The message may still exist but the bot cannot touch it
PERMISSION_MARKERS = (
    "chat not found",
    "message can't be deleted",
    "not enough rights",
    "need administrator rights",
)


def classify_transport_error(error: BaseException) -> ErrorType:
    """
    Map a raw transport exception to a stable error kind.

    Args:
        error: Exception raised by aiogram/aiohttp or a timeout

    Returns:
        ErrorType describing the failure
    """
    if isinstance(error, StorageError):
        return error.error_type

    message = str(error).lower()

    if isinstance(error, TelegramNotFound):
        return ErrorType.FILE_NOT_FOUND
    if isinstance(error, TelegramForbiddenError):
        return ErrorType.PERMISSION_DENIED
    if isinstance(error, TelegramBadRequest):
        if any(marker in message for marker in NOT_FOUND_MARKERS):
            return ErrorType.FILE_NOT_FOUND
        if any(marker in message for marker in PERMISSION_MARKERS):
            return ErrorType.PERMISSION_DENIED
        return ErrorType.UNKNOWN_ERROR
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or "timeout" in message or "etimedout" in message:
        return ErrorType.NETWORK_TIMEOUT
    if isinstance(error, (TelegramServerError, TelegramRetryAfter)) or "econnrefused" in message:
        return ErrorType.SERVICE_UNAVAILABLE
    if isinstance(error, socket.gaierror) or "enotfound" in message or "name or service not known" in message:
        return ErrorType.NETWORK_ERROR
    if isinstance(error, (ConnectionResetError, aiohttp.ServerDisconnectedError)) or "econnreset" in message:
        return ErrorType.CONNECTION_RESET
    if isinstance(error, (TelegramNetworkError, aiohttp.ClientConnectionError, ConnectionRefusedError)):
        return ErrorType.API_CONNECTION_ERROR

    return ErrorType.UNKNOWN_ERROR


def is_retryable(error: BaseException) -> bool:
    """True if the failure is transient and worth retrying"""
    return ERROR_HINTS[classify_transport_error(error)].retryable
