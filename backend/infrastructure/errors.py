"""
Error Handling for SealForge
Typed exceptions, retry logic and FastAPI error responses

Features:
- Custom exception classes per failure domain
- Error tracking and aggregation
- Retry decorator for rate-limited external APIs
- Structured JSON error responses for the custodian API
"""

import asyncio
import logging
import traceback
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar
from functools import wraps
from enum import Enum

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger("ErrorHandler")


# ============================================
# ERROR CODES
# ============================================

class ErrorCode(str, Enum):
    # Configuration
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Producer side
    LLM_ERROR = "LLM_ERROR"
    LLM_RATE_LIMITED = "LLM_RATE_LIMITED"
    ENCRYPTION_ERROR = "ENCRYPTION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    LEDGER_ERROR = "LEDGER_ERROR"

    # Consumer side
    MALFORMED_ENVELOPE = "MALFORMED_ENVELOPE"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    EXPIRED_CREDENTIAL = "EXPIRED_CREDENTIAL"
    NOT_ENTITLED = "NOT_ENTITLED"
    QUORUM_NOT_MET = "QUORUM_NOT_MET"

    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================
# CUSTOM EXCEPTIONS
# ============================================

class SealForgeError(Exception):
    """Base exception for SealForge"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Dict = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp.isoformat()
            }
        }


class ConfigurationError(SealForgeError):
    """Missing credentials or deployment info - unrecoverable"""
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR)


class LLMError(SealForgeError):
    """Language-model call failed"""
    status_code = 502

    def __init__(self, message: str, model: str = None, code: ErrorCode = ErrorCode.LLM_ERROR):
        details = {"model": model} if model else {}
        super().__init__(message, code, details)


class LLMRateLimitError(LLMError):
    """Language-model backend throttled the request"""
    status_code = 429

    def __init__(self, message: str, model: str = None):
        super().__init__(message, model, ErrorCode.LLM_RATE_LIMITED)


class EncryptionError(SealForgeError):
    """Envelope could not be built"""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, ErrorCode.ENCRYPTION_ERROR, details)


class StorageError(SealForgeError):
    """Blob store upload/download failed"""
    status_code = 502

    def __init__(self, message: str, http_status: int = None):
        details = {"http_status": http_status} if http_status else {}
        super().__init__(message, ErrorCode.STORAGE_ERROR, details)


class LedgerError(SealForgeError):
    """Ledger RPC or transaction failed"""
    status_code = 502

    def __init__(self, message: str, digest: str = None):
        details = {"digest": digest} if digest else {}
        super().__init__(message, ErrorCode.LEDGER_ERROR, details)


class EnvelopeFormatError(SealForgeError):
    """Envelope bytes could not be parsed"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.MALFORMED_ENVELOPE)


class CredentialError(SealForgeError):
    """Session credential malformed, badly signed or expired"""
    status_code = 403

    def __init__(self, message: str, expired: bool = False):
        super().__init__(
            message,
            ErrorCode.EXPIRED_CREDENTIAL if expired else ErrorCode.INVALID_CREDENTIAL,
        )
        self.expired = expired


class AccessDeniedError(SealForgeError):
    """Admission predicate rejected the requester"""
    status_code = 403

    def __init__(self, message: str = "Access denied by seal_approve"):
        super().__init__(message, ErrorCode.NOT_ENTITLED)


class QuorumError(SealForgeError):
    """Fewer than threshold custodians released a share"""
    status_code = 503

    def __init__(self, threshold: int, received: int, failures: Dict[str, str] = None):
        super().__init__(
            f"Quorum not met: {received}/{threshold} key shares",
            ErrorCode.QUORUM_NOT_MET,
            {"threshold": threshold, "received": received, "failures": failures or {}},
        )


# ============================================
# ERROR TRACKING
# ============================================

class ErrorTracker:
    """Tracks and aggregates errors for monitoring"""

    def __init__(self, max_errors: int = 1000):
        self.errors: list = []
        self.max_errors = max_errors
        self.error_counts: Dict[str, int] = {}

    def track(self, error: Exception, request_path: str = None):
        error_type = type(error).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        error_info = {
            "type": error_type,
            "message": str(error),
            "path": request_path,
            "timestamp": datetime.now().isoformat(),
            "traceback": traceback.format_exc() if not isinstance(error, SealForgeError) else None
        }

        if isinstance(error, SealForgeError):
            error_info["code"] = error.code.value
            error_info["details"] = error.details

        self.errors.append(error_info)

        if len(self.errors) > self.max_errors:
            self.errors = self.errors[-self.max_errors:]

        if not isinstance(error, SealForgeError) or error.status_code >= 500:
            logger.error(f"Error tracked: {error_type} - {str(error)[:200]}")

    def get_stats(self) -> Dict:
        return {
            "total_errors": len(self.errors),
            "error_counts": self.error_counts,
            "recent_errors": self.errors[-10:],
            "timestamp": datetime.now().isoformat()
        }

    def clear(self):
        self.errors.clear()
        self.error_counts.clear()


error_tracker = ErrorTracker()


# ============================================
# RETRY LOGIC
# ============================================

T = TypeVar('T')


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for automatic retry with backoff.
    Only exceptions in `exceptions` are retried; anything else propagates at once.

    Usage:
        @retry(max_attempts=3, delay=12.0, backoff=1.0, exceptions=(LLMRateLimitError,))
        async def call_model():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:
                        logger.warning(f"Retry {attempt + 1}/{max_attempts - 1} for {func.__name__} after {current_delay}s: {e}")
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff
                    else:
                        logger.error(f"All retries failed for {func.__name__}: {e}")

            raise last_exception

        return wrapper
    return decorator


# ============================================
# FASTAPI EXCEPTION HANDLERS
# ============================================

async def sealforge_exception_handler(request: Request, exc: SealForgeError) -> JSONResponse:
    error_tracker.track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_tracker.track(exc, str(request.url.path))

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INVALID_CREDENTIAL.value if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR.value,
                "message": exc.detail,
                "timestamp": datetime.now().isoformat()
            }
        }
    )


def register_exception_handlers(app):
    """Register exception handlers with a FastAPI app"""
    app.add_exception_handler(SealForgeError, sealforge_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    logger.info("Exception handlers registered")


def error_from_payload(payload: Dict[str, Any]) -> SealForgeError:
    """Rebuild a typed error from a custodian's JSON error body"""
    error = (payload or {}).get("error") or {}
    message = error.get("message") or "Custodian rejected the request"
    try:
        code = ErrorCode(error.get("code"))
    except ValueError:
        code = ErrorCode.INTERNAL_ERROR

    if code == ErrorCode.NOT_ENTITLED:
        return AccessDeniedError(message)
    if code in (ErrorCode.INVALID_CREDENTIAL, ErrorCode.EXPIRED_CREDENTIAL):
        return CredentialError(message, expired=code == ErrorCode.EXPIRED_CREDENTIAL)
    if code == ErrorCode.MALFORMED_ENVELOPE:
        return EnvelopeFormatError(message)
    return SealForgeError(message, code, error.get("details"))
