"""
Exception Hierarchy
All errors raised by SpreadWatch derive from SpreadWatchError.

Taxonomy:
    InsufficientDataError → too few aligned points, bad price domain
    PriceFeedError        → upstream fetch failed after retries
    StorageError          → a single persistence write/read failed
    ConfigurationError    → invalid settings or sector map

Numerical degeneracy (zero variance, no reversion) is NOT an error:
analytics return explicit sentinels instead.
"""

from typing import Any, Dict, Optional

from .clock import utcnow


class SpreadWatchError(Exception):
    """Base error with structured context for logging."""
    error_code: str = "SPREADWATCH_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = utcnow()
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


class InsufficientDataError(SpreadWatchError):
    error_code = "INSUFFICIENT_DATA"


class PriceFeedError(SpreadWatchError):
    error_code = "PRICE_FEED_ERROR"


class StorageError(SpreadWatchError):
    error_code = "STORAGE_ERROR"


class ConfigurationError(SpreadWatchError):
    error_code = "CONFIGURATION_ERROR"
