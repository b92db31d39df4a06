"""Error taxonomy for the crawl pipeline."""
from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Classification of a failed page fetch."""

    TIMEOUT = "timeout"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate-limited"
    OTHER = "other"


class NetworkFailure(Exception):
    """A page could not be fetched."""

    def __init__(
        self,
        kind: FailureKind,
        url: str,
        status_code: Optional[int] = None,
        message: str = "",
    ):
        self.kind = kind
        self.url = url
        self.status_code = status_code
        self.message = message or kind.value
        super().__init__(f"{self.message} ({url})")


class ParseFailure(Exception):
    """A structured-data block could not be decoded."""


class ConfigError(ValueError):
    """Invalid extraction configuration, target URL or page range."""


class CrawlFailed(Exception):
    """A crawl invocation failed as a whole."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        status_code: Optional[int] = None,
        job_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ):
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.job_id = job_id
        self.duration_seconds = duration_seconds
        super().__init__(message)

    def to_dict(self) -> dict:
        """Serializable error body."""
        return {
            "error": self.message,
            "kind": self.kind,
            "status_code": self.status_code,
            "job_id": self.job_id,
            "duration": self.duration_seconds,
        }
