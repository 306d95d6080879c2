"""
Exception hierarchy for the ingestion engine.

Configuration errors are fatal and raised before any network I/O. Upstream
errors carry the HTTP status so the retry wrapper and multi-call connectors
can tell transient failures from authoritative rejections.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ConnectorConfigError(IngestError, ValueError):
    """Source config is invalid, or no connector exists for a source type."""


class MissingCredentialsError(IngestError):
    """A provider credential is absent from the environment."""

    def __init__(self, env_names):
        self.env_names = list(env_names)
        super().__init__(f"Missing credential: set one of {', '.join(self.env_names)}")

    @property
    def reason(self) -> str:
        return f"{self.env_names[0]} not configured"


class UpstreamHTTPError(IngestError):
    """An upstream service answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        url: Optional[str] = None,
        body_snippet: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body_snippet = body_snippet
        self.request_id = request_id

    @property
    def is_retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class UpstreamFormatError(IngestError):
    """An upstream 2xx payload had an unusable shape."""


class NormalizeError(IngestError, ValueError):
    """A raw item lacks the fields required to build a draft."""
