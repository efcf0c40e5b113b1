"""
Backend base classes and data structures.

Defines the interface contract for issuing a single HTTP call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class RequestSpec:
    """Specification for an HTTP request."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    data: dict[str, Any] | str | None = None
    json_data: Any = None
    timeout: float | None = None

    # Metadata for logging/debugging
    account_id: str | None = None
    context: str | None = None


@dataclass
class ApiResponse:
    """Status, headers and body of one HTTP call."""

    url: str
    status_code: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)

    # Timing
    elapsed_ms: float = 0.0
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        """Check if request was successful (2xx status)."""
        return 200 <= self.status_code < 300


class Backend(ABC):
    """Abstract base class for HTTP backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier."""

    @abstractmethod
    async def send(self, request: RequestSpec) -> ApiResponse:
        """Issue one request and return the response, whatever its status.

        Args:
            request: Request specification

        Returns:
            ApiResponse with status, headers and body text

        Raises:
            BackendError: If no response could be obtained
        """

    async def close(self) -> None:
        """Clean up backend resources."""

    async def __aenter__(self) -> "Backend":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class BackendError(Exception):
    """No response could be obtained (transport failure, bad method)."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.cause = cause
