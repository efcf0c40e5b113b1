"""
Graph API failure classification.

Turns a failed response into a single typed failure, and answers the
retry questions (eligible? how many times? how long to wait?) for it.
"""

from __future__ import annotations

import json
import random
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Classification category used to decide retry eligibility."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    PERMISSION = "permission"
    VALIDATION = "validation"
    APPLICATION_LIMIT = "application_limit"
    USER_LIMIT = "user_limit"
    PROCESSING = "processing"


class GraphApiError(Exception):
    """A classified Graph API failure.

    One type for every failure; ``kind`` tells them apart. Fields are
    read-only once constructed.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        *,
        http_status: int | None = None,
        remote_code: int | None = None,
        remote_subcode: int | None = None,
        remote_type: str | None = None,
        retry_after_ms: float | None = None,
    ):
        super().__init__(message)
        self._kind = FailureKind(kind)
        self._message = message
        self._http_status = http_status
        self._remote_code = remote_code
        self._remote_subcode = remote_subcode
        self._remote_type = remote_type
        self._retry_after_ms = retry_after_ms

    @classmethod
    def rate_limit(cls, message: str, retry_after_ms: float) -> "GraphApiError":
        return cls(FailureKind.RATE_LIMIT, message, retry_after_ms=retry_after_ms)

    @property
    def kind(self) -> FailureKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def http_status(self) -> int | None:
        return self._http_status

    @property
    def remote_code(self) -> int | None:
        return self._remote_code

    @property
    def remote_subcode(self) -> int | None:
        return self._remote_subcode

    @property
    def remote_type(self) -> str | None:
        return self._remote_type

    @property
    def retry_after_ms(self) -> float | None:
        return self._retry_after_ms

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "kind": self._kind.value,
            "message": self._message,
            "http_status": self._http_status,
            "remote_code": self._remote_code,
            "remote_subcode": self._remote_subcode,
            "remote_type": self._remote_type,
            "retry_after_ms": self._retry_after_ms,
        }

    def __repr__(self) -> str:
        return (
            f"GraphApiError(kind={self._kind.value!r}, message={self._message!r}, "
            f"http_status={self._http_status!r}, remote_code={self._remote_code!r})"
        )


class RetryExhaustedError(Exception):
    """Raised when a retryable failure outlasts its retry budget."""

    def __init__(self, context: str, max_retries: int, last_error: GraphApiError):
        super().__init__(
            f"{context} failed after {max_retries} retries. Last error: {last_error.message}"
        )
        self.context = context
        self.max_retries = max_retries
        self.last_error = last_error

    @property
    def kind(self) -> FailureKind:
        return self.last_error.kind


# =============================================================================
# Classification
# =============================================================================


# (code, subcode) -> retry-after in ms
RATE_LIMIT_PAIRS: dict[tuple[int, int], int] = {
    (17, 2446079): 300_000,
    (613, 1487742): 60_000,
    (4, 1504022): 300_000,
    (4, 1504039): 300_000,
}

# code -> (kind, http status, remote type)
CODE_KINDS: dict[int, tuple[FailureKind, int, str]] = {
    190: (FailureKind.AUTH, 401, "OAuthException"),
    200: (FailureKind.PERMISSION, 403, "FacebookApiException"),
    10: (FailureKind.PERMISSION, 403, "FacebookApiException"),
    100: (FailureKind.VALIDATION, 400, "FacebookApiException"),
    4: (FailureKind.APPLICATION_LIMIT, 429, "ApplicationRequestLimitReached"),
    17: (FailureKind.USER_LIMIT, 429, "UserRequestLimitReached"),
}


def is_remote_error(body: Any) -> bool:
    """Check whether a parsed body has the remote ``{"error": {"code": int}}`` shape."""
    if not isinstance(body, dict):
        return False
    error = body.get("error")
    if not isinstance(error, dict):
        return False
    code = error.get("code")
    return isinstance(code, int) and not isinstance(code, bool)


def classify_remote_error(body: dict[str, Any]) -> GraphApiError:
    """Build the typed failure for a structured remote error body."""
    error = body["error"]
    code: int = error["code"]
    subcode = error.get("error_subcode")
    message = error.get("message") or f"Graph API error {code}"
    remote_type = error.get("type")

    retry_after = RATE_LIMIT_PAIRS.get((code, subcode))
    if retry_after is not None:
        return GraphApiError(
            FailureKind.RATE_LIMIT,
            message,
            remote_code=code,
            remote_subcode=subcode,
            remote_type=remote_type,
            retry_after_ms=retry_after,
        )

    if code in CODE_KINDS:
        kind, http_status, kind_type = CODE_KINDS[code]
        return GraphApiError(
            kind,
            message,
            http_status=http_status,
            remote_code=code,
            remote_subcode=subcode,
            remote_type=kind_type,
        )

    return GraphApiError(
        FailureKind.PROCESSING,
        message,
        remote_code=code,
        remote_subcode=subcode,
        remote_type=remote_type,
    )


def classify_response(status_code: int, body_text: str) -> GraphApiError:
    """Classify a non-success response.

    Args:
        status_code: HTTP status of the response
        body_text: Raw response body

    Returns:
        The typed failure for this response
    """
    try:
        body = json.loads(body_text)
    except ValueError:
        return GraphApiError(
            FailureKind.PROCESSING,
            f"HTTP {status_code}: {body_text}",
            http_status=status_code,
        )

    if is_remote_error(body):
        return classify_remote_error(body)

    return GraphApiError(
        FailureKind.PROCESSING,
        f"HTTP {status_code}: {body_text}",
        http_status=status_code,
    )


def handle_response(status_code: int, body_text: str) -> Any:
    """Return the parsed body of a successful response, or raise its failure.

    Successful bodies that are not JSON come back as raw text.

    Raises:
        GraphApiError: If the status is not 2xx
    """
    if not 200 <= status_code < 300:
        raise classify_response(status_code, body_text)

    try:
        return json.loads(body_text)
    except ValueError:
        return body_text


# =============================================================================
# Retry policy
# =============================================================================


# kind -> retry budget; PROCESSING is decided by HTTP status
MAX_RETRIES: dict[FailureKind, int] = {
    FailureKind.RATE_LIMIT: 3,
    FailureKind.APPLICATION_LIMIT: 2,
    FailureKind.USER_LIMIT: 2,
    FailureKind.PROCESSING: 3,
    FailureKind.AUTH: 0,
    FailureKind.PERMISSION: 0,
    FailureKind.VALIDATION: 0,
}

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 60_000
MAX_JITTER_MS = 1000


def max_retries_for(error: BaseException) -> int:
    """Retry budget for a failure (0 when not retryable)."""
    if not isinstance(error, GraphApiError):
        return 0
    if error.kind is FailureKind.PROCESSING and (error.http_status or 0) < 500:
        return 0
    return MAX_RETRIES[error.kind]


def should_retry(error: BaseException) -> bool:
    """Whether a failure is worth retrying at all."""
    return max_retries_for(error) > 0


def retry_delay_ms(error: BaseException, attempt: int) -> float:
    """Delay before the next attempt.

    Rate-limit failures carry their own wait; everything else backs off
    exponentially with up to a second of jitter.
    """
    if isinstance(error, GraphApiError) and error.retry_after_ms is not None:
        return error.retry_after_ms

    base = min(BASE_DELAY_MS * 2 ** attempt, MAX_DELAY_MS)
    return base + random.uniform(0, MAX_JITTER_MS)
