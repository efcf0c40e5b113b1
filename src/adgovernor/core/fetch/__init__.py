"""Fetch governance - throttling, failure classification, retries, pagination."""

from .errors import FailureKind, GraphApiError, RetryExhaustedError, classify_response, handle_response
from .pagination import (
    PageIterator,
    PageResult,
    PaginationParams,
    collect_all_pages,
    create_batches,
    extract_cursor_from_url,
    fetch_all_pages,
    parse_page,
    process_batches,
)
from .retries import retry_with_backoff, with_backoff
from .throttling import RateLimitConfig, RateLimiter

__all__ = [
    "FailureKind",
    "GraphApiError",
    "RetryExhaustedError",
    "classify_response",
    "handle_response",
    "PageIterator",
    "PageResult",
    "PaginationParams",
    "collect_all_pages",
    "create_batches",
    "extract_cursor_from_url",
    "fetch_all_pages",
    "parse_page",
    "process_batches",
    "retry_with_backoff",
    "with_backoff",
    "RateLimitConfig",
    "RateLimiter",
]
