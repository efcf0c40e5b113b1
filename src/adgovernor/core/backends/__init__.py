"""Backend implementations for issuing HTTP calls."""

from .base import ApiResponse, Backend, BackendError, RequestSpec
from .http_backend import HttpBackend

__all__ = [
    # Base classes
    "Backend",
    "RequestSpec",
    "ApiResponse",
    # Base errors
    "BackendError",
    # HTTP backend
    "HttpBackend",
]
