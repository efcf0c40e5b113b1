"""Graph API client built on the fetch governor."""

from .graph import GraphApiClient, build_query, extract_account_number, format_account_id

__all__ = [
    "GraphApiClient",
    "build_query",
    "extract_account_number",
    "format_account_id",
]
