"""
Python client for a Miles API: HTTP client, chainable queries, and a
caching store with optimistic updates.
"""

from miles.client.http import MilesClient
from miles.client.query import Page, Query
from miles.client.store import QueryState, QueryStatus, Store

__all__ = [
    "MilesClient",
    "Query",
    "Page",
    "Store",
    "QueryState",
    "QueryStatus",
]
