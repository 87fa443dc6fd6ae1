"""Search modules.

- query: compiles structured query options into search parameters
- search: runs queries against the tenant's search endpoint
"""

from .query import QuerySpec, compile_query, escape_query_chars  # noqa: F401
from .search import Search  # noqa: F401

__all__ = [
    "QuerySpec",
    "compile_query",
    "escape_query_chars",
    "Search",
]
