"""wchconnector - asynchronous client for the Watson Content Hub APIs.

Compiles structured search queries, runs bulk deletes over search results and
creates or reconciles category taxonomies, all through one authenticated
session per connector.
"""

__version__ = "0.1.0"
__author__ = "wchconnector contributors"

from wchconnector.connector import WchConnector, create_connector
from wchconnector.core.errors import (
    AuthenticationError,
    ErrorPolicy,
    RemoteRequestError,
    ValidationError,
    WchError,
)
from wchconnector.search.query import QuerySpec, compile_query, escape_query_chars

__all__ = [
    "WchConnector",
    "create_connector",
    "QuerySpec",
    "compile_query",
    "escape_query_chars",
    "ErrorPolicy",
    "WchError",
    "AuthenticationError",
    "ValidationError",
    "RemoteRequestError",
    "__version__",
]
