"""Core functionality for the connector.

This package contains the pieces shared by the search and authoring modules:
configuration, error types and policy, the session dispatcher, data models,
async combinators and logging setup.
"""

from .concurrency import Outcome, parallel_map, sequential_fold  # noqa: F401
from .config import Config, ConnectorSettings, Credentials, get_config, ValidationResult  # noqa: F401
from .data_models import (  # noqa: F401
    BulkBatch,
    BulkOutcome,
    CategoryNode,
    CategoryRef,
    SearchResult,
    TaxonomyIdMap,
    TaxonomyLevel,
)
from .endpoints import ENDPOINTS, EndpointConfig, get_endpoint  # noqa: F401
from .errors import (  # noqa: F401
    AuthenticationError,
    ErrorPolicy,
    RemoteRequestError,
    ValidationError,
    WchError,
)
from .http_client import RequestTemplate, SessionDispatcher, SessionState  # noqa: F401
from .logging_setup import configure_logging, configure_logging_from_config  # noqa: F401

__all__ = [
    # Config
    "Config",
    "ConnectorSettings",
    "Credentials",
    "get_config",
    "ValidationResult",
    # Errors
    "WchError",
    "AuthenticationError",
    "ValidationError",
    "RemoteRequestError",
    "ErrorPolicy",
    # Transport
    "EndpointConfig",
    "ENDPOINTS",
    "get_endpoint",
    "RequestTemplate",
    "SessionDispatcher",
    "SessionState",
    # Models
    "SearchResult",
    "BulkBatch",
    "BulkOutcome",
    "CategoryRef",
    "CategoryNode",
    "TaxonomyLevel",
    "TaxonomyIdMap",
    # Concurrency
    "Outcome",
    "parallel_map",
    "sequential_fold",
    # Logging
    "configure_logging",
    "configure_logging_from_config",
]
