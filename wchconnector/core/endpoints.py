"""Connection endpoints of the content hub.

The login endpoint is always called against the configured base URL. After a
successful login every request must use the tenant base URL returned by the
login response instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ValidationError

DEFAULT_BASE_URL = "https://www.digitalexperience.ibm.com/api"


@dataclass(frozen=True)
class EndpointConfig:
    """Paths of one API surface, relative to the tenant base URL."""

    name: str
    base_url: str
    uri_search: str
    uri_auth: str
    uri_resource: str
    uri_assets: Optional[str] = None
    uri_types: Optional[str] = None
    uri_categories: Optional[str] = None
    uri_content: Optional[str] = None

    @property
    def is_authoring(self) -> bool:
        """True if create, update and delete operations are available."""
        return self.uri_categories is not None


ENDPOINTS: Dict[str, EndpointConfig] = {
    "authoring": EndpointConfig(
        name="authoring",
        base_url=DEFAULT_BASE_URL,
        uri_search="/authoring/v1/search",
        uri_auth="/login/v1/basicauth",
        uri_resource="/authoring/v1/resources",
        uri_assets="/authoring/v1/assets",
        uri_types="/authoring/v1/types",
        uri_categories="/authoring/v1/categories",
        uri_content="/authoring/v1/content",
    ),
    # Delivery has no search or login service of its own yet.
    "delivery": EndpointConfig(
        name="delivery",
        base_url=DEFAULT_BASE_URL,
        uri_search="/authoring/v1/search",
        uri_auth="/login/v1/basicauth",
        uri_resource="/delivery/v1/resources",
    ),
}


def get_endpoint(name: str) -> EndpointConfig:
    """Look up an endpoint by name (``authoring`` or ``delivery``)."""
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise ValidationError(
            f"Unknown endpoint '{name}'. Must be one of: {', '.join(sorted(ENDPOINTS))}"
        ) from None
