"""Connector entry point.

A :class:`WchConnector` owns one :class:`SessionDispatcher` and hands it to
the operation modules. Search is available on every endpoint; assets,
content and taxonomy management need the authoring endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

import httpx

from wchconnector.authoring.assets import Assets
from wchconnector.authoring.bulk import BulkLifecycleOperator
from wchconnector.authoring.content import Content
from wchconnector.authoring.taxonomy import TaxonomyReconciler
from wchconnector.core.config import Config, ConnectorSettings, get_config
from wchconnector.core.errors import ErrorPolicy, ValidationError
from wchconnector.core.http_client import SessionDispatcher
from wchconnector.search.search import Search


class WchConnector:
    """One session against a content hub tenant and the operations using it."""

    def __init__(
        self,
        settings: Union[ConnectorSettings, Mapping[str, Any], None] = None,
        *,
        error_policy: Optional[ErrorPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the connector.

        Args:
            settings: ConnectorSettings or an equivalent mapping. Defaults to
                an anonymous delivery connector.
            error_policy: Applied to every failed request. Defaults to rethrow.
            transport: Custom httpx transport, mainly for tests.
        """
        if settings is None:
            settings = ConnectorSettings()
        elif not isinstance(settings, ConnectorSettings):
            settings = ConnectorSettings.from_dict(settings)

        self.settings = settings
        self.logger = logging.getLogger(self.__class__.__name__)
        self.dispatcher = SessionDispatcher(settings, error_policy=error_policy, transport=transport)
        self.search = Search(self.dispatcher)
        self.bulk = BulkLifecycleOperator(self.dispatcher, self.search)

        self._assets: Optional[Assets] = None
        self._content: Optional[Content] = None
        self._taxonomy: Optional[TaxonomyReconciler] = None
        if self.dispatcher.endpoint.is_authoring:
            self._assets = Assets(self.dispatcher, self.bulk)
            self._content = Content(self.dispatcher, self.bulk)
            self._taxonomy = TaxonomyReconciler(self.dispatcher, self.search, self.bulk)

        self.logger.info(
            "Connector ready (endpoint=%s, base_url=%s, anonymous=%s)",
            settings.endpoint,
            settings.resolved_base_url,
            settings.credentials is None,
        )

    async def __aenter__(self) -> "WchConnector":
        await self.dispatcher.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.dispatcher.close()

    def _require(self, capability: str, module: Any) -> Any:
        if module is None:
            raise ValidationError(
                f"{capability} requires the authoring endpoint, "
                f"this connector uses '{self.settings.endpoint}'"
            )
        return module

    @property
    def assets(self) -> Assets:
        return self._require("assets", self._assets)

    @property
    def content(self) -> Content:
        return self._require("content", self._content)

    @property
    def taxonomy(self) -> TaxonomyReconciler:
        return self._require("taxonomy", self._taxonomy)


def create_connector(
    config: Optional[Config] = None,
    *,
    error_policy: Optional[ErrorPolicy] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> WchConnector:
    """Create a connector from configuration (the global one by default)."""
    config = config or get_config()
    return WchConnector(config.connector_settings(), error_policy=error_policy, transport=transport)
