"""Tests for the connector entry point."""

import pytest

from wchconnector import WchConnector, create_connector
from wchconnector.authoring import TaxonomyReconciler
from wchconnector.core.config import Config
from wchconnector.core.errors import ValidationError

from conftest import BASE_URL


class TestWchConnector:
    """Test connector construction."""

    def test_defaults_to_anonymous_delivery(self):
        """Test the default connector."""
        connector = WchConnector()

        assert connector.settings.endpoint == "delivery"
        assert connector.settings.credentials is None
        assert connector.search is not None

    def test_delivery_has_no_authoring_operations(self):
        """Test that authoring modules are refused on a delivery connector."""
        connector = WchConnector({"endpoint": "delivery"})

        with pytest.raises(ValidationError, match="authoring endpoint"):
            connector.taxonomy
        with pytest.raises(ValidationError):
            connector.assets
        with pytest.raises(ValidationError):
            connector.content

    def test_authoring_modules_share_dispatcher(self, authoring_settings):
        """Test that all modules use the connector's session."""
        connector = WchConnector(authoring_settings)

        assert isinstance(connector.taxonomy, TaxonomyReconciler)
        assert connector.taxonomy.dispatcher is connector.dispatcher
        assert connector.assets.bulk is connector.bulk
        assert connector.content.dispatcher is connector.dispatcher

    def test_settings_mapping(self):
        """Test building a connector from camelCase options."""
        connector = WchConnector(
            {
                "endpoint": "authoring",
                "baseUrl": BASE_URL,
                "maxSockets": 20,
                "credentials": {"usrname": "editor", "pwd": "pw"},
            }
        )

        assert connector.dispatcher.max_sockets == 20
        assert connector.bulk.concurrency == 4
        assert connector.taxonomy.concurrency == 20

    def test_invalid_settings(self):
        """Test that invalid settings fail at construction."""
        with pytest.raises(ValidationError):
            WchConnector({"endpoint": "publishing"})

    def test_create_connector_from_config(self):
        """Test creating a connector from configuration."""
        config = Config()
        config.set("connector.endpoint", "authoring")
        config.set("credentials.username", "editor")
        config.set("credentials.password", "pw")

        connector = create_connector(config)

        assert connector.settings.endpoint == "authoring"
        assert connector.settings.credentials.username == "editor"


@pytest.mark.asyncio
class TestConnectorSession:
    """Test the connector against the fake hub."""

    async def test_round_trip(self, hub, authoring_settings):
        """Test creating and reading a taxonomy through one connector."""
        async with WchConnector(authoring_settings, transport=hub.transport) as connector:
            await connector.taxonomy.create_taxonomies({"Colors": [{"parent": "Colors", "children": ["Red"]}]})
            taxonomies = await connector.taxonomy.get_taxonomies()
            count = await connector.search.count({"query": "classification:taxonomy"})

        assert [child.name for child in taxonomies["Colors"][0].children] == ["Red"]
        assert count == 1
        assert hub.logins == 1
