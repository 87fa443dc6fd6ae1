"""Tests for the search API."""

import pytest

from wchconnector.core.config import ConnectorSettings
from wchconnector.core.errors import ValidationError
from wchconnector.core.http_client import SessionDispatcher
from wchconnector.search import QuerySpec, Search

from conftest import BASE_URL, TENANT_URL


def _search_params(hub):
    return [call[2] for call in hub.calls_to("GET", "/authoring/v1/search")]


@pytest.mark.asyncio
class TestSearch:
    """Test queries sent through the dispatcher."""

    async def test_query_sends_compiled_params(self, hub, authoring_settings):
        """Test that a spec mapping is compiled into query parameters."""
        hub.documents["*"] = [{"id": "asset:a1"}]

        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            result = await Search(dispatcher).query({"facetQuery": "name:x", "rows": 5})

        params = _search_params(hub)[0]
        assert params["q"] == "*:*"
        assert params["rows"] == "5"
        assert params.get_list("fq") == ["name:x"]
        assert result.num_found == 1

    async def test_count_requests_no_rows(self, hub, authoring_settings):
        """Test that count transfers no documents."""
        hub.documents["asset"] = [{"id": "asset:a1"}, {"id": "asset:a2"}]

        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            total = await Search(dispatcher).count(QuerySpec(query="classification:asset"))

        assert total == 2
        assert _search_params(hub)[0]["rows"] == "0"

    async def test_canned_queries(self, hub, authoring_settings):
        """Test the queries of the convenience helpers."""
        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            search = Search(dispatcher)
            await search.taxonomies()
            await search.content_type_definitions()
            await search.image_profile_with_name("thumbnail")
            await search.all_content_of_type("Article", rows=5, sort_ascending=True)
            await search.all_assets_and_content("tags:news")

        params = _search_params(hub)
        assert params[0]["q"] == "classification:taxonomy"
        assert params[1]["q"] == "classification:content-type"
        assert params[2]["q"] == "classification:image-profile AND name:thumbnail"
        assert params[2]["rows"] == "1"
        assert params[3]["q"] == "classification:content AND type:Article"
        assert params[3]["sort"] == "lastModified asc"
        assert params[4]["q"] == "*:*"
        assert params[4]["fq"] == "tags:news"
        assert params[4]["sort"] == "lastModified desc"

    async def test_content_by_id_escapes_key(self, hub, authoring_settings):
        """Test the escaped composite id lookup."""
        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            await Search(dispatcher).content_by_id("content", "a:b", id_filter="*")

        assert _search_params(hub)[0]["q"] == "id:*content\\:a\\:b"

    async def test_content_by_id_requires_both_parts(self, hub, authoring_settings):
        """Test that an empty id is rejected before any request."""
        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            with pytest.raises(ValidationError):
                await Search(dispatcher).content_by_id("content", "")

        assert _search_params(hub) == []

    async def test_resource_delivery_urls(self, hub, authoring_settings):
        """Test the three delivery URL flavours."""
        hub.documents["asset"] = [
            {"id": "asset:a1", "resource": "r 1", "path": "/dxdam/a.jpg"},
            {"id": "asset:a2"},
        ]

        async with SessionDispatcher(authoring_settings, transport=hub.transport) as dispatcher:
            search = Search(dispatcher)
            by_id = await search.resource_delivery_urls("id")
            by_path = await search.resource_delivery_urls("path")
            akami = await search.resource_delivery_urls("akami")

        assert by_id == [f"{TENANT_URL}/delivery/v1/resources/r%201"]
        assert by_path == [f"{TENANT_URL}/delivery/v1/resources?path=%2Fdxdam%2Fa.jpg"]
        assert akami == ["https://tenant.example/t1/%2Fdxdam%2Fa.jpg"]
        assert _search_params(hub)[0]["fl"] == "resource"

    async def test_resource_delivery_urls_unknown_type(self, hub):
        """Test that an unknown url type is rejected."""
        settings = ConnectorSettings(endpoint="delivery", base_url=BASE_URL)

        async with SessionDispatcher(settings, transport=hub.transport) as dispatcher:
            with pytest.raises(ValidationError):
                await Search(dispatcher).resource_delivery_urls("cdn")
