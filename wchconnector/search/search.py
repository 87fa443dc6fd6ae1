"""Search API of the content hub.

The ``Search`` class sends compiled queries through a
:class:`~wchconnector.core.http_client.SessionDispatcher` and wraps the
responses in :class:`~wchconnector.core.data_models.SearchResult`. Besides the
generic :meth:`Search.query` it offers the canned queries used by the
authoring operations and the sample scripts.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import quote

from wchconnector.core.data_models import SearchResult
from wchconnector.core.endpoints import ENDPOINTS
from wchconnector.core.errors import ValidationError
from wchconnector.core.http_client import SessionDispatcher
from wchconnector.search.query import QuerySpec, compile_query, escape_query_chars

SpecLike = Union[QuerySpec, Mapping[str, Any], None]

# url type -> document field holding the resource reference
RESOURCE_URL_TYPES = {
    "id": "resource",
    "path": "path",
    "akami": "path",
}


def as_query_spec(spec: SpecLike) -> QuerySpec:
    """Normalize ``None``, a mapping of options or a QuerySpec into a QuerySpec."""
    if spec is None:
        return QuerySpec()
    if isinstance(spec, QuerySpec):
        return spec
    return QuerySpec.from_dict(spec)


def _last_modified_sort(ascending: bool) -> str:
    return f"lastModified {'asc' if ascending else 'desc'}"


class Search:
    """Queries the search endpoint of one tenant."""

    def __init__(self, dispatcher: SessionDispatcher):
        self.dispatcher = dispatcher
        self.logger = logging.getLogger(self.__class__.__name__)

    async def query(self, spec: SpecLike = None) -> SearchResult:
        """Run a search.

        Args:
            spec: QuerySpec or camelCase option mapping. ``None`` matches
                everything and returns the first 10 documents.

        Returns:
            The decoded search result.
        """
        params = compile_query(as_query_spec(spec))
        self.logger.debug("Search q=%s fq=%s rows=%s", params["q"], params.get("fq"), params["rows"])
        data = await self.dispatcher.get(self.dispatcher.endpoint.uri_search, params=params)
        return SearchResult.from_dict(data if isinstance(data, Mapping) else None)

    async def count(self, spec: SpecLike = None) -> int:
        """Number of documents matching ``spec``; no documents are transferred."""
        result = await self.query(replace(as_query_spec(spec), rows=0))
        return result.num_found

    async def taxonomies(self, spec: SpecLike = None) -> SearchResult:
        """Search restricted to taxonomy roots."""
        return await self.query(replace(as_query_spec(spec), query="classification:taxonomy"))

    async def content_type_definitions(self, spec: SpecLike = None) -> SearchResult:
        return await self.query(replace(as_query_spec(spec), query="classification:content-type"))

    async def image_profile_with_name(self, name: Optional[str] = None) -> SearchResult:
        """First image profile, optionally the one called ``name``."""
        name_filter = f" AND name:{name}" if name else ""
        return await self.query(QuerySpec(query=f"classification:image-profile{name_filter}", rows=1))

    async def all_content_of_type(
        self,
        content_type: Optional[str] = None,
        rows: int = 10,
        sort_ascending: bool = False,
        start: int = 0,
    ) -> SearchResult:
        """Content items, optionally of one type, ordered by last modification."""
        type_filter = f" AND type:{content_type}" if content_type else ""
        return await self.query(
            QuerySpec(
                query=f"classification:content{type_filter}",
                rows=rows,
                sort=_last_modified_sort(sort_ascending),
                start=start,
            )
        )

    async def content_by_id(
        self, classification: str, item_id: str, id_filter: str = ""
    ) -> SearchResult:
        """Look up a single document by its composite ``<classification>:<id>`` key.

        Both parts are escaped; ``id_filter`` is inserted verbatim in front
        of the key and may hold wildcards.
        """
        if not classification or not item_id:
            raise ValidationError("content_by_id requires a classification and an id")
        key = f"{escape_query_chars(classification)}\\:{escape_query_chars(item_id)}"
        return await self.query(QuerySpec(query=f"id:{id_filter}{key}", rows=1))

    async def all_assets_and_content(
        self,
        filter_query: Optional[str] = None,
        rows: int = 10,
        sort_ascending: bool = False,
    ) -> SearchResult:
        return await self.query(
            QuerySpec(
                query="*:*",
                facet_query=filter_query or None,
                rows=rows,
                sort=_last_modified_sort(sort_ascending),
            )
        )

    async def resource_delivery_urls(self, url_type: str = "id", spec: SpecLike = None) -> List[str]:
        """Build delivery URLs for the binary resources of matching assets.

        Args:
            url_type: ``id`` (resource id in the path), ``path`` (asset path as
                query parameter) or ``akami`` (asset path below the CDN root).
            spec: Further restricts the assets; its query and fields are
                replaced.

        Returns:
            One URL per matching asset that carries the required field.
        """
        field = RESOURCE_URL_TYPES.get(url_type)
        if field is None:
            raise ValidationError(
                f"url_type must be one of {', '.join(RESOURCE_URL_TYPES)}, got {url_type!r}"
            )

        result = await self.query(
            replace(as_query_spec(spec), query="classification:asset", fields=field)
        )
        base_url = await self.dispatcher.current_base_url()
        resource_path = ENDPOINTS["delivery"].uri_resource

        urls = []
        for document in result.documents:
            resource = document.get(field)
            if not resource:
                continue
            encoded = quote(str(resource), safe="")
            if url_type == "id":
                urls.append(f"{base_url}{resource_path}/{encoded}")
            elif url_type == "path":
                urls.append(f"{base_url}{resource_path}?path={encoded}")
            else:
                urls.append(f"{(base_url + '/').replace('/api/', '/', 1)}{encoded}")
        return urls
