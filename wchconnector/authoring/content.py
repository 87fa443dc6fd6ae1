"""Content types and content items.

Content items support a real bulk delete (one DELETE with a comma-joined id
list); content types are deleted one call per id.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import quote

from wchconnector.authoring.bulk import BulkLifecycleOperator
from wchconnector.core.data_models import BulkBatch, BulkOutcome
from wchconnector.core.errors import ValidationError
from wchconnector.core.http_client import SessionDispatcher

DEFAULT_DELETE_ROWS = 500
# ids per bulk delete call
BULK_DELETE_CHUNK_SIZE = 50


class Content:
    """Content type definitions and content item deletion."""

    def __init__(self, dispatcher: SessionDispatcher, bulk: Optional[BulkLifecycleOperator] = None):
        self.dispatcher = dispatcher
        self.bulk = bulk or BulkLifecycleOperator(dispatcher)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _type_path(self, type_id: str) -> str:
        if not type_id:
            raise ValidationError("content type id is required")
        return f"{self.dispatcher.endpoint.uri_types}/{quote(str(type_id), safe='')}"

    # -- content types ----------------------------------------------------

    async def create(self, type_def: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a content type from its JSON definition."""
        return await self.dispatcher.post(self.dispatcher.endpoint.uri_types, json=dict(type_def))

    async def update(self, type_def: Mapping[str, Any]) -> Dict[str, Any]:
        """Update a content type.

        Only the most recent revision can be updated; the service rejects a
        definition whose revision is outdated.
        """
        return await self.dispatcher.put(self._type_path(type_def.get("id")), json=dict(type_def))

    async def delete_type(self, type_id: str) -> str:
        await self.dispatcher.delete(self._type_path(type_id))
        self.logger.debug("Deleted content type %s", type_id)
        return type_id

    async def bulk_delete_types(self, type_ids: Iterable[str]) -> List[BulkOutcome]:
        """Delete content types one call per id."""
        batch = BulkBatch("content-type", tuple(type_ids))
        return await self.bulk.apply_batch(batch, self.delete_type)

    async def delete_content_types(
        self, filter_query: Optional[str] = None, rows: int = DEFAULT_DELETE_ROWS
    ) -> List[BulkOutcome]:
        """Delete up to ``rows`` content types matching ``filter_query``."""
        return await self.bulk.bulk_apply("content-type", filter_query, rows, self.delete_type)

    # -- content items ----------------------------------------------------

    async def _delete_items(self, item_ids: Sequence[str]) -> Any:
        return await self.dispatcher.delete(
            self.dispatcher.endpoint.uri_content, params={"ids": ",".join(item_ids)}
        )

    async def bulk_delete_items(
        self, item_ids: Iterable[str], chunk_size: int = BULK_DELETE_CHUNK_SIZE
    ) -> List[BulkOutcome]:
        """Delete content items with one call per ``chunk_size`` ids.

        Returns one outcome per id; all ids of a chunk share its outcome.
        """
        batch = BulkBatch("content", tuple(item_ids))
        return await self.bulk.apply_chunks(batch, chunk_size, self._delete_items)

    async def delete_content_items(
        self, filter_query: Optional[str] = None, rows: int = DEFAULT_DELETE_ROWS
    ) -> List[BulkOutcome]:
        """Delete up to ``rows`` content items matching ``filter_query``."""
        batch = await self.bulk.find_ids("content", filter_query, rows)
        return await self.bulk_delete_items(batch.ids)
