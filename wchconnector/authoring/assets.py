"""Asset definitions (the metadata records pointing at uploaded resources)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from wchconnector.authoring.bulk import BulkLifecycleOperator
from wchconnector.core.data_models import BulkOutcome
from wchconnector.core.errors import ValidationError
from wchconnector.core.http_client import SessionDispatcher

DEFAULT_DELETE_ROWS = 100


class Assets:
    """Create, update and delete asset definitions."""

    def __init__(self, dispatcher: SessionDispatcher, bulk: Optional[BulkLifecycleOperator] = None):
        self.dispatcher = dispatcher
        self.bulk = bulk or BulkLifecycleOperator(dispatcher)
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def _path(self) -> str:
        return self.dispatcher.endpoint.uri_assets

    def _item_path(self, asset_id: str) -> str:
        if not asset_id:
            raise ValidationError("asset id is required")
        return f"{self._path}/{quote(str(asset_id), safe='')}"

    async def create(
        self, asset_def: Mapping[str, Any], *, analyze: bool = True, autocurate: bool = False
    ) -> Dict[str, Any]:
        """Create an asset definition.

        Args:
            asset_def: Asset JSON (name, resource, tags, ...).
            analyze: Let the service compute tags for the asset.
            autocurate: Accept all computed tags right away.

        Returns:
            The stored asset definition.
        """
        params = {"analyze": str(analyze).lower(), "autocurate": str(autocurate).lower()}
        return await self.dispatcher.post(self._path, json=dict(asset_def), params=params)

    async def update(self, asset_def: Mapping[str, Any], *, analyze: bool = True) -> Dict[str, Any]:
        """Replace an existing asset definition; ``asset_def["id"]`` selects it."""
        path = self._item_path(asset_def.get("id"))
        params = {"analyze": str(analyze).lower()}
        return await self.dispatcher.put(path, json=dict(asset_def), params=params)

    async def delete(self, asset_id: str) -> str:
        """Delete one asset and return its id."""
        await self.dispatcher.delete(self._item_path(asset_id))
        self.logger.debug("Deleted asset %s", asset_id)
        return asset_id

    async def delete_assets(
        self, filter_query: Optional[str] = None, rows: int = DEFAULT_DELETE_ROWS
    ) -> List[BulkOutcome]:
        """Delete up to ``rows`` assets matching ``filter_query``."""
        return await self.bulk.bulk_apply("asset", filter_query, rows, self.delete)
