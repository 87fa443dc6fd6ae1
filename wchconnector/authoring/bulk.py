"""Query-then-mutate engine for bulk operations.

The backend only mutates one entity per call (content items being the one
exception). :class:`BulkLifecycleOperator` selects ids with a search, strips
the classification prefix the search index adds to them and fans the
mutation out with a concurrency cap of a fifth of the connection pool, so
other requests sharing the dispatcher still get connections.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from wchconnector.core.concurrency import parallel_map
from wchconnector.core.data_models import BulkBatch, BulkOutcome
from wchconnector.core.http_client import SessionDispatcher
from wchconnector.core.logging_setup import log_performance
from wchconnector.search.query import QuerySpec
from wchconnector.search.search import Search

Mutation = Callable[[str], Awaitable[Any]]
ChunkMutation = Callable[[Sequence[str]], Awaitable[Any]]

# Share of the connection pool a bulk operation may occupy
POOL_SHARE_DIVISOR = 5


class BulkLifecycleOperator:
    """Runs a mutation over every id matched by a search."""

    def __init__(self, dispatcher: SessionDispatcher, search: Optional[Search] = None):
        self.dispatcher = dispatcher
        self.search = search or Search(dispatcher)
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def concurrency(self) -> int:
        """Maximum number of mutations in flight."""
        return max(1, math.ceil(self.dispatcher.max_sockets / POOL_SHARE_DIVISOR))

    async def find_ids(
        self, classification: str, filter_query: Optional[str] = None, max_rows: int = 100
    ) -> BulkBatch:
        """Select up to ``max_rows`` ids of ``classification`` matching ``filter_query``."""
        spec = QuerySpec(
            query=f"classification:{classification}",
            fields="id",
            rows=max_rows,
            facet_query=filter_query or None,
        )
        result = await self.search.query(spec)
        batch = BulkBatch.from_documents(classification, result.documents)
        self.logger.debug(
            "Selected %d of %d %s ids (filter=%r)",
            len(batch),
            result.num_found,
            classification,
            filter_query,
        )
        return batch

    async def apply_batch(self, batch: BulkBatch, mutate: Mutation) -> List[BulkOutcome]:
        """Apply ``mutate`` to each id of ``batch``.

        Returns one outcome per id, in batch order. Failing mutations are
        recorded in their outcome and never stop the remaining ones.
        """
        if not batch:
            return []

        outcomes = await parallel_map(mutate, batch.ids, self.concurrency)
        results = [BulkOutcome(o.item, o.value, o.error) for o in outcomes]
        self._log_summary(batch.classification, results)
        return results

    async def apply_chunks(
        self, batch: BulkBatch, size: int, mutate_chunk: ChunkMutation
    ) -> List[BulkOutcome]:
        """Apply ``mutate_chunk`` once per group of at most ``size`` ids.

        The outcome of each call is reported for every id of its group.
        """
        if not batch:
            return []

        outcomes = await parallel_map(mutate_chunk, batch.chunks(size), self.concurrency)
        results = [
            BulkOutcome(item_id, outcome.value, outcome.error)
            for outcome in outcomes
            for item_id in outcome.item
        ]
        self._log_summary(batch.classification, results)
        return results

    async def bulk_apply(
        self,
        classification: str,
        filter_query: Optional[str],
        max_rows: int,
        mutate: Mutation,
    ) -> List[BulkOutcome]:
        """Select ids with a search and apply ``mutate`` to each of them.

        Parameters
        ----------
        classification: str
            Entity kind, e.g. ``asset``, ``content`` or ``taxonomy``.
        filter_query: str, optional
            Filter query intersected with the classification.
        max_rows: int
            Upper bound on the number of ids selected.
        mutate: Callable
            Coroutine function called with each bare id.

        Returns
        -------
        list of BulkOutcome
            One outcome per selected id, in the order the search returned
            them. An empty selection returns ``[]`` without calling
            ``mutate``.
        """
        with log_performance(f"bulk_apply[{classification}]", self.logger) as event:
            batch = await self.find_ids(classification, filter_query, max_rows)
            outcomes = await self.apply_batch(batch, mutate)
            event.update(selected=len(batch), failed=sum(1 for o in outcomes if not o.ok))
            return outcomes

    def _log_summary(self, classification: str, results: List[BulkOutcome]) -> None:
        failed = [result for result in results if not result.ok]
        if failed:
            self.logger.warning(
                "%d of %d %s mutations failed (first: %s: %s)",
                len(failed),
                len(results),
                classification,
                failed[0].id,
                failed[0].error,
            )
        else:
            self.logger.info("Applied %d %s mutations", len(results), classification)
