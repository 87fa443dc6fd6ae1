"""Taxonomy management.

The categories endpoint only knows flat records (``id``, ``name``, ``parent``
and a ``namePath`` breadcrumb from the taxonomy root). This module converts
such listings into the level format (one entry per parent with its direct
children) or into nested :class:`CategoryNode` trees, creates taxonomies from
level definitions and reconciles edited definitions against the remote state.

Levels are always processed one after another, children of one level
concurrently: a child can only be created once its parent has an id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    Any,
    Collection,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)
from urllib.parse import quote

from wchconnector.authoring.bulk import BulkLifecycleOperator
from wchconnector.core.concurrency import parallel_map, sequential_fold
from wchconnector.core.data_models import (
    BulkOutcome,
    CategoryNode,
    CategoryRef,
    TaxonomyDefinitions,
    TaxonomyIdMap,
    TaxonomyLevel,
    definitions_to_dict,
    parse_definitions,
    strip_classification_prefix,
)
from wchconnector.core.errors import RemoteRequestError, ValidationError, WchError
from wchconnector.core.http_client import SessionDispatcher
from wchconnector.core.logging_setup import log_performance
from wchconnector.search.query import QuerySpec, escape_query_chars
from wchconnector.search.search import Search, SpecLike, as_query_spec

DEFAULT_PAGE_SIZE = 100
DEFAULT_DELETE_ROWS = 100
# upper bound on taxonomy roots fetched for one reconciliation
MAX_TAXONOMY_ROWS = 500

DefinitionsLike = Mapping[str, Iterable[Union[TaxonomyLevel, Mapping[str, Any]]]]


# -- transcoding -------------------------------------------------------------


def _name_path(item: Mapping[str, Any]) -> List[str]:
    path = item.get("namePath") or []
    if not path:
        raise ValidationError(f"category {item.get('id')!r} has no namePath")
    return list(path)


def flat_to_levels(items: Iterable[Mapping[str, Any]]) -> TaxonomyDefinitions:
    """Group flat category records into levels, per taxonomy name.

    Records are grouped by parent id. The parent's name is the second to last
    element of a record's ``namePath`` and the taxonomy name its first
    element. Taxonomy roots themselves (no parent) are skipped.
    """
    grouped: Dict[str, Dict[str, Tuple[CategoryRef, List[CategoryRef]]]] = {}
    for item in items:
        parent_id = item.get("parent")
        if not parent_id:
            continue
        path = _name_path(item)
        levels = grouped.setdefault(path[0], {})
        if parent_id not in levels:
            levels[parent_id] = (CategoryRef(path[-2] if len(path) > 1 else path[0], parent_id), [])
        levels[parent_id][1].append(CategoryRef(item["name"], item["id"]))

    return {
        name: [TaxonomyLevel(parent=parent, children=tuple(children)) for parent, children in levels.values()]
        for name, levels in grouped.items()
    }


def flat_to_tree(items: Iterable[Mapping[str, Any]]) -> Dict[str, CategoryNode]:
    """Build one nested tree per taxonomy name from flat category records.

    The root's id is the parent id of the records directly below it.

    Raises:
        ValidationError: If a record references a parent missing from
            ``items``.
    """
    items = list(items)
    roots: Dict[str, CategoryNode] = {}
    nodes: Dict[str, CategoryNode] = {}

    for item in items:
        path = _name_path(item)
        root = roots.setdefault(path[0], CategoryNode(path[0]))
        if len(path) == 2 and item.get("parent"):
            root.id = item["parent"]
        nodes[item["id"]] = CategoryNode(
            name=item["name"],
            id=item["id"],
            parent_id=item.get("parent"),
            parent_name=path[-2] if len(path) > 1 else None,
        )

    for root in roots.values():
        if root.id is not None:
            nodes.setdefault(root.id, root)

    for item in items:
        node = nodes[item["id"]]
        parent = nodes.get(node.parent_id) if node.parent_id else None
        if parent is None:
            raise ValidationError(
                f"category {node.name!r} ({node.id}) references unknown parent {node.parent_id!r}"
            )
        parent.children.append(node)

    return roots


def tree_to_flat(root: CategoryNode) -> List[Dict[str, Any]]:
    """Flatten a tree depth-first into category records with ``namePath``.

    The root itself is not part of the result, just as a children listing
    of the root does not contain it.
    """
    records: List[Dict[str, Any]] = []
    stack = [(child, root, [root.name, child.name]) for child in reversed(root.children)]
    while stack:
        node, parent, path = stack.pop()
        records.append({"id": node.id, "name": node.name, "parent": parent.id, "namePath": path})
        stack.extend((child, node, path + [child.name]) for child in reversed(node.children))
    return records


# -- results -----------------------------------------------------------------


class CategoryAction(Enum):
    """What a definition requires for one category."""

    UNCHANGED = "unchanged"
    RENAMED = "renamed"
    REUSED = "reused"
    CREATED = "created"


@dataclass(frozen=True)
class ChildOutcome:
    """Result of the create/update decision for one category."""

    taxonomy: str
    name: str
    action: CategoryAction
    id: Optional[str] = None
    parent_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taxonomy": self.taxonomy,
            "name": self.name,
            "action": self.action.value,
            "id": self.id,
            "parentId": self.parent_id,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass
class ReconcileResult:
    """Outcome of :meth:`TaxonomyReconciler.update_taxonomies`.

    Attributes:
        definitions: The submitted definitions with every resolved id filled in.
        id_maps: Name to id mapping per taxonomy.
        outcomes: One entry per category the definitions touched.
    """

    definitions: TaxonomyDefinitions = field(default_factory=dict)
    id_maps: Dict[str, TaxonomyIdMap] = field(default_factory=dict)
    outcomes: List[ChildOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[ChildOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    def with_action(self, action: CategoryAction) -> List[ChildOutcome]:
        return [outcome for outcome in self.outcomes if outcome.action is action]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "definitions": definitions_to_dict(self.definitions),
            "idMaps": {name: id_map.to_dict() for name, id_map in self.id_maps.items()},
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True)
class _Progress:
    """Accumulator handed from one level of a taxonomy to the next."""

    id_map: TaxonomyIdMap
    levels: Tuple[TaxonomyLevel, ...] = ()
    outcomes: Tuple[ChildOutcome, ...] = ()
    created: FrozenSet[str] = frozenset()
    # Names need not be unique, so a name may resolve to several ids
    name_ids: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    # Declared id -> id in use, for stale ids replaced during the run
    corrections: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def start(cls, taxonomy: str, root: Optional[CategoryRef] = None) -> "_Progress":
        if root is None or not root.id:
            return cls(TaxonomyIdMap(taxonomy))
        return cls(
            TaxonomyIdMap(taxonomy, {root.name: root.id}),
            name_ids={root.name: frozenset({root.id})},
        )

    def resolve_name(self, name: Optional[str]) -> Tuple[Optional[str], Optional[ValidationError]]:
        """Id of the one category called ``name`` resolved so far."""
        ids = self.name_ids.get(name, frozenset()) if name is not None else frozenset()
        if len(ids) > 1:
            return None, ValidationError(
                f"parent category {name!r} matches {len(ids)} categories; declare its id"
            )
        return next(iter(ids), None), None

    def advance(
        self,
        outcomes: Sequence[ChildOutcome],
        level: Optional[TaxonomyLevel] = None,
        corrections: Optional[Mapping[str, str]] = None,
        parent: Optional[CategoryRef] = None,
    ) -> "_Progress":
        entries = [(o.name, o.id) for o in outcomes if o.ok and o.id]
        if parent is not None and parent.id:
            entries.insert(0, (parent.name, parent.id))
        name_ids = dict(self.name_ids)
        for name, category_id in entries:
            name_ids[name] = name_ids.get(name, frozenset()) | {category_id}
        created = {o.id for o in outcomes if o.ok and o.id and o.action is CategoryAction.CREATED}
        return _Progress(
            id_map=self.id_map.with_ids(entries),
            levels=self.levels + ((level,) if level is not None else ()),
            outcomes=self.outcomes + tuple(outcomes),
            created=self.created | created,
            name_ids=name_ids,
            corrections={**self.corrections, **(corrections or {})},
        )


@dataclass(frozen=True)
class _ChildPlan:
    child: CategoryRef
    action: CategoryAction
    id: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class _RemoteTaxonomy:
    root: CategoryRef
    items: Tuple[Mapping[str, Any], ...] = ()

    def levels(self) -> List[TaxonomyLevel]:
        return [level for levels in flat_to_levels(self.items).values() for level in levels]


def _parse(definitions: DefinitionsLike) -> TaxonomyDefinitions:
    try:
        return parse_definitions(definitions)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid taxonomy definition: {exc}") from exc


def check_creation_order(taxonomy: str, levels: Sequence[TaxonomyLevel]) -> None:
    """Verify that every level's parent is created by an earlier level.

    Without a level carrying a ``name`` the taxonomy root is named after
    ``taxonomy`` and exists before the first level.

    Raises:
        ValidationError: If a level has no parent, references a parent that
            is not created before it, or a parent name declared more than once.
    """
    declared: Dict[str, int] = {}
    if not any(level.name for level in levels):
        declared[taxonomy] = 1

    for index, level in enumerate(levels):
        parent_name = level.parent_name
        if parent_name is None:
            raise ValidationError(f"{taxonomy}: level {index} has neither a parent nor a name")
        if level.name:
            declared[level.name] = max(declared.get(level.name, 0), 1)
        else:
            count = declared.get(parent_name, 0)
            if count == 0:
                raise ValidationError(
                    f"{taxonomy}: level {index} references parent {parent_name!r} "
                    "before a level creates it"
                )
            if count > 1:
                raise ValidationError(
                    f"{taxonomy}: parent {parent_name!r} of level {index} is declared {count} times"
                )
        for child in level.children:
            declared[child.name] = declared.get(child.name, 0) + 1


# -- reconciler --------------------------------------------------------------


class TaxonomyReconciler:
    """Category CRUD plus taxonomy creation and reconciliation."""

    def __init__(
        self,
        dispatcher: SessionDispatcher,
        search: Optional[Search] = None,
        bulk: Optional[BulkLifecycleOperator] = None,
    ):
        self.dispatcher = dispatcher
        self.search = search or Search(dispatcher)
        self.bulk = bulk or BulkLifecycleOperator(dispatcher, self.search)
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def concurrency(self) -> int:
        """Maximum number of category requests in flight for one level."""
        return max(1, self.dispatcher.max_sockets)

    @property
    def _path(self) -> str:
        return self.dispatcher.endpoint.uri_categories

    def _item_path(self, category_id: str) -> str:
        if not category_id:
            raise ValidationError("category id is required")
        return f"{self._path}/{quote(str(category_id), safe='')}"

    # -- category CRUD ------------------------------------------------------

    async def create_category(self, name: str, parent: Optional[str] = None) -> Dict[str, Any]:
        """Create a category below ``parent``; without parent a taxonomy root."""
        if not name:
            raise ValidationError("category name is required")
        body: Dict[str, Any] = {"name": name}
        if parent:
            body["parent"] = parent
        return await self.dispatcher.post(self._path, json=body)

    async def update_category(
        self, category_id: str, name: str, parent: Optional[str] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"id": category_id, "name": name}
        if parent:
            body["parent"] = parent
        return await self.dispatcher.put(self._item_path(category_id), json=body)

    async def delete_category(self, category_id: str) -> str:
        """Delete a category; the service removes its descendants as well."""
        await self.dispatcher.delete(self._item_path(category_id))
        self.logger.debug("Deleted category %s", category_id)
        return category_id

    async def get_category_tree(
        self,
        category_id: str,
        recurse: bool = True,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        simple: bool = False,
    ) -> Any:
        """Fetch one page of the descendants of ``category_id``.

        Args:
            category_id: Category whose children are listed (not included).
            recurse: Include grandchildren and below, not only direct children.
            limit: Page size.
            offset: Index of the first record returned.
            simple: Return ``{taxonomy: [level, ...]}`` instead of the raw
                listing.
        """
        params = {"recurse": "true" if recurse else "false", "limit": limit, "offset": offset}
        data = await self.dispatcher.get(f"{self._item_path(category_id)}/children", params=params)
        if not simple:
            return data
        items = data.get("items") if isinstance(data, Mapping) else None
        return flat_to_levels(items or [])

    async def list_categories(
        self, category_id: str, recurse: bool = True, page_size: int = DEFAULT_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        """All descendant records of ``category_id``, fetched page by page."""
        if page_size < 1:
            raise ValidationError("page_size must be at least 1")
        records: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self.get_category_tree(category_id, recurse, page_size, offset)
            items = list(page.get("items") or []) if isinstance(page, Mapping) else []
            records.extend(items)
            if len(items) < page_size:
                return records
            offset += page_size

    # -- reading taxonomies -------------------------------------------------

    async def _fetch_taxonomies(
        self, spec: SpecLike = None, names: Optional[Collection[str]] = None
    ) -> List[_RemoteTaxonomy]:
        result = await self.search.taxonomies(replace(as_query_spec(spec), fields=["id", "name"]))
        roots = [
            CategoryRef(str(doc.get("name") or ""), strip_classification_prefix(str(doc["id"]), "taxonomy"))
            for doc in result.documents
            if doc.get("id")
        ]
        if names is not None:
            roots = [root for root in roots if root.name in names]

        listings = await parallel_map(lambda root: self.list_categories(root.id), roots, self.concurrency)

        remote = []
        for listing in listings:
            if listing.error is not None:
                raise listing.error
            items = tuple(listing.value)
            name = listing.item.name or (_name_path(items[0])[0] if items else "")
            if not name:
                self.logger.warning("Skipping taxonomy %s: no name found", listing.item.id)
                continue
            remote.append(_RemoteTaxonomy(CategoryRef(name, listing.item.id), items))
        return remote

    async def get_taxonomies(
        self, spec: SpecLike = None, simple: bool = True
    ) -> Union[TaxonomyDefinitions, Dict[str, CategoryNode]]:
        """Fetch all taxonomies matching ``spec``.

        Returns ``{name: [TaxonomyLevel, ...]}`` when ``simple``, otherwise
        ``{name: CategoryNode}`` trees. Of several taxonomies sharing a name
        only the last one is kept.
        """
        remote = await self._fetch_taxonomies(spec)
        merged: Dict[str, Any] = {}
        for taxonomy in remote:
            name = taxonomy.root.name
            if name in merged:
                self.logger.warning("Taxonomy name %r is not unique, keeping %s", name, taxonomy.root.id)
            if simple:
                merged[name] = taxonomy.levels()
            else:
                tree = flat_to_tree(taxonomy.items).get(name) or CategoryNode(name)
                tree.id = taxonomy.root.id
                merged[name] = tree
        return merged

    async def delete_taxonomies(
        self, filter_query: Optional[str] = None, rows: int = DEFAULT_DELETE_ROWS
    ) -> List[BulkOutcome]:
        """Delete up to ``rows`` taxonomies matching ``filter_query``, all when omitted."""
        return await self.bulk.bulk_apply("taxonomy", filter_query, rows, self.delete_category)

    # -- applying levels ----------------------------------------------------

    async def _create_child(self, name: str, parent_id: Optional[str]) -> str:
        result = await self.create_category(name, parent_id)
        category_id = result.get("id") if isinstance(result, Mapping) else None
        if not category_id:
            raise RemoteRequestError(
                f"Creating category {name!r} returned no id", method="POST", url=self._path
            )
        return str(category_id)

    async def _create_root(self, progress: _Progress, name: str) -> _Progress:
        taxonomy = progress.id_map.taxonomy
        try:
            root_id = await self._create_child(name, None)
        except WchError as exc:
            self.logger.warning("Could not create root %r of taxonomy %r: %s", name, taxonomy, exc)
            outcome = ChildOutcome(taxonomy, name, CategoryAction.CREATED, error=exc)
        else:
            self.logger.info("Created taxonomy root %r (%s)", name, root_id)
            outcome = ChildOutcome(taxonomy, name, CategoryAction.CREATED, id=root_id)
        return progress.advance([outcome])

    async def _apply_level(
        self,
        progress: _Progress,
        level: TaxonomyLevel,
        parent: CategoryRef,
        plans: Sequence[_ChildPlan],
        corrections: Optional[Mapping[str, str]] = None,
    ) -> _Progress:
        async def apply(plan: _ChildPlan) -> Optional[str]:
            if plan.error is not None:
                raise plan.error
            if plan.action is CategoryAction.CREATED:
                return await self._create_child(plan.child.name, parent.id)
            if plan.action is CategoryAction.RENAMED:
                await self.update_category(plan.id, plan.child.name, parent.id)
            return plan.id

        results = await parallel_map(apply, plans, self.concurrency)

        taxonomy = progress.id_map.taxonomy
        outcomes = [
            ChildOutcome(
                taxonomy,
                result.item.child.name,
                result.item.action,
                id=result.value if result.ok else result.item.id,
                parent_id=parent.id,
                error=result.error,
            )
            for result in results
        ]
        children = [
            CategoryRef(outcome.name, outcome.id if outcome.ok else result.item.child.id)
            for outcome, result in zip(outcomes, results)
        ]
        failed = [outcome for outcome in outcomes if not outcome.ok]
        if failed:
            self.logger.warning(
                "%d of %d categories below %r failed (first: %s: %s)",
                len(failed),
                len(outcomes),
                parent.name,
                failed[0].name,
                failed[0].error,
            )

        resolved = replace(
            level,
            parent=level.parent if level.name else parent,
            children=tuple(children),
        )
        replaced = dict(corrections or {})
        replaced.update(
            (result.item.child.id, outcome.id)
            for outcome, result in zip(outcomes, results)
            if outcome.ok and outcome.id and result.item.child.id not in (None, outcome.id)
        )
        return progress.advance(outcomes, resolved, replaced, parent)

    # -- creation -----------------------------------------------------------

    async def _create_level(self, progress: _Progress, level: TaxonomyLevel) -> _Progress:
        if level.name and level.name not in progress.id_map:
            progress = await self._create_root(progress, level.name)

        parent_name = level.parent_name
        parent_id = progress.id_map.get(parent_name)
        error = None
        if parent_id is None:
            error = ValidationError(f"parent category {parent_name!r} has no id")
        plans = [_ChildPlan(child, CategoryAction.CREATED, error=error) for child in level.children]
        return await self._apply_level(progress, level, CategoryRef(parent_name, parent_id), plans)

    async def _create_taxonomy(self, taxonomy: str, levels: Sequence[TaxonomyLevel]) -> _Progress:
        progress = _Progress.start(taxonomy)
        if not any(level.name for level in levels):
            progress = await self._create_root(progress, taxonomy)
        return await sequential_fold(self._create_level, levels, progress)

    async def create_taxonomies(self, definitions: DefinitionsLike) -> Dict[str, TaxonomyIdMap]:
        """Create taxonomies from level definitions.

        Args:
            definitions: ``{taxonomy: [level, ...]}``. Levels are processed in
                the given order, so every parent must be created by the root
                or an earlier level.

        Returns:
            The name to id mapping of every created taxonomy.

        Raises:
            ValidationError: Before any request, if the level order is invalid.
            WchError: The first failure once all taxonomies have settled.
        """
        parsed = _parse(definitions)
        for taxonomy, levels in parsed.items():
            check_creation_order(taxonomy, levels)

        with log_performance("create_taxonomies", self.logger) as event:
            event["taxonomies"] = len(parsed)
            results = await parallel_map(
                lambda taxonomy: self._create_taxonomy(taxonomy, parsed[taxonomy]),
                list(parsed),
                self.concurrency,
            )

        id_maps: Dict[str, TaxonomyIdMap] = {}
        for result in results:
            if result.error is not None:
                raise result.error
            failed = [outcome for outcome in result.value.outcomes if not outcome.ok]
            if failed:
                raise failed[0].error
            id_maps[result.item] = result.value.id_map
        return id_maps

    # -- reconciliation -----------------------------------------------------

    def _match_level(
        self,
        known_ids: Collection[str],
        current_levels: Sequence[TaxonomyLevel],
        parent_name: str,
        parent_id: Optional[str],
    ) -> Tuple[Optional[TaxonomyLevel], Optional[str], Optional[ValidationError]]:
        """Find the current level of a declared parent.

        An id in ``known_ids`` (existing remotely or created in this run) is
        trusted even when the category has no children yet; any other parent
        is looked up by name.
        """
        if parent_id is not None and parent_id in known_ids:
            for candidate in current_levels:
                if candidate.parent is not None and candidate.parent.id == parent_id:
                    return candidate, parent_id, None
            return None, parent_id, None

        by_name = [
            candidate
            for candidate in current_levels
            if candidate.parent is not None and candidate.parent.name == parent_name
        ]
        if len(by_name) > 1:
            return None, parent_id, ValidationError(
                f"parent category {parent_name!r} matches {len(by_name)} categories; declare its id"
            )
        if by_name:
            matched = by_name[0]
            return matched, matched.parent.id or parent_id, None
        if parent_id is None:
            return None, None, ValidationError(f"parent category {parent_name!r} cannot be resolved")
        return None, parent_id, None

    @staticmethod
    def _diagnose(child: CategoryRef, current: Optional[TaxonomyLevel]) -> _ChildPlan:
        if current is None:
            return _ChildPlan(child, CategoryAction.CREATED)
        if child.id:
            for candidate in current.children:
                if candidate.id == child.id:
                    if candidate.name == child.name:
                        return _ChildPlan(child, CategoryAction.UNCHANGED, id=child.id)
                    return _ChildPlan(child, CategoryAction.RENAMED, id=child.id)
        by_name = [candidate for candidate in current.children if candidate.name == child.name]
        if len(by_name) > 1:
            return _ChildPlan(
                child,
                CategoryAction.REUSED,
                error=ValidationError(
                    f"category {child.name!r} matches {len(by_name)} siblings; declare its id"
                ),
            )
        if by_name:
            return _ChildPlan(child, CategoryAction.REUSED, id=by_name[0].id)
        return _ChildPlan(child, CategoryAction.CREATED)

    async def _reconcile_level(
        self,
        progress: _Progress,
        level: TaxonomyLevel,
        current_levels: Sequence[TaxonomyLevel],
        remote_ids: FrozenSet[str],
    ) -> _Progress:
        parent_name = level.parent_name
        declared_id = level.parent.id if level.parent is not None and not level.name else None
        if declared_id is not None:
            parent_id, error = progress.corrections.get(declared_id, declared_id), None
        else:
            parent_id, error = progress.resolve_name(parent_name)

        current, resolved_id = None, None
        if error is None:
            current, resolved_id, error = self._match_level(
                remote_ids | progress.created, current_levels, parent_name, parent_id
            )
        corrections = {}
        if resolved_id is not None and resolved_id != parent_id:
            self.logger.info(
                "Parent %r resolved by name to %s (declared %s)", parent_name, resolved_id, parent_id
            )
            if declared_id is not None:
                corrections[declared_id] = resolved_id

        if error is not None:
            plans = [_ChildPlan(child, CategoryAction.CREATED, error=error) for child in level.children]
        else:
            plans = [self._diagnose(child, current) for child in level.children]
        return await self._apply_level(
            progress, level, CategoryRef(parent_name, resolved_id), plans, corrections
        )

    async def _reconcile_taxonomy(
        self, taxonomy: str, levels: Sequence[TaxonomyLevel], remote: Optional[_RemoteTaxonomy]
    ) -> _Progress:
        if remote is None:
            self.logger.info("Taxonomy %r does not exist yet, creating it", taxonomy)
            return await self._create_taxonomy(taxonomy, levels)

        current_levels = remote.levels()
        remote_ids = frozenset(
            [remote.root.id]
            + [str(item["id"]) for item in remote.items if item.get("id")]
        )
        return await sequential_fold(
            lambda acc, level: self._reconcile_level(acc, level, current_levels, remote_ids),
            levels,
            _Progress.start(taxonomy, remote.root),
        )

    async def update_taxonomies(self, definitions: DefinitionsLike) -> ReconcileResult:
        """Bring remote taxonomies in line with edited level definitions.

        Taxonomies missing remotely are created. For existing ones each level
        is matched to the current state: children matched by id keep their
        id (and are renamed if the name changed), children matched by name
        adopt the existing id, everything else is created. ``definitions``
        itself is never modified.

        Args:
            definitions: ``{taxonomy: [level, ...]}``, typically a modified
                result of :meth:`get_taxonomies`.

        Returns:
            ReconcileResult with resolved definitions, id maps and one
            outcome per category. A failing category does not stop its
            siblings; categories below it fail with ValidationError.

        Raises:
            ValidationError: Before any mutation, if a taxonomy name matches
                several remote taxonomies or a new taxonomy's levels are out
                of order.
        """
        parsed = _parse(definitions)
        if not parsed:
            return ReconcileResult()

        name_query = " OR ".join(f"name:{escape_query_chars(name)}" for name in parsed)
        spec = QuerySpec(facet_query=name_query, rows=MAX_TAXONOMY_ROWS)

        with log_performance("update_taxonomies", self.logger) as event:
            event["taxonomies"] = len(parsed)
            remote: Dict[str, _RemoteTaxonomy] = {}
            for taxonomy in await self._fetch_taxonomies(spec, names=set(parsed)):
                if taxonomy.root.name in remote:
                    raise ValidationError(
                        f"taxonomy name {taxonomy.root.name!r} matches several taxonomies"
                    )
                remote[taxonomy.root.name] = taxonomy
            event["existing"] = len(remote)
            for taxonomy, levels in parsed.items():
                if taxonomy not in remote:
                    check_creation_order(taxonomy, levels)

            results = await parallel_map(
                lambda taxonomy: self._reconcile_taxonomy(taxonomy, parsed[taxonomy], remote.get(taxonomy)),
                list(parsed),
                self.concurrency,
            )

        reconciled = ReconcileResult()
        for result in results:
            if result.error is not None:
                raise result.error
            progress: _Progress = result.value
            reconciled.definitions[result.item] = list(progress.levels)
            reconciled.id_maps[result.item] = progress.id_map
            reconciled.outcomes.extend(progress.outcomes)

        self.logger.info(
            "Reconciled %d taxonomies: %d created, %d renamed, %d reused, %d failed",
            len(parsed),
            len(reconciled.with_action(CategoryAction.CREATED)),
            len(reconciled.with_action(CategoryAction.RENAMED)),
            len(reconciled.with_action(CategoryAction.REUSED)),
            len(reconciled.failures),
        )
        return reconciled
