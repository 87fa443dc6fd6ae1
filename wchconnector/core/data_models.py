"""Data models used throughout the connector.

Search responses, bulk batches with their per-id outcomes, and the two
representations of a taxonomy: the "simple" level format (one entry per
parent with its direct children, the shape the reconciliation works on) and
the nested :class:`CategoryNode` tree.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


def strip_classification_prefix(doc_id: str, classification: str) -> str:
    """Remove a leading ``"<classification>:"`` from a search document id."""
    prefix = f"{classification}:"
    return doc_id[len(prefix):] if doc_id.startswith(prefix) else doc_id


@dataclass
class SearchResult:
    """Represents one response of the search endpoint.

    Attributes
    ----------
    num_found: int
        Total number of matches, independent of ``rows``.
    documents: List[Dict[str, Any]]
        The returned documents (empty when ``rows`` was 0).
    facet_fields: Dict[str, Any]
        Facet counts, present when faceting was requested.
    facet_ranges: Dict[str, Any]
        Range facet buckets, present when a range facet was requested.
    raw: Dict[str, Any]
        The undecoded response body.
    """

    num_found: int = 0
    documents: List[Dict[str, Any]] = field(default_factory=list)
    facet_fields: Dict[str, Any] = field(default_factory=dict)
    facet_ranges: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SearchResult":
        """Create a SearchResult from a decoded response body."""
        if not data:
            return cls()
        facets = data.get("facet_counts") or {}
        return cls(
            num_found=int(data.get("numFound") or 0),
            documents=list(data.get("documents") or []),
            facet_fields=dict(data.get("facet_fields") or facets.get("facet_fields") or {}),
            facet_ranges=dict(data.get("facet_ranges") or facets.get("facet_ranges") or {}),
            raw=dict(data),
        )

    def ids(self, classification: Optional[str] = None) -> List[str]:
        """Ids of the returned documents, optionally without their classification prefix."""
        ids = [str(doc["id"]) for doc in self.documents if doc.get("id")]
        if classification:
            ids = [strip_classification_prefix(doc_id, classification) for doc_id in ids]
        return ids


@dataclass(frozen=True)
class BulkBatch:
    """Ordered ids selected for one bulk operation."""

    classification: str
    ids: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids)

    @classmethod
    def from_documents(
        cls, classification: str, documents: Iterable[Mapping[str, Any]]
    ) -> "BulkBatch":
        ids = tuple(
            strip_classification_prefix(str(doc["id"]), classification)
            for doc in documents
            if doc.get("id")
        )
        return cls(classification, ids)

    def chunks(self, size: int) -> List[Tuple[str, ...]]:
        """Split the ids into consecutive groups of at most ``size``."""
        if size < 1:
            raise ValueError("chunk size must be at least 1")
        return [self.ids[i:i + size] for i in range(0, len(self.ids), size)]


@dataclass(frozen=True)
class BulkOutcome:
    """Outcome of the mutation applied to one id."""

    id: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ok": self.ok,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass(frozen=True)
class CategoryRef:
    """A category reference by name and (once known) remote id."""

    name: str
    id: Optional[str] = None

    @classmethod
    def parse(cls, value: Union[str, Mapping[str, Any], "CategoryRef"]) -> "CategoryRef":
        """Accept a bare name, a ``{"name", "id"}`` mapping or a CategoryRef."""
        if isinstance(value, CategoryRef):
            return value
        if isinstance(value, str):
            return cls(value)
        if not value.get("name"):
            raise ValueError(f"category reference without a name: {value!r}")
        return cls(str(value["name"]), value.get("id") or None)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "id": self.id}


@dataclass(frozen=True)
class TaxonomyLevel:
    """One parent category together with its direct children.

    A level with ``name`` set is a taxonomy root: the root is created under
    that name and ``children`` are attached to it.
    """

    parent: Optional[CategoryRef] = None
    children: Tuple[CategoryRef, ...] = ()
    name: Optional[str] = None

    @property
    def parent_name(self) -> Optional[str]:
        if self.name:
            return self.name
        return self.parent.name if self.parent else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaxonomyLevel":
        parent = data.get("parent")
        children = data.get("children") or data.get("childs") or []
        return cls(
            parent=CategoryRef.parse(parent) if parent else None,
            children=tuple(CategoryRef.parse(child) for child in children),
            name=data.get("name") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "parent": self.parent.to_dict() if self.parent else None,
            "children": [child.to_dict() for child in self.children],
        }
        if self.name:
            data["name"] = self.name
        return data

    def with_children(self, children: Iterable[CategoryRef]) -> "TaxonomyLevel":
        return replace(self, children=tuple(children))


TaxonomyDefinitions = Dict[str, List[TaxonomyLevel]]


def parse_definitions(data: Mapping[str, Iterable[Any]]) -> TaxonomyDefinitions:
    """Convert ``{taxonomy: [level, ...]}`` mappings into TaxonomyLevel lists."""
    return {
        str(name): [
            level if isinstance(level, TaxonomyLevel) else TaxonomyLevel.from_dict(level)
            for level in levels
        ]
        for name, levels in data.items()
    }


def definitions_to_dict(definitions: TaxonomyDefinitions) -> Dict[str, List[Dict[str, Any]]]:
    return {name: [level.to_dict() for level in levels] for name, levels in definitions.items()}


@dataclass(frozen=True)
class TaxonomyIdMap:
    """Name to remote id mapping, scoped to one taxonomy.

    Immutable: :meth:`with_ids` returns an extended copy, so each creation or
    reconciliation step hands its result to the next one explicitly.
    """

    taxonomy: str
    ids: Mapping[str, str] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.ids

    def get(self, name: Optional[str]) -> Optional[str]:
        return self.ids.get(name) if name is not None else None

    def with_ids(self, entries: Union[Mapping[str, str], Iterable[Tuple[str, str]]]) -> "TaxonomyIdMap":
        merged = dict(self.ids)
        merged.update(dict(entries))
        return TaxonomyIdMap(self.taxonomy, merged)

    def to_dict(self) -> Dict[str, str]:
        return dict(self.ids)


@dataclass
class CategoryNode:
    """A category in the nested tree representation."""

    name: str
    id: Optional[str] = None
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None
    children: List["CategoryNode"] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def walk(self) -> Iterator[Tuple["CategoryNode", List[str]]]:
        """Depth-first traversal yielding each node with its name path."""
        stack: List[Tuple[CategoryNode, List[str]]] = [(self, [self.name])]
        while stack:
            node, path = stack.pop()
            yield node, path
            for child in reversed(node.children):
                stack.append((child, path + [child.name]))

    def find(self, name: str) -> Optional["CategoryNode"]:
        """First node (depth-first) with the given name."""
        for node, _ in self.walk():
            if node.name == name:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "parentName": self.parent_name,
            "children": [child.to_dict() for child in self.children],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
