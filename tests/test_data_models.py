"""Tests for the data models."""

from __future__ import annotations

import dataclasses
import json

import pytest

from wchconnector.core.data_models import (
    BulkBatch,
    BulkOutcome,
    CategoryNode,
    CategoryRef,
    SearchResult,
    TaxonomyIdMap,
    TaxonomyLevel,
    definitions_to_dict,
    parse_definitions,
    strip_classification_prefix,
)


class TestSearchResult:
    """Test the SearchResult model."""

    def test_from_dict(self) -> None:
        """Test decoding a search response with facets."""
        result = SearchResult.from_dict(
            {
                "numFound": 42,
                "documents": [{"id": "asset:a1"}, {"id": "asset:a2"}],
                "facet_counts": {"facet_fields": {"name": ["test", 3]}},
            }
        )

        assert result.num_found == 42
        assert len(result.documents) == 2
        assert result.facet_fields == {"name": ["test", 3]}
        assert result.facet_ranges == {}

    def test_from_empty_body(self) -> None:
        """Test that an empty body decodes to an empty result."""
        result = SearchResult.from_dict(None)

        assert result.num_found == 0
        assert result.documents == []

    def test_ids_strip_prefix(self) -> None:
        """Test reading ids with and without classification prefix."""
        result = SearchResult.from_dict({"documents": [{"id": "asset:a1"}, {"id": "a2"}, {}]})

        assert result.ids() == ["asset:a1", "a2"]
        assert result.ids("asset") == ["a1", "a2"]


class TestBulkModels:
    """Test BulkBatch and BulkOutcome."""

    def test_strip_classification_prefix(self) -> None:
        """Test that only the leading classification prefix is removed."""
        assert strip_classification_prefix("content:abc", "content") == "abc"
        assert strip_classification_prefix("abc", "content") == "abc"
        assert strip_classification_prefix("content-type:abc", "content") == "content-type:abc"

    def test_batch_from_documents(self) -> None:
        """Test building a batch from search documents."""
        batch = BulkBatch.from_documents("asset", [{"id": "asset:1"}, {"id": "2"}])

        assert batch.ids == ("1", "2")
        assert len(batch) == 2
        assert list(batch) == ["1", "2"]

    def test_batch_is_immutable(self) -> None:
        """Test that a batch cannot be modified."""
        batch = BulkBatch("asset", ("1",))

        with pytest.raises(dataclasses.FrozenInstanceError):
            batch.ids = ("2",)

    def test_chunks(self) -> None:
        """Test splitting a batch into chunks."""
        batch = BulkBatch("content", ("1", "2", "3", "4", "5"))

        assert batch.chunks(2) == [("1", "2"), ("3", "4"), ("5",)]
        with pytest.raises(ValueError):
            batch.chunks(0)

    def test_outcome_to_dict(self) -> None:
        """Test outcome serialization."""
        assert BulkOutcome("1", value="1").to_dict() == {"id": "1", "ok": True, "error": None}
        failed = BulkOutcome("2", error=RuntimeError("boom"))
        assert failed.ok is False
        assert failed.to_dict()["error"] == "boom"


class TestTaxonomyModels:
    """Test the taxonomy level format and id maps."""

    def test_category_ref_parse(self) -> None:
        """Test the accepted category reference shapes."""
        assert CategoryRef.parse("Sports") == CategoryRef("Sports")
        assert CategoryRef.parse({"name": "Sports", "id": "s1"}) == CategoryRef("Sports", "s1")
        with pytest.raises(ValueError):
            CategoryRef.parse({"id": "s1"})

    def test_level_from_dict(self) -> None:
        """Test parsing a level, including the old 'childs' key."""
        level = TaxonomyLevel.from_dict(
            {"parent": {"name": "Sports", "id": "s1"}, "childs": ["Soccer", {"name": "Golf", "id": "g1"}]}
        )

        assert level.parent == CategoryRef("Sports", "s1")
        assert level.children == (CategoryRef("Soccer"), CategoryRef("Golf", "g1"))
        assert level.parent_name == "Sports"

    def test_named_level(self) -> None:
        """Test that a named level is its own parent."""
        level = TaxonomyLevel.from_dict({"name": "Sports", "children": ["Soccer"]})

        assert level.parent is None
        assert level.parent_name == "Sports"
        assert level.to_dict()["name"] == "Sports"

    def test_definitions_round_trip(self) -> None:
        """Test converting definitions to dicts and back."""
        data = {"Sports": [{"parent": {"name": "Sports", "id": "s1"}, "children": [{"name": "Golf", "id": "g1"}]}]}

        definitions = parse_definitions(data)

        assert definitions_to_dict(definitions) == data

    def test_with_children_returns_copy(self) -> None:
        """Test that replacing children leaves the original level untouched."""
        level = TaxonomyLevel(CategoryRef("Sports"), (CategoryRef("Golf"),))

        updated = level.with_children([CategoryRef("Golf", "g1")])

        assert level.children[0].id is None
        assert updated.children[0].id == "g1"

    def test_id_map_with_ids(self) -> None:
        """Test that with_ids returns an extended copy."""
        id_map = TaxonomyIdMap("Sports", {"Sports": "s1"})

        extended = id_map.with_ids([("Golf", "g1")])

        assert "Golf" not in id_map
        assert extended.get("Golf") == "g1"
        assert extended.get("Sports") == "s1"
        assert extended.get(None) is None
        assert extended.to_dict() == {"Sports": "s1", "Golf": "g1"}


class TestCategoryNode:
    """Test the nested tree representation."""

    @pytest.fixture
    def tree(self) -> CategoryNode:
        """Build a small tree."""
        golf = CategoryNode("Golf", "g1", "s1", "Sports")
        sports = CategoryNode("Sports", "s1", "r1", "Root", [golf])
        music = CategoryNode("Music", "m1", "r1", "Root")
        return CategoryNode("Root", "r1", children=[sports, music])

    def test_walk_depth_first(self, tree: CategoryNode) -> None:
        """Test depth-first traversal with name paths."""
        visited = [(node.name, path) for node, path in tree.walk()]

        assert visited == [
            ("Root", ["Root"]),
            ("Sports", ["Root", "Sports"]),
            ("Golf", ["Root", "Sports", "Golf"]),
            ("Music", ["Root", "Music"]),
        ]

    def test_find(self, tree: CategoryNode) -> None:
        """Test finding a node by name."""
        assert tree.find("Golf").id == "g1"
        assert tree.find("Chess") is None

    def test_is_root(self, tree: CategoryNode) -> None:
        """Test root detection."""
        assert tree.is_root
        assert not tree.find("Golf").is_root

    def test_to_json(self, tree: CategoryNode) -> None:
        """Test JSON serialization of the tree."""
        data = json.loads(tree.to_json())

        assert data["name"] == "Root"
        assert data["children"][0]["children"][0]["parentName"] == "Sports"
