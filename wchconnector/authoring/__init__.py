"""Authoring operations.

- bulk: query-then-mutate engine shared by the delete operations
- assets: asset definitions
- content: content types and content items
- taxonomy: categories, taxonomy creation and reconciliation
"""

from .assets import Assets  # noqa: F401
from .bulk import BulkLifecycleOperator  # noqa: F401
from .content import Content  # noqa: F401
from .taxonomy import (  # noqa: F401
    CategoryAction,
    ChildOutcome,
    ReconcileResult,
    TaxonomyReconciler,
    flat_to_levels,
    flat_to_tree,
    tree_to_flat,
)

__all__ = [
    "Assets",
    "BulkLifecycleOperator",
    "Content",
    "TaxonomyReconciler",
    "CategoryAction",
    "ChildOutcome",
    "ReconcileResult",
    "flat_to_levels",
    "flat_to_tree",
    "tree_to_flat",
]
