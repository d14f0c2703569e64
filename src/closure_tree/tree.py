"""
ClosureTree: one object wiring every closure-tree component.

Example:
    >>> from closure_tree import ClosureTree
    >>>
    >>> tree = ClosureTree(url="sqlite:///:memory:")
    >>> r = tree.create_node(name="R")
    >>> x = tree.create_node(name="X", parent=r)
    >>> y = tree.create_node(name="Y", parent=x)
    >>> [n.name for n in tree.ancestors(y)]
    ['X', 'R']
    >>> tree.find_or_create_by_path(["R", "X", "Z"]).name
    'Z'
    >>> tree.close()
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy.orm import Session

from .config import DependentStrategy, TreeConfig
from .engine import AttachDetachEngine
from .hierarchy import HierarchyStore
from .models import EdgeRecord, NodeRecord
from .paths import PathLike, PathResolver
from .rebuild import RebuildEngine
from .repository import NodeRepository
from .store import TreeStore

logger = logging.getLogger(__name__)


class ClosureTree:
    """
    Closure-table backed tree over one node table.

    Args:
        url: SQLAlchemy connection URL (default: in-memory SQLite)
        config: Table / column names and delete policy
        **store_options: Passed to TreeStore (pool_size, echo, auto_migrate, lazy)

    Attributes:
        store: TreeStore (engine, sessions, transactions)
        hierarchy: HierarchyStore (closure table reads and writes)
        engine: AttachDetachEngine (add_child, detach, move_to_child_of)
        rebuilder: RebuildEngine (rebuild_all, verify)
        nodes: NodeRepository (node rows)
        paths: PathResolver (path lookups)
    """

    def __init__(
        self,
        url: str = "sqlite:///:memory:",
        config: Optional[TreeConfig] = None,
        **store_options: Any,
    ):
        self.store = TreeStore(url=url, config=config, **store_options)
        self.config = self.store.config
        self.hierarchy = HierarchyStore(self.store)
        self.engine = AttachDetachEngine(self.store, self.hierarchy)
        self.rebuilder = RebuildEngine(self.store, self.hierarchy, self.engine)
        self.nodes = NodeRepository(self.store, self.engine)
        self.paths = PathResolver(self.store, self.nodes, self.hierarchy)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Group several calls into one transaction / consistent snapshot."""
        with self.store.transaction() as session:
            yield session

    # Nodes

    def create_node(
        self,
        name: Optional[str] = None,
        parent: Any = None,
        scope: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> NodeRecord:
        return self.nodes.create(
            parent_id=parent, name=name, scope=scope, attributes=attributes
        )

    def get_node(self, node: Any) -> Optional[NodeRecord]:
        return self.nodes.get(node)

    def update_node(self, node: Any, **changes: Any) -> NodeRecord:
        return self.nodes.update(node, **changes)

    def delete_node(
        self, node: Any, strategy: Optional[Union[DependentStrategy, str]] = None
    ) -> bool:
        return self.nodes.delete(node, strategy=strategy)

    def children(self, node: Any) -> List[NodeRecord]:
        return self.nodes.children_of(node)

    def roots(self, scope: Optional[Dict[str, Any]] = None) -> List[NodeRecord]:
        return self.nodes.roots_of(scope)

    def root(self, node: Any) -> Optional[NodeRecord]:
        """The root of the node's tree (the node itself for a root)."""
        return self.nodes.root_of(node)

    def siblings(self, node: Any) -> List[NodeRecord]:
        return self.nodes.siblings_of(node)

    def self_and_siblings(self, node: Any) -> List[NodeRecord]:
        return self.nodes.self_and_siblings(node)

    def find_by(
        self, column: str, value: Any, scope: Optional[Dict[str, Any]] = None
    ) -> List[NodeRecord]:
        return self.nodes.find_by(column, value, scope=scope)

    # Hierarchy reads

    def ancestors(self, node: Any) -> List[NodeRecord]:
        return self.hierarchy.ancestors_of(node)

    def descendants(self, node: Any) -> List[NodeRecord]:
        return self.hierarchy.descendants_of(node)

    def self_and_ancestors(self, node: Any) -> List[NodeRecord]:
        with self.transaction():
            record = self.nodes.get(node)
            if record is None:
                return []
            return [record] + self.hierarchy.ancestors_of(record.id)

    def self_and_descendants(self, node: Any) -> List[NodeRecord]:
        with self.transaction():
            record = self.nodes.get(node)
            if record is None:
                return []
            return [record] + self.hierarchy.descendants_of(record.id)

    def ancestor_edges(self, node: Any) -> List[EdgeRecord]:
        return self.hierarchy.ancestor_edges(node)

    def descendant_edges(self, node: Any) -> List[EdgeRecord]:
        return self.hierarchy.descendant_edges(node)

    def is_root(self, node: Any) -> bool:
        return self.hierarchy.is_root(node)

    def is_leaf(self, node: Any) -> bool:
        return self.hierarchy.is_leaf(node)

    def is_child(self, node: Any) -> bool:
        record = self.nodes.get(node)
        return record is not None and record.is_child

    def level(self, node: Any) -> int:
        return self.hierarchy.level(node)

    def leaves(
        self, node: Any = None, scope: Optional[Dict[str, Any]] = None
    ) -> List[NodeRecord]:
        """Leaves below `node`, or every leaf (in `scope`) when node is None."""
        if node is None:
            return self.hierarchy.leaves(scope)
        return self.hierarchy.leaves_of(node)

    # Mutations

    def add_child(self, parent: Any, child: Any) -> int:
        return self.engine.add_child(parent, child)

    def detach(self, node: Any) -> int:
        return self.engine.detach(node)

    def move_to_child_of(self, node: Any, new_parent: Any) -> int:
        return self.engine.move_to_child_of(node, new_parent)

    def move_to_root(self, node: Any) -> int:
        return self.engine.move_to_root(node)

    def rebuild_all(self) -> int:
        return self.rebuilder.rebuild_all()

    def verify(self) -> Dict[str, Any]:
        return self.rebuilder.verify()

    # Paths

    def find_by_path(
        self,
        path: PathLike,
        start: Any = None,
        scope: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        return self.paths.find_by_path(path, start=start, scope=scope)

    def find_or_create_by_path(
        self,
        path: PathLike,
        start: Any = None,
        scope: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        return self.paths.find_or_create_by_path(
            path, start=start, scope=scope, attributes=attributes
        )

    def ancestry_path(self, node: Any) -> List[Any]:
        return self.paths.ancestry_path(node)

    def close(self) -> None:
        self.store.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False


__all__ = ["ClosureTree"]
