"""
ORM models and value records for closure-tree.

Models are built per TreeConfig, since table and column names are
configurable:

    nodes                          node_hierarchies
    id | parent_id | name | ...    ancestor_id | descendant_id | generations
    ---|-----------|------|        ------------|---------------|------------
    1  | NULL      | R    |        1           | 2             | 1
    2  | 1         | X    |        1           | 3             | 2
    3  | 2         | Y    |        2           | 3             | 1

Only strict ancestors are stored: there are no self rows and generations is
always >= 1, so a node at depth d owns exactly d rows as descendant.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from .config import TreeConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_tree_models(base, config: TreeConfig) -> Tuple[type, type]:
    """
    Create the node and edge ORM models with the given declarative base.

    The node model always exposes `parent_id` and `name` attributes; the
    database column names come from config.parent_column and
    config.name_column. Each scope column becomes an attribute of the same
    name.

    Returns:
        (TreeNode, TreeEdge) model classes
    """
    node_table = config.node_table
    edge_table = config.hierarchy_table_name

    node_attrs: Dict[str, Any] = {
        "__tablename__": node_table,
        "id": Column(Integer, primary_key=True, autoincrement=True),
        "parent_id": Column(
            config.parent_column,
            Integer,
            ForeignKey(f"{node_table}.id"),
            nullable=True,
            index=True,
        ),
        "name": Column(config.name_column, String(255), nullable=True, index=True),
        "attributes": Column(JSON, default=dict),
        "created_at": Column(DateTime, default=_utcnow),
        "updated_at": Column(DateTime, default=_utcnow, onupdate=_utcnow),
    }
    for column in config.scope_columns:
        node_attrs[column] = Column(column, String(255), nullable=True, index=True)

    TreeNode = type("TreeNode", (base,), node_attrs)

    edge_attrs: Dict[str, Any] = {
        "__tablename__": edge_table,
        "ancestor_id": Column(
            Integer, ForeignKey(f"{node_table}.id"), primary_key=True
        ),
        "descendant_id": Column(
            Integer, ForeignKey(f"{node_table}.id"), primary_key=True
        ),
        "generations": Column(Integer, nullable=False),
        "__table_args__": (
            CheckConstraint("generations >= 1", name=f"ck_{edge_table}_generations"),
            Index(f"ix_{edge_table}_ancestor_id", "ancestor_id"),
            Index(f"ix_{edge_table}_descendant_id", "descendant_id"),
        ),
    }
    TreeEdge = type("TreeEdge", (base,), edge_attrs)

    return TreeNode, TreeEdge


@dataclass(frozen=True)
class NodeRecord:
    """
    Detached snapshot of a node row.

    Safe to use after the session that produced it is closed. Re-read a node
    after mutating the tree; snapshots are not refreshed.
    """

    id: int
    parent_id: Optional[int]
    name: Optional[str] = None
    scope: Dict[str, Optional[str]] = field(default_factory=dict)
    attributes: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_child(self) -> bool:
        return self.parent_id is not None

    @classmethod
    def from_model(cls, node, config: TreeConfig) -> "NodeRecord":
        return cls(
            id=node.id,
            parent_id=node.parent_id,
            name=node.name,
            scope={column: getattr(node, column) for column in config.scope_columns},
            attributes=dict(node.attributes or {}),
            created_at=node.created_at,
            updated_at=node.updated_at,
        )


@dataclass(frozen=True)
class EdgeRecord:
    """One closure row."""

    ancestor_id: int
    descendant_id: int
    generations: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.ancestor_id, self.descendant_id, self.generations)


def node_id_of(node: Any) -> int:
    """Accept a node id, a NodeRecord or an ORM node and return the id."""
    if isinstance(node, bool):
        raise TypeError("A node reference cannot be a bool")
    if isinstance(node, int):
        return node
    node_id = getattr(node, "id", None)
    if node_id is None:
        raise TypeError(f"Not a node reference: {node!r}")
    return node_id


__all__ = ["create_tree_models", "NodeRecord", "EdgeRecord", "node_id_of"]
