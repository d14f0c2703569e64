"""
Closure table reads and low-level writes.

HierarchyStore is the only component that touches the closure table. Reads
are single indexed lookups or joins; writes are plain inserts and deletes,
rows are never updated in place.

All methods join the caller's open transaction (see TreeStore.transaction),
so a sequence of calls made inside one `with store.transaction():` block sees
one consistent snapshot.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from .exceptions import DuplicateEdge, IntegrityViolation, InvalidOperation
from .models import EdgeRecord, NodeRecord, node_id_of
from .store import TreeStore

logger = logging.getLogger(__name__)

# Keeps IN (...) lists below SQLite's bound-parameter limit
_DELETE_BATCH_SIZE = 500


class HierarchyStore:
    """
    Ancestor / descendant queries and edge maintenance.

    Args:
        store: The TreeStore holding both tables
    """

    def __init__(self, store: TreeStore):
        self._store = store
        self._config = store.config

    def _records(self, nodes) -> List[NodeRecord]:
        return [NodeRecord.from_model(n, self._config) for n in nodes]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def ancestors_of(self, node: Any) -> List[NodeRecord]:
        """
        Get all ancestors of a node, nearest first.

        Returns:
            Parent, grandparent, ... root. Empty for a root or a detached node.
        """
        node_id = node_id_of(node)
        Node, Edge = self._store.node_model, self._store.edge_model
        with self._store.transaction() as session:
            rows = (
                session.query(Node)
                .join(Edge, Edge.ancestor_id == Node.id)
                .filter(Edge.descendant_id == node_id)
                .order_by(Edge.generations.asc())
                .all()
            )
            return self._records(rows)

    def descendants_of(self, node: Any) -> List[NodeRecord]:
        """
        Get all descendants of a node, nearest first.

        Siblings come out ordered by id for stable output only; the order is
        not part of the contract.
        """
        node_id = node_id_of(node)
        Node, Edge = self._store.node_model, self._store.edge_model
        with self._store.transaction() as session:
            rows = (
                session.query(Node)
                .join(Edge, Edge.descendant_id == Node.id)
                .filter(Edge.ancestor_id == node_id)
                .order_by(Edge.generations.asc(), Node.id.asc())
                .all()
            )
            return self._records(rows)

    def ancestor_ids(self, node: Any) -> List[int]:
        """Ancestor ids, nearest first."""
        return [e.ancestor_id for e in self.ancestor_edges(node)]

    def descendant_ids(self, node: Any) -> List[int]:
        """Descendant ids, nearest first."""
        return [e.descendant_id for e in self.descendant_edges(node)]

    def ancestor_edges(self, node: Any) -> List[EdgeRecord]:
        """Closure rows with the node as descendant, nearest ancestor first."""
        Edge = self._store.edge_model
        stmt = (
            select(Edge.ancestor_id, Edge.descendant_id, Edge.generations)
            .where(Edge.descendant_id == node_id_of(node))
            .order_by(Edge.generations.asc())
        )
        return self._edge_records(stmt)

    def descendant_edges(self, node: Any) -> List[EdgeRecord]:
        """Closure rows with the node as ancestor, nearest descendant first."""
        Edge = self._store.edge_model
        stmt = (
            select(Edge.ancestor_id, Edge.descendant_id, Edge.generations)
            .where(Edge.ancestor_id == node_id_of(node))
            .order_by(Edge.generations.asc(), Edge.descendant_id.asc())
        )
        return self._edge_records(stmt)

    def all_edges(self) -> List[EdgeRecord]:
        """Every closure row (diagnostics and verification)."""
        Edge = self._store.edge_model
        stmt = select(Edge.ancestor_id, Edge.descendant_id, Edge.generations).order_by(
            Edge.ancestor_id, Edge.descendant_id
        )
        return self._edge_records(stmt)

    def _edge_records(self, stmt) -> List[EdgeRecord]:
        with self._store.transaction() as session:
            return [EdgeRecord(*row) for row in session.execute(stmt).all()]

    def edge_count(self) -> int:
        Edge = self._store.edge_model
        with self._store.transaction() as session:
            return session.execute(select(func.count()).select_from(Edge)).scalar_one()

    def is_leaf(self, node: Any) -> bool:
        """True iff no closure row has the node as ancestor."""
        Edge = self._store.edge_model
        stmt = select(Edge.descendant_id).where(Edge.ancestor_id == node_id_of(node))
        with self._store.transaction() as session:
            return session.execute(stmt.limit(1)).first() is None

    def is_root(self, node: Any) -> bool:
        """
        True iff the node's parent pointer is null.

        Independent of the closure table. A missing node is not a root.
        """
        Node = self._store.node_model
        with self._store.transaction() as session:
            row = session.execute(
                select(Node.id, Node.parent_id).where(Node.id == node_id_of(node))
            ).first()
            return row is not None and row[1] is None

    def is_ancestor_of(self, ancestor: Any, descendant: Any) -> bool:
        return self.generations_between(ancestor, descendant) is not None

    def generations_between(self, ancestor: Any, descendant: Any) -> Optional[int]:
        """Parent hops from descendant up to ancestor, or None if unrelated."""
        Edge = self._store.edge_model
        stmt = select(Edge.generations).where(
            Edge.ancestor_id == node_id_of(ancestor),
            Edge.descendant_id == node_id_of(descendant),
        )
        with self._store.transaction() as session:
            return session.execute(stmt).scalar_one_or_none()

    def level(self, node: Any) -> int:
        """Depth of the node: 0 for a root, 1 for its children, ..."""
        Edge = self._store.edge_model
        stmt = (
            select(func.count())
            .select_from(Edge)
            .where(Edge.descendant_id == node_id_of(node))
        )
        with self._store.transaction() as session:
            return session.execute(stmt).scalar_one()

    def leaves(self, scope: Optional[Dict[str, Any]] = None) -> List[NodeRecord]:
        """All nodes that are nobody's ancestor, optionally within one scope."""
        Node, Edge = self._store.node_model, self._store.edge_model
        criteria = self._store.scope_criteria(scope)
        with self._store.transaction() as session:
            rows = (
                session.query(Node)
                .outerjoin(Edge, Edge.ancestor_id == Node.id)
                .filter(Edge.ancestor_id.is_(None), *criteria)
                .order_by(Node.id)
                .all()
            )
            return self._records(rows)

    def leaves_of(self, node: Any) -> List[NodeRecord]:
        """
        Leaf descendants of a node; `[node]` when the node itself is a leaf.

        Returns an empty list for an unknown node id.
        """
        node_id = node_id_of(node)
        Node, Edge = self._store.node_model, self._store.edge_model
        below = aliased(Edge)
        with self._store.transaction() as session:
            if self.is_leaf(node_id):
                found = session.get(Node, node_id)
                return self._records([found]) if found is not None else []
            rows = (
                session.query(Node)
                .join(Edge, Edge.descendant_id == Node.id)
                .outerjoin(below, below.ancestor_id == Node.id)
                .filter(Edge.ancestor_id == node_id, below.ancestor_id.is_(None))
                .order_by(Edge.generations.asc(), Node.id.asc())
                .all()
            )
            return self._records(rows)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_edge(self, ancestor_id: int, descendant_id: int, generations: int) -> None:
        """
        Insert one closure row.

        Raises:
            InvalidOperation: For a self-edge or generations < 1
            DuplicateEdge: If the pair already exists
        """
        self._insert_rows([(ancestor_id, descendant_id, generations)])

    def insert_ancestor_edges(self, descendant_id: int, ancestor_ids: Iterable[int]) -> int:
        """
        Fan out closure rows for one node.

        Args:
            descendant_id: The node gaining ancestors
            ancestor_ids: Its ancestors nearest first (parent, grandparent, ...)

        Returns:
            Number of rows inserted

        Raises:
            DuplicateEdge: If any pair already exists
        """
        rows = [
            (ancestor_id, descendant_id, generations)
            for generations, ancestor_id in enumerate(ancestor_ids, start=1)
        ]
        self._insert_rows(rows)
        return len(rows)

    def _insert_rows(self, rows: List[tuple]) -> None:
        if not rows:
            return
        for ancestor_id, descendant_id, generations in rows:
            if ancestor_id == descendant_id:
                raise InvalidOperation(f"Refusing to store self-edge for node {ancestor_id}")
            if generations < 1:
                raise InvalidOperation(
                    f"generations must be >= 1, got {generations} "
                    f"for ({ancestor_id}, {descendant_id})"
                )

        Edge = self._store.edge_model
        with self._store.transaction() as session:
            existing = self._first_existing(session, rows)
            if existing is not None:
                logger.error(
                    "Duplicate closure edge (%s, %s)", existing[0], existing[1]
                )
                raise DuplicateEdge(
                    f"Edge ({existing[0]}, {existing[1]}) already exists",
                    ancestor_id=existing[0],
                    descendant_id=existing[1],
                )
            try:
                session.execute(
                    insert(Edge),
                    [
                        {"ancestor_id": a, "descendant_id": d, "generations": g}
                        for a, d, g in rows
                    ],
                )
            except IntegrityError as e:
                # A concurrent writer got there between the check and the insert
                first = rows[0]
                logger.error("Closure edge insert rejected for node %s: %s", first[1], e)
                raise IntegrityViolation(
                    f"Could not insert closure edges for node {first[1]}: {e.orig}",
                    ancestor_id=first[0],
                    descendant_id=first[1],
                ) from e

    def _first_existing(self, session, rows: List[tuple]) -> Optional[tuple]:
        Edge = self._store.edge_model
        by_descendant: Dict[int, List[int]] = {}
        for ancestor_id, descendant_id, _ in rows:
            by_descendant.setdefault(descendant_id, []).append(ancestor_id)
        for descendant_id, ancestor_ids in by_descendant.items():
            found = session.execute(
                select(Edge.ancestor_id, Edge.descendant_id)
                .where(
                    Edge.descendant_id == descendant_id,
                    Edge.ancestor_id.in_(ancestor_ids),
                )
                .limit(1)
            ).first()
            if found is not None:
                return tuple(found)
        return None

    def delete_edges_for_subtree(self, node: Any) -> int:
        """
        Remove a node and everything below it from the closure table.

        Deletes every row whose descendant is the node or one of its
        descendants, which also erases the subtree's internal rows. The read of
        the descendant set and the delete share one transaction.

        Returns:
            Number of rows deleted
        """
        node_id = node_id_of(node)
        Edge = self._store.edge_model
        with self._store.transaction() as session:
            doomed = list(
                session.execute(
                    select(Edge.descendant_id).where(Edge.ancestor_id == node_id)
                ).scalars()
            )
            doomed.append(node_id)

            deleted = 0
            for start in range(0, len(doomed), _DELETE_BATCH_SIZE):
                batch = doomed[start : start + _DELETE_BATCH_SIZE]
                result = session.execute(delete(Edge).where(Edge.descendant_id.in_(batch)))
                deleted += result.rowcount or 0

        logger.debug("Deleted %d closure rows for subtree of node %s", deleted, node_id)
        return deleted

    def truncate(self) -> int:
        """Delete every closure row. Returns the number of rows deleted."""
        Edge = self._store.edge_model
        with self._store.transaction() as session:
            deleted = session.execute(delete(Edge)).rowcount or 0
        logger.debug("Truncated closure table (%d rows)", deleted)
        return deleted


__all__ = ["HierarchyStore"]
