"""
Node repository for closure-tree.

NodeRepository creates, reads, updates and deletes node rows and honours the
engine contract: every parent assignment goes through
AttachDetachEngine.add_child / move_to_child_of, and every physical delete is
preceded by AttachDetachEngine.on_destroy.

Results are NodeRecord snapshots in plain lists; there are no lazy
collections.
"""

import logging
from collections import deque
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select

from .config import DependentStrategy
from .engine import AttachDetachEngine
from .exceptions import InvalidOperation, NodeNotFound
from .models import NodeRecord, node_id_of
from .store import TreeStore

logger = logging.getLogger(__name__)


class NodeRepository:
    """
    Node rows plus the attach / destroy hooks.

    Args:
        store: The TreeStore holding both tables
        engine: AttachDetachEngine over the same store
    """

    def __init__(self, store: TreeStore, engine: AttachDetachEngine):
        self._store = store
        self._engine = engine
        self._config = store.config

    def _record(self, node) -> NodeRecord:
        return NodeRecord.from_model(node, self._config)

    def _records(self, nodes) -> List[NodeRecord]:
        return [self._record(n) for n in nodes]

    def _load(self, session, node_id: int):
        node = session.get(self._store.node_model, node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def lookup_attribute(self, column: str):
        """
        Resolve a lookup column identifier to the mapped node attribute.

        Args:
            column: The configured name column or a scope column

        Raises:
            InvalidOperation: For any other column
        """
        if column not in self._config.lookup_columns:
            raise InvalidOperation(
                f"Cannot look up nodes by '{column}'. "
                f"Lookup columns: {self._config.lookup_columns}"
            )
        Node = self._store.node_model
        if column == self._config.name_column:
            return Node.name
        return getattr(Node, column)

    # ------------------------------------------------------------------
    # Create / read / update
    # ------------------------------------------------------------------

    def create(
        self,
        parent_id: Any = None,
        name: Optional[str] = None,
        scope: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> NodeRecord:
        """
        Insert a node, attaching it under `parent_id` when given.

        Args:
            parent_id: Parent node (id or record); None creates a root
            name: Display key
            scope: Scope column values; defaults to the parent's scope
            attributes: Free-form JSON attributes

        Returns:
            The new node

        Raises:
            NodeNotFound: If the parent does not exist
            InvalidOperation: Unknown scope column, or scope differs from the
                parent's
        """
        self._store.scope_criteria(scope)  # validates the keys
        Node = self._store.node_model

        with self._store.transaction() as session:
            parent = None
            if parent_id is not None:
                parent = self._load(session, node_id_of(parent_id))

            values = {column: None for column in self._config.scope_columns}
            if parent is not None:
                values.update(
                    {column: getattr(parent, column) for column in self._config.scope_columns}
                )
            values.update(scope or {})

            node = Node(name=name, attributes=dict(attributes or {}), **values)
            session.add(node)
            session.flush()

            if parent is not None:
                self._engine.add_child(parent.id, node.id)

            record = self._record(node)

        logger.debug("Created node %s (parent=%s)", record.id, record.parent_id)
        return record

    def get(self, node_id: Any) -> Optional[NodeRecord]:
        """Get a node by id, or None."""
        with self._store.transaction() as session:
            node = session.get(self._store.node_model, node_id_of(node_id))
            return self._record(node) if node is not None else None

    def update(
        self,
        node_id: Any,
        name: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
        replace_attributes: bool = False,
    ) -> NodeRecord:
        """
        Update a node's name and / or attributes.

        Attributes are merged into the existing dict unless replace_attributes
        is True. Parent pointers change only through reparent().

        Raises:
            NodeNotFound: If the node does not exist
        """
        with self._store.transaction() as session:
            node = self._load(session, node_id_of(node_id))
            if name is not None:
                node.name = name
            if attributes is not None:
                merged = {} if replace_attributes else dict(node.attributes or {})
                merged.update(attributes)
                node.attributes = merged
            session.flush()
            return self._record(node)

    def reparent(self, node_id: Any, new_parent_id: Any) -> NodeRecord:
        """Give a node a new parent (None makes it a root), subtree included."""
        with self._store.transaction():
            self._engine.move_to_child_of(node_id, new_parent_id)
            return self.get(node_id)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(
        self,
        node_id: Any,
        strategy: Optional[Union[DependentStrategy, str]] = None,
    ) -> bool:
        """
        Delete a node; its children are handled by `strategy`.

        Args:
            node_id: Node to delete
            strategy: DependentStrategy (defaults to config.dependent)
                - destroy: delete the subtree, deepest rows first
                - reparent: children move to the node's parent (or become roots)
                - nullify: children become roots

        Returns:
            True if the node was deleted, False if it did not exist
        """
        strategy = DependentStrategy(strategy or self._config.dependent)
        node_id = node_id_of(node_id)
        Node = self._store.node_model

        with self._store.transaction() as session:
            node = session.get(Node, node_id)
            if node is None:
                return False

            if strategy is DependentStrategy.DESTROY:
                doomed = self._subtree_top_down(session, node)
                self._engine.on_destroy(node_id)
                for victim in reversed(doomed):
                    session.delete(victim)
                    session.flush()
            else:
                new_parent = node.parent_id if strategy is DependentStrategy.REPARENT else None
                for child in self._child_models(session, node_id):
                    self._engine.move_to_child_of(child.id, new_parent)
                self._engine.on_destroy(node_id)
                session.delete(node)
                session.flush()
                doomed = [node]

        logger.debug(
            "Deleted node %s (%s, %d rows)", node_id, strategy.value, len(doomed)
        )
        return True

    def _subtree_top_down(self, session, top) -> List[Any]:
        """The node and everything below it by parent pointer, breadth-first."""
        ordered = [top]
        seen = {top.id}
        queue = deque([top.id])
        while queue:
            current = queue.popleft()
            for child in self._child_models(session, current):
                if child.id in seen:
                    continue
                seen.add(child.id)
                ordered.append(child)
                queue.append(child.id)
        return ordered

    def _child_models(self, session, node_id: int) -> List[Any]:
        Node = self._store.node_model
        return session.query(Node).filter(Node.parent_id == node_id).order_by(Node.id).all()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def children_of(
        self,
        node_id: Any,
        column: Optional[str] = None,
        value: Any = None,
    ) -> List[NodeRecord]:
        """
        Direct children of a node by parent pointer.

        Args:
            node_id: Parent node
            column: Optional lookup column to filter on (name or scope column)
            value: Value the column must equal
        """
        Node = self._store.node_model
        query_filter = [Node.parent_id == node_id_of(node_id)]
        if column is not None:
            query_filter.append(self.lookup_attribute(column) == value)
        with self._store.transaction() as session:
            rows = session.query(Node).filter(*query_filter).order_by(Node.id).all()
            return self._records(rows)

    def roots_of(
        self,
        scope: Optional[Dict[str, Any]] = None,
        column: Optional[str] = None,
        value: Any = None,
    ) -> List[NodeRecord]:
        """Root nodes, optionally within one scope and filtered on a column."""
        Node = self._store.node_model
        query_filter = [Node.parent_id.is_(None)] + self._store.scope_criteria(scope)
        if column is not None:
            query_filter.append(self.lookup_attribute(column) == value)
        with self._store.transaction() as session:
            rows = session.query(Node).filter(*query_filter).order_by(Node.id).all()
            return self._records(rows)

    def root(self, scope: Optional[Dict[str, Any]] = None) -> Optional[NodeRecord]:
        """An arbitrary root (the lowest id), or None for an empty scope."""
        roots = self.roots_of(scope)
        return roots[0] if roots else None

    def find_by(
        self,
        column: str,
        value: Any,
        scope: Optional[Dict[str, Any]] = None,
    ) -> List[NodeRecord]:
        """
        Typed lookup: nodes whose `column` equals `value`.

        Raises:
            InvalidOperation: If column is not a lookup column
        """
        Node = self._store.node_model
        criteria = [self.lookup_attribute(column) == value]
        criteria += self._store.scope_criteria(scope)
        with self._store.transaction() as session:
            rows = session.query(Node).filter(*criteria).order_by(Node.id).all()
            return self._records(rows)

    def all_nodes(self, scope: Optional[Dict[str, Any]] = None) -> List[NodeRecord]:
        Node = self._store.node_model
        criteria = self._store.scope_criteria(scope)
        with self._store.transaction() as session:
            return self._records(session.query(Node).filter(*criteria).order_by(Node.id).all())

    def count(self, scope: Optional[Dict[str, Any]] = None) -> int:
        Node = self._store.node_model
        stmt = select(func.count()).select_from(Node)
        criteria = self._store.scope_criteria(scope)
        if criteria:
            stmt = stmt.where(*criteria)
        with self._store.transaction() as session:
            return session.execute(stmt).scalar_one()

    def self_and_siblings(self, node_id: Any) -> List[NodeRecord]:
        """
        Nodes sharing this node's parent, the node included.

        For a root these are the roots of the same scope.
        """
        Node = self._store.node_model
        with self._store.transaction() as session:
            node = self._load(session, node_id_of(node_id))
            if node.parent_id is None:
                scope = {c: getattr(node, c) for c in self._config.scope_columns}
                return self.roots_of(scope)
            rows = (
                session.query(Node)
                .filter(Node.parent_id == node.parent_id)
                .order_by(Node.id)
                .all()
            )
            return self._records(rows)

    def siblings_of(self, node_id: Any) -> List[NodeRecord]:
        """self_and_siblings() without the node itself."""
        own_id = node_id_of(node_id)
        return [n for n in self.self_and_siblings(own_id) if n.id != own_id]

    def root_of(self, node_id: Any) -> Optional[NodeRecord]:
        """
        The root of the node's tree: the node itself when it is a root,
        otherwise its farthest ancestor. None for an unknown id.
        """
        Node, Edge = self._store.node_model, self._store.edge_model
        own_id = node_id_of(node_id)
        with self._store.transaction() as session:
            node = session.get(Node, own_id)
            if node is None:
                return None
            if node.parent_id is None:
                return self._record(node)
            top = (
                session.query(Node)
                .join(Edge, Edge.ancestor_id == Node.id)
                .filter(Edge.descendant_id == own_id)
                .order_by(Edge.generations.desc())
                .first()
            )
            return self._record(top) if top is not None else None


__all__ = ["NodeRepository"]
