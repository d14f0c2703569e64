"""
Attach / detach / move for closure-tree.

AttachDetachEngine keeps the parent pointers and the closure table in step.
Every public method runs in one transaction: a node never ends up with a
parent pointer but without the matching closure rows, or the other way round.

    add_child(R, X); add_child(X, Y)

    ancestor | descendant | generations
    ---------|------------|------------
    R        | X          | 1
    X        | Y          | 1
    R        | Y          | 2
"""

import logging
from collections import deque
from typing import Any, Optional

from .exceptions import IntegrityViolation, InvalidOperation, NodeNotFound
from .hierarchy import HierarchyStore
from .models import node_id_of
from .store import TreeStore

logger = logging.getLogger(__name__)


class AttachDetachEngine:
    """
    Closure maintenance for single nodes and whole subtrees.

    Args:
        store: The TreeStore holding both tables
        hierarchy: HierarchyStore over the same store
    """

    def __init__(self, store: TreeStore, hierarchy: HierarchyStore):
        self._store = store
        self._hierarchy = hierarchy
        self._config = store.config

    def _load(self, session, node_id: int):
        node = session.get(self._store.node_model, node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def _same_scope(self, a, b) -> bool:
        return all(
            getattr(a, column) == getattr(b, column)
            for column in self._config.scope_columns
        )

    def _reaches(self, session, start_id: Optional[int], target_id: int) -> bool:
        """Walk parent pointers up from start_id looking for target_id."""
        Node = self._store.node_model
        seen = set()
        current = start_id
        while current is not None:
            if current == target_id:
                return True
            if current in seen:
                raise IntegrityViolation(
                    f"Parent pointer cycle through node {current}",
                    ancestor_id=current,
                    descendant_id=current,
                )
            seen.add(current)
            node = session.get(Node, current)
            current = node.parent_id if node is not None else None
        return False

    def _check_new_parent(self, session, parent, child) -> None:
        if parent.id == child.id:
            raise InvalidOperation(f"Node {child.id} cannot be its own parent")
        if self._reaches(session, parent.id, child.id):
            raise InvalidOperation(
                f"Cannot attach node {child.id} under its own descendant {parent.id}"
            )
        if not self._same_scope(parent, child):
            raise InvalidOperation(
                f"Nodes {parent.id} and {child.id} belong to different scopes"
            )

    def _has_children(self, session, node_id: int) -> bool:
        Node = self._store.node_model
        return session.query(Node.id).filter(Node.parent_id == node_id).first() is not None

    def _attach(self, session, parent, child) -> int:
        """Set the parent pointer and fan out the child's closure rows."""
        if child.parent_id != parent.id:
            child.parent_id = parent.id
            session.flush()
        ancestor_ids = [parent.id] + self._hierarchy.ancestor_ids(parent.id)
        return self._hierarchy.insert_ancestor_edges(child.id, ancestor_ids)

    def add_child(self, parent: Any, child: Any) -> int:
        """
        Make `child` a child of `parent` and insert its closure rows.

        Inserts one row per node in {parent} + ancestors(parent), generations
        counted from 1 at the parent. When the child already has a subtree
        (a root being grafted, or a node left detached), the subtree's rows
        are re-derived from parent pointers as well.

        Returns:
            Number of closure rows inserted

        Raises:
            NodeNotFound: If either node does not exist
            InvalidOperation: Self-attach, cycle, cross-scope, or child already
                attached under another parent
            DuplicateEdge: If the child is already attached under this parent
        """
        parent_id, child_id = node_id_of(parent), node_id_of(child)
        with self._store.transaction() as session:
            parent_node = self._load(session, parent_id)
            child_node = self._load(session, child_id)
            self._check_new_parent(session, parent_node, child_node)

            current = self._hierarchy.ancestor_ids(child_id)
            if current and current[0] != parent_id:
                raise InvalidOperation(
                    f"Node {child_id} is already attached under {current[0]}; "
                    f"use move_to_child_of"
                )

            if current or not self._has_children(session, child_id):
                # An existing edge to this parent surfaces as DuplicateEdge here
                inserted = self._attach(session, parent_node, child_node)
            else:
                self._hierarchy.delete_edges_for_subtree(child_id)
                inserted = self._attach(session, parent_node, child_node)
                inserted += self.rebuild_subtree(child_node)

        logger.debug("Attached node %s under %s (%d edges)", child_id, parent_id, inserted)
        return inserted

    def detach(self, node: Any) -> int:
        """
        Remove a node and its whole subtree from the closure table.

        Parent pointers are left alone; follow with add_child / rebuild_subtree
        or rebuild_all to restore rows.

        Returns:
            Number of closure rows deleted
        """
        node_id = node_id_of(node)
        with self._store.transaction() as session:
            self._load(session, node_id)
            return self._hierarchy.delete_edges_for_subtree(node_id)

    def on_destroy(self, node: Any) -> int:
        """
        Pre-delete hook: call before physically removing a node row.

        Only the node's subtree rows are removed. What happens to its children
        is the caller's policy (see DependentStrategy).
        """
        return self.detach(node)

    def rebuild_subtree(self, node: Any) -> int:
        """
        Re-derive closure rows for every descendant of `node` from parent
        pointers, top-down.

        The node's own rows must already be in place and its descendants must
        have none (as after detach followed by add_child).

        Returns:
            Number of closure rows inserted

        Raises:
            IntegrityViolation: If parent pointers below the node form a cycle
        """
        node_id = node_id_of(node)
        Node = self._store.node_model
        inserted = 0
        with self._store.transaction() as session:
            top = self._load(session, node_id)
            seen = {top.id}
            queue = deque([top])
            while queue:
                current = queue.popleft()
                children = (
                    session.query(Node)
                    .filter(Node.parent_id == current.id)
                    .order_by(Node.id)
                    .all()
                )
                for child in children:
                    if child.id in seen:
                        raise IntegrityViolation(
                            f"Parent pointer cycle through node {child.id}",
                            ancestor_id=current.id,
                            descendant_id=child.id,
                        )
                    seen.add(child.id)
                    inserted += self._attach(session, current, child)
                    queue.append(child)
        return inserted

    def move_to_child_of(self, node: Any, new_parent: Any) -> int:
        """
        Move a node, with its subtree, under `new_parent`.

        Detaches the subtree, attaches the node under its new parent, then
        re-attaches each descendant using its unchanged parent pointer. Passing
        None for new_parent makes the node a root. Moving a node to its current
        parent re-derives the subtree's rows, which also re-attaches a
        subtree left out by detach.

        Returns:
            Number of closure rows inserted

        Raises:
            NodeNotFound: If either node does not exist
            InvalidOperation: If new_parent is the node or one of its
                descendants, or lives in another scope
        """
        node_id = node_id_of(node)
        new_parent_id = node_id_of(new_parent) if new_parent is not None else None

        with self._store.transaction() as session:
            moving = self._load(session, node_id)
            target = None
            if new_parent_id is not None:
                target = self._load(session, new_parent_id)
                self._check_new_parent(session, target, moving)

            self._hierarchy.delete_edges_for_subtree(node_id)
            if target is not None:
                inserted = self._attach(session, target, moving)
            else:
                moving.parent_id = None
                session.flush()
                inserted = 0
            inserted += self.rebuild_subtree(moving)

        logger.debug("Moved node %s under %s (%d edges)", node_id, new_parent_id, inserted)
        return inserted

    def move_to_root(self, node: Any) -> int:
        """Make a node (and its subtree) a separate tree."""
        return self.move_to_child_of(node, None)


__all__ = ["AttachDetachEngine"]
