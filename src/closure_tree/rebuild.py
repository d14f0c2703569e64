"""
Full closure table rebuild and verification.

rebuild_all() is the one recovery path after corruption or after parent
pointers were bulk-edited outside the engine. It is never run automatically.

verify() is read-only: it derives the expected closure from parent pointers
with networkx and diffs it against the stored rows.

Example:
    >>> report = tree.verify()
    >>> if not report["consistent"]:
    ...     tree.rebuild_all()
"""

import logging
from collections import deque
from typing import Any, Dict, List, Optional, Set, Tuple

import networkx as nx
from sqlalchemy import select

from .engine import AttachDetachEngine
from .exceptions import IntegrityViolation
from .hierarchy import HierarchyStore
from .store import TreeStore

logger = logging.getLogger(__name__)

EdgeTuple = Tuple[int, int, int]


class RebuildEngine:
    """
    Reconstructs the closure table from parent pointers.

    Args:
        store: The TreeStore holding both tables
        hierarchy: HierarchyStore over the same store
        engine: AttachDetachEngine over the same store
    """

    def __init__(
        self,
        store: TreeStore,
        hierarchy: HierarchyStore,
        engine: AttachDetachEngine,
    ):
        self._store = store
        self._hierarchy = hierarchy
        self._engine = engine

    def rebuild_all(self) -> int:
        """
        Truncate the closure table and re-attach every node under every root.

        Runs in one transaction. Nodes caught in a parent pointer cycle are
        unreachable from any root and are left without rows; verify() reports
        them.

        Returns:
            Number of closure rows written
        """
        Node = self._store.node_model
        inserted = 0
        with self._store.transaction() as session:
            removed = self._hierarchy.truncate()
            roots = (
                session.query(Node).filter(Node.parent_id.is_(None)).order_by(Node.id).all()
            )
            for root in roots:
                inserted += self._engine.rebuild_subtree(root)

        logger.debug(
            "Rebuilt closure table from %d roots: %d rows removed, %d written",
            len(roots),
            removed,
            inserted,
        )
        return inserted

    def parent_graph(self) -> nx.DiGraph:
        """Directed graph with one edge parent -> child per parent pointer."""
        Node = self._store.node_model
        graph = nx.DiGraph()
        with self._store.transaction() as session:
            for node_id, parent_id in session.execute(select(Node.id, Node.parent_id)):
                graph.add_node(node_id)
                if parent_id is not None:
                    graph.add_edge(parent_id, node_id)
        return graph

    def expected_edges(self, graph: Optional[nx.DiGraph] = None) -> Set[EdgeTuple]:
        """
        The closure implied by parent pointers, as (ancestor, descendant,
        generations) tuples. Nodes not reachable from a root contribute none.
        """
        if graph is None:
            graph = self.parent_graph()
        expected: Set[EdgeTuple] = set()
        roots = [n for n in graph.nodes if graph.in_degree(n) == 0]
        for root in roots:
            # Breadth-first from each root; each node has one parent so the
            # walk is a tree
            chain: Dict[int, List[int]] = {root: []}
            queue = deque([root])
            while queue:
                current = queue.popleft()
                for child in graph.successors(current):
                    chain[child] = [current] + chain[current]
                    for generations, ancestor in enumerate(chain[child], start=1):
                        expected.add((ancestor, child, generations))
                    queue.append(child)
        return expected

    def verify(self) -> Dict[str, Any]:
        """
        Compare the closure table with the parent pointers.

        Returns:
            {
                "consistent": bool,
                "edge_count": int,
                "expected_count": int,
                "missing": [(ancestor, descendant, generations), ...],
                "unexpected": [(ancestor, descendant, generations), ...],
                "wrong_generations": [(ancestor, descendant, stored, expected), ...],
                "cycles": [[node_id, ...], ...],
            }
        """
        with self._store.transaction():
            graph = self.parent_graph()
            expected = self.expected_edges(graph)
            actual = {edge.as_tuple() for edge in self._hierarchy.all_edges()}

        cycles = [sorted(cycle) for cycle in nx.simple_cycles(graph)]

        expected_pairs = {(a, d): g for a, d, g in expected}
        actual_pairs = {(a, d): g for a, d, g in actual}
        missing = sorted(
            (a, d, g) for (a, d), g in expected_pairs.items() if (a, d) not in actual_pairs
        )
        unexpected = sorted(
            (a, d, g) for (a, d), g in actual_pairs.items() if (a, d) not in expected_pairs
        )
        wrong_generations = sorted(
            (a, d, g, expected_pairs[(a, d)])
            for (a, d), g in actual_pairs.items()
            if (a, d) in expected_pairs and expected_pairs[(a, d)] != g
        )

        consistent = not (missing or unexpected or wrong_generations or cycles)
        if not consistent:
            logger.warning(
                "Closure table inconsistent: %d missing, %d unexpected, "
                "%d wrong generations, %d cycles",
                len(missing),
                len(unexpected),
                len(wrong_generations),
                len(cycles),
            )

        return {
            "consistent": consistent,
            "edge_count": len(actual),
            "expected_count": len(expected),
            "missing": missing,
            "unexpected": unexpected,
            "wrong_generations": wrong_generations,
            "cycles": cycles,
        }

    def assert_consistent(self) -> None:
        """
        Raise IntegrityViolation when verify() finds any difference.

        The message carries the first offending pair.
        """
        report = self.verify()
        if report["consistent"]:
            return
        for key in ("missing", "unexpected", "wrong_generations"):
            if report[key]:
                ancestor_id, descendant_id = report[key][0][:2]
                raise IntegrityViolation(
                    f"Closure table inconsistent ({key}): "
                    f"first offending pair ({ancestor_id}, {descendant_id})",
                    ancestor_id=ancestor_id,
                    descendant_id=descendant_id,
                )
        raise IntegrityViolation(f"Parent pointer cycles: {report['cycles']}")


__all__ = ["RebuildEngine"]
