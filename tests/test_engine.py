"""
Tests for AttachDetachEngine: add_child, detach and move_to_child_of.

Scenarios:
- Chain R -> X -> Y built with add_child
- Grafting a root that already has children, and re-attaching after detach
- Detach of a middle node
- Move of a middle node under a second root
- Rejected moves (self, cycle, cross-scope) leave the tree untouched
- A failure midway through a move rolls the whole move back
"""

import unittest
from unittest.mock import patch

from closure_tree import (
    ClosureTree,
    DuplicateEdge,
    InvalidOperation,
    NodeNotFound,
    TreeConfig,
)


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.tree = ClosureTree(url="sqlite:///:memory:")
        self.r = self.tree.create_node(name="R")
        self.x = self.tree.create_node(name="X")
        self.y = self.tree.create_node(name="Y")
        self.tree.add_child(self.r, self.x)
        self.tree.add_child(self.x, self.y)

    def tearDown(self):
        self.tree.close()

    def names(self, records):
        return [r.name for r in records]

    def edges(self):
        return {e.as_tuple() for e in self.tree.hierarchy.all_edges()}


class TestAddChild(EngineTestCase):

    def test_chain(self):
        r, x, y = self.r.id, self.x.id, self.y.id
        self.assertEqual(self.edges(), {(r, x, 1), (x, y, 1), (r, y, 2)})
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R"])
        self.assertEqual([e.generations for e in self.tree.ancestor_edges(self.y)], [1, 2])
        self.assertFalse(self.tree.is_leaf(self.r))
        self.assertTrue(self.tree.is_leaf(self.y))

    def test_sets_parent_pointer(self):
        self.assertEqual(self.tree.get_node(self.y).parent_id, self.x.id)
        self.assertTrue(self.tree.is_child(self.y))
        self.assertFalse(self.tree.is_child(self.r))

    def test_returns_rows_inserted(self):
        z = self.tree.create_node(name="Z")
        self.assertEqual(self.tree.add_child(self.y, z), 3)

    def test_reattach_same_parent_is_duplicate(self):
        with self.assertRaises(DuplicateEdge):
            self.tree.add_child(self.x, self.y)

    def test_already_attached_elsewhere(self):
        other = self.tree.create_node(name="other")
        with self.assertRaises(InvalidOperation):
            self.tree.add_child(other, self.y)
        self.assertEqual(self.tree.get_node(self.y).parent_id, self.x.id)

    def test_self_attach(self):
        z = self.tree.create_node(name="Z")
        with self.assertRaises(InvalidOperation):
            self.tree.add_child(z, z)

    def test_cycle_rejected(self):
        with self.assertRaises(InvalidOperation):
            self.tree.add_child(self.y, self.r)
        self.assertTrue(self.tree.is_root(self.r))
        self.assertTrue(self.tree.verify()["consistent"])

    def test_unknown_nodes(self):
        with self.assertRaises(NodeNotFound):
            self.tree.add_child(999, self.y)
        with self.assertRaises(NodeNotFound):
            self.tree.add_child(self.y, 999)

    def test_graft_root_with_subtree(self):
        """Descendants of the grafted node gain rows to its new ancestors."""
        a = self.tree.create_node(name="A")
        b = self.tree.create_node(name="B", parent=a)
        c = self.tree.create_node(name="C", parent=b)
        self.assertEqual(self.tree.add_child(self.y, a), 3 + 4 + 5)
        self.assertEqual(self.names(self.tree.ancestors(b)), ["A", "Y", "X", "R"])
        self.assertEqual(
            [e.generations for e in self.tree.ancestor_edges(c)], [1, 2, 3, 4, 5]
        )
        self.assertEqual(self.names(self.tree.descendants(self.x)), ["Y", "A", "B", "C"])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_graft_rejected_inside_own_subtree(self):
        a = self.tree.create_node(name="A")
        b = self.tree.create_node(name="B", parent=a)
        with self.assertRaises(InvalidOperation):
            self.tree.add_child(b, a)
        self.assertEqual(self.tree.hierarchy.ancestor_ids(b), [a.id])


class TestDetach(EngineTestCase):

    def test_detach_middle_node(self):
        deleted = self.tree.detach(self.x)
        self.assertEqual(deleted, 3)
        self.assertEqual(self.tree.ancestors(self.y), [])
        self.assertEqual(self.tree.ancestors(self.x), [])
        self.assertEqual(self.tree.descendants(self.r), [])
        self.assertTrue(self.tree.is_root(self.r))
        self.assertTrue(self.tree.is_leaf(self.r))
        self.assertEqual(self.edges(), set())

    def test_detach_leaves_parent_pointers(self):
        """Detach only touches closure rows, so verify sees the gap."""
        self.tree.detach(self.x)
        self.assertEqual(self.tree.get_node(self.x).parent_id, self.r.id)
        report = self.tree.verify()
        self.assertFalse(report["consistent"])
        self.assertEqual(len(report["missing"]), 3)

    def test_detach_then_reattach(self):
        self.tree.detach(self.x)
        self.assertEqual(self.tree.add_child(self.r, self.x), 3)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R"])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_detach_then_attach_elsewhere(self):
        other = self.tree.create_node(name="O")
        self.tree.detach(self.x)
        self.tree.add_child(other, self.x)
        self.assertEqual(self.tree.get_node(self.x).parent_id, other.id)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "O"])
        self.assertEqual(self.tree.descendants(self.r), [])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_detach_root_leaves_other_trees(self):
        other = self.tree.create_node(name="O")
        child = self.tree.create_node(name="O1", parent=other)
        self.tree.detach(self.r)
        self.assertEqual(self.tree.hierarchy.ancestor_ids(child), [other.id])
        self.assertEqual(self.tree.descendants(self.r), [])

    def test_detach_unknown(self):
        with self.assertRaises(NodeNotFound):
            self.tree.detach(424242)


class TestMove(EngineTestCase):

    def setUp(self):
        super().setUp()
        self.r2 = self.tree.create_node(name="R2")

    def test_move_middle_node(self):
        self.tree.move_to_child_of(self.x, self.r2)
        self.assertEqual(self.names(self.tree.ancestors(self.x)), ["R2"])
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R2"])
        self.assertEqual(self.tree.descendants(self.r), [])
        self.assertEqual(self.names(self.tree.descendants(self.r2)), ["X", "Y"])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_move_preserves_subtree_shape(self):
        z = self.tree.create_node(name="Z", parent=self.y)
        w = self.tree.create_node(name="W", parent=self.x)
        before = {(e.descendant_id, e.generations) for e in self.tree.descendant_edges(self.x)}
        self.tree.move_to_child_of(self.x, self.r2)
        after = {(e.descendant_id, e.generations) for e in self.tree.descendant_edges(self.x)}
        self.assertEqual(before, after)
        self.assertEqual(self.tree.level(z), 3)
        self.assertEqual(self.tree.level(w), 2)

    def test_move_into_deeper_position(self):
        self.tree.move_to_child_of(self.r2, self.y)
        self.assertEqual(self.names(self.tree.ancestors(self.r2)), ["Y", "X", "R"])
        self.assertEqual(self.tree.level(self.r2), 3)

    def test_move_to_root(self):
        self.tree.move_to_root(self.x)
        self.assertTrue(self.tree.is_root(self.x))
        self.assertEqual(self.tree.ancestors(self.x), [])
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X"])
        self.assertTrue(self.tree.is_leaf(self.r))
        self.assertTrue(self.tree.verify()["consistent"])

    def test_move_to_current_parent_keeps_rows(self):
        before = self.edges()
        self.tree.move_to_child_of(self.x, self.r)
        self.assertEqual(self.edges(), before)

    def test_move_to_current_parent_after_detach(self):
        """Re-attaches a subtree that detach left without rows."""
        before = self.edges()
        self.tree.detach(self.x)
        self.assertEqual(self.tree.move_to_child_of(self.x, self.r), 3)
        self.assertEqual(self.edges(), before)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R"])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_move_root_to_root_after_detach(self):
        self.tree.detach(self.r)
        self.tree.move_to_root(self.r)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R"])
        self.assertTrue(self.tree.verify()["consistent"])

    def test_move_under_self(self):
        with self.assertRaises(InvalidOperation):
            self.tree.move_to_child_of(self.x, self.x)

    def test_move_under_descendant(self):
        before = self.edges()
        with self.assertRaises(InvalidOperation):
            self.tree.move_to_child_of(self.r, self.y)
        self.assertEqual(self.edges(), before)
        self.assertTrue(self.tree.is_root(self.r))

    def test_failed_move_rolls_back(self):
        """Detach and re-attach commit together or not at all."""
        before = self.edges()
        with patch.object(self.tree.engine, "rebuild_subtree", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                self.tree.move_to_child_of(self.x, self.r2)
        self.assertEqual(self.edges(), before)
        self.assertEqual(self.tree.get_node(self.x).parent_id, self.r.id)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["X", "R"])

    def test_reparent_through_repository(self):
        record = self.tree.nodes.reparent(self.y, self.r2)
        self.assertEqual(record.parent_id, self.r2.id)
        self.assertEqual(self.names(self.tree.ancestors(self.y)), ["R2"])


class TestScopes(unittest.TestCase):
    """Scoped forests never mix."""

    def setUp(self):
        self.tree = ClosureTree(
            url="sqlite:///:memory:", config=TreeConfig(scope_columns=["tenant"])
        )
        self.a = self.tree.create_node(name="A", scope={"tenant": "t1"})
        self.b = self.tree.create_node(name="B", scope={"tenant": "t2"})

    def tearDown(self):
        self.tree.close()

    def test_cross_scope_attach(self):
        with self.assertRaises(InvalidOperation):
            self.tree.add_child(self.a, self.b)
        self.assertTrue(self.tree.is_root(self.b))

    def test_cross_scope_move(self):
        child = self.tree.create_node(name="A1", parent=self.a)
        with self.assertRaises(InvalidOperation):
            self.tree.move_to_child_of(child, self.b)

    def test_cross_scope_create_rolls_back(self):
        with self.assertRaises(InvalidOperation):
            self.tree.create_node(name="bad", parent=self.a, scope={"tenant": "t2"})
        self.assertEqual(self.tree.nodes.count(), 2)

    def test_child_inherits_scope(self):
        child = self.tree.create_node(name="A1", parent=self.a)
        self.assertEqual(child.scope, {"tenant": "t1"})

    def test_leaves_and_roots_by_scope(self):
        self.tree.create_node(name="A1", parent=self.a)
        self.assertEqual([n.name for n in self.tree.leaves(scope={"tenant": "t1"})], ["A1"])
        self.assertEqual([n.name for n in self.tree.roots(scope={"tenant": "t2"})], ["B"])
        self.assertEqual(len(self.tree.roots()), 2)


if __name__ == "__main__":
    unittest.main()
