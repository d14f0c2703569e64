"""
Exception classes for closure-tree.

All errors raised by the library derive from ClosureTreeError so callers can
catch the whole family at one seam. Lookups that find nothing return None
instead of raising; NodeNotFound is reserved for mutating operations that
reference a node id which does not exist.

Hierarchy:
    ClosureTreeError
        IntegrityViolation   (closure table out of step with parent pointers)
            DuplicateEdge    (edge pair collision, fatal to the transaction)
        StoreFailure         (database rejected or could not finish the work)
        InvalidOperation     (cycle, self-attach, cross-scope attach, ...)
            NodeNotFound
        ConfigurationError   (invalid TreeConfig / YAML settings)
"""

import re
from typing import Any, Dict, Optional


class ClosureTreeError(Exception):
    """Base class for all closure-tree errors."""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the structured error format used across the library.

        Returns:
            {"error": str, "error_type": str}
        """
        return {
            "error": str(self),
            "error_type": re.sub(r"(?<!^)(?=[A-Z])", "_", type(self).__name__).lower(),
        }


class IntegrityViolation(ClosureTreeError):
    """
    The closure table disagrees with the parent pointers.

    Usually means an add_child / detach pairing was skipped somewhere. Never
    retried automatically; rebuild_all() is the recovery path.

    Attributes:
        ancestor_id: Ancestor side of the colliding edge
        descendant_id: Descendant side of the colliding edge
    """

    def __init__(
        self,
        message: str,
        ancestor_id: Optional[int] = None,
        descendant_id: Optional[int] = None,
    ):
        self.ancestor_id = ancestor_id
        self.descendant_id = descendant_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["ancestor_id"] = self.ancestor_id
        result["descendant_id"] = self.descendant_id
        return result


class DuplicateEdge(IntegrityViolation):
    """The (ancestor_id, descendant_id) pair is already in the closure table."""


class StoreFailure(ClosureTreeError):
    """
    The backing store rejected or could not complete a transaction.

    The original SQLAlchemy exception is chained as __cause__.
    """


class InvalidOperation(ClosureTreeError):
    """A request that would break the tree, rejected before any write."""


class NodeNotFound(InvalidOperation):
    """
    A mutating operation referenced a node id that does not exist.

    Attributes:
        node_id: The missing id
    """

    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["node_id"] = self.node_id
        return result


class ConfigurationError(ClosureTreeError):
    """Invalid tree configuration."""


__all__ = [
    "ClosureTreeError",
    "IntegrityViolation",
    "DuplicateEdge",
    "StoreFailure",
    "InvalidOperation",
    "NodeNotFound",
    "ConfigurationError",
]
