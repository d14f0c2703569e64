"""
Path lookups for closure-tree.

A path is a sequence of display keys (values of the configured name
column), root first:

    resolver.find_or_create_by_path(["a", "b", "c"])   # a -> b -> c
    resolver.find_by_path(["b", "c"], start=a)          # relative to a

Created nodes go through NodeRepository.create, so they are attached with
add_child like any other node.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import NodeNotFound
from .hierarchy import HierarchyStore
from .models import NodeRecord, node_id_of
from .repository import NodeRepository
from .store import TreeStore

logger = logging.getLogger(__name__)

PathLike = Union[str, Sequence[Any]]


def _keys(path: PathLike) -> List[Any]:
    # A bare string is one key, not a sequence of characters
    if isinstance(path, str):
        return [path]
    return list(path)


class PathResolver:
    """
    Walks (and optionally builds) chains of children by display key.

    Args:
        store: The TreeStore holding both tables
        repository: NodeRepository over the same store
        hierarchy: HierarchyStore over the same store
    """

    def __init__(
        self,
        store: TreeStore,
        repository: NodeRepository,
        hierarchy: HierarchyStore,
    ):
        self._store = store
        self._repository = repository
        self._hierarchy = hierarchy
        self._config = store.config

    def find_by_path(
        self,
        path: PathLike,
        start: Any = None,
        scope: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        """
        Find the node at the end of `path`.

        Args:
            path: Display keys, outermost first
            start: Node to walk from; None walks from the roots of `scope`
            scope: Restricts root candidates when start is None

        Returns:
            The node reached, or None as soon as a key has no match. An empty
            path returns `start` (None without one).
        """
        return self.resolve(path, start=start, scope=scope, create_if_missing=False)

    def find_or_create_by_path(
        self,
        path: PathLike,
        start: Any = None,
        scope: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        """
        Find the node at the end of `path`, creating missing links.

        Created nodes inherit their parent's scope; a created root takes
        `scope`. `attributes` is applied to every created node. Runs in one
        transaction, so a failure leaves no partial chain behind.

        Returns:
            The node reached (None only for an empty path without start)

        Raises:
            NodeNotFound: If `start` is given but does not exist
        """
        return self.resolve(
            path, start=start, scope=scope, create_if_missing=True, attributes=attributes
        )

    def resolve(
        self,
        path: PathLike,
        start: Any = None,
        scope: Optional[Dict[str, Any]] = None,
        create_if_missing: bool = False,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        """Walk `path` from `start` (or the roots of `scope`) in one transaction."""
        keys = _keys(path)
        with self._store.transaction():
            return self._resolve(
                keys, start, scope, create=create_if_missing, attributes=attributes
            )

    def _resolve(
        self,
        keys: List[Any],
        start: Any,
        scope: Optional[Dict[str, Any]],
        create: bool,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        if start is not None:
            current = self._repository.get(node_id_of(start))
            if current is None:
                if create:
                    raise NodeNotFound(node_id_of(start))
                return None
            return self._descend(current, keys, create, attributes)

        if not keys:
            return None

        name_column = self._config.name_column
        # Only roots carrying the first key can lead anywhere
        candidates = self._repository.roots_of(scope, column=name_column, value=keys[0])
        for root in candidates:
            found = self._descend(root, keys[1:], create=False)
            if found is not None:
                return found

        if not create:
            return None

        if candidates:
            root = candidates[0]
        else:
            root = self._repository.create(name=keys[0], scope=scope, attributes=attributes)
            logger.debug("Created root %s for path %s", root.id, keys)
        return self._descend(root, keys[1:], create=True, attributes=attributes)

    def _descend(
        self,
        current: NodeRecord,
        keys: List[Any],
        create: bool,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Optional[NodeRecord]:
        name_column = self._config.name_column
        for key in keys:
            matches = self._repository.children_of(current.id, column=name_column, value=key)
            if matches:
                current = matches[0]
                continue
            if not create:
                return None
            current = self._repository.create(
                parent_id=current.id, name=key, attributes=attributes
            )
        return current

    def ancestry_path(self, node: Any) -> List[Any]:
        """
        Display keys from the root down to the node itself.

        Example:
            >>> resolver.ancestry_path(child)
            ['grandparent', 'parent', 'child']
        """
        node_id = node_id_of(node)
        with self._store.transaction():
            record = self._repository.get(node_id)
            if record is None:
                return []
            ancestors = self._hierarchy.ancestors_of(node_id)
            return [a.name for a in reversed(ancestors)] + [record.name]


__all__ = ["PathResolver"]
