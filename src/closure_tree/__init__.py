"""
closure-tree: closure-table hierarchies over SQLAlchemy.

Keeps a transitive-closure table in step with a parent-pointer column so that
ancestor, descendant, root, leaf and level queries are indexed lookups.
"""

__version__ = "0.3.0"

from .config import DependentStrategy, TreeConfig, load_config, resolve_config
from .engine import AttachDetachEngine
from .exceptions import (
    ClosureTreeError,
    ConfigurationError,
    DuplicateEdge,
    IntegrityViolation,
    InvalidOperation,
    NodeNotFound,
    StoreFailure,
)
from .hierarchy import HierarchyStore
from .models import EdgeRecord, NodeRecord, create_tree_models
from .paths import PathResolver
from .rebuild import RebuildEngine
from .repository import NodeRepository
from .store import TreeStore
from .tree import ClosureTree

__all__ = [
    "__version__",
    # Facade
    "ClosureTree",
    # Components
    "TreeStore",
    "HierarchyStore",
    "AttachDetachEngine",
    "RebuildEngine",
    "NodeRepository",
    "PathResolver",
    # Models
    "NodeRecord",
    "EdgeRecord",
    "create_tree_models",
    # Configuration
    "TreeConfig",
    "DependentStrategy",
    "load_config",
    "resolve_config",
    # Errors
    "ClosureTreeError",
    "IntegrityViolation",
    "DuplicateEdge",
    "StoreFailure",
    "InvalidOperation",
    "NodeNotFound",
    "ConfigurationError",
]
