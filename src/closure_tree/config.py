"""
Tree configuration.

Column and table names are carried in an explicit TreeConfig passed to every
component at construction, never in process-wide state.

Precedence when resolving (highest to lowest):
    1. Constructor overrides
    2. Environment variables (CLOSURE_TREE_*)
    3. YAML settings
    4. Defaults

Example YAML:
    ```yaml
    closure_tree:
      node_table: categories
      name_column: title
      scope_columns: [tenant_id]
      dependent: reparent
    ```

Example:
    >>> config = resolve_config("tree.yaml", dependent="nullify")
    >>> config.hierarchy_table_name
    'category_hierarchies'
"""

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Columns every node table carries regardless of configuration
RESERVED_COLUMNS = frozenset({"id", "attributes", "created_at", "updated_at"})

ENV_PREFIX = "CLOSURE_TREE_"


class DependentStrategy(str, Enum):
    """What happens to the children of a node that is deleted."""

    DESTROY = "destroy"  # Delete the whole subtree, deepest first
    REPARENT = "reparent"  # Children move up to the deleted node's parent
    NULLIFY = "nullify"  # Children become roots


def singularize(word: str) -> str:
    """Naive English singular, enough for conventional table names."""
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("ses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


class TreeConfig(BaseModel):
    """
    Names and policies for one closure-tree.

    Attributes:
        node_table: Table holding the nodes
        hierarchy_table: Closure table name (derived from node_table when None)
        parent_column: Column holding the parent pointer
        name_column: Display-key column used by path lookups
        scope_columns: Columns that partition the table into independent forests
        dependent: Policy for children of deleted nodes
    """

    node_table: str = Field("nodes", description="Node table name")
    hierarchy_table: Optional[str] = Field(None, description="Closure table name")
    parent_column: str = Field("parent_id", description="Parent pointer column")
    name_column: str = Field("name", description="Display-key column")
    scope_columns: List[str] = Field(
        default_factory=list, description="Scope partition columns"
    )
    dependent: DependentStrategy = Field(
        DependentStrategy.DESTROY, description="Child policy on delete"
    )

    model_config = {"frozen": True}

    @field_validator("node_table", "parent_column", "name_column", "hierarchy_table")
    @classmethod
    def _check_identifier(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _IDENTIFIER.match(value):
            raise ValueError(f"'{value}' is not a valid SQL identifier")
        return value

    @field_validator("scope_columns", mode="before")
    @classmethod
    def _split_scope_columns(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("scope_columns")
    @classmethod
    def _check_scope_columns(cls, value: List[str]) -> List[str]:
        for column in value:
            if not _IDENTIFIER.match(column):
                raise ValueError(f"'{column}' is not a valid SQL identifier")
        if len(value) != len(set(value)):
            raise ValueError("scope_columns cannot contain duplicates")
        return value

    @model_validator(mode="after")
    def _check_clashes(self) -> "TreeConfig":
        named = [self.parent_column, self.name_column]
        if self.parent_column == self.name_column:
            raise ValueError("parent_column and name_column must differ")
        for column in named + list(self.scope_columns):
            if column in RESERVED_COLUMNS:
                raise ValueError(f"Column name '{column}' is reserved")
        for column in self.scope_columns:
            if column in named or column in ("parent_id", "name"):
                raise ValueError(
                    f"Scope column '{column}' clashes with the parent or name column"
                )
        if self.hierarchy_table_name == self.node_table:
            raise ValueError("hierarchy_table must differ from node_table")
        return self

    @property
    def hierarchy_table_name(self) -> str:
        """Closure table name, `<singular node table>_hierarchies` by default."""
        return self.hierarchy_table or f"{singularize(self.node_table)}_hierarchies"

    @property
    def lookup_columns(self) -> List[str]:
        """Columns accepted by typed lookups: the name column, then scope columns."""
        return [self.name_column] + list(self.scope_columns)


def _build(settings: Dict[str, Any]) -> TreeConfig:
    try:
        return TreeConfig(**settings)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid tree configuration: {e}") from e


def load_config(path: Union[str, Path]) -> TreeConfig:
    """
    Load a TreeConfig from a YAML file.

    The file may hold the settings at top level or under a `closure_tree:`
    section.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    return _build(_read_yaml_settings(path))


def _read_yaml_settings(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    section = data.get("closure_tree", data)
    if not isinstance(section, dict):
        raise ConfigurationError("'closure_tree' section must be a mapping")
    return dict(section)


def _env_settings() -> Dict[str, Any]:
    settings = {}
    for field_name in TreeConfig.model_fields:
        value = os.getenv(ENV_PREFIX + field_name.upper())
        if value:
            settings[field_name] = value
    return settings


def resolve_config(
    yaml_path: Optional[Union[str, Path]] = None, **overrides: Any
) -> TreeConfig:
    """
    Resolve a TreeConfig from defaults, YAML, environment and overrides.

    Args:
        yaml_path: Optional YAML file
        **overrides: TreeConfig fields; None values are ignored

    Returns:
        The resolved TreeConfig

    Raises:
        ConfigurationError: If the merged settings are invalid
    """
    settings: Dict[str, Any] = {}
    if yaml_path is not None:
        settings.update(_read_yaml_settings(yaml_path))
    settings.update(_env_settings())
    settings.update({k: v for k, v in overrides.items() if v is not None})

    config = _build(settings)
    logger.debug(
        "Tree configuration resolved: node_table=%s, hierarchy_table=%s, scope=%s",
        config.node_table,
        config.hierarchy_table_name,
        config.scope_columns,
    )
    return config


__all__ = [
    "TreeConfig",
    "DependentStrategy",
    "load_config",
    "resolve_config",
    "singularize",
]
