"""
Tests for TreeConfig and configuration resolution.

Covers defaults, name validation, YAML loading and the
overrides > environment > YAML > defaults precedence.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from parameterized import parameterized

from closure_tree import ConfigurationError, DependentStrategy, TreeConfig
from closure_tree.config import load_config, resolve_config, singularize


def _clean_env():
    return {k: v for k, v in os.environ.items() if not k.startswith("CLOSURE_TREE_")}


class TestTreeConfig(unittest.TestCase):
    """TreeConfig defaults and validation."""

    def test_defaults(self):
        config = TreeConfig()
        self.assertEqual(config.node_table, "nodes")
        self.assertEqual(config.hierarchy_table_name, "node_hierarchies")
        self.assertEqual(config.parent_column, "parent_id")
        self.assertEqual(config.name_column, "name")
        self.assertEqual(config.scope_columns, [])
        self.assertEqual(config.dependent, DependentStrategy.DESTROY)

    @parameterized.expand([
        ("categories", "category_hierarchies"),
        ("tags", "tag_hierarchies"),
        ("boxes", "box_hierarchies"),
        ("branches", "branch_hierarchies"),
        ("address", "address_hierarchies"),
        ("sheep", "sheep_hierarchies"),
    ])
    def test_hierarchy_table_derived(self, node_table, expected):
        """Closure table name follows the singular node table name."""
        self.assertEqual(TreeConfig(node_table=node_table).hierarchy_table_name, expected)

    def test_explicit_hierarchy_table(self):
        config = TreeConfig(node_table="categories", hierarchy_table="category_closure")
        self.assertEqual(config.hierarchy_table_name, "category_closure")

    def test_lookup_columns(self):
        config = TreeConfig(name_column="title", scope_columns=["tenant", "region"])
        self.assertEqual(config.lookup_columns, ["title", "tenant", "region"])

    def test_scope_columns_from_comma_string(self):
        config = TreeConfig(scope_columns="tenant, region")
        self.assertEqual(config.scope_columns, ["tenant", "region"])

    def test_dependent_from_string(self):
        self.assertEqual(TreeConfig(dependent="nullify").dependent, DependentStrategy.NULLIFY)

    def test_frozen(self):
        config = TreeConfig()
        with self.assertRaises(Exception):
            config.node_table = "other"

    @parameterized.expand([
        ("bad_table", {"node_table": "drop table;"}),
        ("bad_parent", {"parent_column": "1parent"}),
        ("bad_scope", {"scope_columns": ["tenant id"]}),
        ("duplicate_scope", {"scope_columns": ["tenant", "tenant"]}),
        ("reserved", {"name_column": "id"}),
        ("reserved_scope", {"scope_columns": ["created_at"]}),
        ("parent_is_name", {"parent_column": "label", "name_column": "label"}),
        ("scope_clash", {"scope_columns": ["parent_id"]}),
        ("same_tables", {"node_table": "nodes", "hierarchy_table": "nodes"}),
        ("bad_dependent", {"dependent": "explode"}),
    ])
    def test_invalid_settings(self, _name, settings):
        """Invalid settings surface as ConfigurationError through resolve_config."""
        with patch.dict(os.environ, _clean_env(), clear=True):
            with self.assertRaises(ConfigurationError):
                resolve_config(**settings)

    def test_singularize(self):
        self.assertEqual(singularize("nodes"), "node")
        self.assertEqual(singularize("class"), "class")


class TestConfigLoading(unittest.TestCase):
    """YAML files and precedence."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def _write(self, name, text):
        path = self.dir / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_load_section(self):
        path = self._write("tree.yaml", """
closure_tree:
  node_table: categories
  name_column: title
  scope_columns: [tenant]
  dependent: reparent
""")
        config = load_config(path)
        self.assertEqual(config.node_table, "categories")
        self.assertEqual(config.name_column, "title")
        self.assertEqual(config.scope_columns, ["tenant"])
        self.assertEqual(config.dependent, DependentStrategy.REPARENT)

    def test_load_top_level(self):
        path = self._write("tree.yaml", "node_table: tags\n")
        self.assertEqual(load_config(path).hierarchy_table_name, "tag_hierarchies")

    def test_load_empty_file(self):
        path = self._write("empty.yaml", "")
        self.assertEqual(load_config(path), TreeConfig())

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.dir / "nope.yaml")
        self.assertIn("not found", str(ctx.exception))

    def test_invalid_yaml(self):
        path = self._write("bad.yaml", "node_table: [unclosed\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_not_a_mapping(self):
        path = self._write("list.yaml", "- a\n- b\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)

    def test_env_overrides_yaml(self):
        path = self._write("tree.yaml", "node_table: categories\nname_column: title\n")
        env = _clean_env()
        env["CLOSURE_TREE_NODE_TABLE"] = "folders"
        env["CLOSURE_TREE_SCOPE_COLUMNS"] = "tenant,region"
        with patch.dict(os.environ, env, clear=True):
            config = resolve_config(path)
        self.assertEqual(config.node_table, "folders")
        self.assertEqual(config.name_column, "title")
        self.assertEqual(config.scope_columns, ["tenant", "region"])

    def test_overrides_win(self):
        env = _clean_env()
        env["CLOSURE_TREE_DEPENDENT"] = "nullify"
        with patch.dict(os.environ, env, clear=True):
            config = resolve_config(dependent="reparent", name_column=None)
        self.assertEqual(config.dependent, DependentStrategy.REPARENT)
        # None overrides are ignored
        self.assertEqual(config.name_column, "name")

    def test_defaults_without_sources(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            self.assertEqual(resolve_config(), TreeConfig())


if __name__ == "__main__":
    unittest.main()
