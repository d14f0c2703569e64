#!/usr/bin/env python3
"""
Operator CLI for closure-tree.

Recovery and inspection commands for an existing tree database. The library
never repairs anything on its own; these commands are the explicit,
operator-invoked path.

Usage:
    closure-tree verify --url sqlite:///tree.db
    closure-tree rebuild --url sqlite:///tree.db --config tree.yaml
    closure-tree show 42 --url postgresql://...
    closure-tree path a/b/c --url sqlite:///tree.db
    closure-tree --version
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from closure_tree import __version__
from closure_tree.config import resolve_config
from closure_tree.exceptions import ClosureTreeError
from closure_tree.tree import ClosureTree

app = typer.Typer(
    name="closure-tree",
    help="closure-tree - closure table maintenance",
    no_args_is_help=True,
    add_completion=False,
)

URL_OPTION = typer.Option(
    ..., "--url", "-u", envvar="CLOSURE_TREE_URL", help="SQLAlchemy database URL"
)
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Tree configuration YAML")
VERBOSE_OPTION = typer.Option(
    0, "--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)"
)


class OutputFormat(str, Enum):
    """Output format for report commands."""
    text = "text"
    json = "json"


def setup_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )


def open_tree(url: str, config_path: Optional[Path]) -> ClosureTree:
    """
    Open a tree against an existing database without creating tables.

    Raises:
        typer.Exit: On configuration or connection errors
    """
    if config_path is not None and not config_path.exists():
        typer.echo(f"Error: Config file not found: {config_path}", err=True)
        raise typer.Exit(1)
    try:
        config = resolve_config(config_path)
        tree = ClosureTree(url=url, config=config, auto_migrate=False)
        if not tree.store.has_schema():
            typer.echo(
                f"Error: Tables '{config.node_table}' / "
                f"'{config.hierarchy_table_name}' not found",
                err=True,
            )
            tree.close()
            raise typer.Exit(1)
    except ClosureTreeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return tree


def _node_dict(record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "parent_id": record.parent_id,
        "name": record.name,
        "scope": record.scope,
    }


@app.command()
def verify(
    url: str = URL_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    format: OutputFormat = typer.Option(OutputFormat.text, "--format", "-f", help="Output format (text, json)"),
    verbose: int = VERBOSE_OPTION,
):
    """Compare the closure table with the parent pointers (read-only)."""
    setup_logging(verbose)
    tree = open_tree(url, config)
    try:
        report = tree.verify()
    except ClosureTreeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        tree.close()

    if format == OutputFormat.json:
        typer.echo(json.dumps(report, indent=2))
    else:
        typer.echo(f"Edges: {report['edge_count']} stored, {report['expected_count']} expected")
        for key in ("missing", "unexpected", "wrong_generations", "cycles"):
            if report[key]:
                typer.echo(f"  {key}: {len(report[key])}")
                for item in report[key][:10]:
                    typer.echo(f"    {item}")
        typer.echo("consistent" if report["consistent"] else "INCONSISTENT")

    if not report["consistent"]:
        raise typer.Exit(1)


@app.command()
def rebuild(
    url: str = URL_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what verify finds"),
    verbose: int = VERBOSE_OPTION,
):
    """Truncate the closure table and rebuild it from parent pointers."""
    setup_logging(verbose)
    tree = open_tree(url, config)
    try:
        if dry_run:
            report = tree.verify()
            typer.echo(
                f"Would rebuild: {len(report['missing'])} missing, "
                f"{len(report['unexpected'])} unexpected, "
                f"{len(report['wrong_generations'])} wrong generations"
            )
            return
        written = tree.rebuild_all()
    except ClosureTreeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        tree.close()

    typer.echo(f"Rebuilt closure table: {written} edges")


@app.command()
def show(
    node_id: int = typer.Argument(..., help="Node id"),
    url: str = URL_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    format: OutputFormat = typer.Option(OutputFormat.text, "--format", "-f", help="Output format (text, json)"),
):
    """Show a node with its ancestors and descendants."""
    tree = open_tree(url, config)
    try:
        with tree.transaction():
            record = tree.get_node(node_id)
            if record is None:
                typer.echo(f"Error: Node not found: {node_id}", err=True)
                raise typer.Exit(1)
            ancestors = tree.ancestors(node_id)
            descendants = tree.descendant_edges(node_id)
            path = tree.ancestry_path(node_id)
            leaf = tree.is_leaf(node_id)
    except ClosureTreeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        tree.close()

    if format == OutputFormat.json:
        typer.echo(json.dumps({
            "node": _node_dict(record),
            "level": len(ancestors),
            "root": record.is_root,
            "leaf": leaf,
            "path": path,
            "ancestors": [_node_dict(a) for a in ancestors],
            "descendants": [
                {"id": e.descendant_id, "generations": e.generations} for e in descendants
            ],
        }, indent=2, default=str))
        return

    typer.echo(f"Node {record.id}: {record.name}")
    typer.echo(f"  path: {' / '.join(str(p) for p in path)}")
    typer.echo(f"  level: {len(ancestors)}  root: {record.is_root}  leaf: {leaf}")
    typer.echo(f"  ancestors: {[a.id for a in ancestors]}")
    typer.echo(f"  descendants: {len(descendants)}")


@app.command()
def path(
    keys: str = typer.Argument(..., help="Display keys separated by --sep"),
    url: str = URL_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    sep: str = typer.Option("/", "--sep", help="Key separator"),
):
    """Find a node by its path of display keys."""
    tree = open_tree(url, config)
    try:
        record = tree.find_by_path([k for k in keys.split(sep) if k])
    except ClosureTreeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        tree.close()

    if record is None:
        typer.echo(f"Not found: {keys}", err=True)
        raise typer.Exit(1)
    typer.echo(str(record.id))


def version_callback(value: bool):
    """Handle --version flag."""
    if value:
        typer.echo(f"closure-tree {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True,
                                 help="Show version and exit"),
):
    """closure-tree - closure table maintenance."""


def main():
    """Entry point for the closure-tree CLI."""
    app()


if __name__ == "__main__":
    main()
