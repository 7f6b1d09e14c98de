"""
promptstore/cli.py -- Command-line front end for the prompt store.

Usage::

    promptstore categories
    promptstore list [--category CAT]
    promptstore search QUERY
    promptstore show CAT NAME [--version V]
    promptstore versions CAT NAME
    promptstore create FILE.json
    promptstore update CAT NAME CHANGES.json [--no-bump]
    promptstore revert CAT NAME VERSION
    promptstore rename CAT NAME NEW_CAT NEW_NAME
    promptstore delete CAT NAME
    promptstore create-category NAME
    promptstore delete-category NAME
    promptstore format CAT NAME key=value ...
    promptstore export-stubs

Global options ``--config PATH`` and ``--verbose`` go before the command.
Store errors are printed as one line and exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from promptstore.codegen import render_combined_stub
from promptstore.config import StoreConfig, load_config
from promptstore.entity_store import EntityStore
from promptstore.errors import StoreError, ValidationError
from promptstore.utils import dump_json, read_json, write_text_atomic

logger = logging.getLogger(__name__)

COMBINED_STUB_FILENAME = "prompts.pyi"


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for command-line use."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _one_line(exc: StoreError) -> str:
    if isinstance(exc, ValidationError):
        return f"Invalid prompt '{exc.subject}': " + "; ".join(str(e) for e in exc.errors)
    return " ".join(str(exc).split())


async def _read_document(path: str) -> dict:
    try:
        data = await read_json(path)
    except json.JSONDecodeError as exc:
        raise StoreError(f"'{path}' is not valid JSON (line {exc.lineno}): {exc.msg}") from exc
    except OSError as exc:
        raise StoreError(f"Could not read '{path}': {exc.strerror or exc}") from exc
    if not isinstance(data, dict):
        raise StoreError(f"'{path}' must contain a JSON object.")
    return data


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

async def _cmd_categories(store: EntityStore, args) -> int:
    for category in await store.list_categories():
        print(category)
    return 0


async def _cmd_list(store: EntityStore, args) -> int:
    for entity in await store.list_entities(args.category):
        print(entity.summary())
    return 0


async def _cmd_search(store: EntityStore, args) -> int:
    matches = await store.search(args.query)
    for entity in matches:
        print(entity.summary())
    if not matches:
        print(f"No prompts match '{args.query}'.")
    return 0


async def _cmd_show(store: EntityStore, args) -> int:
    if args.version:
        entity = await store.load_version(args.category, args.name, args.version)
    else:
        entity = await store.load(args.category, args.name)
    print(dump_json(entity.to_document()), end="")
    return 0


async def _cmd_versions(store: EntityStore, args) -> int:
    for version in await store.versions(args.category, args.name):
        print(version)
    return 0


async def _cmd_create(store: EntityStore, args) -> int:
    entity = await store.create(await _read_document(args.file))
    print(f"Created {entity.key} v{entity.version}")
    return 0


async def _cmd_update(store: EntityStore, args) -> int:
    changes = await _read_document(args.file)
    entity = await store.update(args.category, args.name, changes, bump_version=not args.no_bump)
    print(f"Updated {entity.key} to v{entity.version}")
    return 0


async def _cmd_revert(store: EntityStore, args) -> int:
    entity = await store.revert(args.category, args.name, args.version)
    print(f"Restored {entity.key} from v{args.version} as v{entity.version}")
    return 0


async def _cmd_rename(store: EntityStore, args) -> int:
    entity = await store.rename(args.category, args.name, args.new_category, args.new_name)
    print(f"Renamed {args.category}/{args.name} to {entity.key}")
    return 0


async def _cmd_delete(store: EntityStore, args) -> int:
    await store.delete(args.category, args.name)
    print(f"Deleted {args.category}/{args.name}")
    return 0


async def _cmd_create_category(store: EntityStore, args) -> int:
    await store.create_category(args.name)
    print(f"Created category {args.name}")
    return 0


async def _cmd_delete_category(store: EntityStore, args) -> int:
    removed = await store.delete_category(args.name)
    print(f"Deleted category {args.name} ({len(removed)} prompts)")
    return 0


async def _cmd_format(store: EntityStore, args) -> int:
    inputs = {}
    for pair in args.inputs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            print(f"Expected key=value, got '{pair}'", file=sys.stderr)
            return 2
        inputs[key] = value
    entity = await store.load(args.category, args.name)
    missing = [p for p in entity.parameters if p not in inputs]
    if missing:
        logger.warning("No value given for: %s", ", ".join(missing))
    print(entity.format(inputs))
    return 0


async def _cmd_export_stubs(store: EntityStore, args) -> int:
    entities = await store.list_entities()
    target = store.config.output_dir / COMBINED_STUB_FILENAME
    try:
        await write_text_atomic(target, render_combined_stub(entities))
    except OSError as exc:
        raise StoreError(f"Could not write '{target}': {exc.strerror or exc}") from exc
    print(f"Wrote {len(entities)} prompt stubs to {target}")
    return 0


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptstore", description="Manage versioned prompt templates")
    parser.add_argument("--config", help="Path to promptstore.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    def command(name, handler, help_text):
        p = sub.add_parser(name, help=help_text)
        p.set_defaults(handler=handler)
        return p

    def entity_args(p):
        p.add_argument("category")
        p.add_argument("name")

    command("categories", _cmd_categories, "List categories")

    p = command("list", _cmd_list, "List prompts")
    p.add_argument("--category", help="Only this category")

    p = command("search", _cmd_search, "Search prompts")
    p.add_argument("query")

    p = command("show", _cmd_show, "Print a prompt as JSON")
    entity_args(p)
    p.add_argument("--version", help="Show this saved version instead of the current one")

    entity_args(command("versions", _cmd_versions, "List saved versions"))

    p = command("create", _cmd_create, "Create a prompt from a JSON file")
    p.add_argument("file")

    p = command("update", _cmd_update, "Merge changes from a JSON file")
    entity_args(p)
    p.add_argument("file")
    p.add_argument("--no-bump", action="store_true", help="Keep the current version number")

    p = command("revert", _cmd_revert, "Restore a saved version as the current state")
    entity_args(p)
    p.add_argument("version")

    p = command("rename", _cmd_rename, "Move a prompt to a new category or name")
    entity_args(p)
    p.add_argument("new_category")
    p.add_argument("new_name")

    entity_args(command("delete", _cmd_delete, "Delete a prompt and its history"))

    p = command("create-category", _cmd_create_category, "Create an empty category")
    p.add_argument("name")

    p = command("delete-category", _cmd_delete_category, "Delete a category and its prompts")
    p.add_argument("name")

    p = command("format", _cmd_format, "Render a prompt with inputs")
    entity_args(p)
    p.add_argument("inputs", nargs="*", metavar="key=value")

    command("export-stubs", _cmd_export_stubs, "Write type stubs for every prompt")
    return parser


async def _run(config: StoreConfig, args) -> int:
    store = EntityStore(config)
    return await args.handler(store, args)


def main(argv: list[str] | None = None) -> int:
    """Run one command.  Returns the process exit status."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        config = load_config(args.config)
        return asyncio.run(_run(config, args))
    except StoreError as exc:
        print(f"Error: {_one_line(exc)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
