"""Bulkload CLI entry points.
This module exposes commands for bulk loads and namespace operations.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import asdict, replace
import json
from pathlib import Path
from typing import Any, Sequence

from cli.dependency_command import add_dependency_command, run_dependency_command
from core.config import BulkLoadConfig
from core.errors import DependencyExistsError, FileNotFoundInNamespaceError
from core.load_request import load_request_file
from core.types import BulkLoadResult
from driver.client import BulkLoadClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="bulkload", description="Bulk file load CLI")
    parser.add_argument("--data-root", help="Override BULKLOAD_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_load_command(subparsers)
    _add_lookup_command(subparsers)
    _add_delete_command(subparsers)
    _add_status_command(subparsers)
    add_dependency_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the bulkload CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    with _build_client(args.data_root) as client:
        if args.command == "load":
            return _run_load_command(client, args)
        if args.command == "lookup":
            return _run_lookup_command(client, args)
        if args.command == "delete":
            return _run_delete_command(client, args)
        if args.command == "status":
            return _run_status_command(client, args)
        if args.command == "dependency":
            return run_dependency_command(client, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None) -> BulkLoadClient:
    """Build SDK client with optional data-root override."""
    config = BulkLoadConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return BulkLoadClient(config)


def _run_load_command(client: BulkLoadClient, args: argparse.Namespace) -> int:
    """Handle load command.

    Exits non-zero when any file failed so scripts can detect partial loads.
    """
    request = load_request_file(args.request_file)
    result = client.ingest_bulk(request)
    print(_render_result(result, include_files=args.show_files))
    return 0 if result.summary.failed == 0 else 1


def _run_lookup_command(client: BulkLoadClient, args: argparse.Namespace) -> int:
    try:
        if args.file_id:
            item = client.lookup_file(args.collection, args.file_id, args.depth)
        else:
            item = client.lookup_path(args.collection, args.path, args.depth)
    except FileNotFoundInNamespaceError as error:
        print(f"not_found={error}")
        return 1
    print(json.dumps(item.to_dict(), indent=2, default=str))
    return 0


def _run_delete_command(client: BulkLoadClient, args: argparse.Namespace) -> int:
    try:
        client.delete_file(args.collection, args.file_id)
    except FileNotFoundInNamespaceError as error:
        print(f"not_found={error}")
        return 1
    except DependencyExistsError as error:
        print(f"dependency_exists={error.consumer_id}")
        return 1
    print(f"deleted={args.file_id}")
    return 0


def _run_status_command(client: BulkLoadClient, args: argparse.Namespace) -> int:
    result = client.load_summary(args.load_tag)
    if result is None:
        print(f"unknown_load_tag={args.load_tag}")
        return 1
    print(_render_result(result, include_files=args.show_files))
    return 0


def _render_result(result: BulkLoadResult, include_files: bool) -> str:
    payload: dict[str, Any] = {
        "load_id": result.load_id,
        "load_tag": result.load_tag,
        "summary": asdict(result.summary),
    }
    if include_files:
        payload["results"] = [asdict(file_result) for file_result in result.results]
    return json.dumps(payload, indent=2)


def _add_load_command(subparsers: Any) -> None:
    """Register load subcommand."""
    parser = subparsers.add_parser("load", help="Bulk load files from a YAML or JSON request")
    parser.add_argument("request_file", help="Path to load request file")
    parser.add_argument(
        "--show-files",
        action="store_true",
        help="Include per-file results in the output",
    )


def _add_lookup_command(subparsers: Any) -> None:
    """Register lookup subcommand."""
    parser = subparsers.add_parser("lookup", help="Look up a path or file id in a collection")
    parser.add_argument("collection", help="Collection id")
    parser.add_argument("path", nargs="?", default="/", help="Absolute namespace path")
    parser.add_argument("--file-id", help="Look up by file id instead of path")
    parser.add_argument(
        "--depth",
        type=int,
        default=0,
        help="Directory expansion depth: 0 node only, -1 full subtree",
    )


def _add_delete_command(subparsers: Any) -> None:
    """Register delete subcommand."""
    parser = subparsers.add_parser("delete", help="Delete a file by id")
    parser.add_argument("collection", help="Collection id")
    parser.add_argument("file_id", help="File id")


def _add_status_command(subparsers: Any) -> None:
    """Register status subcommand."""
    parser = subparsers.add_parser("status", help="Show ledger summary of a load")
    parser.add_argument("load_tag", help="Load tag")
    parser.add_argument(
        "--show-files",
        action="store_true",
        help="Include per-file results in the output",
    )
