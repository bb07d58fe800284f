"""Dependency command wiring for bulkload CLI."""

from __future__ import annotations

import argparse
from typing import Any

from driver.client import BulkLoadClient


def add_dependency_command(subparsers: Any) -> None:
    """Register dependency subcommand."""
    parser = subparsers.add_parser(
        "dependency",
        help="Add or remove a consumer reference on a file",
    )
    parser.add_argument("action", choices=("add", "remove"), help="Dependency action")
    parser.add_argument("consumer", help="Consumer id holding the reference")
    parser.add_argument("file_id", help="Referenced file id")


def run_dependency_command(client: BulkLoadClient, args: argparse.Namespace) -> int:
    """Apply the dependency change and print the new reference count."""
    if args.action == "add":
        refcount = client.add_dependency(args.consumer, args.file_id)
    else:
        refcount = client.remove_dependency(args.consumer, args.file_id)
    print(f"refcount={refcount}")
    return 0
