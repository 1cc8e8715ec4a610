"""Ledger sync CLI entry points.
This module exposes operator commands for backfill, live sync and health.
It maps argparse commands onto orchestrator calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
import threading
from typing import Any, Sequence

from core.config import LedgerSyncConfig
from core.constants import LATEST_BLOCK
from core.errors import LedgerSyncError
from core.types import BackfillReport, BlockTag
from sync.orchestrator import SyncOrchestrator


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="ledger-sync", description="Relief ledger projection sync"
    )
    parser.add_argument("--data-root", help="Override LEDGER_SYNC_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_sync_command(subparsers)
    _add_resume_command(subparsers)
    _add_listen_command(subparsers)
    _add_health_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the ledger sync CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    orchestrator = _build_orchestrator(args.data_root)
    if args.command == "health":
        return _run_health_command(orchestrator)
    try:
        orchestrator.initialize()
        if args.command == "sync":
            return _run_sync_command(orchestrator, args)
        if args.command == "resume":
            return _print_report(orchestrator.sync_from_cursor())
        if args.command == "listen":
            return _run_listen_command(orchestrator, args)
    except LedgerSyncError as error:
        print(f"sync_error={error}")
        return 1
    finally:
        orchestrator.shutdown()
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_orchestrator(data_root: str | None) -> SyncOrchestrator:
    """Build orchestrator with optional data-root override.

    Args:
        data_root: Optional override path.

    Returns:
        Uninitialized orchestrator.
    """
    config = LedgerSyncConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return SyncOrchestrator(config)


def _run_sync_command(orchestrator: SyncOrchestrator, args: argparse.Namespace) -> int:
    """Handle sync command."""
    report = orchestrator.sync_range(args.from_block, args.to_block)
    return _print_report(report)


def _run_listen_command(orchestrator: SyncOrchestrator, args: argparse.Namespace) -> int:
    """Handle listen command.

    Blocks until interrupted, or for ``--duration`` seconds when given.
    """
    if args.catch_up:
        _print_report(orchestrator.sync_from_cursor())
    orchestrator.start_listening(args.from_block)
    print("listening=true")
    try:
        threading.Event().wait(args.duration)
    except KeyboardInterrupt:
        print("interrupted=true")
    orchestrator.stop_listening()
    return _run_health_command(orchestrator)


def _run_health_command(orchestrator: SyncOrchestrator) -> int:
    """Print health probe fields; exit code 1 when degraded."""
    health = orchestrator.health()
    last_block = health.last_processed_block
    print(f"last_processed_block={last_block if last_block is not None else '-'}")
    print(f"listening={str(health.listening).lower()}")
    print(f"degraded={str(health.degraded).lower()}")
    if health.last_error:
        print(f"last_error={health.last_error}")
    return 1 if health.degraded else 0


def _print_report(report: BackfillReport) -> int:
    print(f"from_block={report.from_block}")
    print(f"to_block={report.to_block}")
    print(f"applied={report.applied_count}")
    print(f"duplicates={report.duplicate_count}")
    print(f"skipped={report.skipped_count}")
    print(f"cursor_block={report.cursor_block if report.cursor_block is not None else '-'}")
    return 0


def _parse_block_tag(value: str) -> BlockTag:
    """Parse an argparse block value: a non-negative integer or ``latest``."""
    if value == LATEST_BLOCK:
        return LATEST_BLOCK
    try:
        block = int(value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(
            f"expected a block number or '{LATEST_BLOCK}', got '{value}'"
        ) from error
    if block < 0:
        raise argparse.ArgumentTypeError(f"block number must be non-negative, got {block}")
    return block


def _parse_block_number(value: str) -> int:
    block = _parse_block_tag(value)
    if not isinstance(block, int):
        raise argparse.ArgumentTypeError(f"expected a block number, got '{value}'")
    return block


def _add_sync_command(subparsers: Any) -> None:
    """Register sync subcommand."""
    parser = subparsers.add_parser("sync", help="Backfill a closed block range")
    parser.add_argument(
        "--from-block", type=_parse_block_number, required=True, help="First block"
    )
    parser.add_argument(
        "--to-block",
        type=_parse_block_tag,
        default=LATEST_BLOCK,
        help="Last block or 'latest'",
    )


def _add_resume_command(subparsers: Any) -> None:
    """Register resume subcommand."""
    subparsers.add_parser("resume", help="Backfill from the persisted cursor to 'latest'")


def _add_listen_command(subparsers: Any) -> None:
    """Register listen subcommand."""
    parser = subparsers.add_parser("listen", help="Follow new ledger events live")
    parser.add_argument(
        "--from-block",
        type=_parse_block_number,
        help="First block to deliver; defaults to the block after the cursor",
    )
    parser.add_argument(
        "--catch-up",
        action="store_true",
        help="Run a cursor backfill before opening subscriptions",
    )
    parser.add_argument(
        "--duration",
        type=float,
        help="Stop after this many seconds instead of waiting for Ctrl-C",
    )


def _add_health_command(subparsers: Any) -> None:
    """Register health subcommand."""
    subparsers.add_parser("health", help="Print cursor and degradation state")
