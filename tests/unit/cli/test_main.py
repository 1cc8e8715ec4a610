"""Unit tests for CLI command handling."""

from __future__ import annotations

from pathlib import Path

import pytest

import cli.main as cli_main
from cli.main import main
from core.config import LedgerSyncConfig
from projection.memory_store import InMemoryDocumentStore
from sync.orchestrator import SyncOrchestrator
from tests.ledger_fixtures import (
    FakeLedgerClient,
    FlakyDocumentStore,
    distribution_log,
    make_config,
)


def _patch_orchestrator(
    monkeypatch: pytest.MonkeyPatch,
    ledger: FakeLedgerClient,
    store: InMemoryDocumentStore,
) -> None:
    def _build(config: LedgerSyncConfig) -> SyncOrchestrator:
        fast_config = make_config(config.data_root)
        return SyncOrchestrator(fast_config, store=store, ledger_client=ledger)

    monkeypatch.setattr(cli_main, "SyncOrchestrator", _build)


def test_cli_sync_prints_report(tmp_path: Path, monkeypatch, capsys) -> None:
    """CLI sync should backfill the range and print counts."""
    ledger = FakeLedgerClient()
    ledger.add(distribution_log(block_number=3, amount=10))
    _patch_orchestrator(monkeypatch, ledger, InMemoryDocumentStore())

    exit_code = main(["--data-root", str(tmp_path), "sync", "--from-block", "0"])
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and "applied=1" in output and "cursor_block=3" in output


def test_cli_resume_continues_from_cursor(tmp_path: Path, monkeypatch, capsys) -> None:
    """CLI resume should start after the previous sync's cursor."""
    ledger = FakeLedgerClient(head=10)
    _patch_orchestrator(monkeypatch, ledger, InMemoryDocumentStore())
    main(["--data-root", str(tmp_path), "sync", "--from-block", "0", "--to-block", "10"])
    capsys.readouterr()
    ledger.head = 20

    exit_code = main(["--data-root", str(tmp_path), "resume"])
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and "from_block=11" in output


def test_cli_health_without_cursor(tmp_path: Path, monkeypatch, capsys) -> None:
    """CLI health should report a missing cursor as '-'."""
    _patch_orchestrator(monkeypatch, FakeLedgerClient(), InMemoryDocumentStore())

    exit_code = main(["--data-root", str(tmp_path), "health"])
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and output[:2] == ["last_processed_block=-", "listening=false"]


def test_cli_listen_with_duration(tmp_path: Path, monkeypatch, capsys) -> None:
    """CLI listen should open subscriptions and stop after the duration."""
    ledger = FakeLedgerClient(head=5)
    _patch_orchestrator(monkeypatch, ledger, InMemoryDocumentStore())

    exit_code = main(["--data-root", str(tmp_path), "listen", "--duration", "0"])
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and "listening=true" in output and ledger.active_subscriptions() == []


def test_cli_sync_failure_returns_error_code(tmp_path: Path, monkeypatch, capsys) -> None:
    """A failed backfill should print the error and exit with 1."""
    ledger = FakeLedgerClient()
    ledger.add(distribution_log(block_number=3, amount=10))
    _patch_orchestrator(monkeypatch, ledger, FlakyDocumentStore(failures=-1, method="create"))

    exit_code = main(["--data-root", str(tmp_path), "sync", "--from-block", "0"])
    output = capsys.readouterr().out

    assert exit_code == 1 and output.startswith("sync_error=")


def test_cli_rejects_invalid_to_block(tmp_path: Path) -> None:
    """Non-numeric block tags other than 'latest' should be rejected."""
    with pytest.raises(SystemExit):
        main(["--data-root", str(tmp_path), "sync", "--from-block", "0", "--to-block", "soon"])
