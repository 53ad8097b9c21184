"""Tests for the peerwatch command-line interface."""

import asyncio
import importlib
import json
from collections.abc import Iterator

import pytest
from click.testing import CliRunner
from loguru import logger

from peerwatch.cli.main import cli
from peerwatch.store.interfaces import StoreError
from peerwatch.store.memory import InMemoryCoordinationStore

# peerwatch.cli re-exports the `main` function under the submodule's name.
cli_main = importlib.import_module("peerwatch.cli.main")


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    # The CLI points loguru at the runner's temporary stderr.
    logger.remove()


@pytest.fixture
def memory_store(monkeypatch: pytest.MonkeyPatch) -> InMemoryCoordinationStore:
    store = InMemoryCoordinationStore()
    monkeypatch.setattr(cli_main, "_build_store", lambda etcd_url: store)
    return store


class TestCLIBasics:
    def test_cli_help(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "membership" in result.output
        for command in ("run", "peers", "whoami"):
            assert command in result.output

    def test_run_help_lists_options(self) -> None:
        runner = CliRunner()
        result = runner.invoke(cli, ["run", "--help"])
        assert result.exit_code == 0
        assert "--etcd-url" in result.output
        assert "--duration" in result.output


class TestWhoami:
    def test_explicit_address(self) -> None:
        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["whoami", "--address", "10.1.1.1", "--port", "7000", "--namespace", "svc"],
        )
        assert result.exit_code == 0
        assert "address: 10.1.1.1:7000" in result.output
        assert "svc_10.1.1.1:7000" in result.output

    def test_namespace_with_separator_is_rejected(self) -> None:
        runner = CliRunner()
        result = runner.invoke(
            cli, ["whoami", "--address", "10.1.1.1", "--namespace", "my_svc"]
        )
        assert result.exit_code == 1
        assert "Cannot resolve identity" in result.output


class TestPeers:
    def test_json_output(self, memory_store: InMemoryCoordinationStore) -> None:
        asyncio.run(memory_store.put("svc_10.0.0.2:9000", "0"))
        asyncio.run(memory_store.put("svc_10.0.0.1:9000", "0"))
        asyncio.run(memory_store.put("other_10.0.0.9:9000", "0"))

        runner = CliRunner()
        result = runner.invoke(cli, ["peers", "--namespace", "svc", "-o", "json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["10.0.0.1:9000", "10.0.0.2:9000"]

    def test_table_output(self, memory_store: InMemoryCoordinationStore) -> None:
        asyncio.run(memory_store.put("svc_10.0.0.1:9000", "0"))

        runner = CliRunner()
        result = runner.invoke(cli, ["peers", "--namespace", "svc"])

        assert result.exit_code == 0
        assert "10.0.0.1:9000" in result.output

    def test_store_failure_exits_nonzero(
        self, memory_store: InMemoryCoordinationStore
    ) -> None:
        memory_store.inject_failure("get_prefix", StoreError("no leader"))

        runner = CliRunner()
        result = runner.invoke(cli, ["peers", "--namespace", "svc"])

        assert result.exit_code == 1
        assert "Snapshot failed" in result.output


class TestRun:
    def test_run_for_duration_then_deregisters(
        self, memory_store: InMemoryCoordinationStore
    ) -> None:
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "run",
                "--namespace",
                "svc",
                "--address",
                "10.0.0.1",
                "--port",
                "9000",
                "--refresh",
                "0.05",
                "--duration",
                "0.2",
            ],
        )

        assert result.exit_code == 0
        assert "svc_10.0.0.1:9000" in result.output
        assert memory_store.operation_counts["grant"] == 1
        assert memory_store.keys() == []
        assert memory_store.active_leases() == []

    def test_initial_registration_failure_exits_nonzero(
        self, memory_store: InMemoryCoordinationStore
    ) -> None:
        memory_store.inject_failure("grant", StoreError("no leader"))

        runner = CliRunner()
        result = runner.invoke(
            cli, ["run", "--namespace", "svc", "--address", "10.0.0.1", "--duration", "0.1"]
        )

        assert result.exit_code == 1
        assert "Membership failed" in result.output
