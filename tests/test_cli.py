# tests/test_cli.py
import json
import re
from pathlib import Path
from typing import Dict

import pytest
from typer.testing import CliRunner

from dualseal.cli.main import app
from dualseal.storage import SQLiteStorage, payload_namespace

runner = CliRunner()


@pytest.fixture
def env(tmp_path: Path, monkeypatch) -> Dict[str, str]:
    """Isolated database and key directory."""
    monkeypatch.setenv("DUALSEAL_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("DUALSEAL_KEY_DIR", str(tmp_path / "keys"))
    monkeypatch.setenv("DUALSEAL_MAX_RETRIES", "0")
    monkeypatch.delenv("DUALSEAL_LEDGER_ADDRESS", raising=False)
    return {"db": str(tmp_path / "cli.db")}


@pytest.fixture
def deployed(env) -> Dict[str, str]:
    for name in ("alice", "bob", "mallory"):
        result = runner.invoke(app, ["keygen", name])
        assert result.exit_code == 0, result.stdout
    result = runner.invoke(app, ["deploy"])
    assert result.exit_code == 0
    env["address"] = re.search(r"0x[0-9a-f]{40}", result.stdout).group(0)
    return env


@pytest.fixture
def created(deployed) -> Dict[str, str]:
    result = runner.invoke(app, [
        "create", "--as", "alice", "--title", "NDA",
        "--counterparty", "bob", "--content", "Confidential terms",
    ])
    assert result.exit_code == 0, result.stdout
    assert "Record created with ID: 0" in result.stdout
    return deployed


def test_no_deployment(env):
    result = runner.invoke(app, ["address"])
    assert result.exit_code == 1
    assert "no record store deployed" in result.stdout.lower()
    assert "dualseal deploy" in result.stdout


def test_keygen_refuses_overwrite(env):
    assert runner.invoke(app, ["keygen", "alice"]).exit_code == 0
    result = runner.invoke(app, ["keygen", "alice"])
    assert result.exit_code == 1
    assert "already exists" in result.stdout
    assert runner.invoke(app, ["keygen", "alice", "--force"]).exit_code == 0


def test_deploy_and_address(deployed):
    result = runner.invoke(app, ["address"])
    assert result.exit_code == 0
    assert deployed["address"] in result.stdout


def test_unknown_key(deployed):
    result = runner.invoke(app, ["approve", "0", "--as", "nobody"])
    assert result.exit_code == 1
    assert "no key named 'nobody'" in result.stdout.lower()


def test_full_flow(created, tmp_path: Path):
    result = runner.invoke(app, ["reconcile", "0", "--as", "bob"])
    assert result.exit_code == 1
    assert "not_ready" in result.stdout

    result = runner.invoke(app, ["finalize", "0", "--as", "alice"])
    assert result.exit_code == 1
    assert "invalid_transition" in result.stdout

    result = runner.invoke(app, ["approve", "0", "--as", "bob"])
    assert result.exit_code == 0
    assert "approved" in result.stdout

    result = runner.invoke(app, ["finalize", "0", "--as", "alice"])
    assert result.exit_code == 0
    assert "finalized" in result.stdout

    for who in ("alice", "bob"):
        result = runner.invoke(app, ["reconcile", "0", "--as", who])
        assert result.exit_code == 0
        assert "Confidential terms" in result.stdout

    result = runner.invoke(app, ["reconcile", "0", "--as", "mallory"])
    assert result.exit_code == 1
    assert "unauthorized" in result.stdout

    out = tmp_path / "recovered.txt"
    result = runner.invoke(app, ["reconcile", "0", "--as", "bob", "--output", str(out)])
    assert result.exit_code == 0
    assert out.read_text(encoding="utf-8") == "Confidential terms"


def test_wrong_party_approve(created):
    result = runner.invoke(app, ["approve", "0", "--as", "alice"])
    assert result.exit_code == 1
    assert "unauthorized" in result.stdout


def test_create_from_file(deployed, tmp_path: Path):
    doc = tmp_path / "doc.txt"
    doc.write_text("From a file.\nSecond line.", encoding="utf-8")
    result = runner.invoke(app, [
        "create", "--as", "bob", "--title", "Lease", "--counterparty", "alice", "--file", str(doc),
    ])
    assert result.exit_code == 0


def test_create_needs_exactly_one_source(deployed):
    result = runner.invoke(app, ["create", "--as", "alice", "--title", "NDA", "--counterparty", "bob"])
    assert result.exit_code == 1
    assert "exactly one" in result.stdout


def test_create_rejects_self(deployed):
    result = runner.invoke(app, [
        "create", "--as", "alice", "--title", "NDA", "--counterparty", "alice", "--content", "x",
    ])
    assert result.exit_code == 1
    assert "validation" in result.stdout


def test_show_and_list(created):
    result = runner.invoke(app, ["show", "0"])
    assert result.exit_code == 0
    assert "NDA" in result.stdout
    assert "awaiting counterparty approval" in result.stdout

    result = runner.invoke(app, ["list", "--as", "bob"])
    assert result.exit_code == 0
    assert "counterparty" in result.stdout
    assert "NDA" in result.stdout

    result = runner.invoke(app, ["show", "9"])
    assert result.exit_code == 1
    assert "not_found" in result.stdout


def test_corrupted_payload_is_final(created):
    runner.invoke(app, ["approve", "0", "--as", "bob"])
    runner.invoke(app, ["finalize", "0", "--as", "alice"])

    with SQLiteStorage(Path(created["db"])) as storage:
        ns = payload_namespace(created["address"])
        blob = bytearray(storage.get(ns, "0"))
        blob[20] ^= 0x01
        storage.put(ns, "0", bytes(blob))

    result = runner.invoke(app, ["reconcile", "0", "--as", "alice"])
    assert result.exit_code == 1
    assert "payload_corrupted" in result.stdout
    assert "Confidential terms" not in result.stdout


def test_events_export(created, tmp_path: Path):
    runner.invoke(app, ["approve", "0", "--as", "bob"])

    result = runner.invoke(app, ["events"])
    assert result.exit_code == 0
    assert "RecordCreated" in result.stdout
    assert "CounterpartyApproved" in result.stdout

    output_file = tmp_path / "events.jsonl"
    result = runner.invoke(app, ["events", "--output", str(output_file)])
    assert result.exit_code == 0
    assert "Exported 2 events" in result.stdout

    with open(output_file, "r", encoding="utf-8") as f:
        lines = [json.loads(line) for line in f]
    assert [e["name"] for e in lines] == ["RecordCreated", "CounterpartyApproved"]
    assert lines[0]["args"]["title"] == "NDA"
