"""CLI integration tests using Click's CliRunner."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner

from callsifter.cli import cli
from callsifter.config import load_rules
from callsifter.errors import AuthConfigError
from callsifter.sync.queue import MessageQueue


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path, config_paths):
    """Same file the ``repo`` fixture writes to."""
    return tmp_path / "test.db"


@pytest.fixture
def invoke(runner, db_path, registry):
    def _invoke(*args):
        return runner.invoke(cli, ["--db", str(db_path), *args], obj={"registry": registry})
    return _invoke


def parse_json(output: str):
    start = output.index("{")
    data, _ = json.JSONDecoder().raw_decode(output[start:])
    return data


class TestHelpCommands:
    def test_main_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "CallSifter" in result.output
        for command in ("sync", "sync-call", "consume", "search", "reassign", "rules", "serve"):
            assert command in result.output

    def test_rules_help(self, runner):
        result = runner.invoke(cli, ["rules", "--help"])
        assert result.exit_code == 0
        assert "add" in result.output
        assert "remove" in result.output

    def test_unknown_platform_rejected(self, runner):
        result = runner.invoke(cli, ["sync", "zoom"])
        assert result.exit_code != 0
        assert "zoom" in result.output


class TestSyncCommands:
    def test_sync_json(self, invoke, fake_adapter, make_transcript):
        start = datetime.now(timezone.utc) - timedelta(hours=2)
        fake_adapter.add(make_transcript(call_id="recent", start=start))

        result = invoke("sync", "gong", "--json")
        assert result.exit_code == 0, result.output
        summary = parse_json(result.output)
        assert summary["processed"] == 1
        assert summary["details"][0]["callId"] == "recent"

    def test_sync_table(self, invoke, fake_adapter, make_transcript):
        fake_adapter.add(make_transcript(
            call_id="recent", start=datetime.now(timezone.utc) - timedelta(hours=2),
        ))
        result = invoke("sync", "gong", "--days", "2")
        assert result.exit_code == 0, result.output
        assert "recent" in result.output
        assert "processed" in result.output

    def test_sync_failure_exits_nonzero(self, invoke, fake_adapter):
        fake_adapter.list_failures.extend([AuthConfigError("bad key"), AuthConfigError("bad key")])
        result = invoke("sync", "gong")
        assert result.exit_code == 1
        assert "bad key" in result.output

    def test_sync_call(self, invoke, fake_adapter, sample_transcript, repo):
        fake_adapter.add(sample_transcript)
        result = invoke("sync-call", "gong", "call-1")
        assert result.exit_code == 0, result.output
        assert "Created" in result.output
        assert repo.transcript_exists("gong", "call-1")

    def test_sync_call_missing(self, invoke):
        result = invoke("sync-call", "gong", "nope")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_consume(self, invoke, fake_adapter, sample_transcript, repo):
        fake_adapter.add(sample_transcript)
        MessageQueue(repo.db).enqueue(
            {"platform": "gong", "callId": "call-1", "source": "webhook"}, "gong-call-1-done"
        )
        result = invoke("consume", "--max-batches", "1")
        assert result.exit_code == 0, result.output
        assert "succeeded" in result.output
        assert repo.transcript_exists("gong", "call-1")

    def test_test_connection(self, invoke):
        result = invoke("test-connection", "gong")
        assert result.exit_code == 0
        assert "Connected to gong" in result.output

    def test_setup_webhook(self, invoke):
        result = invoke("setup-webhook", "gong", "https://hooks.example.test/gong")
        assert result.exit_code == 0


class TestBrowsingCommands:
    def test_status_without_database(self, runner, tmp_path, config_paths):
        result = runner.invoke(cli, ["--db", str(tmp_path / "none.db"), "status"])
        assert result.exit_code == 0
        assert "No database found" in result.output

    def test_status(self, invoke, repo, sample_transcript):
        repo.insert_transcript(sample_transcript, None)
        result = invoke("status")
        assert result.exit_code == 0
        assert "Transcripts" in result.output

    def test_accounts_empty(self, invoke, repo):
        result = invoke("accounts")
        assert "No accounts yet" in result.output

    def test_accounts(self, invoke, repo):
        repo.create_account("Acme", "acme.com", {"source": "fallback", "needsReview": True})
        result = invoke("accounts")
        assert result.exit_code == 0
        assert "Acme" in result.output
        assert "review" in result.output

    def test_search_json(self, invoke, repo, make_transcript):
        repo.insert_transcript(make_transcript(call_id="a", title="Pricing review"), None)
        repo.insert_transcript(make_transcript(call_id="b", title="Security review"), None)

        result = invoke("search", "pricing", "--json")
        assert result.exit_code == 0, result.output
        data = parse_json(result.output)
        assert data["total_count"] == 1
        assert data["transcripts"][0]["call_id"] == "a"

    def test_search_no_results(self, invoke, repo):
        result = invoke("search", "nothing")
        assert "No results found" in result.output

    def test_reassign(self, invoke, repo, sample_transcript):
        acme = repo.create_account("Acme", "acme.com")
        transcript_id = repo.insert_transcript(sample_transcript, None)

        result = invoke("reassign", str(transcript_id), str(acme.id), "--reason", "Known customer")
        assert result.exit_code == 0, result.output
        assert "Reassigned" in result.output
        assert repo.get_audit_trail(transcript_id)[0].actor == "cli"

    def test_reassign_unknown(self, invoke, repo):
        result = invoke("reassign", "999", "1", "--reason", "x")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestRuleCommands:
    def test_add_list_remove(self, invoke):
        result = invoke(
            "rules", "add", "--name", "Acme", "--type", "domain",
            "--pattern", "acme.com", "--account", "3", "--priority", "5",
        )
        assert result.exit_code == 0, result.output
        (rule,) = load_rules()
        assert rule.pattern == "acme.com"
        assert rule.priority == 5

        listed = invoke("rules", "list")
        assert "Acme" in listed.output

        removed = invoke("rules", "remove", rule.id)
        assert removed.exit_code == 0
        assert load_rules() == []

    def test_pattern_required(self, invoke):
        result = invoke("rules", "add", "--name", "X", "--type", "title_pattern", "--account", "1")
        assert result.exit_code == 1
        assert "--pattern is required" in result.output

    def test_manual_rule_without_pattern(self, invoke):
        result = invoke("rules", "add", "--name", "Pin", "--type", "manual", "--account", "1")
        assert result.exit_code == 0
        assert load_rules()[0].pattern is None

    def test_remove_unknown(self, invoke):
        result = invoke("rules", "remove", "nope")
        assert result.exit_code == 1

    def test_list_empty(self, invoke):
        assert "No rules defined" in invoke("rules", "list").output
