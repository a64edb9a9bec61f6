import asyncio
import json
from datetime import timedelta

from typer.testing import CliRunner

import ruleflow.cli as cli
from conftest import START, make_rule, verdict
from ruleflow.cli import app
from ruleflow.contracts import ExecutionLogEntry, ExecutionStatus, utcnow

runner = CliRunner()


def _use(monkeypatch, service):
    monkeypatch.setattr(cli, "get_service", lambda config=None: service)
    monkeypatch.setenv("RULEFLOW_CONFIG", "does-not-exist.yaml")
    return service


def test_schedule_run_reports_results(monkeypatch, build_service, rule_repo):
    service = _use(monkeypatch, build_service())
    asyncio.run(
        rule_repo.add(
            make_rule(
                id="sched",
                name="Morning Briefing",
                activation_mode="scheduled",
                schedule_enabled=True,
                schedule_interval="daily",
            )
        )
    )

    result = runner.invoke(app, ["schedule", "run"])

    assert result.exit_code == 0, result.output
    assert "Processed 1 rules: 1 succeeded, 0 failed" in result.stdout
    stored = asyncio.run(service.rules.get("sched"))
    assert stored.schedule_next_run == START + timedelta(days=1)


def test_trigger_process_from_file(monkeypatch, build_service, rule_repo, classifier, tmp_path):
    _use(monkeypatch, build_service())
    asyncio.run(rule_repo.add(make_rule(id="boss")))
    classifier.response = verdict("boss")
    payload_file = tmp_path / "event.json"
    payload_file.write_text(
        json.dumps(
            {
                "trigger_slug": "GMAIL_NEW_MESSAGE",
                "toolkit_slug": "gmail",
                "payload": {"from": "boss@co.com"},
            }
        )
    )

    result = runner.invoke(app, ["trigger", "process", "user_1", str(payload_file)])

    assert result.exit_code == 0, result.output
    assert "Matched rule boss (Boss emails): executed" in result.stdout


def test_trigger_process_missing_or_invalid_file(monkeypatch, build_service, tmp_path):
    _use(monkeypatch, build_service())
    missing = runner.invoke(app, ["trigger", "process", "user_1", str(tmp_path / "nope.json")])
    assert missing.exit_code == 1
    assert "Payload file does not exist" in missing.stdout

    bad = tmp_path / "bad.json"
    bad.write_text('{"payload": {}}')
    invalid = runner.invoke(app, ["trigger", "process", "user_1", str(bad)])
    assert invalid.exit_code == 1
    assert "Invalid trigger payload" in invalid.stdout


def test_rules_list_and_invoke(monkeypatch, build_service, rule_repo):
    _use(monkeypatch, build_service())
    asyncio.run(rule_repo.add(make_rule(id="m1", name="Lead Enrichment", activation_mode="manual")))

    listed = runner.invoke(app, ["rules", "list", "user_1"])
    assert listed.exit_code == 0, listed.output
    assert "m1\tLead Enrichment\tmanual\tactive" in listed.stdout

    empty = runner.invoke(app, ["rules", "list", "nobody"])
    assert "No rules found" in empty.stdout

    invoked = runner.invoke(app, ["rules", "invoke", "user_1", "m1", "--context", "acme.com"])
    assert invoked.exit_code == 0, invoked.output
    assert "done" in invoked.stdout

    missing = runner.invoke(app, ["rules", "invoke", "user_1", "ghost"])
    assert missing.exit_code == 1
    assert "Rule not found" in missing.stdout


def test_logs_commands(monkeypatch, build_service, log_repo):
    _use(monkeypatch, build_service())
    for status, duration, age in (
        (ExecutionStatus.SUCCESS, 100, 0),
        (ExecutionStatus.FAILURE, 300, 0),
        (ExecutionStatus.SUCCESS, 50, 90),
    ):
        asyncio.run(
            log_repo.create(
                ExecutionLogEntry(
                    rule_id="r1",
                    rule_name="Digest",
                    user_id="user_1",
                    trigger_slug="GMAIL_NEW_MESSAGE",
                    status=status,
                    duration_ms=duration,
                    created_at=utcnow() - timedelta(days=age),
                )
            )
        )

    listed = runner.invoke(app, ["logs", "list", "user_1", "--limit", "2"])
    assert listed.exit_code == 0, listed.output
    assert "Showing 2 of 3" in listed.stdout

    stats = runner.invoke(app, ["logs", "stats", "user_1"])
    assert "Total runs: 3" in stats.stdout
    assert "Success rate: 66.7%" in stats.stdout
    assert "Average duration: 150ms" in stats.stdout

    pruned = runner.invoke(app, ["logs", "prune", "--days", "30"])
    assert pruned.exit_code == 0, pruned.output
    assert "Deleted 1 log entries" in pruned.stdout


def test_templates_list(monkeypatch):
    monkeypatch.setenv("RULEFLOW_CONFIG", "does-not-exist.yaml")
    result = runner.invoke(app, ["templates", "list"])
    assert result.exit_code == 0, result.output
    assert "Email:" in result.stdout
    assert "daily-email-digest" in result.stdout
    assert "Data & Reports:" in result.stdout
