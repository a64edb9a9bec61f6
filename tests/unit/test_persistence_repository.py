from datetime import timedelta

import pytest

from conftest import START, make_rule
from ruleflow.contracts import (
    ExecutionLogEntry,
    ExecutionStatus,
    InstructionStep,
    RuleInput,
    StepResult,
)
from ruleflow.errors import StoreError
from ruleflow.persistence import (
    InMemoryExecutionLogRepository,
    InMemoryNotificationRepository,
    InMemoryRuleRepository,
    NotificationInput,
    SQLiteExecutionLogRepository,
    SQLiteNotificationRepository,
    SQLiteRuleRepository,
)


@pytest.fixture(params=["memory", "sqlite"])
def rules(request, tmp_path):
    if request.param == "memory":
        return InMemoryRuleRepository()
    return SQLiteRuleRepository(tmp_path / "rules.db")


@pytest.fixture(params=["memory", "sqlite"])
def logs(request, tmp_path):
    if request.param == "memory":
        return InMemoryExecutionLogRepository()
    return SQLiteExecutionLogRepository(tmp_path / "logs.db")


@pytest.fixture(params=["memory", "sqlite"])
def notifications(request, tmp_path):
    if request.param == "memory":
        return InMemoryNotificationRepository()
    return SQLiteNotificationRepository(tmp_path / "notifications.db")


@pytest.mark.asyncio
async def test_rule_crud(rules):
    created = await rules.create(
        "user_1",
        RuleInput(
            name="Digest",
            topic_condition="newsletters",
            execution_steps=[InstructionStep(content="summarize")],
            output_config={"platform": "slack", "destination": "#news"},
        ),
    )
    assert created.id.startswith("rule_")

    fetched = await rules.get(created.id)
    assert fetched is not None
    assert fetched.name == "Digest"
    assert fetched.execution_steps == [InstructionStep(content="summarize")]
    assert fetched.output_config.destination == "#news"

    assert await rules.get_by_id_and_user(created.id, "user_1") is not None
    assert await rules.get_by_id_and_user(created.id, "someone_else") is None

    updated = await rules.update(created.id, {"priority": 7, "is_active": False})
    assert updated.priority == 7
    assert not (await rules.get(created.id)).is_active
    assert not await rules.has_active_rules("user_1")

    assert await rules.delete(created.id)
    assert not await rules.delete(created.id)
    assert await rules.get(created.id) is None
    assert await rules.update(created.id, {"priority": 1}) is None


@pytest.mark.asyncio
async def test_active_rules_sorted_by_priority_then_age(rules):
    await rules.add(make_rule(id="low", priority=1))
    await rules.add(make_rule(id="old-high", priority=5, created_at=START))
    await rules.add(make_rule(id="new-high", priority=5, created_at=START + timedelta(hours=1)))
    await rules.add(make_rule(id="inactive", priority=99, is_active=False))
    await rules.add(make_rule(id="other-user", user_id="user_2"))
    await rules.add(make_rule(id="manual", priority=0, activation_mode="manual"))

    active = await rules.get_active_by_user_id("user_1")
    assert [r.id for r in active] == ["old-high", "new-high", "low", "manual"]
    assert [r.id for r in await rules.get_manual_rules("user_1")] == ["manual"]
    assert len(await rules.list_by_user("user_1")) == 5


@pytest.mark.asyncio
async def test_increment_and_schedule_writes(rules):
    await rules.add(
        make_rule(id="r1", activation_mode="scheduled", schedule_enabled=True, schedule_interval="daily")
    )

    await rules.increment_execution_count("r1", now=START)
    await rules.increment_execution_count("r1", now=START)
    stored = await rules.get("r1")
    assert stored.execution_count == 2
    assert stored.last_executed_at == START

    assert [r.id for r in await rules.get_scheduled_rules_due(START)] == ["r1"]
    await rules.update_schedule_run("r1", "daily", now=START)
    stored = await rules.get("r1")
    assert stored.schedule_last_run == START
    assert stored.schedule_next_run == START + timedelta(days=1)
    assert await rules.get_scheduled_rules_due(START) == []
    assert len(await rules.get_scheduled_rules_due(START + timedelta(days=1))) == 1

    with pytest.raises(StoreError):
        await rules.increment_execution_count("missing")
    with pytest.raises(StoreError):
        await rules.update_schedule_run("missing", "daily")


def _entry(status, duration, created_at, rule_id="r1", user_id="user_1"):
    return ExecutionLogEntry(
        rule_id=rule_id,
        rule_name="Digest",
        user_id=user_id,
        trigger_slug="GMAIL_NEW_MESSAGE",
        status=status,
        steps=[StepResult(step_index=0, type="instruction", success=True, result="ok")],
        output_text="ok",
        duration_ms=duration,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_execution_log_pages_and_stats(logs):
    await logs.create(_entry(ExecutionStatus.SUCCESS, 100, START))
    await logs.create(_entry(ExecutionStatus.FAILURE, 300, START + timedelta(minutes=1)))
    await logs.create(_entry(ExecutionStatus.PARTIAL, 200, START + timedelta(minutes=2)))
    await logs.create(_entry(ExecutionStatus.SUCCESS, 400, START, rule_id="r2", user_id="user_2"))

    page, total = await logs.list_by_rule("r1", limit=2)
    assert total == 3
    assert [e.status for e in page] == [ExecutionStatus.PARTIAL, ExecutionStatus.FAILURE]
    assert page[0].steps[0].result == "ok"

    _, total = await logs.list_by_user("user_1", limit=1, offset=2)
    assert total == 3
    assert len(await logs.recent("user_1", limit=2)) == 2

    stats = await logs.get_stats("user_1")
    assert stats.total_runs == 3
    assert stats.success_rate == pytest.approx(100 / 3)
    assert stats.avg_duration_ms == 200

    empty = await logs.get_stats("nobody")
    assert (empty.total_runs, empty.success_rate, empty.avg_duration_ms) == (0, 0.0, 0)
    assert (await logs.get_stats_by_rule("r2")).success_rate == 100


@pytest.mark.asyncio
async def test_execution_log_prune(logs):
    await logs.create(_entry(ExecutionStatus.SUCCESS, 10, START - timedelta(days=40)))
    await logs.create(_entry(ExecutionStatus.SUCCESS, 10, START - timedelta(days=1)))

    assert await logs.delete_older_than(30, now=START) == 1
    _, total = await logs.list_by_user("user_1")
    assert total == 1


@pytest.mark.asyncio
async def test_notifications(notifications):
    first = await notifications.create(
        NotificationInput(
            user_id="user_1",
            type="execution_success",
            title="✅ Digest completed",
            body="ok",
            rule_id="r1",
            rule_name="Digest",
            log_id="log_1",
        )
    )
    await notifications.create(
        NotificationInput(user_id="user_1", type="info", title="hello", body="there")
    )

    assert first.id.startswith("ntf_")
    assert not first.read
    assert len(await notifications.list_by_user("user_1")) == 2

    assert await notifications.mark_read(first.id)
    assert not await notifications.mark_read("missing")
    unread = await notifications.list_by_user("user_1", unread_only=True)
    assert [n.title for n in unread] == ["hello"]

    assert await notifications.mark_all_read("user_1") == 1
    assert await notifications.list_by_user("user_1", unread_only=True) == []
