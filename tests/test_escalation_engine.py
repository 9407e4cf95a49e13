"""Tests for the escalation execution state machine."""

from datetime import timedelta

import pytest

from src.config import AlertSource, ExecutionStatus
from src.core import (
    AlreadyAcknowledgedException,
    AlreadyTerminalException,
    ConcurrentModificationException,
    ConfigurationException,
    ResourceNotFoundException,
    StoreUnavailableException,
)
from src.escalation.application import EscalationPolicyService
from src.escalation.domain import (
    AlertEvent,
    EscalationLevel,
    EscalationPolicy,
    PolicySnapshot,
    StepKind,
)

from tests.conftest import T0, InMemoryPolicyRepository


def at(minutes: float):
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def alert() -> AlertEvent:
    return AlertEvent.for_metric("kri-losses", title="Operational losses breach", reason="130 vs 100")


@pytest.fixture
async def execution(engine, alert):
    """Provide an execution started at T0 on the [0, 30, 120] policy."""
    start = await engine.start_escalation(alert, "default")
    return start.execution


class TestStart:
    """Test execution creation."""

    async def test_starts_at_first_level(self, execution, dispatcher, sender):
        assert execution.status == ExecutionStatus.ACTIVE
        assert execution.current_level == 1
        assert execution.escalated_at == T0
        assert execution.alert_source == AlertSource.BREACH
        assert execution.next_due_at == at(30)
        assert execution.execution_log[0].action == "escalation_started"

        await dispatcher.drain()
        assert sender.sent[0]["subject"] == "[ESCALATED] Level 1: Operational losses breach"

    async def test_second_start_returns_existing(self, engine, alert, execution, execution_repo):
        again = await engine.start_escalation(alert, "default")

        assert not again.created
        assert again.execution.id == execution.id
        assert len(execution_repo.executions) == 1

    async def test_new_execution_after_resolution(self, engine, alert, execution, execution_repo):
        await engine.resolve_execution(execution.id)

        again = await engine.start_escalation(alert, "default")

        assert again.created
        assert again.execution.id != execution.id
        assert len(execution_repo.executions) == 2

    async def test_unknown_policy(self, engine, alert):
        with pytest.raises(ResourceNotFoundException):
            await engine.start_escalation(alert, "nope")

    async def test_inactive_policy(self, engine, alert, policy_repo):
        policy = policy_repo.policies["default"]
        policy_repo.policies["default"] = EscalationPolicy(
            id=policy.id, policy_name=policy.policy_name, levels=policy.levels, is_active=False
        )

        with pytest.raises(ResourceNotFoundException):
            await engine.start_escalation(alert, "default")

    async def test_notify_false_defers_first_message(self, engine, dispatcher, sender):
        start = await engine.start_escalation(
            AlertEvent.for_incident("INC-1", title="Checkout down", reason="overdue"), "sla", notify=False
        )
        assert start.delivery is None
        assert dispatcher.pending == 0

        delivered = await engine.notify_started(start.execution)

        assert delivered is True
        assert sender.sent[0]["recipients"] == ["oncall@example.com"]


class TestTimer:
    """Test delayed level activation."""

    async def test_advances_after_second_level_delay(self, engine, execution, execution_repo):
        await engine.process_due(now=at(29))
        assert execution_repo.executions[execution.id].current_level == 1

        summary = await engine.process_due(now=at(31))

        assert summary.advanced == 1
        assert execution_repo.executions[execution.id].current_level == 2

    async def test_resolution_stops_timer(self, engine, execution, execution_repo, clock):
        await engine.process_due(now=at(31))
        clock.set(31)
        await engine.resolve_execution(execution.id)

        summary = await engine.process_due(now=at(121))

        stored = execution_repo.executions[execution.id]
        assert summary.evaluated == 0
        assert stored.status == ExecutionStatus.RESOLVED
        assert stored.current_level == 2

    async def test_duplicate_tick_applies_once(self, engine, execution, execution_repo):
        first = await engine.process_due(now=at(31))
        second = await engine.process_due(now=at(31))

        assert first.advanced == 1
        assert second.advanced == 0
        assert execution_repo.executions[execution.id].notification_count == 2

    async def test_late_tick_advances_one_level(self, engine, execution, execution_repo):
        await engine.process_due(now=at(500))
        await engine.process_due(now=at(500))

        stored = execution_repo.executions[execution.id]
        assert stored.current_level == 2
        assert stored.next_due_at == at(590)

    async def test_level_bounded_by_policy(self, engine, execution, execution_repo):
        for minute in (31, 121, 400, 10_000):
            await engine.process_due(now=at(minute))

        stored = execution_repo.executions[execution.id]
        assert stored.current_level == 3
        assert stored.next_due_at is None
        assert stored.status == ExecutionStatus.ACTIVE

    async def test_levels_never_decrease(self, engine, execution, execution_repo):
        levels = []
        for minute in range(0, 300, 7):
            await engine.process_due(now=at(minute))
            levels.append(execution_repo.executions[execution.id].current_level)
        assert levels == sorted(levels)

    async def test_advance_notifies_next_level(self, engine, execution, dispatcher, sender):
        await engine.process_due(now=at(31))
        await dispatcher.drain()

        assert sender.sent[-1]["recipients"] == ["committee@example.com"]
        assert sender.sent[-1]["subject"].startswith("[ESCALATED] Level 2")

    async def test_failed_delivery_does_not_block_advance(self, engine, execution, execution_repo, dispatcher, sender):
        sender.failing.add("committee@example.com")

        await engine.process_due(now=at(31))
        await dispatcher.drain()

        assert execution_repo.executions[execution.id].current_level == 2
        assert dispatcher.failed_count == 1

    async def test_last_level_repeats(self, engine, execution_repo, dispatcher, sender):
        start = await engine.start_escalation(
            AlertEvent.for_metric("kri-outage", title="Outage", reason="critical"), "critical"
        )

        summary = await engine.process_due(now=at(30))
        await dispatcher.drain()

        stored = execution_repo.executions[start.execution.id]
        assert summary.repeated == 1
        assert stored.notification_count == 2
        assert stored.next_due_at == at(60)
        assert sender.sent[-1]["subject"].startswith("[REMINDER]")

    async def test_configured_default_repeat_interval(self, engine, config_provider, execution_repo):
        config_provider.config.default_repeat_interval_minutes = 15
        start = await engine.start_escalation(
            AlertEvent.for_incident("INC-1", title="Checkout down", reason="overdue"), "sla"
        )

        assert start.execution.policy_snapshot.repeat_interval_minutes == 15

    async def test_tick_execution(self, engine, execution):
        step = await engine.tick_execution(execution.id, now=at(30))

        assert step.kind == StepKind.ADVANCE
        assert step.level.level == 2


class TestTickCommitOrder:
    """Level notifications leave only after the tick's changes are committed."""

    async def test_commit_precedes_level_notification(self, engine, execution, dispatcher, sender):
        await dispatcher.drain()
        sent_before = len(sender.sent)
        seen_at_commit = []

        async def commit():
            seen_at_commit.append((len(sender.sent), dispatcher.pending))

        engine._commit = commit

        summary = await engine.process_due(now=at(31))
        await dispatcher.drain()

        assert summary.advanced == 1
        assert seen_at_commit == [(sent_before, 0)]
        assert sender.sent[-1]["subject"].startswith("[ESCALATED] Level 2")

    async def test_failed_commit_sends_nothing(self, engine, execution, dispatcher, sender):
        await dispatcher.drain()
        sent_before = len(sender.sent)

        async def failing_commit():
            raise StoreUnavailableException("Store unavailable during commit", {"operation": "commit"})

        engine._commit = failing_commit

        with pytest.raises(StoreUnavailableException):
            await engine.process_due(now=at(31))

        await dispatcher.drain()
        assert len(sender.sent) == sent_before

    async def test_store_failure_stops_the_pass(self, engine, execution_repo, dispatcher, sender):
        for alert_id in ("kri-a", "kri-b"):
            await engine.start_escalation(AlertEvent.for_metric(alert_id, title=alert_id, reason="breach"), "default")
        await dispatcher.drain()
        sent_before = len(sender.sent)
        attempts = []

        async def unavailable_update(execution, expected_version):
            attempts.append(execution.id)
            raise StoreUnavailableException("Store unavailable during update", {"operation": "update"})

        execution_repo.update = unavailable_update

        with pytest.raises(StoreUnavailableException):
            await engine.process_due(now=at(31))

        await dispatcher.drain()
        assert len(attempts) == 1
        assert len(sender.sent) == sent_before

    async def test_tick_execution_commits_before_sending(self, engine, execution, dispatcher, sender):
        await dispatcher.drain()
        seen_at_commit = []

        async def commit():
            seen_at_commit.append(dispatcher.pending)

        engine._commit = commit

        await engine.tick_execution(execution.id, now=at(30))

        await dispatcher.drain()

        assert seen_at_commit == [0]
        assert sender.sent[-1]["subject"].startswith("[ESCALATED] Level 2")


class TestExternalActions:
    """Test resolve, cancel, assign and acknowledge."""

    async def test_resolve_twice_rejected(self, engine, execution):
        await engine.resolve_execution(execution.id)

        with pytest.raises(AlreadyTerminalException):
            await engine.resolve_execution(execution.id)

    async def test_cancel_is_terminal(self, engine, execution, execution_repo):
        cancelled = await engine.cancel_execution(execution.id, reason="false positive")

        assert cancelled.status == ExecutionStatus.CANCELLED
        assert cancelled.cancel_reason == "false positive"
        with pytest.raises(AlreadyTerminalException):
            await engine.resolve_execution(execution.id)

        await engine.process_due(now=at(1000))
        assert execution_repo.executions[execution.id].current_level == 1

    async def test_assign(self, engine, execution):
        assigned = await engine.assign_execution(execution.id, "bob")

        assert assigned.assigned_to == "bob"
        assert assigned.status == ExecutionStatus.ACTIVE
        assert assigned.execution_log[-1].action == "assigned"

    async def test_acknowledge_halts_timer(self, engine, execution, execution_repo):
        acknowledged = await engine.acknowledge_execution(execution.id, "alice")

        assert acknowledged.status == ExecutionStatus.ACTIVE
        assert acknowledged.next_due_at is None
        summary = await engine.process_due(now=at(500))
        assert summary.evaluated == 0
        assert execution_repo.executions[execution.id].current_level == 1

    async def test_acknowledge_twice_rejected(self, engine, execution):
        await engine.acknowledge_execution(execution.id, "alice")

        with pytest.raises(AlreadyAcknowledgedException):
            await engine.acknowledge_execution(execution.id, "bob")

    async def test_acknowledge_at_last_level_resolves(self, engine, execution, clock):
        await engine.process_due(now=at(31))
        await engine.process_due(now=at(121))
        clock.set(130)

        acknowledged = await engine.acknowledge_execution(execution.id, "alice")

        assert acknowledged.status == ExecutionStatus.RESOLVED
        assert acknowledged.resolved_at == at(130)

    async def test_unknown_execution(self, engine):
        with pytest.raises(ResourceNotFoundException):
            await engine.resolve_execution("missing")

    async def test_execution_log_records_every_action(self, engine, execution, execution_repo):
        await engine.process_due(now=at(31))
        await engine.assign_execution(execution.id, "bob")
        await engine.resolve_execution(execution.id, resolved_by="bob")

        actions = [entry.action for entry in execution_repo.executions[execution.id].execution_log]
        assert actions == ["escalation_started", "level_advanced", "assigned", "resolved"]


class TestConcurrency:
    """Test optimistic version checks."""

    async def test_stale_update_rejected(self, engine, execution, execution_repo):
        stale = await execution_repo.get(execution.id)
        await engine.assign_execution(execution.id, "bob")

        stale.cancel(at(1))
        with pytest.raises(ConcurrentModificationException):
            await execution_repo.update(stale, stale.version)

        assert execution_repo.executions[execution.id].status == ExecutionStatus.ACTIVE

    async def test_tick_counts_lost_races(self, engine, execution, execution_repo):
        stale = await execution_repo.list_due(at(31))
        await engine.process_due(now=at(31))

        async def list_due(now, limit=100):
            return stale

        execution_repo.list_due = list_due
        summary = await engine.process_due(now=at(31))

        assert summary.conflicts == 1
        assert summary.advanced == 0
        assert execution_repo.executions[execution.id].current_level == 2


class TestPolicies:
    """Test the policy store and snapshot isolation."""

    async def test_policy_edit_does_not_touch_running_execution(self, engine, execution, policy_repo, execution_repo):
        service = EscalationPolicyService(policy_repo)
        await service.update_policy(EscalationPolicy(
            id="default",
            policy_name="Default breach escalation",
            levels=(EscalationLevel(1, 0, ("owner@example.com",)), EscalationLevel(2, 5, ("cro@example.com",))),
        ))

        await engine.process_due(now=at(10))

        stored = execution_repo.executions[execution.id]
        assert stored.current_level == 1
        assert stored.policy_snapshot.max_level == 3

    async def test_create_policy_validates_levels(self):
        with pytest.raises(ConfigurationException):
            EscalationPolicy(
                id="bad",
                policy_name="Bad",
                levels=(EscalationLevel(1, 30), EscalationLevel(2, 30)),
            )
        with pytest.raises(ConfigurationException):
            PolicySnapshot(levels=())

    async def test_duplicate_policy_rejected(self, policy_repo):
        service = EscalationPolicyService(policy_repo)

        with pytest.raises(ConfigurationException):
            await service.create_policy(policy_repo.policies["default"])

    async def test_seed_inserts_missing_only(self, escalation_config):
        repo = InMemoryPolicyRepository()
        service = EscalationPolicyService(repo)

        assert await service.seed(escalation_config) == 3
        assert await service.seed(escalation_config) == 0
        assert [p.id for p in await service.list_policies()] == ["critical", "default", "sla"]
