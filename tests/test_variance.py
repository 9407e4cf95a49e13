"""Tests for variance classification and reading ingestion."""

import asyncio
import gc
import math
from datetime import datetime, timezone

import pytest

from src.config import BreachType, ReadingTrigger, VarianceStatus
from src.core import ConfigurationException, ResourceNotFoundException, StoreUnavailableException, ValidationException
from src.tolerance.application import MetricLockRegistry
from src.tolerance.domain import MetricDefinition, ToleranceBand, VarianceCalculator

DAY_1 = datetime(2024, 1, 15, tzinfo=timezone.utc)
DAY_2 = datetime(2024, 1, 16, tzinfo=timezone.utc)


@pytest.fixture
def band() -> ToleranceBand:
    """Provide the reference band: threshold 100, warning 10%, breach 25%."""
    return ToleranceBand(appetite_threshold=100, warning_percentage=0.10, breach_percentage=0.25)


@pytest.fixture
async def metric(tolerance_service, band) -> MetricDefinition:
    return await tolerance_service.define_metric(
        MetricDefinition(id="kri-losses", name="Operational losses", tolerance_band=band)
    )


class TestToleranceBand:
    """Test band validation."""

    @pytest.mark.parametrize(
        "threshold, warning, breach",
        [
            (0, 0.10, 0.25),
            (-5, 0.10, 0.25),
            (math.inf, 0.10, 0.25),
            (100, 0.25, 0.10),
            (100, 0.10, 0.10),
            (100, 0, 0.25),
        ],
    )
    def test_invalid_band_rejected(self, threshold, warning, breach):
        with pytest.raises(ConfigurationException):
            ToleranceBand(appetite_threshold=threshold, warning_percentage=warning, breach_percentage=breach)

    def test_critical_must_exceed_breach(self):
        with pytest.raises(ConfigurationException):
            ToleranceBand(100, 0.10, 0.25, critical_percentage=0.20)


class TestVarianceCalculator:
    """Test the classifier itself."""

    def test_fifteen_percent_over_is_warning(self, band):
        result = VarianceCalculator.classify(115, band)
        assert result.variance_status == VarianceStatus.WARNING
        assert result.variance_percentage == pytest.approx(0.15)
        assert result.threshold_value == 100

    def test_thirty_percent_over_is_breach(self, band):
        result = VarianceCalculator.classify(130, band)
        assert result.variance_status == VarianceStatus.BREACH
        assert result.variance_percentage == pytest.approx(0.30)

    def test_within_appetite(self, band):
        result = VarianceCalculator.classify(105, band)
        assert result.variance_status == VarianceStatus.WITHIN_APPETITE
        assert result.variance_percentage == pytest.approx(0.05)

    def test_boundaries_are_inclusive(self, band):
        assert VarianceCalculator.classify(110, band).variance_status == VarianceStatus.WARNING
        assert VarianceCalculator.classify(125, band).variance_status == VarianceStatus.BREACH

    def test_under_threshold_uses_magnitude(self, band):
        result = VarianceCalculator.classify(70, band)
        assert result.variance_status == VarianceStatus.BREACH
        assert result.variance_percentage == pytest.approx(-0.30)

    def test_classification_is_monotonic(self, band):
        rank = {
            VarianceStatus.WITHIN_APPETITE: 0,
            VarianceStatus.WARNING: 1,
            VarianceStatus.BREACH: 2,
        }
        values = [100 + step * 0.5 for step in range(0, 100)]
        ranks = [rank[VarianceCalculator.classify(v, band).variance_status] for v in values]
        assert ranks == sorted(ranks)

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_value_rejected(self, band, value):
        with pytest.raises(ConfigurationException):
            VarianceCalculator.classify(value, band)

    def test_breach_type_mapping(self):
        band = ToleranceBand(100, 0.10, 0.25, critical_percentage=0.50)
        assert VarianceCalculator.breach_type_for(VarianceStatus.WITHIN_APPETITE, 0.0, band) is None
        assert VarianceCalculator.breach_type_for(VarianceStatus.WARNING, 0.15, band) == BreachType.WARNING
        assert VarianceCalculator.breach_type_for(VarianceStatus.BREACH, 0.30, band) == BreachType.BREACH
        assert VarianceCalculator.breach_type_for(VarianceStatus.BREACH, -0.60, band) == BreachType.CRITICAL


class TestIngestion:
    """Test ToleranceService.ingest_reading."""

    async def test_within_appetite_creates_record_only(self, tolerance_service, metric, notification_repo):
        result = await tolerance_service.ingest_reading(metric.id, 102, DAY_1)

        assert result.variance_record.variance_status == VarianceStatus.WITHIN_APPETITE
        assert result.notification is None
        assert result.escalation is None
        assert notification_repo.notifications == {}

    async def test_warning_notifies_without_escalating(self, tolerance_service, metric, execution_repo):
        result = await tolerance_service.ingest_reading(metric.id, 115, DAY_1)

        assert result.variance_record.variance_status == VarianceStatus.WARNING
        assert result.notification_created
        assert result.notification.breach_type == BreachType.WARNING
        assert result.escalation is None
        assert execution_repo.executions == {}

    async def test_breach_notifies_and_escalates(self, tolerance_service, metric, dispatcher, sender):
        result = await tolerance_service.ingest_reading(metric.id, 130, DAY_1)

        assert result.variance_record.variance_status == VarianceStatus.BREACH
        assert result.notification.breach_type == BreachType.BREACH
        assert result.notification.reading_ref == result.reading.id
        assert result.escalation_created
        assert result.escalation.policy_id == "default"
        assert result.escalation.alert_id == "metric:kri-losses"
        assert result.escalation.current_level == 1

        await dispatcher.drain()
        assert sender.sent[0]["recipients"] == ["owner@example.com"]

    async def test_critical_breach_routes_to_critical_policy(self, tolerance_service):
        await tolerance_service.define_metric(MetricDefinition(
            id="kri-outage",
            name="Outage minutes",
            tolerance_band=ToleranceBand(100, 0.10, 0.25, critical_percentage=0.50),
        ))

        result = await tolerance_service.ingest_reading("kri-outage", 180, DAY_1)

        assert result.notification.breach_type == BreachType.CRITICAL
        assert result.escalation.policy_id == "critical"

    async def test_metric_policy_overrides_routing(self, tolerance_service, band):
        await tolerance_service.define_metric(MetricDefinition(
            id="kri-fraud",
            name="Fraud cases",
            tolerance_band=band,
            escalation_policy_id="sla",
        ))

        result = await tolerance_service.ingest_reading("kri-fraud", 140, DAY_1)

        assert result.escalation.policy_id == "sla"

    async def test_missing_policy_still_records_breach(self, tolerance_service, metric, config_provider):
        config_provider.config.breach_policies["breach"] = "does-not-exist"

        result = await tolerance_service.ingest_reading(metric.id, 130, DAY_1)

        assert result.notification_created
        assert result.escalation is None

    async def test_replayed_reading_is_idempotent(self, tolerance_service, metric, variance_repo, execution_repo):
        first = await tolerance_service.ingest_reading(metric.id, 130, DAY_1)
        replay = await tolerance_service.ingest_reading(metric.id, 130, DAY_1)

        assert replay.duplicate_reading
        assert replay.reading.id == first.reading.id
        assert replay.variance_record.id == first.variance_record.id
        assert not replay.notification_created
        assert replay.notification.id == first.notification.id
        assert len(variance_repo.records) == 1
        assert len(execution_repo.executions) == 1

    async def test_conflicting_value_for_same_date_rejected(self, tolerance_service, metric):
        await tolerance_service.ingest_reading(metric.id, 130, DAY_1)

        with pytest.raises(ValidationException):
            await tolerance_service.ingest_reading(metric.id, 131, DAY_1)

    async def test_non_finite_value_stores_nothing(self, tolerance_service, metric, reading_repo):
        with pytest.raises(ConfigurationException):
            await tolerance_service.ingest_reading(metric.id, math.nan, DAY_1)
        assert reading_repo.readings == []

    async def test_unknown_metric(self, tolerance_service):
        with pytest.raises(ResourceNotFoundException):
            await tolerance_service.ingest_reading("missing", 100, DAY_1)

    async def test_duplicate_metric_definition_rejected(self, tolerance_service, metric, band):
        with pytest.raises(ConfigurationException):
            await tolerance_service.define_metric(
                MetricDefinition(id=metric.id, name="Again", tolerance_band=band)
            )


class TestBandChange:
    """Test re-classification after a tolerance band edit."""

    async def test_band_change_reclassifies_latest_reading(self, tolerance_service, metric, variance_repo):
        await tolerance_service.ingest_reading(metric.id, 120, DAY_1)
        await tolerance_service.ingest_reading(metric.id, 115, DAY_2)

        result = await tolerance_service.update_tolerance_band(
            metric.id, ToleranceBand(100, 0.05, 0.12)
        )

        assert result.variance_record.trigger == ReadingTrigger.BAND_CHANGE
        assert result.variance_record.measurement_date == DAY_2
        assert result.variance_record.variance_status == VarianceStatus.BREACH
        assert result.notification.breach_type == BreachType.BREACH
        assert len(variance_repo.records) == 3

    async def test_history_is_kept(self, tolerance_service, metric):
        first = await tolerance_service.ingest_reading(metric.id, 115, DAY_1)
        await tolerance_service.update_tolerance_band(metric.id, ToleranceBand(100, 0.20, 0.30))

        history = await tolerance_service.get_variance_history(metric.id)

        assert [r.variance_status for r in history] == [VarianceStatus.WITHIN_APPETITE, VarianceStatus.WARNING]
        assert history[1].id == first.variance_record.id

    async def test_band_change_without_readings(self, tolerance_service, metric, metric_repo):
        result = await tolerance_service.update_tolerance_band(metric.id, ToleranceBand(200, 0.10, 0.25))

        assert result is None
        assert metric_repo.metrics[metric.id].tolerance_band.appetite_threshold == 200

    async def test_replayed_reading_after_band_change_returns_latest(self, tolerance_service, metric):
        await tolerance_service.ingest_reading(metric.id, 115, DAY_1)
        await tolerance_service.update_tolerance_band(metric.id, ToleranceBand(100, 0.05, 0.12))

        replay = await tolerance_service.ingest_reading(metric.id, 115, DAY_1)

        assert replay.duplicate_reading
        assert replay.variance_record.trigger == ReadingTrigger.BAND_CHANGE


class TestEscalationAfterCommit:
    """The first escalation level is contacted only once ingestion has committed."""

    async def test_failed_commit_sends_nothing(self, tolerance_service, metric, dispatcher, sender):
        async def failing_commit():
            raise StoreUnavailableException("Store unavailable during commit", {"operation": "commit"})

        tolerance_service._commit = failing_commit

        with pytest.raises(StoreUnavailableException):
            await tolerance_service.ingest_reading(metric.id, 130, DAY_1)

        await dispatcher.drain()
        assert sender.sent == []

    async def test_commit_precedes_first_level(self, tolerance_service, metric, dispatcher, sender):
        seen_at_commit = []

        async def commit():
            seen_at_commit.append((len(sender.sent), dispatcher.pending))

        tolerance_service._commit = commit

        await tolerance_service.ingest_reading(metric.id, 130, DAY_1)
        await dispatcher.drain()

        assert seen_at_commit == [(0, 0)]
        assert sender.sent[0]["recipients"] == ["owner@example.com"]

    async def test_band_change_escalation_waits_for_commit(self, tolerance_service, metric, dispatcher, sender):
        await tolerance_service.ingest_reading(metric.id, 115, DAY_1)

        async def failing_commit():
            raise StoreUnavailableException("Store unavailable during commit", {"operation": "commit"})

        tolerance_service._commit = failing_commit

        with pytest.raises(StoreUnavailableException):
            await tolerance_service.update_tolerance_band(metric.id, ToleranceBand(100, 0.05, 0.10))

        await dispatcher.drain()
        assert not any(m["subject"].startswith("[ESCALATED]") for m in sender.sent)


class TestMetricLockRegistry:
    """Test per-metric lock lifetime."""

    async def test_same_metric_shares_lock_while_held(self):
        locks = MetricLockRegistry()

        async with locks.lock_for("kri-losses"):
            assert locks.lock_for("kri-losses").locked()
            assert not locks.lock_for("kri-outage").locked()

    async def test_released_locks_are_dropped(self):
        locks = MetricLockRegistry()

        for i in range(50):
            async with locks.lock_for(f"metric-{i}"):
                await asyncio.sleep(0)
        gc.collect()

        assert len(locks) == 0
