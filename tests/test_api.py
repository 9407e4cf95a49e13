"""
API tests.

Drive the FastAPI application through httpx's ASGI transport against a
fresh SQLite database. The lifespan does not run under the transport,
so the fixture wires ``app.state`` the way startup does.
"""

import httpx
import pytest

from src.escalation.application import EscalationPolicyService, NotificationDispatcher
from src.escalation.infrastructure import EscalationScheduler, SQLAlchemyEscalationPolicyRepository
from src.infrastructure.database import close_database, create_tables, get_session_context, init_database
from src.main import app
from src.sla.application import SLAScanService
from src.sla.interfaces.controllers import get_scan_service
from src.tolerance.application import MetricLockRegistry

from tests.conftest import InMemoryIncidentRepository

METRIC = {
    "id": "kri-operational-losses",
    "name": "Operational losses",
    "tolerance_band": {
        "appetite_threshold": 100.0,
        "warning_percentage": 0.10,
        "breach_percentage": 0.25,
    },
}


@pytest.fixture
async def client(tmp_path, escalation_config, config_provider, sender):
    """Provide an HTTP client over the application with a seeded database."""
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    await create_tables()
    async with get_session_context() as session:
        await EscalationPolicyService(SQLAlchemyEscalationPolicyRepository(session)).seed(escalation_config)

    dispatcher = NotificationDispatcher(sender)
    app.state.config_manager = config_provider
    app.state.dispatcher = dispatcher
    app.state.notification_sender = sender
    app.state.metric_locks = MetricLockRegistry()
    app.state.scheduler = EscalationScheduler()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    await dispatcher.drain()
    await close_database()


async def create_metric(client: httpx.AsyncClient) -> dict:
    response = await client.post("/tolerance/metrics", json=METRIC)
    assert response.status_code == 201
    return response.json()


async def ingest(client: httpx.AsyncClient, value: float, day: str = "2024-01-15T00:00:00Z") -> httpx.Response:
    return await client.post(
        f"/tolerance/metrics/{METRIC['id']}/readings",
        json={"actual_value": value, "measurement_date": day},
    )


class TestToleranceRoutes:
    """Test the tolerance monitoring routes."""

    async def test_breach_reading_notifies_and_escalates(self, client):
        await create_metric(client)

        response = await ingest(client, 130.0)

        assert response.status_code == 200
        body = response.json()
        assert body["variance"]["variance_status"] == "breach"
        assert body["variance"]["variance_percentage"] == pytest.approx(0.3)
        assert body["notification_created"] is True
        assert body["notification"]["breach_type"] == "breach"
        assert body["escalation_created"] is True
        assert body["escalation_id"]

    async def test_replayed_reading_creates_nothing(self, client):
        await create_metric(client)
        first = (await ingest(client, 130.0)).json()

        replay = (await ingest(client, 130.0)).json()

        assert replay["duplicate_reading"] is True
        assert replay["notification_created"] is False
        assert replay["escalation_created"] is False
        assert replay["reading_id"] == first["reading_id"]

        listed = (await client.get("/tolerance/notifications")).json()
        assert listed["total_count"] == 1

    async def test_conflicting_replay_is_rejected(self, client):
        await create_metric(client)
        await ingest(client, 130.0)

        response = await ingest(client, 90.0)

        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    async def test_within_appetite_reading(self, client):
        await create_metric(client)

        body = (await ingest(client, 105.0)).json()

        assert body["variance"]["variance_status"] == "within_appetite"
        assert body["notification"] is None
        assert body["escalation_id"] is None

    async def test_unknown_metric_returns_error_body(self, client):
        response = await client.post(
            "/tolerance/metrics/missing/readings",
            json={"actual_value": 1.0, "measurement_date": "2024-01-15T00:00:00Z"},
        )

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NotFound"
        assert "correlation_id" in body

    async def test_invalid_band_is_rejected(self, client):
        metric = {**METRIC, "tolerance_band": {**METRIC["tolerance_band"], "warning_percentage": 0.5}}

        response = await client.post("/tolerance/metrics", json=metric)

        assert response.status_code == 422

    async def test_band_change_reclassifies_latest_reading(self, client):
        await create_metric(client)
        await ingest(client, 115.0)

        response = await client.put(
            f"/tolerance/metrics/{METRIC['id']}/band",
            json={"appetite_threshold": 100.0, "warning_percentage": 0.05, "breach_percentage": 0.10},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["variance"]["variance_status"] == "breach"
        assert body["variance"]["trigger"] == "band_change"
        history = (await client.get(f"/tolerance/metrics/{METRIC['id']}/variance")).json()
        assert len(history) == 2

    async def test_acknowledge_notification_twice(self, client):
        await create_metric(client)
        notification_id = (await ingest(client, 130.0)).json()["notification"]["id"]
        url = f"/tolerance/notifications/{notification_id}/acknowledge"

        first = await client.post(url, json={"user_id": "analyst"})
        second = await client.post(url, json={"user_id": "analyst"})

        assert first.status_code == 200
        assert first.json()["acknowledged_by"] == "analyst"
        assert second.status_code == 409
        assert second.json()["error"] == "AlreadyTerminal"

    async def test_dispatch_sends_pending_notifications(self, client, sender):
        await create_metric(client)
        await ingest(client, 130.0)

        body = (await client.post("/tolerance/notifications/dispatch")).json()

        assert body["sent"] == 1
        assert any(m["recipients"] == ["risk-alerts@example.com"] for m in sender.sent)


class TestEscalationRoutes:
    """Test the escalation routes."""

    async def test_resolve_twice_conflicts(self, client):
        await create_metric(client)
        execution_id = (await ingest(client, 130.0)).json()["escalation_id"]
        url = f"/escalation/executions/{execution_id}/resolve"

        first = await client.post(url, json={"resolved_by": "analyst"})
        second = await client.post(url, json={"resolved_by": "analyst"})

        assert first.status_code == 200
        assert first.json()["status"] == "resolved"
        assert first.json()["next_escalation_at"] is None
        assert second.status_code == 409

    async def test_acknowledge_before_last_level(self, client):
        await create_metric(client)
        execution_id = (await ingest(client, 130.0)).json()["escalation_id"]

        response = await client.post(
            f"/escalation/executions/{execution_id}/acknowledge", json={"user_id": "owner"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "active"
        assert body["current_level"] == 1
        assert body["next_escalation_at"] is None
        assert body["acknowledged_by"] == "owner"

    async def test_unknown_execution(self, client):
        response = await client.post("/escalation/executions/nope/cancel")

        assert response.status_code == 404

    async def test_tick_with_nothing_due(self, client):
        await create_metric(client)
        await ingest(client, 130.0)

        body = (await client.post("/escalation/tick")).json()

        assert body["advanced"] == 0
        assert body["errors"] == []

    async def test_summary_report(self, client):
        await create_metric(client)
        execution_id = (await ingest(client, 130.0)).json()["escalation_id"]
        await client.post(f"/escalation/executions/{execution_id}/resolve", json={})

        body = (await client.get("/escalation/reports/summary")).json()

        assert body["total_escalations"] == 1
        assert body["resolved_escalations"] == 1
        assert body["escalations_by_status"]["resolved"] == 1

    async def test_inverted_report_window(self, client):
        response = await client.get(
            "/escalation/reports/summary",
            params={"start": "2024-02-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        )

        assert response.status_code == 422


class TestSLARoutes:
    """Test the SLA routes."""

    INCIDENT = {
        "id": "INC-1",
        "title": "Payments API down",
        "severity": "critical",
        "reported_at": "2024-01-15T09:00:00Z",
    }

    async def test_scan_escalates_once(self, client, sender):
        assert (await client.post("/sla/incidents", json=self.INCIDENT)).status_code == 201

        first = (await client.post("/sla/scan")).json()
        second = (await client.post("/sla/scan")).json()

        assert first["breaches_found"] == 1
        assert first["escalations_created"] == 1
        assert first["notifications_sent"] == 1
        assert second["breaches_found"] == 1
        assert second["escalations_created"] == 0
        assert sender.sent[0]["recipients"] == ["oncall@example.com"]

        executions = (await client.get("/escalation/executions", params={"alert_source": "sla"})).json()
        assert executions["total_count"] == 1
        assert executions["executions"][0]["alert_id"] == "incident:INC-1"

    async def test_overdue_listing(self, client):
        await client.post("/sla/incidents", json=self.INCIDENT)
        await client.post("/sla/incidents", json={**self.INCIDENT, "id": "INC-2", "status": "resolved"})

        body = (await client.get("/sla/incidents/overdue")).json()

        assert [item["incident"]["id"] for item in body] == ["INC-1"]
        assert body[0]["due_at"].startswith("2024-01-15T10:00:00")

    async def test_unknown_incident(self, client):
        response = await client.get("/sla/incidents/INC-404")

        assert response.status_code == 404

    async def test_store_unavailable_is_503(self, client, config_provider):
        incidents = InMemoryIncidentRepository()
        incidents.unavailable = True

        def failing_scan_service():
            return SLAScanService(incidents, None, config_provider)

        app.dependency_overrides[get_scan_service] = failing_scan_service

        response = await client.post("/sla/scan")

        assert response.status_code == 503
        assert response.json()["error"] == "StoreUnavailable"


class TestHealth:
    async def test_health(self, client):
        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["checks"]["escalation_config"] == "loaded"
        assert body["checks"]["scheduler"] == "stopped"
