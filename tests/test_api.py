"""
End-to-end API tests: FastAPI app over the SQLAlchemy stores (SQLite).
"""

import httpx
import pytest
import pytest_asyncio

from src.config import Priority
from src.issues.application import NullEventPublisher
from src.issues.domain import EscalationRule
from src.main import build_services, create_app

from conftest import at


@pytest.fixture
def app(session_maker, policy_provider, clock):
    app = create_app(use_lifespan=False)
    build_services(app, session_maker, policy_provider, NullEventPublisher(), clock)
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def ingest(client, *issues):
    response = await client.post("/issues", json={"issues": list(issues)})
    assert response.status_code == 200
    return response.json()


def payload(issue_id="GRV-1", type_id="payroll", **extra):
    return {"id": issue_id, "typeId": type_id, "createdAt": "2025-03-03T09:00:00Z", **extra}


class TestIngestAndRead:

    async def test_ingest_is_create_if_missing(self, client):
        first = await ingest(client, payload(), payload("GRV-2", "others", subTypeId="misc"))
        second = await ingest(client, payload(priority="high"))

        assert first["created"] == ["GRV-1", "GRV-2"]
        assert second == {"created": [], "existing": ["GRV-1"], "created_count": 0, "existing_count": 1}

        body = (await client.get("/issues/GRV-1")).json()
        assert body["priority"] == "medium"
        assert body["status"] == "open"
        assert body["effective_type_id"] == "payroll"

    async def test_snake_case_is_accepted(self, client):
        await ingest(client, {"id": "GRV-3", "type_id": "leave", "created_at": "2025-03-03T10:00:00+05:30"})
        body = (await client.get("/issues/GRV-3")).json()
        assert body["created_at"].startswith("2025-03-03T04:30:00")

    async def test_unknown_issue_is_404(self, client):
        response = await client.get("/issues/missing")

        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    async def test_invalid_priority_is_rejected(self, client):
        response = await client.post("/issues", json={"issues": [payload(priority="urgent")]})
        assert response.status_code == 422

    async def test_closed_at_on_open_issue_is_rejected(self, client):
        response = await client.post(
            "/issues", json={"issues": [payload(status="open", closedAt="2025-03-03T10:00:00Z")]}
        )
        assert response.status_code == 422
        assert (await client.get("/issues/GRV-1")).status_code == 404

    async def test_closed_at_before_creation_is_rejected(self, client):
        response = await client.post(
            "/issues", json={"issues": [payload(status="closed", closedAt="2025-03-03T08:00:00Z")]}
        )
        assert response.status_code == 422

    async def test_closed_issue_keeps_its_closure_time(self, client, clock):
        await ingest(client, payload(status="closed", closedAt="2025-03-03T10:00:00Z"))
        clock.set(at(7, 9))

        body = (await client.get("/issues/GRV-1/sla")).json()

        assert body["bucket"] == "onTime"
        assert body["elapsed_working_hours"] == 1.0

    async def test_list_by_effective_type(self, client):
        await ingest(client, payload("A"), payload("B", "others"), payload("C", "leave"))
        await client.post("/issues/B/map", json={"typeId": "payroll", "actorId": "hr-admin"})

        response = await client.get("/issues", params={"effective_type_id": "payroll"})

        assert sorted(i["id"] for i in response.json()) == ["A", "B"]


class TestManualActions:

    async def test_assign_and_inbox(self, client):
        await ingest(client, payload())

        assigned = await client.post("/issues/GRV-1/assign", json={"agentId": "agent-7", "actorId": "lead-1"})
        assert assigned.json()["assigned_to"] == "agent-7"

        inbox = (await client.get("/notifications", params={"recipient_id": "agent-7"})).json()
        assert len(inbox) == 1
        assert inbox[0]["content"] == "Issue GRV-1 has been assigned to you"

        count = (await client.get("/notifications/unread-count", params={"recipient_id": "agent-7"})).json()
        assert count == {"recipient_id": "agent-7", "unread_count": 1}

        wrong = await client.post(f"/notifications/{inbox[0]['id']}/read", params={"recipient_id": "agent-8"})
        assert wrong.status_code == 404

        read = await client.post(f"/notifications/{inbox[0]['id']}/read", params={"recipient_id": "agent-7"})
        assert read.json()["is_read"] is True

        marked = (await client.post("/notifications/read-all", params={"recipient_id": "agent-7"})).json()
        assert marked["marked_count"] == 0

    async def test_mapping_rules(self, client):
        await ingest(client, payload(), payload("GRV-2", "others", subTypeId="misc"))

        rejected = await client.post("/issues/GRV-1/map", json={"typeId": "leave", "actorId": "hr-admin"})
        assert rejected.status_code == 422
        assert rejected.json()["error_type"] == "InvalidMappingError"

        mapped = (await client.post(
            "/issues/GRV-2/map", json={"typeId": "payroll", "subTypeId": "salary-delay", "actorId": "hr-admin"}
        )).json()
        assert mapped["type_id"] == "others"
        assert mapped["effective_type_id"] == "payroll"
        assert mapped["mapped_by"] == "hr-admin"

        unmapped = (await client.post("/issues/GRV-2/unmap", json={"actorId": "hr-admin"})).json()
        assert unmapped["effective_type_id"] == "others"
        assert unmapped["effective_sub_type_id"] == "misc"

    async def test_resolve_then_reopen(self, client, clock):
        await ingest(client, payload())
        clock.set(at(3, 12))

        resolved = (await client.post(
            "/issues/GRV-1/status", json={"status": "resolved", "actorId": "agent-7"}
        )).json()
        assert resolved["closed_at"] is not None

        direct = await client.post("/issues/GRV-1/status", json={"status": "open", "actorId": "agent-7"})
        assert direct.status_code == 422

        clock.set(at(4, 12))
        reopened = await client.post("/issues/GRV-1/reopen", json={"reason": "not fixed", "actorId": "emp-1"})
        assert reopened.status_code == 200
        assert reopened.json()["status"] == "open"
        assert reopened.json()["closed_at"] is None

        trail = (await client.get("/issues/GRV-1/audit")).json()
        assert [e["action"] for e in trail] == ["status_changed", "reopened"]

    async def test_reopen_after_window(self, client, clock):
        await ingest(client, payload())
        await client.post("/issues/GRV-1/status", json={"status": "closed", "actorId": "agent-7"})
        clock.set(at(12, 9))

        response = await client.post("/issues/GRV-1/reopen", json={"reason": "late", "actorId": "emp-1"})

        assert response.status_code == 422
        assert response.json()["error_type"] == "InvalidTransitionError"

    async def test_manual_priority(self, client):
        await ingest(client, payload(assignedTo="agent-7"))

        response = await client.post("/issues/GRV-1/priority", json={"priority": "high", "actorId": "lead-1"})

        assert response.json()["priority"] == "high"
        inbox = (await client.get("/notifications", params={"recipient_id": "super_admin"})).json()
        assert len(inbox) == 1

    async def test_comment_is_audited(self, client):
        await ingest(client, payload())

        response = await client.post(
            "/issues/GRV-1/comments", json={"actorId": "agent-7", "commentId": "c-1", "internal": True}
        )

        assert response.status_code == 201
        assert response.json()["details"] == {"comment_id": "c-1", "internal": True}

    async def test_escalate_with_rule(self, client, app):
        await app.state.rule_repository.create(EscalationRule(
            id="r1", priority=Priority.MEDIUM, escalate_after_hours=8, escalate_to_role="hr_admin"
        ))
        await ingest(client, payload())

        response = await client.post("/issues/GRV-1/escalate", json={"actorId": "lead-1", "reason": "no reply"})

        assert response.json()["escalation_level"] == 1
        assert response.json()["priority"] == "medium"
        inbox = (await client.get("/notifications", params={"recipient_id": "hr_admin"})).json()
        assert inbox[0]["content"] == "Issue GRV-1 escalated to level 1: no reply"

    async def test_escalate_with_unknown_rule(self, client):
        await ingest(client, payload())
        response = await client.post(
            "/issues/GRV-1/escalate", json={"actorId": "lead-1", "reason": "x", "ruleId": "nope"}
        )
        assert response.status_code == 404


class TestSweepAndSLA:

    async def test_sweep_escalates_aged_issue(self, client, clock):
        await ingest(client, payload(assignedTo="agent-7"))
        clock.set(at(4, 17))

        result = (await client.post("/escalation/sweep")).json()

        assert result["updated_count"] == 1
        assert result["failed_ids"] == []
        assert result["running"] is False
        assert (await client.get("/issues/GRV-1")).json()["priority"] == "critical"

        last = (await client.get("/escalation/sweep/last")).json()
        assert last["updated_count"] == 1

        again = (await client.post("/escalation/sweep")).json()
        assert again["updated_count"] == 0

    async def test_last_sweep_before_any_run(self, client):
        body = (await client.get("/escalation/sweep/last")).json()
        assert body["last_run_at"] is None
        assert body["updated_count"] == 0

    async def test_issue_sla(self, client, clock):
        await ingest(client, payload(priority="critical"))
        clock.set(at(3, 12, 30))

        body = (await client.get("/issues/GRV-1/sla")).json()

        assert body["bucket"] == "atRisk"
        assert body["threshold_hours"] == 4
        assert body["elapsed_working_hours"] == 3.5

    async def test_sla_summary(self, client, clock):
        await ingest(client, payload("A", priority="critical"), payload("B", "leave", priority="low"))
        clock.set(at(3, 15))

        body = (await client.get("/issues/sla/summary")).json()

        assert body["overall"]["total"] == 2
        assert body["by_type"]["payroll"]["counts"]["breached"] == 1
        assert body["by_type"]["leave"]["counts"]["pending"] == 1


class TestPlumbing:

    async def test_correlation_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"
        assert "X-Response-Time" in response.headers

    async def test_health(self, client):
        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["checks"]["escalation_config"] == "loaded"
        assert body["checks"]["escalation_scheduler"] == "stopped"
