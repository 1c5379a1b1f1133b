"""
HTTP surface: routing, auth, plan gating and error mapping.
"""
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from retention.core.config import Settings, get_settings
from retention.main import app
from retention.models.database import get_store


@pytest.fixture
def client(store):
    app.dependency_overrides[get_settings] = lambda: Settings(auth_enabled=False)
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestRiskApi:

    def test_score(self, client):
        resp = client.post("/v1/risk/score", json={
            "member_id": "m1",
            "tenure_days": 200,
            "recent_payment_failures": 1,
            "has_engagement_data": True,
            "engagement_score": 80,
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["score"] == 20
        assert body["level"] == "medium"
        assert body["factors"][0]["name"] == "payment_failure"
        assert body["model_version"] == "1.0"

    def test_invalid_facts(self, client):
        resp = client.post("/v1/risk/score", json={"tenure_days": -1})
        assert resp.status_code == 422

    def test_recalculate_and_read_back(self, client, seed):
        seed.community()
        seed.member(recent_payment_failures=2)

        resp = client.post("/v1/risk/recalculate", json={})
        assert resp.status_code == 200
        assert resp.json()["processed"] == 1

        stored = client.get("/v1/risk/members/m1")
        assert stored.status_code == 200
        assert stored.json()["score"] == 25

    def test_unknown_member_score(self, client):
        assert client.get("/v1/risk/members/ghost").status_code == 404

    def test_health(self, client):
        resp = client.get("/v1/risk/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestPlaybookApi:

    def test_match(self, client):
        resp = client.post("/v1/playbooks/match", json={
            "facts": {"tenure_days": 3, "subscription_status": "active"},
            "conditions": [
                {"field": "tenure_days", "operator": "lt", "value": 7},
                {"field": "subscription_status", "operator": "eq", "value": "active"},
            ],
        })
        assert resp.status_code == 200
        assert resp.json() == {"matches": True}

    def test_match_rejects_unknown_operator(self, client):
        resp = client.post("/v1/playbooks/match", json={
            "facts": {}, "conditions": [{"field": "x", "operator": "like", "value": "a%"}],
        })
        assert resp.status_code == 422

    def test_enroll_then_conflict(self, client, seed):
        seed.community()
        seed.member()
        playbook_id = seed.playbook()

        first = client.post(f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"})
        second = client.post(f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"})

        assert first.status_code == 200
        assert first.json()["steps_scheduled"] == 3
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "already_enrolled"

    def test_enroll_blocked_on_free_plan(self, client, seed):
        seed.community(plan_tier="free")
        seed.member()
        playbook_id = seed.playbook()

        resp = client.post(f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"})

        assert resp.status_code == 403

    def test_enroll_unknown_playbook(self, client, seed):
        seed.community()
        seed.member()
        resp = client.post("/v1/playbooks/nope/enroll", json={"member_id": "m1", "community_id": "c1"})
        assert resp.status_code == 404

    def test_enroll_playbook_from_other_community(self, client, seed):
        seed.community("c1")
        seed.community("c2")
        seed.member()
        playbook_id = seed.playbook(community_id="c2")

        resp = client.post(f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"})

        assert resp.status_code == 404

    def test_stop(self, client, seed):
        seed.community()
        seed.member()
        playbook_id = seed.playbook()
        enrollment_id = client.post(
            f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"},
        ).json()["enrollment_id"]

        stopped = client.post(f"/v1/playbooks/enrollments/{enrollment_id}/stop")
        again = client.post(f"/v1/playbooks/enrollments/{enrollment_id}/stop")

        assert stopped.status_code == 200
        assert again.status_code == 409
        assert client.post("/v1/playbooks/enrollments/ghost/stop").status_code == 404

    def test_execute_reports_sweep(self, client, seed):
        seed.community()
        seed.member()
        playbook_id = seed.playbook()
        client.post(f"/v1/playbooks/{playbook_id}/enroll", json={"member_id": "m1", "community_id": "c1"})

        resp = client.post("/v1/playbooks/execute", params={"batch_size": 10})

        assert resp.status_code == 200
        body = resp.json()
        assert body["claimed"] == 1
        # No email credentials configured, so the send is reported as failed
        assert body["executed"] == 0
        assert len(body["errors"]) == 1


class TestAdminApi:

    def test_seed_system_playbooks(self, client, seed):
        seed.community()

        resp = client.post("/v1/admin/seed-system-playbooks/c1")

        assert resp.status_code == 200
        assert len(resp.json()["job_result"]["created"]) == 4

    def test_seed_unknown_community(self, client):
        assert client.post("/v1/admin/seed-system-playbooks/ghost").status_code == 404

    def test_auto_enroll(self, client, seed):
        seed.community(settings={"auto_enroll_playbooks": True})
        seed.playbook(trigger_conditions=[{"field": "recent_payment_failures", "operator": "gt", "value": 0}])
        seed.member(recent_payment_failures=1)

        resp = client.post("/v1/admin/auto-enroll")

        assert resp.status_code == 200
        assert resp.json()["job_result"]["enrolled"] == 1
        assert resp.json()["triggered_by"] == "dev-user"


class TestAuth:

    @pytest.fixture
    def secured(self, store):
        settings = Settings(auth_enabled=True, jwt_secret="test-secret")
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_store] = lambda: store
        yield TestClient(app), settings
        app.dependency_overrides.clear()

    def test_missing_token(self, secured):
        client, _ = secured
        assert client.post("/v1/risk/score", json={}).status_code == 401

    def test_bad_token(self, secured):
        client, _ = secured
        resp = client.post("/v1/risk/score", json={}, headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_valid_token(self, secured):
        client, settings = secured
        token = jwt.encode(
            {"sub": "dashboard", "aud": settings.jwt_audience}, settings.jwt_secret, algorithm="HS256",
        )
        resp = client.post("/v1/risk/score", json={}, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["score"] >= 0
