"""Tests for the worker API: auth guard, task routes and operator routes."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from hotelcore.api.deps import get_publisher, get_sweeper
from hotelcore.api.factory import create_app
from hotelcore.api.task_auth import INTERNAL_SECRET_HEADER, LOCAL_DEV_AUDIENCE, require_task_auth
from hotelcore.domain.errors import IdempotencyKeyMismatch, ReservationNotFound


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app):
    """Client with task auth bypassed."""
    app.dependency_overrides[require_task_auth] = lambda: None
    return TestClient(app)


class TestHealth:
    def test_health_needs_no_auth(self, app):
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_correlation_id_echoed(self, app):
        response = TestClient(app).get("/health", headers={"X-Correlation-ID": "corr-123"})
        assert response.headers["X-Correlation-ID"] == "corr-123"


class TestTaskAuth:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/tasks/holds/sweep"),
            ("post", "/tasks/ari/drain"),
            ("post", "/tasks/payments/outcome"),
            ("get", "/internal/ari/status?property_id=p1"),
            ("post", "/internal/ari/redrive"),
        ],
    )
    def test_no_auth_returns_401(self, app, monkeypatch, method, path):
        monkeypatch.delenv("TASKS_OIDC_AUDIENCE", raising=False)
        response = getattr(TestClient(app), method)(path)
        assert response.status_code == 401

    def test_internal_secret_accepted_in_local_dev(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        sweeper = MagicMock()
        sweeper.run_once.return_value = {"found": 0}
        app.dependency_overrides[get_sweeper] = lambda: sweeper

        response = TestClient(app).post("/tasks/holds/sweep", headers={INTERNAL_SECRET_HEADER: "s3cret"})
        assert response.status_code == 200

    def test_internal_secret_ignored_outside_local_dev(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "https://worker.example.test")
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        response = TestClient(app).post("/tasks/holds/sweep", headers={INTERNAL_SECRET_HEADER: "s3cret"})
        assert response.status_code == 401

    def test_wrong_secret_rejected(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", LOCAL_DEV_AUDIENCE)
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "s3cret")
        response = TestClient(app).post("/tasks/holds/sweep", headers={INTERNAL_SECRET_HEADER: "guess"})
        assert response.status_code == 401

    def test_invalid_bearer_rejected(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "https://worker.example.test")
        with patch(
            "hotelcore.api.task_auth.id_token.verify_oauth2_token",
            side_effect=ValueError("Token expired"),
        ):
            response = TestClient(app).post(
                "/tasks/holds/sweep", headers={"Authorization": "Bearer not-a-jwt"}
            )
        assert response.status_code == 401

    def test_valid_bearer_accepted(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "https://worker.example.test")
        monkeypatch.setenv("TASKS_OIDC_SERVICE_ACCOUNT", "scheduler@proj.iam.gserviceaccount.com")
        sweeper = MagicMock()
        sweeper.run_once.return_value = {"found": 0}
        app.dependency_overrides[get_sweeper] = lambda: sweeper
        with patch(
            "hotelcore.api.task_auth.id_token.verify_oauth2_token",
            return_value={"email": "scheduler@proj.iam.gserviceaccount.com"},
        ):
            response = TestClient(app).post(
                "/tasks/holds/sweep", headers={"Authorization": "Bearer signed"}
            )
        assert response.status_code == 200

    def test_bearer_from_other_service_account_rejected(self, app, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "https://worker.example.test")
        monkeypatch.setenv("TASKS_OIDC_SERVICE_ACCOUNT", "scheduler@proj.iam.gserviceaccount.com")
        with patch(
            "hotelcore.api.task_auth.id_token.verify_oauth2_token",
            return_value={"email": "intruder@other.iam.gserviceaccount.com"},
        ):
            response = TestClient(app).post(
                "/tasks/holds/sweep", headers={"Authorization": "Bearer signed"}
            )
        assert response.status_code == 401


class TestWorkerTasks:
    def test_sweep_returns_counts(self, app, client):
        sweeper = MagicMock()
        sweeper.run_once.return_value = {"found": 2, "expired": 2, "noop": 0, "not_expired_yet": 0, "errors": 0}
        app.dependency_overrides[get_sweeper] = lambda: sweeper

        response = client.post("/tasks/holds/sweep")

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert response.json()["expired"] == 2

    def test_sweep_failure_returns_500(self, app, client):
        sweeper = MagicMock()
        sweeper.run_once.side_effect = RuntimeError("db down")
        app.dependency_overrides[get_sweeper] = lambda: sweeper

        response = client.post("/tasks/holds/sweep")
        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "processing failed"}

    def test_drain_returns_counts(self, app, client):
        publisher = MagicMock()
        publisher.drain.return_value = {"claimed": 3, "sent": 3}
        app.dependency_overrides[get_publisher] = lambda: publisher

        response = client.post("/tasks/ari/drain")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "claimed": 3, "sent": 3}


class TestPaymentOutcomeRoute:
    BODY = {"reservation_id": "res-1", "outcome": "succeeded", "idempotency_key": "pay-1"}

    def test_applied(self, client):
        with patch(
            "hotelcore.api.routes.tasks.on_payment_outcome",
            return_value={"status": "applied", "reservation_id": "res-1", "result_status": "confirmed"},
        ) as mock_apply:
            response = client.post("/tasks/payments/outcome", json=self.BODY)

        assert response.status_code == 200
        assert response.json()["result_status"] == "confirmed"
        assert mock_apply.call_args.args == ("res-1", "succeeded", "pay-1")

    def test_unknown_outcome_is_422(self, client):
        response = client.post("/tasks/payments/outcome", json={**self.BODY, "outcome": "refunded"})
        assert response.status_code == 422

    def test_missing_reservation_is_404(self, client):
        with patch(
            "hotelcore.api.routes.tasks.on_payment_outcome",
            side_effect=ReservationNotFound("Reservation res-1 not found"),
        ):
            response = client.post("/tasks/payments/outcome", json=self.BODY)
        assert response.status_code == 404
        assert response.json()["error"] == "reservation_not_found"

    def test_key_mismatch_is_409(self, client):
        with patch(
            "hotelcore.api.routes.tasks.on_payment_outcome",
            side_effect=IdempotencyKeyMismatch("reused"),
        ):
            response = client.post("/tasks/payments/outcome", json=self.BODY)
        assert response.status_code == 409

    def test_unexpected_error_is_500(self, client):
        with patch("hotelcore.api.routes.tasks.on_payment_outcome", side_effect=RuntimeError("boom")):
            response = client.post("/tasks/payments/outcome", json=self.BODY)
        assert response.status_code == 500


class TestOperatorRoutes:
    def test_failed_events(self, client):
        events = [
            {
                "id": 9,
                "kind": "rate",
                "dedupe_key": "k",
                "attempt_count": 8,
                "last_error": "gave up after 8 attempts",
                "last_response": None,
                "updated_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            }
        ]
        with patch("hotelcore.channel.operator.list_failed_events", return_value=events) as mock_list:
            response = client.get("/internal/ari/failed", params={"property_id": "p1", "limit": 5})

        assert response.status_code == 200
        assert response.json()["events"][0]["id"] == 9
        mock_list.assert_called_once_with("p1", limit=5)

    def test_redrive(self, client):
        with patch("hotelcore.channel.operator.redrive", return_value=1) as mock_redrive:
            response = client.post("/internal/ari/redrive", json={"property_id": "p1", "event_ids": [9, 10]})

        assert response.json() == {"ok": True, "requested": 2, "redriven": 1}
        mock_redrive.assert_called_once_with("p1", [9, 10])

    def test_redrive_requires_ids(self, client):
        response = client.post("/internal/ari/redrive", json={"property_id": "p1", "event_ids": []})
        assert response.status_code == 422

    def test_status(self, client):
        status = {"property_id": "p1", "channel_state": [], "outbox": {"pending": 1}, "recent_attempts": []}
        with patch("hotelcore.channel.operator.channel_status", return_value=status):
            response = client.get("/internal/ari/status", params={"property_id": "p1"})
        assert response.json()["outbox"] == {"pending": 1}
