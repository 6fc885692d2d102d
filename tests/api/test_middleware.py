"""Tests for AutomationMiddleware."""

from unittest.mock import Mock
from uuid import UUID

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api.middleware import AutomationMiddleware
from core.models import PageLoadResult, SweepResult

USER_ID = UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture
def automation():
    automation = Mock()
    automation.run_on_page_load.return_value = PageLoadResult(overdue=SweepResult(processed=2))
    return automation


@pytest.fixture
def client(automation):
    app = FastAPI()
    app.add_middleware(AutomationMiddleware, automation=automation)

    @app.middleware("http")
    async def fake_auth(request: Request, call_next):
        header = request.headers.get("X-User-Id")
        if header:
            request.state.user_id = header
        return await call_next(request)

    @app.get("/dashboard")
    def dashboard(request: Request):
        result = request.state.automation
        return {"overdue_marked": result.overdue.processed if result else None}

    @app.post("/invoices")
    def create_invoice():
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return TestClient(app)


class TestAutomationMiddleware:

    def test_runs_sweep_for_signed_in_owner(self, client, automation):
        response = client.get("/dashboard", headers={"X-User-Id": str(USER_ID)})

        assert response.status_code == 200
        assert response.json() == {"overdue_marked": 2}
        automation.run_on_page_load.assert_called_once_with(USER_ID)

    def test_anonymous_request_skips_sweep(self, client, automation):
        response = client.get("/dashboard")

        assert response.json() == {"overdue_marked": None}
        automation.run_on_page_load.assert_not_called()

    def test_non_get_skips_sweep(self, client, automation):
        client.post("/invoices", headers={"X-User-Id": str(USER_ID)})

        automation.run_on_page_load.assert_not_called()

    def test_excluded_prefix_skips_sweep(self, client, automation):
        client.get("/health", headers={"X-User-Id": str(USER_ID)})

        automation.run_on_page_load.assert_not_called()

    def test_failing_sweep_does_not_fail_request(self, client, automation, caplog):
        automation.run_on_page_load.side_effect = RuntimeError("boom")

        response = client.get("/dashboard", headers={"X-User-Id": str(USER_ID)})

        assert response.status_code == 200
        assert response.json() == {"overdue_marked": None}
        assert f"Page-load automation failed for user {USER_ID}" in caplog.text
