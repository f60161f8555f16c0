"""Integration tests for mjbridge.api.main - FastAPI REST API endpoints.

All tests use the FastAPI TestClient with a scripted fake backend client so
that no network access occurs.  Tests cover every endpoint:

- ``GET /`` and ``GET /health`` - readiness reporting.
- ``GET /result`` - current session result.
- ``POST /imagine`` - generation.
- ``POST /upscale`` and ``POST /variation`` - indexed actions.
- ``POST /action`` - free label query.
- Body-less preset routes (pan, zoom, vary, animate, reroll).
"""

from __future__ import annotations

import asyncio

import pytest

from mjbridge.core.errors import CredentialInvalidError, JobFailedError

from conftest import UPSCALE_LABELS, FakeClient, build_result


@pytest.fixture
def not_ready_client(make_test_client, make_connection):
    """TestClient whose backend has not been initialized."""
    return make_test_client(make_connection(FakeClient()))


@pytest.fixture
def failed_client(make_test_client, make_connection):
    """TestClient whose credential pre-flight was rejected."""

    async def reject(config):
        raise CredentialInvalidError()

    connection = make_connection(FakeClient(), verifier=reject)
    asyncio.run(connection.initialize())
    return make_test_client(connection)


# ---------------------------------------------------------------------------
# Status endpoint tests.
# ---------------------------------------------------------------------------


class TestIndex:
    """Test GET / - readiness status."""

    def test_ready(self, test_client):
        resp = test_client.get("/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "message": "Midjourney API ready", "error": None}

    def test_initializing(self, not_ready_client):
        data = not_ready_client.get("/").json()
        assert data["status"] == "initializing"
        assert data["error"] is None

    def test_failed(self, failed_client):
        resp = failed_client.get("/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "error"
        assert data["error"] == "invalid or expired credentials"


class TestHealth:
    """Test GET /health."""

    def test_ready_without_session(self, test_client):
        data = test_client.get("/health").json()
        assert data == {
            "ready": True,
            "phase": "ready",
            "busy": False,
            "error": None,
            "lastResultSummary": None,
        }

    def test_summary_after_generation(self, test_client, fake_client):
        fake_client.results = [build_result("R1", labels=["U1", "V1"])]
        test_client.post("/imagine", json={"prompt": "a cat"})

        summary = test_client.get("/health").json()["lastResultSummary"]

        assert summary["id"] == "R1"
        assert summary["prompt"] == "a cat"
        assert summary["actions"] == ["U1", "V1"]

    def test_credential_failure_still_serves_health(self, failed_client):
        resp = failed_client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["ready"] is False
        assert data["phase"] == "failed"
        assert data["error"] == "invalid or expired credentials"


class TestResult:
    """Test GET /result."""

    def test_no_session(self, test_client):
        resp = test_client.get("/result")
        assert resp.status_code == 400
        assert resp.json()["error"] == "NoActiveSessionError"

    def test_current_result(self, test_client, fake_client):
        fake_client.results = [build_result("R1")]
        test_client.post("/imagine", json={"prompt": "a cat"})

        resp = test_client.get("/result")

        assert resp.status_code == 200
        assert resp.json()["id"] == "R1"


# ---------------------------------------------------------------------------
# Generation endpoint tests.
# ---------------------------------------------------------------------------


class TestImagine:
    """Test POST /imagine."""

    def test_success(self, test_client, fake_client):
        fake_client.results = [build_result("R1", labels=["U1", "U2"])]

        resp = test_client.post("/imagine", json={"prompt": "a cat"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == "R1"
        assert data["prompt"] == "a cat"
        assert data["uri"] == "https://cdn.test/R1.png"
        assert data["progress"] == 100
        assert [a["label"] for a in data["actions"]] == ["U1", "U2"]

    @pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": "  "}])
    def test_missing_prompt(self, test_client, fake_client, body):
        resp = test_client.post("/imagine", json=body)
        assert resp.status_code == 400
        assert "prompt is required" in resp.json()["detail"]
        assert fake_client.calls == []

    def test_no_body(self, test_client, fake_client):
        resp = test_client.post("/imagine")
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidRequestError"
        assert fake_client.calls == []

    def test_not_ready(self, not_ready_client):
        resp = not_ready_client.post("/imagine", json={"prompt": "a cat"})
        assert resp.status_code == 503
        assert resp.json()["error"] == "BackendNotReadyError"

    def test_backend_failure(self, test_client, fake_client):
        fake_client.results = [JobFailedError("job banned")]
        resp = test_client.post("/imagine", json={"prompt": "a cat"})
        assert resp.status_code == 500
        assert "job banned" in resp.json()["detail"]

    def test_no_result(self, test_client, fake_client):
        fake_client.results = [None]
        resp = test_client.post("/imagine", json={"prompt": "a cat"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "GenerationFailedError"


# ---------------------------------------------------------------------------
# Action endpoint tests.
# ---------------------------------------------------------------------------


def _generate(client, fake_client, *results):
    """Queue *results* after a grid result R1 and run /imagine."""
    fake_client.results = [build_result("R1"), *results]
    resp = client.post("/imagine", json={"prompt": "a cat"})
    assert resp.status_code == 200


class TestIndexedActions:
    """Test POST /upscale and POST /variation."""

    def test_upscale(self, test_client, fake_client):
        _generate(test_client, fake_client, build_result("R2", labels=UPSCALE_LABELS))

        resp = test_client.post("/upscale", json={"index": 2})

        assert resp.status_code == 200
        assert resp.json()["id"] == "R2"
        assert resp.json()["prompt"] == "a cat"
        assert fake_client.calls[1][1] == {
            "msg_id": "R1",
            "flags": 0,
            "custom_id": "MJ::JOB::upsample::2::R1::SOLO",
            "prompt": "a cat",
        }

    def test_variation(self, test_client, fake_client):
        _generate(test_client, fake_client, build_result("R2"))

        resp = test_client.post("/variation", json={"index": 4})

        assert resp.status_code == 200
        assert fake_client.calls[1][1]["custom_id"] == "MJ::JOB::variation::4::R1::SOLO"

    def test_no_session(self, test_client):
        resp = test_client.post("/upscale", json={"index": 1})
        assert resp.status_code == 400
        assert resp.json()["error"] == "NoActiveSessionError"

    @pytest.mark.parametrize("body", [{}, {"index": 0}, {"index": 5}])
    def test_bad_index(self, test_client, fake_client, body):
        _generate(test_client, fake_client)
        resp = test_client.post("/upscale", json=body)
        assert resp.status_code == 400
        assert "index" in resp.json()["detail"]

    @pytest.mark.parametrize("path", ["/upscale", "/variation"])
    def test_no_body(self, test_client, fake_client, path):
        _generate(test_client, fake_client)
        resp = test_client.post(path)
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidRequestError"
        assert len(fake_client.calls) == 1

    def test_label_no_longer_offered(self, test_client, fake_client):
        _generate(test_client, fake_client, build_result("R2", labels=UPSCALE_LABELS))
        test_client.post("/upscale", json={"index": 1})

        resp = test_client.post("/upscale", json={"index": 1})

        assert resp.status_code == 400
        assert resp.json()["error"] == "ActionNotFoundError"

    def test_not_ready(self, not_ready_client):
        resp = not_ready_client.post("/variation", json={"index": 1})
        assert resp.status_code == 503

    def test_backend_failure_keeps_session(self, test_client, fake_client):
        _generate(test_client, fake_client, JobFailedError("interaction failed"))

        resp = test_client.post("/upscale", json={"index": 1})

        assert resp.status_code == 500
        assert resp.json()["error"] == "ActionFailedError"
        assert test_client.get("/result").json()["id"] == "R1"


class TestPresetRoutes:
    """Test the body-less preset routes."""

    @pytest.mark.parametrize(
        "path,token_name,prompt",
        [
            ("/vary-subtle", "low_variation::1", "a cat"),
            ("/vary-strong", "high_variation::1", "a cat"),
            ("/zoom-2x", "Outpaint::50::1", "a cat"),
            ("/zoom-1-5x", "Outpaint::75::1", "a cat"),
            ("/pan-left", "pan_left::1", None),
            ("/pan-right", "pan_right::1", None),
            ("/pan-up", "pan_up::1", None),
            ("/pan-down", "pan_down::1", None),
            ("/animate-high", "animate_high::1", "a cat"),
            ("/animate-low", "animate_low::1", "a cat"),
        ],
    )
    def test_upscaled_presets(self, test_client, fake_client, path, token_name, prompt):
        _generate(
            test_client,
            fake_client,
            build_result("R2", labels=UPSCALE_LABELS),
            build_result("R3", labels=UPSCALE_LABELS),
        )
        test_client.post("/upscale", json={"index": 1})

        resp = test_client.post(path)

        assert resp.status_code == 200
        assert resp.json()["id"] == "R3"
        call = fake_client.calls[2][1]
        assert call["msg_id"] == "R2"
        assert call["custom_id"] == f"MJ::JOB::{token_name}::R2::SOLO"
        assert call["prompt"] == prompt

    def test_reroll(self, test_client, fake_client):
        _generate(test_client, fake_client, build_result("R2"))

        resp = test_client.post("/reroll")

        assert resp.status_code == 200
        assert fake_client.calls[1][1]["custom_id"] == "MJ::JOB::reroll::0::R1::SOLO"

    def test_preset_not_offered(self, test_client, fake_client):
        _generate(test_client, fake_client)
        resp = test_client.post("/pan-left")
        assert resp.status_code == 400
        assert "pan_left" in resp.json()["detail"]

    def test_preset_without_session(self, test_client):
        assert test_client.post("/reroll").status_code == 400


class TestGenericAction:
    """Test POST /action."""

    def test_label_query(self, test_client, fake_client):
        _generate(test_client, fake_client, build_result("R2"))

        resp = test_client.post("/action", json={"label": "v2"})

        assert resp.status_code == 200
        assert fake_client.calls[1][1]["custom_id"] == "MJ::JOB::variation::2::R1::SOLO"

    def test_label_required(self, test_client):
        resp = test_client.post("/action", json={})
        assert resp.status_code == 400

    def test_no_body(self, test_client):
        resp = test_client.post("/action")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "label is required"
