"""Tests for context preview and session API endpoints."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.context.errors import InvalidConfiguration, NotFound, UpstreamUnavailable
from app.context.models import ContextEngineConfig, PreviewOptions
from app.context.preview_builder import ContextPreviewBuilder
from app.context.session_ledger import InMemorySessionStore, SessionTracker
from app.main import app
from tests.fakes.fake_knowledge_store import (
    NOW,
    PROJECT_ID,
    FakeKnowledgeStore,
    make_knowledge,
    make_task,
)

client = TestClient(app)


def fake_builder():
    store = FakeKnowledgeStore(
        items=[
            make_task("t1", status="in_progress", priority="urgent", lane="current"),
            make_knowledge("k1", kind="decision", body="Use Postgres"),
        ]
    )
    return ContextPreviewBuilder(store, clock=lambda: NOW)


def fake_tracker():
    return SessionTracker(
        InMemorySessionStore(),
        config=ContextEngineConfig(context_limit_tokens=8000),
        clock=lambda: NOW,
    )


# ── Context preview ──


def test_get_context_preview():
    with patch("app.api.context_engine.get_preview_builder", return_value=fake_builder()):
        response = client.get(f"/v1/projects/{PROJECT_ID}/context-preview")

    assert response.status_code == 200
    data = response.json()
    assert data["project_id"] == PROJECT_ID
    assert data["total_candidate_count"] == 2
    assert [item["id"] for item in data["items"]] == ["t1", "k1"]
    assert data["items"][0]["preview_type"] == "verbatim"


def test_get_context_preview_passes_options():
    builder = MagicMock()
    builder.build_preview = AsyncMock(side_effect=NotFound("missing"))

    with patch("app.api.context_engine.get_preview_builder", return_value=builder):
        client.get(
            f"/v1/projects/{PROJECT_ID}/context-preview",
            params={"max_tokens": 500, "include_tasks": "false", "focus_query": "auth"},
        )

    project_id, options = builder.build_preview.call_args.args
    assert project_id == PROJECT_ID
    assert options == PreviewOptions(max_tokens=500, include_tasks=False, focus_query="auth")


def test_get_context_preview_not_found():
    with patch("app.api.context_engine.get_preview_builder", return_value=fake_builder()):
        response = client.get("/v1/projects/proj-missing/context-preview")

    assert response.status_code == 404


def test_get_context_preview_invalid_budget():
    with patch("app.api.context_engine.get_preview_builder", return_value=fake_builder()):
        response = client.get(
            f"/v1/projects/{PROJECT_ID}/context-preview", params={"max_tokens": -5}
        )

    assert response.status_code == 400


def test_get_context_preview_upstream_unavailable():
    builder = MagicMock()
    builder.build_preview = AsyncMock(side_effect=UpstreamUnavailable("store down"))

    with patch("app.api.context_engine.get_preview_builder", return_value=builder):
        response = client.get(f"/v1/projects/{PROJECT_ID}/context-preview")

    assert response.status_code == 503
    assert response.json()["detail"] == "Project knowledge unavailable"


def test_invalid_configuration_maps_to_400():
    builder = MagicMock()
    builder.build_preview = AsyncMock(side_effect=InvalidConfiguration("bad ratio"))

    with patch("app.api.context_engine.get_preview_builder", return_value=builder):
        response = client.get(f"/v1/projects/{PROJECT_ID}/context-preview")

    assert response.status_code == 400
    assert response.json()["detail"] == "bad ratio"


# ── Sessions ──


def test_record_activity_then_rotate():
    tracker = fake_tracker()

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        first = client.post(
            f"/v1/projects/{PROJECT_ID}/sessions/activity",
            json={"event_count": 2, "estimated_context_tokens": 100},
        )
        second = client.post(
            f"/v1/projects/{PROJECT_ID}/sessions/activity",
            json={
                "event_count": 1,
                "estimated_context_tokens": 8500,
                "last_event_time": NOW.isoformat(),
                "observed_at": (NOW + timedelta(minutes=5)).isoformat(),
            },
        )

    assert first.status_code == 200
    assert first.json()["decision"]["trigger"]["type"] == "manual"
    assert second.status_code == 200
    body = second.json()
    assert body["rotated"] is True
    assert body["decision"]["trigger"]["type"] == "context_limit"
    assert body["completed_session_ids"] == [first.json()["session"]["id"]]


def test_record_activity_estimates_usage_from_events():
    tracker = fake_tracker()
    small = [{"type": "edit", "file": "app/main.py", "summary": "Add health route"}]
    large = [{"type": "tool_output", "payload": "x" * 4000} for _ in range(10)]
    url = f"/v1/projects/{PROJECT_ID}/sessions/activity"

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        first = client.post(url, json={"event_count": 1})
        continued = client.post(
            url,
            json={"event_count": 1, "events": small, "last_event_time": NOW.isoformat()},
        )
        rotated = client.post(
            url,
            json={
                "event_count": 10,
                "events": large,
                "estimated_context_tokens": 0,
                "last_event_time": NOW.isoformat(),
                "observed_at": (NOW + timedelta(minutes=5)).isoformat(),
            },
        )

    assert first.status_code == 200
    assert continued.json()["rotated"] is False
    assert continued.json()["session"]["usage"]["context_usage_estimate"] == round(
        len(json.dumps(small[0])) / 4
    )
    assert rotated.json()["rotated"] is True
    assert rotated.json()["decision"]["trigger"]["type"] == "context_limit"


def test_record_activity_runs_off_event_loop():
    tracker = fake_tracker()
    loop_running = []
    record = tracker.record_activity

    def record_and_check_loop(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return record(*args, **kwargs)

    tracker.record_activity = record_and_check_loop

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        response = client.post(f"/v1/projects/{PROJECT_ID}/sessions/activity", json={})

    assert response.status_code == 200
    assert loop_running == [False]


def test_record_activity_rejects_negative_counts():
    with patch("app.api.context_engine.get_session_tracker", return_value=fake_tracker()):
        response = client.post(
            f"/v1/projects/{PROJECT_ID}/sessions/activity", json={"event_count": -1}
        )

    assert response.status_code == 422


def test_record_activity_store_failure():
    tracker = MagicMock()
    tracker.record_activity.side_effect = RuntimeError("row lock timeout")

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        response = client.post(f"/v1/projects/{PROJECT_ID}/sessions/activity", json={})

    assert response.status_code == 503


def test_list_sessions_with_stats():
    tracker = fake_tracker()
    tracker.record_activity(PROJECT_ID, 4, 100)

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        response = client.get(f"/v1/projects/{PROJECT_ID}/sessions")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    session = data["sessions"][0]
    assert session["status"] == "active"
    assert session["usage"]["total_events"] == 4
    assert "duration_minutes" in session["stats"]


def test_list_sessions_by_scope():
    tracker = fake_tracker()
    tracker.record_activity(PROJECT_ID, 1, 100, scope_id="workspace-1")

    with patch("app.api.context_engine.get_session_tracker", return_value=tracker):
        by_project = client.get(f"/v1/projects/{PROJECT_ID}/sessions")
        by_scope = client.get(
            f"/v1/projects/{PROJECT_ID}/sessions", params={"scope_id": "workspace-1"}
        )

    assert by_project.json()["total"] == 0
    assert by_scope.json()["total"] == 1
