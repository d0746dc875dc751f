"""HTTP API over an engine wired to in-memory generators."""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import cast, make_settings, seed_project, storyboarded_sequences
from dramaforge.api.app import create_app
from dramaforge.engine import DramaEngine
from dramaforge.orchestrator.state import PROMPT_OPTIMIZATION, STEP_COMPLETED


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def wait_for(client, project_id, predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while True:
        project = client.get(f"/api/projects/{project_id}").json()
        if predicate(project):
            return project
        if time.monotonic() > deadline:
            raise AssertionError(f"project stuck at {project['status']}/{project['step_state']}")
        time.sleep(0.01)


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_get_list_delete(client):
    created = client.post("/api/projects", json={"name": "Heist", "content": "Chapter 1."})
    assert created.status_code == 201
    project_id = created.json()["id"]

    assert client.get(f"/api/projects/{project_id}").json()["raw_text"] == "Chapter 1."
    assert [p["id"] for p in client.get("/api/projects").json()] == [project_id]

    assert client.delete(f"/api/projects/{project_id}").status_code == 204
    missing = client.get(f"/api/projects/{project_id}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "Project not found"


def test_invalid_language_is_rejected(client):
    response = client.post(
        "/api/projects", json={"name": "X", "content": "y", "language": "fr"}
    )

    assert response.status_code == 422


def test_advance_before_completion_conflicts(client):
    project_id = client.post("/api/projects", json={"name": "X", "content": "y"}).json()["id"]

    response = client.post(f"/api/projects/{project_id}/advance")

    assert response.status_code == 409
    assert response.json()["error"] == "Invalid transition"


def test_run_starts_in_background(client):
    project_id = client.post("/api/projects", json={"name": "X", "content": "Chapter 1."}).json()["id"]

    response = client.post(f"/api/projects/{project_id}/run")

    assert response.status_code == 202
    assert response.json() == {
        "project_id": project_id,
        "stage": "preprocessing",
        "status_url": f"/api/projects/{project_id}",
    }
    project = wait_for(client, project_id, lambda p: p["step_state"] == STEP_COMPLETED)
    assert project["progress"] == 15
    assert project["segments"]


def test_character_edit_and_regenerate(client, engine):
    project = seed_project(engine, characters=cast(), sequences=storyboarded_sequences(2))

    edited = client.put(f"/api/projects/{project.id}/characters/Ann", json={"name": "Annie"})
    assert edited.status_code == 200
    assert edited.json()["sequences"][0]["characters_involved"] == ["Annie"]

    regenerated = client.post(f"/api/projects/{project.id}/characters/Annie/regenerate")
    assert regenerated.status_code == 200
    assert regenerated.json()["url"] == "https://img.test/Annie.png"

    missing = client.post(f"/api/projects/{project.id}/characters/Ghost/regenerate")
    assert missing.status_code == 404


def test_video_on_sequence_without_storyboard_is_unprocessable(client, engine):
    project = seed_project(engine, characters=cast(), sequences=storyboarded_sequences(1))
    sequence_id = project.sequences[0].id

    response = client.put(
        f"/api/projects/{project.id}/sequences/{sequence_id}",
        json={"storyboard_image_url": None, "video_url": "https://video.test/x.mp4"},
    )

    assert response.status_code == 422
    assert engine.get_project(project.id).sequences[0].video_url is None


def test_regeneration_failure_is_bad_gateway(client, engine, ports):
    project = seed_project(engine, characters=cast(), sequences=storyboarded_sequences(1))
    sequence_id = project.sequences[0].id
    ports.video.fail_prompts = {"[0-15s] Shot 0"}

    response = client.post(
        f"/api/projects/{project.id}/sequences/{sequence_id}/regenerate-video"
    )

    assert response.status_code == 502
    assert "moderation" in response.json()["detail"]


def test_missing_credentials_are_service_unavailable(ports):
    cfg = make_settings()
    cfg.video.api_key = None
    engine = DramaEngine(cfg=cfg, ports=ports)
    project = seed_project(
        engine,
        status=PROMPT_OPTIMIZATION,
        step_state=STEP_COMPLETED,
        sequences=storyboarded_sequences(1),
    )

    with TestClient(create_app(engine)) as client:
        response = client.post(f"/api/projects/{project.id}/advance")

    assert response.status_code == 503
    assert "DRAMAFORGE_VIDEO__API_KEY" in response.json()["detail"]
