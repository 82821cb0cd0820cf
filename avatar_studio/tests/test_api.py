"""
Tests for the FastAPI application
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from avatar_studio.api.studio_api import initialize_app


PDF_BYTES = b"%PDF-1.4\n" + b"0" * 512


def pdf_file(name="spec.pdf", data=PDF_BYTES):
    return {"file": (name, data, "application/pdf")}


@pytest.fixture
def client(settings, services):
    with TestClient(initialize_app(settings, services)) as test_client:
        yield test_client


@pytest.fixture
def profile_id(services, valid_fields):
    return asyncio.run(services.profiles.create(valid_fields, owner_id="owner-1"))


def start_session(client, **payload):
    response = client.post("/api/v1/wizard/sessions", json=payload)
    assert response.status_code == 201
    return response.json()


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_sessions"] == 0


class TestWizardSessions:

    def test_full_flow(self, client, valid_fields):
        session = start_session(client, owner_id="owner-1")
        session_id = session["session_id"]
        assert session["current_step"] == "detail"
        assert session["can_proceed"] is False

        response = client.patch(
            f"/api/v1/wizard/sessions/{session_id}/fields",
            json={"fields": valid_fields.model_dump(mode='json')}
        )
        assert response.status_code == 200
        assert response.json()["is_dirty"] is True

        for _ in range(4):
            assert client.post(f"/api/v1/wizard/sessions/{session_id}/next").status_code == 200

        upload = client.post(f"/api/v1/wizard/sessions/{session_id}/knowledge", files=pdf_file())
        assert upload.status_code == 201
        assert upload.json()["provenance"] == "draft-local"

        finished = client.post(f"/api/v1/wizard/sessions/{session_id}/finish")
        assert finished.status_code == 200
        new_id = finished.json()["profile_id"]

        profile = client.get(f"/api/v1/profiles/{new_id}").json()
        assert profile["name"] == "Test"
        knowledge = client.get(f"/api/v1/profiles/{new_id}/knowledge").json()
        assert knowledge["total_count"] == 1
        assert knowledge["linked_count"] == 0
        assert client.get(f"/api/v1/wizard/sessions/{session_id}").status_code == 404

    def test_next_on_incomplete_step(self, client):
        session_id = start_session(client)["session_id"]
        client.patch(f"/api/v1/wizard/sessions/{session_id}/fields", json={"fields": {"name": "Aria"}})

        response = client.post(f"/api/v1/wizard/sessions/{session_id}/next")

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "ValidationError"
        assert set(body["issues"]) == {"age", "gender"}
        assert body["step"] == "Avatar Detail"

    def test_tags_and_languages(self, client):
        session_id = start_session(client)["session_id"]
        base = f"/api/v1/wizard/sessions/{session_id}"

        client.post(f"{base}/tags", json={"tag": "curious"})
        state = client.post(f"{base}/tags", json={"tag": "witty"}).json()
        assert state["step_data"]["persona_tags"] == ["curious", "witty"]
        state = client.delete(f"{base}/tags/curious").json()
        assert state["step_data"]["persona_tags"] == ["witty"]

        client.put(f"{base}/primary-language", json={"language": "Malay"})
        state = client.post(f"{base}/secondary-languages", json={"language": "English"}).json()
        assert state["step_data"]["primary_language"] == "Malay"
        assert state["step_data"]["secondary_languages"] == ["English"]

        assert client.put(f"{base}/primary-language", json={"language": "Klingon"}).status_code == 422

    def test_exit(self, client):
        clean_id = start_session(client)["session_id"]
        response = client.post(f"/api/v1/wizard/sessions/{clean_id}/exit", json={})
        assert response.json() == {"allowed": True, "is_dirty": False, "message": None}

        dirty_id = start_session(client)["session_id"]
        client.patch(f"/api/v1/wizard/sessions/{dirty_id}/fields", json={"fields": {"name": "Aria"}})

        kept = client.post(f"/api/v1/wizard/sessions/{dirty_id}/exit", json={"discard_changes": False}).json()
        assert kept["allowed"] is False
        assert "unsaved changes" in kept["message"]
        assert client.get(f"/api/v1/wizard/sessions/{dirty_id}").status_code == 200

        closed = client.post(f"/api/v1/wizard/sessions/{dirty_id}/exit", json={"discard_changes": True}).json()
        assert closed["allowed"] is True
        assert client.get(f"/api/v1/wizard/sessions/{dirty_id}").status_code == 404

    def test_resume_earlier_create_session(self, client):
        alpha = start_session(client, owner_id="owner-1")["session_id"]
        beta = start_session(client, owner_id="owner-1")["session_id"]
        client.patch(f"/api/v1/wizard/sessions/{alpha}/fields", json={"fields": {"name": "Alpha"}})
        client.patch(f"/api/v1/wizard/sessions/{beta}/fields", json={"fields": {"name": "Beta"}})

        resumed = start_session(client, owner_id="owner-1", restore_draft=True, resume_session_id=alpha)

        assert resumed["step_data"]["name"] == "Alpha"

    def test_unknown_session(self, client):
        assert client.post("/api/v1/wizard/sessions/nope/next").status_code == 404

    def test_draft_download_returns_bytes(self, client):
        session_id = start_session(client)["session_id"]
        document = client.post(f"/api/v1/wizard/sessions/{session_id}/knowledge", files=pdf_file()).json()

        response = client.get(f"/api/v1/wizard/sessions/{session_id}/knowledge/{document['id']}/download")

        assert response.status_code == 200
        assert response.content == PDF_BYTES
        assert 'filename="spec.pdf"' in response.headers["content-disposition"]

    def test_stored_download_redirects(self, settings, client, profile_id):
        session_id = start_session(client, profile_id=profile_id)["session_id"]
        document = client.post(f"/api/v1/wizard/sessions/{session_id}/knowledge", files=pdf_file()).json()
        assert document["provenance"] == "profile"

        response = client.get(
            f"/api/v1/wizard/sessions/{session_id}/knowledge/{document['id']}/download",
            follow_redirects=False
        )

        assert response.status_code == 307
        assert response.headers["location"].startswith(settings.storage.public_base_url)

    def test_remote_edit_reaches_open_session(self, client, profile_id):
        session_id = start_session(client, profile_id=profile_id)["session_id"]

        client.patch(f"/api/v1/profiles/{profile_id}", json={"fields": {"backstory": "Edited in detail view."}})

        state = client.get(f"/api/v1/wizard/sessions/{session_id}").json()
        assert state["step_data"]["backstory"] == "Edited in detail view."
        assert state["is_dirty"] is False


class TestUploadErrors:

    def test_wrong_content_type(self, client, profile_id):
        response = client.post(
            f"/api/v1/profiles/{profile_id}/knowledge",
            files={"file": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 415
        assert response.json()["reason"] == "content_type"

    def test_oversized_file(self, settings, services, profile_id):
        settings.uploads.knowledge.max_size_mb = 0.0001

        with TestClient(initialize_app(settings, services)) as client:
            response = client.post(f"/api/v1/profiles/{profile_id}/knowledge", files=pdf_file())

        assert response.status_code == 413
        assert response.json()["reason"] == "size"

    def test_missing_profile(self, client):
        assert client.get("/api/v1/profiles/missing").status_code == 404
        assert client.get("/api/v1/profiles/missing/knowledge").status_code == 404
        assert client.post("/api/v1/wizard/sessions", json={"profile_id": "missing"}).status_code == 404


class TestProfileKnowledge:

    def test_upload_toggle_delete(self, client, profile_id):
        base = f"/api/v1/profiles/{profile_id}/knowledge"
        document = client.post(base, files=pdf_file()).json()
        assert document["linked"] is True

        toggled = client.post(f"{base}/{document['id']}/toggle").json()
        assert toggled["linked"] is False

        assert client.delete(f"{base}/{document['id']}").status_code == 204
        assert client.get(base).json()["total_count"] == 0

    def test_training_locks_edits(self, client, profile_id):
        base = f"/api/v1/profiles/{profile_id}"
        document = client.post(f"{base}/knowledge", files=pdf_file()).json()

        started = client.post(f"{base}/training/start").json()
        assert started["training_in_progress"] is True

        assert client.post(f"{base}/knowledge", files=pdf_file("more.pdf")).status_code == 404
        assert client.delete(f"{base}/knowledge/{document['id']}").status_code == 404
        assert client.get(f"{base}/knowledge").json()["total_count"] == 1

        client.post(f"{base}/training/stop")
        assert client.delete(f"{base}/knowledge/{document['id']}").status_code == 204
        assert client.post(f"{base}/training/pause").status_code == 400

    def test_training_locks_wizard_edit_session(self, client, profile_id):
        session_id = start_session(client, profile_id=profile_id)["session_id"]
        client.post(f"/api/v1/profiles/{profile_id}/training/start")

        response = client.post(f"/api/v1/wizard/sessions/{session_id}/knowledge", files=pdf_file())
        assert response.status_code == 404
        assert client.get(f"/api/v1/profiles/{profile_id}/knowledge").json()["total_count"] == 0

        client.post(f"/api/v1/profiles/{profile_id}/training/stop")
        response = client.post(f"/api/v1/wizard/sessions/{session_id}/knowledge", files=pdf_file())
        assert response.status_code == 201

    def test_list_profiles_by_owner(self, client, profile_id):
        assert client.get("/api/v1/profiles", params={"owner_id": "owner-1"}).json()["count"] == 1
        assert client.get("/api/v1/profiles", params={"owner_id": "someone-else"}).json()["count"] == 0


class TestProfileStream:

    def test_websocket_receives_profile_edit(self, client, profile_id):
        with client.websocket_connect(f"/ws/profiles/{profile_id}") as websocket:
            client.patch(f"/api/v1/profiles/{profile_id}", json={"fields": {"name": "New"}})
            message = websocket.receive_json()

        assert message["profile_id"] == profile_id
        assert message["source"] == "profile"
        assert message["fields"] == {"name": "New"}

    def test_websocket_receives_knowledge_upload(self, client, profile_id):
        with client.websocket_connect(f"/ws/profiles/{profile_id}") as websocket:
            client.post(f"/api/v1/profiles/{profile_id}/knowledge", files=pdf_file())
            message = websocket.receive_json()

        assert message["source"] == "knowledge"
        assert message["event"] == "insert"
        assert message["fields"]["display_name"] == "spec.pdf"

    def test_invalid_profile_edit(self, client, profile_id):
        response = client.patch(f"/api/v1/profiles/{profile_id}", json={"fields": {"nickname": "x"}})
        assert response.status_code == 422
