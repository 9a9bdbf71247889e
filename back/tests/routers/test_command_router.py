"""
API tests for routers/project/command.py

FastAPI TestClient with get_db / get_llm_client overridden to the test database
and a fake LLM client.
"""

import pytest
from fastapi.testclient import TestClient

from app import app
from database import get_db
from routers.project.command import get_llm_client


@pytest.fixture
def client(session_factory, seeded, fake_llm):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    llm = fake_llm()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = lambda: llm
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestCommandRouter:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200

    def test_preview(self, client, seeded):
        response = client.post(
            f"/project/{seeded.project.id}/command/preview",
            json={"message": "move #2 to done", "history": []},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["preview_message"] == '✏️ On task #2, set status to "Done".'
        assert body["command_data"] == {"type": "task_update", "selector": {"id": 2}, "changes": {"status": "done"}}

    def test_preview_then_execute(self, client, seeded):
        preview = client.post(
            f"/project/{seeded.project.id}/command/preview",
            json={"message": "assign all unassigned tasks to me", "current_user_id": seeded.carol.id},
        ).json()
        assert preview["command_data"]["assignee"] == "__me__"

        response = client.post(
            f"/project/{seeded.project.id}/command/execute",
            json={"plan": preview["command_data"], "current_user_id": seeded.carol.id},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["type"] == "information"
        assert body["message"] == "👤 Assigned 2 tasks to Carol Chen."
        assert body["requires_confirmation"] is False
        assert body["meta"]["intent"] == "bulk_assign"
        assert body["data"]["total"] == 5

    def test_execute_invalid_plan(self, client, seeded):
        response = client.post(
            f"/project/{seeded.project.id}/command/execute",
            json={"plan": {"type": "task_delete", "selector": {"id": 99}}},
        )
        assert response.status_code == 200
        assert response.json()["type"] == "error"
        assert response.json()["message"] == "Task #99 was not found in this project."

    def test_unknown_project(self, client):
        response = client.post("/project/999/command/preview", json={"message": "move #2 to done"})
        assert response.status_code == 404

    def test_empty_message_is_rejected(self, client, seeded):
        response = client.post(f"/project/{seeded.project.id}/command/preview", json={"message": ""})
        assert response.status_code == 422
