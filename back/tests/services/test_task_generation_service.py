"""
Unit tests for task_generation_service.py

Draft conversion (dedupe, truncation, priority / date parsing) and failure handling.
"""

from datetime import date

import pytest

from services.command.exceptions import TaskGenerationError
from services.task_generation_service import MAX_TITLE_LENGTH, TaskGenerationService


@pytest.fixture
def make_service(db, fake_llm):
    def _make(responses):
        llm = fake_llm(responses)
        return TaskGenerationService(db, llm_client=llm), llm
    return _make


class TestGenerateTasks:
    def test_drafts_are_cleaned(self, make_service, seeded):
        service, llm = make_service([{
            "tasks": [
                {"title": "Write API docs"},
                {"title": "Set up CI", "priority": "High", "end_date": "2025-07-01"},
                {"title": "set up ci"},
                {"title": "Plan launch", "priority": "P0", "description": "  Agree on a date  "},
                {"description": "no title"},
                "not an object",
            ]
        }])

        tasks = service.generate_tasks(seeded.project, 5, "release prep")

        assert [task.title for task in tasks] == ["Set up CI", "Plan launch"]
        assert tasks[0].priority == "high"
        assert tasks[0].end_date == date(2025, 7, 1)
        assert tasks[1].priority == "urgent"
        assert tasks[1].description == "Agree on a date"
        assert llm.calls[0]["temperature"] == pytest.approx(0.7)

    def test_prompt_contains_request_and_existing_titles(self, make_service, seeded):
        service, llm = make_service([{"tasks": [{"title": "Draft FAQ"}]}])
        service.generate_tasks(seeded.project, 20, "support docs")

        user_prompt = llm.calls[0]["messages"][1].content
        assert "REQUEST: support docs" in user_prompt
        assert "- Fix login bug" in user_prompt
        assert "Generate exactly 10 new tasks" in user_prompt

    def test_result_is_capped_at_count(self, make_service, seeded):
        service, _ = make_service([{"tasks": [{"title": f"Task {i}"} for i in range(6)]}])
        assert len(service.generate_tasks(seeded.project, 2, None)) == 2

    def test_long_titles_are_truncated(self, make_service, seeded):
        service, _ = make_service([{"tasks": [{"title": "x" * 150}]}])
        tasks = service.generate_tasks(seeded.project, 1, None)
        assert len(tasks[0].title) == MAX_TITLE_LENGTH

    def test_single_object_response(self, make_service, seeded):
        service, _ = make_service([{"title": "Only one"}])
        assert [task.title for task in service.generate_tasks(seeded.project, 3, None)] == ["Only one"]

    @pytest.mark.parametrize("response", [None, {"tasks": []}, {"tasks": [{"title": "Write API docs"}]}])
    def test_no_usable_tasks_raises(self, make_service, seeded, response):
        service, _ = make_service([response])
        with pytest.raises(TaskGenerationError) as exc_info:
            service.generate_tasks(seeded.project, 3, None)
        assert exc_info.value.message == "❌ Task generation failed. Please try again."
