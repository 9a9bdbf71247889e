"""
Scenario tests for plan_compiler.py

Each test feeds one utterance through the rule chain and checks the
normalized plan. The seeded project is described in conftest.py.
"""

from datetime import date

import pytest

from services.command.entity_resolver import ME_HINT
from services.command.plan_compiler import (
    PlanCompiler,
    find_hash_ids,
    find_task_id,
    has_pronoun_reference,
    strip_quoted,
)
from services.command.plan_schema import ChatMessage, PlanType


@pytest.fixture
def compiler(context):
    return PlanCompiler(context)


@pytest.fixture
def compile_message(compiler, seeded):
    def _compile(message, history=None):
        return compiler.compile(seeded.project, message, history)
    return _compile


class TestTextHelpers:
    """Test the low-level text helpers"""

    def test_strip_quoted_preserves_length(self):
        text = 'rename #3 to "delete everything"'
        stripped = strip_quoted(text)
        assert len(stripped) == len(text)
        assert "delete" not in stripped

    def test_find_hash_ids(self):
        assert find_hash_ids("merge #4, #2 and #4") == [4, 2]

    @pytest.mark.parametrize("text, expected", [
        ("move #12 to done", 12),
        ("set task 7 to review", 7),
        ("close 15", 15),
        ("generate 3 tasks", None),
        ("push it by 2 days", None),
        ("due 2025-07-01", None),
        ("update the first 3 tasks", None),
        ("due june 5", None),
    ])
    def test_find_task_id(self, text, expected):
        assert find_task_id(text) == expected

    def test_pronoun_reference(self):
        assert has_pronoun_reference("move them to done")
        assert not has_pronoun_reference("move the theme task")


class TestSingleTaskRules:
    """Single-task update / delete"""

    def test_move_to_status(self, compile_message):
        plan = compile_message("move #2 to done")
        assert plan.to_command_data() == {
            "type": "task_update",
            "selector": {"id": 2},
            "changes": {"status": "done"},
        }

    def test_priority_update(self, compile_message):
        plan = compile_message("set priority of task 3 to high")
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.selector.id == 3
        assert plan.changes.priority == "high"
        assert plan.changes.status is None

    def test_assign_single_task(self, compile_message):
        plan = compile_message("assign #1 to carol")
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.changes.assignee_hint == "carol"

    def test_due_date(self, compile_message):
        plan = compile_message("set due date of #2 to next friday")
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.changes.end_date == date(2025, 6, 13)

    def test_quoted_title_is_not_parsed_as_a_command(self, compile_message):
        plan = compile_message('rename #3 to "Delete old builds"')
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.changes.title == "Delete old builds"

    def test_append_description(self, compile_message):
        plan = compile_message('add to the description of #1 "check staging first"')
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.changes.description == "check staging first"
        assert plan.changes.mode == "append_desc"

    def test_complete_verb(self, compile_message):
        plan = compile_message("complete task #5")
        assert plan.changes.status == "done"

    def test_delete_existing_task(self, compile_message):
        plan = compile_message("delete task #4")
        assert plan.to_command_data() == {"type": "task_delete", "selector": {"id": 4}}

    def test_delete_missing_task_carries_error(self, compile_message):
        plan = compile_message("delete task #99")
        assert plan.plan_type == PlanType.TASK_DELETE
        assert plan.error == "Task #99 not found in this project."

    def test_task_of_another_project_is_missing(self, compile_message, seeded):
        plan = compile_message(f"delete #{seeded.foreign_task.id}")
        assert plan.error == f"Task #{seeded.foreign_task.id} not found in this project."


class TestDeleteRules:
    """Bulk delete variants (narrower selectors win)"""

    def test_delete_all_overdue(self, compile_message):
        assert compile_message("delete all overdue tasks").plan_type == PlanType.BULK_DELETE_OVERDUE

    def test_delete_by_priority(self, compile_message):
        plan = compile_message("delete all high priority tasks")
        assert plan.plan_type == PlanType.BULK_DELETE
        assert plan.filters.priority == "high"
        assert plan.filters.all is None

    def test_delete_everything(self, compile_message):
        assert compile_message("delete everything").plan_type == PlanType.BULK_DELETE_ALL

    def test_delete_several_ids(self, compile_message):
        plan = compile_message("delete #1 and #3")
        assert plan.plan_type == PlanType.BULK_DELETE
        assert plan.filters.ids == [1, 3]

    def test_delete_last_n(self, compile_message):
        plan = compile_message("delete the last 2 tasks")
        assert plan.plan_type == PlanType.BULK_DELETE
        assert plan.filters.all is True
        assert plan.filters.limit == 2
        assert plan.filters.order == "desc"

    def test_vague_delete_is_an_error(self, compile_message):
        plan = compile_message("delete")
        assert plan.type is None
        assert plan.error.startswith("Please specify which tasks to delete")

    def test_removing_a_field_is_not_a_delete(self, compile_message):
        plan = compile_message("remove the due date from #2")
        assert plan.plan_type != PlanType.TASK_DELETE


class TestBulkRules:
    """Filtered bulk updates and assignments"""

    def test_move_by_priority(self, compile_message):
        plan = compile_message("move all high priority tasks to review")
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.filters.priority == "high"
        assert plan.updates.status == "review"

    def test_mark_all(self, compile_message):
        plan = compile_message("mark all tasks as done")
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.filters.all is True
        assert plan.updates.status == "done"

    def test_several_ids_become_bulk_update(self, compile_message):
        plan = compile_message("mark #1 and #2 as done")
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.filters.ids == [1, 2]

    def test_ordinal_window_update(self, compile_message):
        plan = compile_message("update the first 3 tasks to medium priority")
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.filters.limit == 3
        assert plan.filters.order == "asc"
        assert plan.updates.priority == "medium"
        assert plan.updates.status is None

    def test_nth_stage(self, compile_message):
        plan = compile_message("move all tasks to the last stage")
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.updates.status == "done"

    @pytest.mark.parametrize("message, hint, status", [
        ("move all tasks assigned to bob to done", "bob", "done"),
        ("change tasks assigned to carol to review", "carol", "review"),
    ])
    def test_assignee_filter_with_status_change(self, compile_message, message, hint, status):
        """The "to" of "assigned to" is not the target status"""
        plan = compile_message(message)
        assert plan.to_command_data() == {
            "type": "bulk_update",
            "filters": {"assigned_to_hint": hint},
            "updates": {"status": status},
        }

    @pytest.mark.parametrize("message", ["set priority to critical", "set priority of all tasks to critical"])
    def test_priority_synonym_is_normalized(self, compile_message, message):
        plan = compile_message(message)
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.updates.priority == "urgent"

    def test_single_task_priority_synonym(self, compile_message):
        plan = compile_message("set priority of #2 to critical")
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.changes.priority == "urgent"

    def test_assign_unassigned_to_me(self, compile_message):
        plan = compile_message("assign all unassigned tasks to me")
        assert plan.plan_type == PlanType.BULK_ASSIGN
        assert plan.filters.unassigned is True
        assert plan.filters.assigned_to_hint is None
        assert plan.assignee == ME_HINT


class TestCreateAndGenerate:
    """create_task and bulk_task_generation"""

    def test_create_with_quoted_title(self, compile_message):
        plan = compile_message('create task "Write tests" high priority due tomorrow')
        assert plan.plan_type == PlanType.CREATE_TASK
        assert plan.payload.title == "Write tests"
        assert plan.payload.priority == "high"
        assert plan.payload.status == "todo"
        assert plan.payload.end_date == date(2025, 6, 12)

    def test_create_without_quotes(self, compile_message):
        plan = compile_message("add a new task called Review PR")
        assert plan.plan_type == PlanType.CREATE_TASK
        assert plan.payload.title == "Review PR"
        assert plan.payload.priority == "medium"

    def test_generation_with_context(self, compile_message):
        plan = compile_message("generate 5 tasks for onboarding flow")
        assert plan.plan_type == PlanType.BULK_TASK_GENERATION
        assert plan.count == 5
        assert plan.context == "onboarding flow"
        assert plan.full_message == "generate 5 tasks for onboarding flow"

    def test_generation_count_is_clamped(self, compile_message):
        plan = compile_message("create 25 tasks for QA")
        assert plan.count == 10
        assert plan.context == "QA"

    @pytest.mark.parametrize("message, count", [
        ("generate several tasks about the marketing launch", 3),
        ("create some tasks", 4),
    ])
    def test_generation_word_counts(self, compile_message, message, count):
        assert compile_message(message).count == count


class TestPronounRules:
    """'them' / 'these' / 'those' fall back to all tasks when tasks are in context"""

    def test_move_them(self, compile_message):
        history = [ChatMessage(role="assistant", content="Found 2 tasks in review.")]
        plan = compile_message("move them to done", history)
        assert plan.plan_type == PlanType.BULK_UPDATE
        assert plan.filters.all is True
        assert plan.updates.status == "done"

    def test_assign_them(self, compile_message):
        plan = compile_message("assign them to carol")
        assert plan.plan_type == PlanType.BULK_ASSIGN
        assert plan.filters.all is True
        assert plan.assignee == "carol"


class TestUnmatched:
    """Messages no rule claims go to the LLM"""

    @pytest.mark.parametrize("message", ["what's the weather like", "please tidy things up", ""])
    def test_no_rule_matches(self, compile_message, message):
        plan = compile_message(message)
        assert plan.type is None
        assert plan.error is None
