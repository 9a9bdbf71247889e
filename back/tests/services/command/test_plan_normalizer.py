"""
Unit tests for plan_normalizer.py

Both compiler output and LLM JSON go through normalize_plan:
1. Type aliases and field synonyms
2. Status / priority / date / assignee canonicalization
3. Filter cleanup (ids, flags, window, "all" narrowing)
4. Generation count clamping and error passthrough
"""

from datetime import date

import pytest

from services.command.entity_resolver import ME_HINT
from services.command.plan_normalizer import (
    DEFAULT_GENERATION_COUNT,
    clamp_generation_count,
    normalize_plan,
    normalize_type,
)
from services.command.plan_schema import CommandPlan, PlanType


class TestNormalizeType:
    """Test plan type canonicalization"""

    @pytest.mark.parametrize("raw, expected", [
        ("task_update", "task_update"),
        ("Bulk-Update", "bulk_update"),
        ("update task", "task_update"),
        ("deleteAll", "bulk_delete_all"),
        ("generate_tasks", "bulk_task_generation"),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_type(raw) == expected

    def test_unknown_type_is_kept(self):
        """Unknown types survive so the validator can reject them"""
        assert normalize_type("teleport") == "teleport"

    def test_empty_type(self):
        assert normalize_type(None) is None
        assert normalize_type("  ") is None


class TestNormalizePlanFields:
    """Test changes / payload / updates normalization"""

    def test_llm_style_task_update(self, today):
        plan = normalize_plan(
            {
                "action": "update_task",
                "id": "#2",
                "changes": {"status": "Done", "assignee": "@carol", "due_date": "tomorrow"},
            },
            "kanban",
            today=today,
        )
        assert plan.plan_type == PlanType.TASK_UPDATE
        assert plan.selector.id == 2
        assert plan.changes.status == "done"
        assert plan.changes.assignee_hint == "carol"
        assert plan.changes.end_date == date(2025, 6, 12)

    def test_unresolvable_values_are_dropped(self, today):
        plan = normalize_plan(
            {
                "type": "bulk_update",
                "filters": {"status": "someday", "all": "true"},
                "updates": {"status": "banana", "priority": "P1", "end_date": "whenever"},
            },
            "kanban",
            today=today,
        )
        assert plan.filters.status is None
        assert plan.filters.all is True
        assert plan.updates.status is None
        assert plan.updates.priority == "high"
        assert plan.updates.end_date is None

    def test_methodology_phase_names(self, today):
        plan = normalize_plan(
            {"type": "task_update", "selector": {"id": 1}, "changes": {"status": "Verification"}},
            "waterfall",
            today=today,
        )
        assert plan.changes.status == "review"

    def test_me_pronoun_becomes_sentinel(self, today):
        plan = normalize_plan({"type": "bulk_assign", "filters": {"all": True}, "assignee": "me"}, "kanban", today)
        assert plan.assignee == ME_HINT

    def test_description_mode(self, today):
        plan = normalize_plan(
            {"type": "task_update", "selector": {"id": 1},
             "changes": {"description": "  more notes ", "mode": "append_desc"}},
            "kanban",
            today=today,
        )
        assert plan.changes.description == "more notes"
        assert plan.changes.mode == "append_desc"
        assert plan.to_command_data()["changes"]["_mode"] == "append_desc"

    def test_invalid_mode_is_dropped(self, today):
        plan = normalize_plan(
            {"type": "task_update", "selector": {"id": 1}, "changes": {"description": "x", "_mode": "erase"}},
            "kanban",
            today=today,
        )
        assert plan.changes.mode is None


class TestNormalizeFilters:
    """Test filter cleanup"""

    def test_ids_are_coerced_and_deduplicated(self, today):
        plan = normalize_plan({"type": "bulk_delete", "filters": {"ids": ["#3", 3, "x", -1, 5]}}, "kanban", today)
        assert plan.filters.ids == [3, 5]

    def test_all_is_dropped_when_narrower_filter_exists(self, today):
        plan = normalize_plan({"type": "bulk_delete", "filters": {"all": True, "priority": "high"}}, "kanban", today)
        assert plan.filters.all is None
        assert plan.filters.priority == "high"

    def test_priority_phrase_is_not_an_assignee(self, today):
        plan = normalize_plan(
            {"type": "bulk_update", "filters": {"assigned_to_hint": "high priority", "all": True},
             "updates": {"status": "done"}},
            "kanban",
            today=today,
        )
        assert plan.filters.assigned_to_hint is None
        assert plan.filters.all is True

    def test_window_values(self, today):
        plan = normalize_plan(
            {"type": "bulk_delete", "filters": {"all": True, "limit": "2", "order": "DESC", "order_by": "ID"}},
            "kanban",
            today=today,
        )
        assert plan.filters.limit == 2
        assert plan.filters.order == "desc"
        assert plan.filters.order_by == "id"

    def test_non_positive_limit_is_dropped(self, today):
        plan = normalize_plan({"type": "bulk_delete", "filters": {"all": True, "limit": 0}}, "kanban", today)
        assert plan.filters.limit is None


class TestNormalizePlanMisc:
    """Test counts, errors and degenerate input"""

    @pytest.mark.parametrize("raw, expected", [(25, 10), ("4", 4), (0, 1), (None, DEFAULT_GENERATION_COUNT)])
    def test_generation_count_clamp(self, raw, expected):
        assert clamp_generation_count(raw) == expected

    def test_generation_plan_count_is_clamped(self, today):
        plan = normalize_plan({"type": "bulk_task_generation", "count": 50, "context": " QA "}, "kanban", today)
        assert plan.count == 10
        assert plan.context == "QA"

    def test_error_passthrough_uses_underscore_key_only(self, today):
        assert normalize_plan({"_error": "Task #9 not found in this project."}, "kanban", today).error == (
            "Task #9 not found in this project."
        )
        assert normalize_plan({"type": "bulk_delete_all", "error": "model chatter"}, "kanban", today).error is None

    @pytest.mark.parametrize("raw", [None, {}, [], "delete everything"])
    def test_degenerate_input(self, today, raw):
        plan = normalize_plan(raw, "kanban", today)
        assert plan.type is None

    def test_normalizing_twice_is_stable(self, today):
        first = normalize_plan(
            {"type": "bulk_update", "filters": {"status": "QA"}, "updates": {"end_date": "next friday"}},
            "kanban",
            today=today,
        )
        second = normalize_plan(first, "kanban", today=today)
        assert isinstance(second, CommandPlan)
        assert second.to_command_data() == first.to_command_data()
        assert second.to_command_data()["updates"]["end_date"] == "2025-06-13"
