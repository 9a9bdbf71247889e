"""
Unit tests for aliases.py

Tests status / priority alias resolution:
1. Canonical values and free-form synonyms
2. Methodology-specific phase names and display labels
3. Free-text status extraction (longest phrase first)
"""

import pytest

from models.project_base import TASK_STATUSES
from services.command.aliases import (
    DEFAULT_METHODOLOGY,
    METHODOLOGIES,
    STATUS_ALIASES,
    extract_status_from_text,
    normalize_methodology,
    normalize_status_token,
    phase_label,
    phase_labels,
    resolve_priority,
    resolve_status,
)


class TestNormalizeStatusToken:
    """Test token cleanup before lookup"""

    def test_separators_and_filler_words_are_removed(self):
        assert normalize_status_token("In_Progress-Status") == "inprogress"

    def test_column_word_is_stripped(self):
        assert normalize_status_token("Done column") == "done"

    def test_whitespace_is_collapsed(self):
        assert normalize_status_token("  code    review ") == "code review"


class TestResolveStatus:
    """Test status resolution across methodologies"""

    @pytest.mark.parametrize("token, expected", [
        ("todo", "todo"),
        ("In Progress", "inprogress"),
        ("QA", "review"),
        ("code review", "review"),
        ("completed", "done"),
        ("backlog", "todo"),
        ("WIP", "inprogress"),
    ])
    def test_common_synonyms(self, token, expected):
        assert resolve_status("kanban", token) == expected

    def test_waterfall_phase_names(self):
        assert resolve_status("waterfall", "Maintenance") == "done"
        assert resolve_status("waterfall", "design") == "inprogress"
        assert resolve_status("waterfall", "verification") == "review"

    def test_methodology_only_phase(self):
        """'value stream' is a lean phase only"""
        assert resolve_status("lean", "value stream") == "inprogress"
        assert resolve_status("kanban", "value stream") is None

    def test_canonical_value_wins_over_phase_map(self):
        """Lean maps its 'todo' column to inprogress, but a canonical token stays canonical"""
        assert resolve_status("lean", "todo") == "todo"

    @pytest.mark.parametrize("token", [None, "", "banana", "   "])
    def test_unresolvable_returns_none(self, token):
        assert resolve_status("kanban", token) is None


class TestResolvePriority:
    """Test priority resolution"""

    @pytest.mark.parametrize("token, expected", [
        ("high", "high"),
        ("High priority", "high"),
        ("P0", "urgent"),
        ("p3", "low"),
        ("critical", "urgent"),
        ("normal", "medium"),
    ])
    def test_aliases(self, token, expected):
        assert resolve_priority(token) == expected

    def test_unknown_priority(self):
        assert resolve_priority("whenever") is None
        assert resolve_priority(None) is None


class TestPhaseLabels:
    """Test display labels per methodology"""

    def test_kanban_labels(self):
        assert phase_label("kanban", "todo") == "To Do"
        assert phase_label("kanban", "done") == "Done"

    def test_waterfall_labels(self):
        assert phase_label("waterfall", "inprogress") == "Design"

    def test_unknown_methodology_falls_back_to_default(self):
        assert normalize_methodology("six sigma") == DEFAULT_METHODOLOGY
        assert phase_label("six sigma", "review") == "Review"

    def test_label_list_follows_status_order(self):
        assert phase_labels("scrum") == ["Backlog", "In Progress", "Review", "Done"]

    def test_methodology_is_case_insensitive(self):
        assert normalize_methodology(" Scrum ") == "scrum"


class TestExtractStatusFromText:
    """Test scanning a sentence for a status phrase"""

    def test_multi_word_phrase_first(self):
        assert extract_status_from_text("kanban", "please move it to code review now") == "review"

    def test_single_word(self):
        assert extract_status_from_text("kanban", "ship it to qa") == "review"

    def test_phase_name_fallback(self):
        assert extract_status_from_text("lean", "put it in the value stream") == "inprogress"

    def test_no_status(self):
        assert extract_status_from_text("kanban", "hello there") is None


class TestAliasProperties:
    """Every alias and every display label must map back to its status"""

    @pytest.mark.parametrize("methodology", METHODOLOGIES)
    @pytest.mark.parametrize("status, alias", [
        (status, alias) for status, aliases in STATUS_ALIASES.items() for alias in aliases
    ])
    def test_every_alias_resolves_in_every_methodology(self, methodology, status, alias):
        resolved = resolve_status(methodology, alias)
        assert resolved == status
        assert resolve_status(methodology, resolved) == resolved

    @pytest.mark.parametrize("methodology", METHODOLOGIES)
    @pytest.mark.parametrize("status", TASK_STATUSES)
    def test_phase_label_round_trip(self, methodology, status):
        assert resolve_status(methodology, phase_label(methodology, status)) == status
