"""
プラン検証

プランの構造と、現在のプロジェクト状態に対する参照整合性を確認する。
ルールは順番に評価し、最初の失敗で理由（そのままユーザーに表示できる文）を返す。
"""

import logging

from models.project_base import Project
from .plan_normalizer import MAX_GENERATION_COUNT, MIN_GENERATION_COUNT
from .plan_schema import CommandPlan, PlanType, ValidationResult
from .project_context import ProjectContextService

logger = logging.getLogger("command_assistant.PlanValidator")

REASON_NOT_UNDERSTOOD = "I couldn't understand that command. Please be more specific."
REASON_UNSUPPORTED = "Unsupported command type."
REASON_ID_REQUIRED = "A specific task ID (e.g., #123) is required for this action."
REASON_NO_CHANGES = 'Please specify what to change (e.g., "set priority to high").'
REASON_NO_FILTERS = 'Please specify which tasks to affect (e.g., "all overdue tasks").'
REASON_NO_MATCH = "No tasks match the specified filters."
REASON_NO_UPDATES = 'Please specify what to update (e.g., "move to done").'
REASON_NO_ASSIGNEE = "Please specify who to assign the tasks to."
REASON_RENAME_SINGLE = "Rename requires exactly one task selection."
REASON_NO_OVERDUE = "No overdue tasks found."
REASON_NOTHING_TO_DELETE = "No tasks to delete."
REASON_TITLE_REQUIRED = "A title is required to create a task."
REASON_COUNT_RANGE = "Task generation count must be between 1 and 10."


def _ok() -> ValidationResult:
    return ValidationResult(ok=True)


def _fail(reason: str) -> ValidationResult:
    return ValidationResult(ok=False, reason=reason)


class PlanValidator:
    def __init__(self, context: ProjectContextService):
        self.context = context

    def validate(self, project: Project, plan: CommandPlan) -> ValidationResult:
        result = self._validate(project, plan)
        if not result.ok:
            logger.info("Plan rejected (type=%s): %s", plan.type, result.reason)
        return result

    def _validate(self, project: Project, plan: CommandPlan) -> ValidationResult:
        if not plan.type:
            return _fail(REASON_NOT_UNDERSTOOD)
        plan_type = plan.plan_type
        if plan_type is None:
            return _fail(REASON_UNSUPPORTED)

        match plan_type:
            case PlanType.TASK_UPDATE | PlanType.TASK_DELETE:
                task_id = plan.selector.id if plan.selector else None
                if task_id is None or task_id <= 0:
                    return _fail(REASON_ID_REQUIRED)
                if not self.context.task_exists(project, task_id):
                    return _fail(f"Task #{task_id} was not found in this project.")
                if plan_type == PlanType.TASK_UPDATE:
                    if plan.changes is None or plan.changes.is_empty():
                        return _fail(REASON_NO_CHANGES)
                    return self._check_assignee(project, plan.changes.assignee_hint)
                return _ok()

            case PlanType.BULK_UPDATE | PlanType.BULK_ASSIGN | PlanType.BULK_DELETE:
                if plan.filters is None or not plan.filters.has_selector():
                    return _fail(REASON_NO_FILTERS)
                hint_check = self._check_assignee(project, plan.filters.assigned_to_hint)
                if not hint_check.ok:
                    return hint_check
                affected = self.context.count_tasks(project, plan.filters)
                if affected == 0:
                    return _fail(REASON_NO_MATCH)
                if plan_type == PlanType.BULK_UPDATE:
                    if plan.updates is None or plan.updates.is_empty():
                        return _fail(REASON_NO_UPDATES)
                    if plan.updates.title and affected != 1:
                        return _fail(REASON_RENAME_SINGLE)
                    return self._check_assignee(project, plan.updates.assignee_hint)
                if plan_type == PlanType.BULK_ASSIGN:
                    if not (plan.assignee or "").strip():
                        return _fail(REASON_NO_ASSIGNEE)
                    return self._check_assignee(project, plan.assignee)
                return _ok()

            case PlanType.BULK_DELETE_OVERDUE:
                if self.context.count_overdue(project) == 0:
                    return _fail(REASON_NO_OVERDUE)
                return _ok()

            case PlanType.BULK_DELETE_ALL:
                if self.context.count_all(project) == 0:
                    return _fail(REASON_NOTHING_TO_DELETE)
                return _ok()

            case PlanType.CREATE_TASK:
                title = (plan.payload.title if plan.payload else None) or ""
                if not title.strip():
                    return _fail(REASON_TITLE_REQUIRED)
                return _ok()

            case PlanType.BULK_TASK_GENERATION:
                if plan.count is None or not MIN_GENERATION_COUNT <= plan.count <= MAX_GENERATION_COUNT:
                    return _fail(REASON_COUNT_RANGE)
                return _ok()

        return _fail(REASON_UNSUPPORTED)

    def _check_assignee(self, project: Project, hint) -> ValidationResult:
        if hint and self.context.resolve_assignee(project, hint) is None:
            return _fail(f"Assignee '{hint}' could not be determined.")
        return _ok()
