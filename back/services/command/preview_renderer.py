"""
プレビュー文の生成

検証済みプランから確認用の文を作る。ステータスは手法ごとの表示ラベルで表し、
一括操作の件数は検証と同じクエリで数える。ユーザー由来の文字列は HTML エスケープする。
"""

from html import escape
from typing import List, Optional

from models.project_base import Project
from .aliases import phase_label
from .entity_resolver import ME_HINT, OWNER_HINT
from .plan_schema import CommandPlan, PlanType, TaskChanges, TaskFilters
from .project_context import ProjectContextService


def pluralize(count: int, noun: str = "task") -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def display_assignee(hint: Optional[str]) -> str:
    if hint == ME_HINT:
        return "you"
    if hint == OWNER_HINT:
        return "the project owner"
    return escape(hint or "")


def describe_changes(changes: Optional[TaskChanges], methodology: str) -> str:
    """変更内容を "set status to "Done", set priority to high" の形にする"""
    if changes is None:
        return "make changes"
    parts: List[str] = []
    if changes.status:
        parts.append(f'set status to "{escape(phase_label(methodology, changes.status))}"')
    if changes.priority:
        parts.append(f"set priority to {changes.priority}")
    if changes.assignee_hint:
        parts.append(f'assign to "{display_assignee(changes.assignee_hint)}"')
    if changes.title:
        parts.append(f'rename to "{escape(changes.title)}"')
    if changes.description is not None:
        if changes.mode == "append_desc":
            parts.append("append to the description")
        else:
            parts.append("replace the description")
    if changes.start_date:
        parts.append(f"set start date to {changes.start_date.isoformat()}")
    if changes.end_date:
        parts.append(f"set due date to {changes.end_date.isoformat()}")
    return ", ".join(parts) if parts else "make changes"


def describe_filters(filters: Optional[TaskFilters], methodology: str) -> str:
    """対象範囲を "on ALL tasks" / "(in "Review" and with high priority)" の形にする"""
    filters = filters or TaskFilters()
    window = ""
    if filters.limit:
        window = f"(the {'last' if filters.order == 'desc' else 'first'} {filters.limit})"

    parts: List[str] = []
    if filters.ids:
        parts.append("with ids " + ", ".join(f"#{task_id}" for task_id in filters.ids))
    if filters.status:
        parts.append(f'in "{escape(phase_label(methodology, filters.status))}"')
    if filters.priority:
        parts.append(f"with {filters.priority} priority")
    if filters.overdue:
        parts.append("that are overdue")
    if filters.unassigned:
        parts.append("that are unassigned")
    if filters.assigned_to_hint:
        parts.append(f'assigned to "{display_assignee(filters.assigned_to_hint)}"')

    if not parts:
        return window or "on ALL tasks"
    scope = "(" + " and ".join(parts) + ")"
    return f"{scope} {window}".strip()


class PreviewRenderer:
    def __init__(self, context: ProjectContextService):
        self.context = context

    def render(self, project: Project, plan: CommandPlan, methodology: Optional[str] = None) -> str:
        methodology = methodology or self.context.methodology(project)

        match plan.plan_type:
            case PlanType.CREATE_TASK:
                title = plan.payload.title if plan.payload else ""
                status = (plan.payload.status if plan.payload else None) or "todo"
                return f'✅ Create a new task "{escape(title or "")}" in "{escape(phase_label(methodology, status))}".'

            case PlanType.TASK_DELETE:
                return f"🗑️ Permanently delete task #{plan.selector.id}."

            case PlanType.TASK_UPDATE:
                return f"✏️ On task #{plan.selector.id}, {describe_changes(plan.changes, methodology)}."

            case PlanType.BULK_UPDATE:
                count = self.context.count_tasks(project, plan.filters)
                scope = describe_filters(plan.filters, methodology)
                what = describe_changes(plan.updates, methodology)
                return f"⚡ This will affect {pluralize(count)} {scope} and update them: {what}."

            case PlanType.BULK_ASSIGN:
                count = self.context.count_tasks(project, plan.filters)
                scope = describe_filters(plan.filters, methodology)
                return (
                    f"⚡ This will affect {pluralize(count)} {scope} "
                    f'and assign them to "{display_assignee(plan.assignee)}".'
                )

            case PlanType.BULK_DELETE:
                count = self.context.count_tasks(project, plan.filters)
                scope = describe_filters(plan.filters, methodology)
                return f"🗑️ This will permanently delete {pluralize(count)} {scope}."

            case PlanType.BULK_DELETE_OVERDUE:
                count = self.context.count_overdue(project)
                return f"🗑️ This will permanently delete {pluralize(count, 'overdue task')}."

            case PlanType.BULK_DELETE_ALL:
                count = self.context.count_all(project)
                return f"⚠️ This will permanently delete ALL {pluralize(count)} in this project."

            case PlanType.BULK_TASK_GENERATION:
                suffix = f' for "{escape(plan.context)}"' if plan.context else ""
                return (
                    f"✨ This will generate {pluralize(plan.count or 0, 'AI-powered task')}{suffix} "
                    "using advanced project analysis."
                )

        return "I couldn't understand that command. Please be more specific."
