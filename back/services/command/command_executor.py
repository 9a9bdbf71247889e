"""
コマンド実行

検証済みプランをストレージに適用し、結果メッセージと最新スナップショットを返す。
成功時は1回だけ commit し、失敗時は rollback する。
"""

import logging
from html import escape
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from models.project_base import TASK_PRIORITIES, TASK_STATUSES, Project, Task, User
from .exceptions import CommandError, TaskGenerationError, TaskNotFoundError, UnresolvableReferenceError
from .plan_schema import CommandPlan, ExecutionResult, PlanType, ProjectSnapshot, TaskChanges
from .preview_renderer import display_assignee, pluralize
from .project_context import ProjectContextService, is_overdue

logger = logging.getLogger("command_assistant.CommandExecutor")

GENERIC_FAILURE_MESSAGE = "Something went wrong. Please adjust and try again."
NO_CHANGES_MESSAGE = "No changes applied."
GENERATION_PREVIEW_TITLES = 3


class TaskGenerator(Protocol):
    """AI タスク生成の窓口（TaskGenerationService が実装する）"""

    def generate_tasks(self, project: Project, count: int, context: Optional[str]) -> List[Any]:
        ...


class CommandExecutor:
    def __init__(self, context: ProjectContextService, task_generator: Optional[TaskGenerator] = None):
        self.context = context
        self.db: Session = context.db
        self.task_generator = task_generator
        self._handlers: Dict[PlanType, Callable[[Project, CommandPlan], str]] = {
            PlanType.CREATE_TASK: self._create_task,
            PlanType.TASK_UPDATE: self._update_task,
            PlanType.TASK_DELETE: self._delete_task,
            PlanType.BULK_UPDATE: self._bulk_update,
            PlanType.BULK_ASSIGN: self._bulk_assign,
            PlanType.BULK_DELETE: self._bulk_delete,
            PlanType.BULK_DELETE_OVERDUE: self._bulk_delete_overdue,
            PlanType.BULK_DELETE_ALL: self._bulk_delete_all,
            PlanType.BULK_TASK_GENERATION: self._bulk_generate,
        }

    def execute(self, project: Project, plan: CommandPlan) -> ExecutionResult:
        """
        検証済みプランを実行する。例外は呼び出し側へ伝播させず、結果メッセージに変換する。

        Args:
            project: 対象プロジェクト
            plan: PlanValidator を通過したプラン

        Returns:
            ExecutionResult（type=information or error、data は実行後のスナップショット）
        """
        result_type = "information"
        try:
            handler = self._handlers.get(plan.plan_type)
            if handler is None:
                raise CommandError("Unsupported command type.")
            message = handler(project, plan)
            self.db.commit()
        except CommandError as exc:
            self.db.rollback()
            logger.info("Command rejected during execution (type=%s): %s", plan.type, exc.message)
            message, result_type = exc.message, "error"
        except Exception:
            self.db.rollback()
            logger.exception(
                "Command execution failed (project=%s, plan=%s)", project.id, plan.to_command_data()
            )
            message, result_type = GENERIC_FAILURE_MESSAGE, "error"

        return ExecutionResult(
            type=result_type,
            message=message,
            data=self._snapshot(project),
            requires_confirmation=False,
            meta={"intent": plan.type, "executed_plan": plan.to_command_data()},
        )

    def _snapshot(self, project: Project) -> Optional[ProjectSnapshot]:
        try:
            return self.context.build_snapshot(project)
        except Exception:
            logger.exception("Failed to build project snapshot (project=%s)", project.id)
            return None

    # ------------------------------------------------------------------
    # 差分適用
    # ------------------------------------------------------------------
    def apply_changes(self, project: Project, task: Task, changes: TaskChanges) -> bool:
        """値が実際に変わるフィールドだけを書き換え、変更があれば True を返す"""
        changed = False

        if changes.status in TASK_STATUSES and task.status != changes.status:
            task.status = changes.status
            changed = True
        if changes.priority in TASK_PRIORITIES and task.priority != changes.priority:
            task.priority = changes.priority
            changed = True

        if changes.assignee_hint:
            assignee_id = self.context.resolve_assignee(project, changes.assignee_hint)
            if assignee_id is None:
                raise UnresolvableReferenceError("Assignee", display_assignee(changes.assignee_hint))
            if task.assignee_id != assignee_id:
                task.assignee_id = assignee_id
                changed = True

        if changes.title and changes.title.strip() and task.title != changes.title.strip():
            task.title = changes.title.strip()
            changed = True

        if changes.description is not None:
            current = task.description or ""
            if changes.mode == "append_desc" and current.strip():
                new_description = f"{current.rstrip()}\n\n{changes.description}".strip()
            else:
                new_description = changes.description.strip()
            if new_description != current:
                task.description = new_description
                changed = True

        for field in ("start_date", "end_date"):
            value = getattr(changes, field)
            if value is not None and getattr(task, field) != value:
                setattr(task, field, value)
                changed = True

        return changed

    def _require_task(self, project: Project, plan: CommandPlan) -> Task:
        task_id = plan.selector.id if plan.selector else None
        task = self.context.find_task(project, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    # ------------------------------------------------------------------
    # 種別ごとの処理
    # ------------------------------------------------------------------
    def _create_task(self, project: Project, plan: CommandPlan) -> str:
        payload = plan.payload
        title = (payload.title or "").strip() if payload else ""
        if not title:
            raise CommandError("A title is required to create a task.")

        task = Task(
            project_id=project.id,
            title=title,
            description=payload.description,
            status=payload.status if payload.status in TASK_STATUSES else "todo",
            priority=payload.priority if payload.priority in TASK_PRIORITIES else "medium",
            creator_id=self.context.acting_user_id(project),
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
        self.db.add(task)
        self.db.flush()
        logger.info("Task created (project=%s, task=%s)", project.id, task.id)
        return f'✅ Task "{escape(title)}" created successfully.'

    def _update_task(self, project: Project, plan: CommandPlan) -> str:
        task = self._require_task(project, plan)
        if not self.apply_changes(project, task, plan.changes or TaskChanges()):
            return NO_CHANGES_MESSAGE
        return f"✏️ Task #{task.id} updated successfully."

    def _delete_task(self, project: Project, plan: CommandPlan) -> str:
        task = self._require_task(project, plan)
        task_id, title = task.id, task.title
        self.db.delete(task)
        return f'🗑️ Task #{task_id} "{escape(title)}" deleted successfully.'

    def _bulk_update(self, project: Project, plan: CommandPlan) -> str:
        updates = plan.updates or TaskChanges()
        changed = 0
        for task in self.context.build_task_query(project, plan.filters).all():
            if self.apply_changes(project, task, updates):
                changed += 1
        if changed == 0:
            return NO_CHANGES_MESSAGE
        return f"⚡ Updated {pluralize(changed)} successfully."

    def _bulk_assign(self, project: Project, plan: CommandPlan) -> str:
        assignee_id = self.context.resolve_assignee(project, plan.assignee)
        if assignee_id is None:
            raise UnresolvableReferenceError("Assignee", display_assignee(plan.assignee))
        assignee = self.db.get(User, assignee_id)

        # 割り当ては差分を取らず、対象の全行を適用済みとして数える
        tasks = self.context.build_task_query(project, plan.filters).all()
        for task in tasks:
            task.assignee_id = assignee_id
        name = assignee.name if assignee is not None else f"user #{assignee_id}"
        return f"👤 Assigned {pluralize(len(tasks))} to {escape(name)}."

    def _bulk_delete(self, project: Project, plan: CommandPlan) -> str:
        tasks = self.context.build_task_query(project, plan.filters).all()
        for task in tasks:
            self.db.delete(task)
        return f"🗑️ Deleted {pluralize(len(tasks))}."

    def _bulk_delete_overdue(self, project: Project, plan: CommandPlan) -> str:
        today = self.context.today()
        deleted = 0
        for task in self.context.overdue_query(project).all():
            # プレビュー後に期限の境界をまたいだ行は削除しない
            if is_overdue(task, today):
                self.db.delete(task)
                deleted += 1
        return f"🗑️ Deleted {pluralize(deleted, 'overdue task')}."

    def _bulk_delete_all(self, project: Project, plan: CommandPlan) -> str:
        tasks = self.db.query(Task).filter(Task.project_id == project.id).order_by(Task.id.asc()).all()
        for task in tasks:
            self.db.delete(task)
        return f"⚠️ Deleted ALL {pluralize(len(tasks))} in this project."

    def _bulk_generate(self, project: Project, plan: CommandPlan) -> str:
        if self.task_generator is None:
            raise TaskGenerationError()
        try:
            drafts = self.task_generator.generate_tasks(project, plan.count or 3, plan.context)
        except TaskGenerationError:
            raise
        except Exception as exc:
            logger.exception("Task generator failed (project=%s)", project.id)
            raise TaskGenerationError() from exc

        creator_id = self.context.acting_user_id(project)
        titles: List[str] = []
        for draft in drafts[: plan.count or len(drafts)]:
            priority = (getattr(draft, "priority", None) or "").lower()
            task = Task(
                project_id=project.id,
                title=draft.title,
                description=getattr(draft, "description", None),
                status="todo",
                priority=priority if priority in TASK_PRIORITIES else "medium",
                creator_id=creator_id,
                start_date=getattr(draft, "start_date", None),
                end_date=getattr(draft, "end_date", None),
            )
            self.db.add(task)
            titles.append(draft.title)
        if not titles:
            raise TaskGenerationError()
        self.db.flush()

        named = ", ".join(f'"{escape(title)}"' for title in titles[:GENERATION_PREVIEW_TITLES])
        remaining = len(titles) - GENERATION_PREVIEW_TITLES
        suffix = f" +{remaining} more" if remaining > 0 else ""
        return f"✨ Generated {pluralize(len(titles))} successfully: {named}{suffix}."
