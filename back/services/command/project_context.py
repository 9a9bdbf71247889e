"""
プロジェクトコンテキスト（ストレージ側の窓口）

検証・プレビュー・実行はすべて build_task_query を通して対象タスクを決めるため、
3者の件数は（外部からの同時更新がない限り）一致する。
"""

import logging
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from models.project_base import (
    OPEN_TASK_STATUSES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Project,
    Task,
    User,
)
from .aliases import normalize_methodology
from .entity_resolver import AssigneeResolver
from .plan_schema import ProjectSnapshot, TaskFilters

logger = logging.getLogger("command_assistant.ProjectContextService")

# order_by に指定できる列
ORDERABLE_COLUMNS = {
    "id": Task.id,
    "title": Task.title,
    "status": Task.status,
    "priority": Task.priority,
    "start_date": Task.start_date,
    "end_date": Task.end_date,
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
}


def is_overdue(task: Task, today: date) -> bool:
    """期限日が過去、かつ未完了ステータス"""
    return (
        task.end_date is not None
        and task.end_date < today
        and task.status in OPEN_TASK_STATUSES
    )


class ProjectContextService:
    """タスク検索・メンバー解決・スナップショット生成を提供する"""

    def __init__(
        self,
        db: Session,
        current_user_id: Optional[int] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.db = db
        self.current_user_id = current_user_id
        self._today = today or date.today
        self.assignees = AssigneeResolver(db, current_user_id)

    # ------------------------------------------------------------------
    # プロジェクト情報
    # ------------------------------------------------------------------
    def today(self) -> date:
        return self._today()

    def methodology(self, project: Project) -> str:
        meta = project.meta if isinstance(project.meta, dict) else {}
        return normalize_methodology(meta.get("methodology"))

    def project_owner(self, project: Project) -> Optional[User]:
        return self.db.get(User, project.user_id) if project.user_id else None

    def project_members(self, project: Project) -> List[User]:
        return self.assignees.candidates(project)

    def resolve_assignee(self, project: Project, hint: Optional[str]) -> Optional[int]:
        return self.assignees.resolve(project, hint)

    def acting_user_id(self, project: Project) -> Optional[int]:
        """操作者（未認証ならプロジェクトオーナー）"""
        return self.current_user_id if self.current_user_id is not None else project.user_id

    # ------------------------------------------------------------------
    # タスク検索
    # ------------------------------------------------------------------
    def find_task(self, project: Project, task_id: Optional[int]) -> Optional[Task]:
        if task_id is None:
            return None
        return (
            self.db.query(Task)
            .filter(Task.project_id == project.id, Task.id == task_id)
            .first()
        )

    def task_exists(self, project: Project, task_id: Optional[int]) -> bool:
        return self.find_task(project, task_id) is not None

    def has_tasks(self, project: Project) -> bool:
        return (
            self.db.query(Task.id).filter(Task.project_id == project.id).first()
            is not None
        )

    def overdue_query(self, project: Project) -> Query:
        return (
            self.db.query(Task)
            .filter(
                Task.project_id == project.id,
                Task.end_date.isnot(None),
                Task.end_date < self.today(),
                Task.status.in_(OPEN_TASK_STATUSES),
            )
            .order_by(Task.id.asc())
        )

    def build_task_query(self, project: Project, filters: Optional[TaskFilters]) -> Query:
        """
        フィルタを SQLAlchemy クエリに変換する（検証・プレビュー・実行で共通）。

        all=True は追加条件なし、その他の条件は AND で結合する。
        assigned_to_hint が解決できない場合は 0 件になる。
        """
        filters = filters or TaskFilters()
        query = self.db.query(Task).filter(Task.project_id == project.id)

        if filters.ids:
            query = query.filter(Task.id.in_(filters.ids))
        if filters.status:
            query = query.filter(Task.status == filters.status)
        if filters.priority:
            query = query.filter(Task.priority == filters.priority)
        if filters.overdue:
            query = query.filter(
                Task.end_date.isnot(None),
                Task.end_date < self.today(),
                Task.status.in_(OPEN_TASK_STATUSES),
            )
        if filters.unassigned:
            query = query.filter(Task.assignee_id.is_(None))
        if filters.assigned_to_hint:
            assignee_id = self.resolve_assignee(project, filters.assigned_to_hint)
            query = query.filter(Task.assignee_id == (assignee_id if assignee_id is not None else -1))

        column = ORDERABLE_COLUMNS.get(filters.order_by or "id", Task.id)
        if filters.order == "desc":
            query = query.order_by(column.desc(), Task.id.desc())
        else:
            query = query.order_by(column.asc(), Task.id.asc())

        if filters.limit:
            query = query.limit(filters.limit)
        return query

    def count_tasks(self, project: Project, filters: Optional[TaskFilters]) -> int:
        # limit 付きクエリも count() はサブクエリで包むため上限が効く
        return self.build_task_query(project, filters).count()

    def count_overdue(self, project: Project) -> int:
        return self.overdue_query(project).count()

    def count_all(self, project: Project) -> int:
        return self.db.query(Task).filter(Task.project_id == project.id).count()

    def recent_tasks(self, project: Project, limit: int = 20) -> List[Task]:
        return (
            self.db.query(Task)
            .filter(Task.project_id == project.id)
            .order_by(Task.updated_at.desc(), Task.id.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # スナップショット
    # ------------------------------------------------------------------
    def build_snapshot(self, project: Project) -> ProjectSnapshot:
        by_status = {status: 0 for status in TASK_STATUSES}
        for status, count in (
            self.db.query(Task.status, func.count(Task.id))
            .filter(Task.project_id == project.id)
            .group_by(Task.status)
            .all()
        ):
            by_status[status] = count

        by_priority = {priority: 0 for priority in TASK_PRIORITIES}
        for priority, count in (
            self.db.query(Task.priority, func.count(Task.id))
            .filter(Task.project_id == project.id)
            .group_by(Task.priority)
            .all()
        ):
            by_priority[priority] = count

        return ProjectSnapshot(
            total=sum(by_status.values()),
            by_status=by_status,
            by_priority=by_priority,
            overdue=self.count_overdue(project),
        )
