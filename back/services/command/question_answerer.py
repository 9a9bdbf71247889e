"""
情報系の質問への決定的な応答

「今週の進捗」「何件ある？」「期限切れは？」「オーナーは誰？」などの質問に、
DB のスナップショットから直接答える。ここで答えた発話はプラン化しない
（command_data=None）。答えられない発話は None を返し、コマンドの
パイプラインへ回す。
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from html import escape
from typing import Callable, Optional, Tuple

from models.project_base import OPEN_TASK_STATUSES, Project, Task, User
from .aliases import extract_status_from_text, phase_label, resolve_priority
from .preview_renderer import pluralize
from .project_context import ProjectContextService

logger = logging.getLogger("command_assistant.QuestionAnswerer")

LIST_LIMIT = 10
DUE_SOON_DAYS = 7

_PROGRESS_RE = re.compile(
    r"\b(?:weekly\s+(?:progress|report|summary|update|status)|progress\s+(?:this|for\s+the|of\s+the)\s+week)\b"
)
# 変更系の動詞を含む発話は質問として扱わない（"delete overdue tasks" など）
_MUTATION_VERB_RE = re.compile(
    r"\b(?:create|add|make|generate|delete|remove|destroy|purge|erase|drop|clear|move|set|mark|change|"
    r"update|edit|assign|reassign|unassign|rename|retitle|put|reopen|push|extend|bump|raise|lower)\b"
)
_HELP_RE = re.compile(
    r"^\s*(?:help|commands|\?)\s*[.!?]*\s*$|\bwhat\s+can\s+(?:you|i)\s+(?:do|ask)\b|\bhow\s+do\s+i\s+use\b"
)
_COUNT_RE = re.compile(r"\bhow\s+many\s+(?:[a-z]+\s+){0,2}tasks?\b")
_COUNT_ASSIGNED_RE = re.compile(
    r"\bhow\s+many\s+tasks?\s+(?:(?:are\s+)?(?:assigned\s+to|for)|does)\s+([a-z0-9._@\-' ]+?)(?:\s+have)?\s*[?.!]*$"
)
_TASK_ASSIGNEE_RE = re.compile(r"\bwho\s+(?:is\s+)?(?:assigned\s+to|working\s+on)\s+(?:task\s+)?#?(\d+)\b")
_TASK_CREATOR_RE = re.compile(r"\bwho\s+created\s+(?:task\s+)?#?(\d+)\b")
_DUE_PERIOD_RE = re.compile(r"\btasks?\s+(?:are\s+)?due\s+(today|tomorrow|this\s+week|next\s+week)\b")
_OVERDUE_LIST_RE = re.compile(
    r"^\s*(?:show|list|what|which|give|get|any)\b.*\boverdue\b|\btasks?\s+(?:are\s+)?overdue\b|^\s*overdue(?:\s+tasks?)?\s*[?.!]*\s*$"
)
_MEMBERS_RE = re.compile(
    r"\b(?:who|which)\s+(?:are\s+)?(?:the\s+)?(?:team\s+)?members?\b|\bteam\s+(?:members?|size)\b|\bwho\s+is\s+on\s+(?:the\s+)?team\b"
)
_OWNER_RE = re.compile(r"\bwho\b.*\b(?:owner|owns|manages?)\b")


def there_are(count: int, noun_phrase: str) -> str:
    """"There is 1 task ..." / "There are 3 tasks ..." """
    verb = "is" if count == 1 else "are"
    return f"There {verb} {pluralize(count, noun_phrase)}"


def _user_label(user: Optional[User], with_email: bool = False) -> str:
    if user is None:
        return "Unassigned"
    name = escape(user.name or f"User #{user.id}")
    if with_email and user.email:
        return f"{name} ({escape(user.email)})"
    return name


@dataclass(frozen=True)
class AnswerRule:
    name: str
    handler: Callable[["ProjectQuestionAnswerer", Project, str], Optional[str]]


class ProjectQuestionAnswerer:
    """プロジェクトのタスク・メンバー情報に関する質問に答える"""

    def __init__(self, context: ProjectContextService):
        self.context = context
        self.db = context.db

    def answer(self, project: Project, message: str) -> Optional[str]:
        """
        Args:
            project: 対象プロジェクト
            message: ユーザーの発話

        Returns:
            応答文。質問として扱えない発話は None
        """
        text = re.sub(r"\s+", " ", (message or "").strip().lower())
        if not text:
            return None
        if _PROGRESS_RE.search(text):
            return self.progress_report(project)
        if _MUTATION_VERB_RE.search(text):
            return None
        for rule in ANSWER_RULES:
            answer = rule.handler(self, project, text)
            if answer is not None:
                logger.debug("Answer rule '%s' matched: %r", rule.name, message)
                return answer
        return None

    # ------------------------------------------------------------------
    # 進捗
    # ------------------------------------------------------------------
    def progress_report(self, project: Project) -> str:
        """今週の進捗サマリ（スナップショットから組み立てる）"""
        snapshot = self.context.build_snapshot(project)
        methodology = self.context.methodology(project)
        today = self.context.today()
        due_soon = (
            self._open_tasks(project)
            .filter(
                Task.end_date.isnot(None),
                Task.end_date >= today,
                Task.end_date <= today + timedelta(days=DUE_SOON_DAYS),
            )
            .count()
        )
        done = snapshot.by_status.get("done", 0)
        breakdown = ", ".join(
            f"{phase_label(methodology, status)}: {count}" for status, count in snapshot.by_status.items()
        )
        return (
            f"📊 Weekly progress: {done} of {snapshot.total} tasks done ({breakdown}). "
            f"{snapshot.overdue} overdue, {due_soon} due in the next {DUE_SOON_DAYS} days."
        )

    # ------------------------------------------------------------------
    # ルール（ANSWER_RULES の順に評価される）
    # ------------------------------------------------------------------
    def rule_help(self, project: Project, text: str) -> Optional[str]:
        if not _HELP_RE.search(text):
            return None
        methodology = self.context.methodology(project)
        done = phase_label(methodology, "done")
        review = phase_label(methodology, "review")
        lines = [
            "🤖 Project Assistant Help",
            "",
            "📋 Task commands:",
            '• Create task "Fix login bug"',
            f"• Move #42 to {done}",
            "• Set priority of #42 to high",
            "• Assign #42 to Alex",
            "• Delete task #42",
            f"• Move all high priority tasks to {review}",
            "• Assign all unassigned tasks to me",
            "• Delete all overdue tasks",
            "• Generate 5 tasks for onboarding",
            "",
            "📊 Questions:",
            f"• How many tasks are {done}?",
            "• Which tasks are overdue?",
            "• Tasks due this week",
            "• Who is assigned to #42?",
            "• Who are the team members?",
            "• Who is the project owner?",
            "• Weekly progress",
            "",
            "💡 Use # followed by a task ID, and refer to teammates by name or email.",
        ]
        return "\n".join(lines)

    def rule_task_assignee(self, project: Project, text: str) -> Optional[str]:
        match = _TASK_ASSIGNEE_RE.search(text)
        if not match:
            return None
        task_id = int(match.group(1))
        task = self.context.find_task(project, task_id)
        if task is None:
            return f"Task #{task_id} not found in this project."
        title = escape(task.title)
        if task.assignee is None:
            return f'Task #{task_id} "{title}" is currently unassigned.'
        return f'Task #{task_id} "{title}" is assigned to {_user_label(task.assignee, with_email=True)}.'

    def rule_task_creator(self, project: Project, text: str) -> Optional[str]:
        match = _TASK_CREATOR_RE.search(text)
        if not match:
            return None
        task_id = int(match.group(1))
        task = self.context.find_task(project, task_id)
        if task is None:
            return f"Task #{task_id} not found in this project."
        title = escape(task.title)
        if task.creator is None:
            return f'Task #{task_id} "{title}" has no recorded creator.'
        created = task.created_at.strftime("%b %d, %Y") if task.created_at else "an unknown date"
        return f'Task #{task_id} "{title}" was created by {_user_label(task.creator)} on {created}.'

    def rule_count(self, project: Project, text: str) -> Optional[str]:
        if not _COUNT_RE.search(text):
            return None
        query = self.db.query(Task).filter(Task.project_id == project.id)

        match = _COUNT_ASSIGNED_RE.search(text)
        if match:
            hint = match.group(1).strip()
            user_id = self.context.resolve_assignee(project, hint)
            if user_id is None:
                return f"Assignee '{escape(hint)}' could not be determined."
            count = query.filter(Task.assignee_id == user_id).count()
            return f"{there_are(count, 'task')} assigned to {_user_label(self.db.get(User, user_id))}."

        if re.search(r"\boverdue\b|\bpast\s+due\b", text):
            return f"{there_are(self.context.count_overdue(project), 'overdue task')}."
        if re.search(r"\bunassigned\b", text):
            return f"{there_are(query.filter(Task.assignee_id.is_(None)).count(), 'unassigned task')}."

        methodology = self.context.methodology(project)
        status = extract_status_from_text(methodology, text)
        if status:
            count = query.filter(Task.status == status).count()
            return f"{there_are(count, 'task')} in {phase_label(methodology, status)}."

        match = re.search(r"\b(low|medium|high|urgent|critical|blocker|p[0-3])\b", text)
        if match:
            priority = resolve_priority(match.group(1))
            count = query.filter(Task.priority == priority).count()
            return f"{there_are(count, f'{priority} priority task')}."

        return f"Total tasks in project: {query.count()}."

    def rule_due_period(self, project: Project, text: str) -> Optional[str]:
        match = _DUE_PERIOD_RE.search(text)
        if not match:
            return None
        period = re.sub(r"\s+", " ", match.group(1))
        start, end = self._period_range(period)
        tasks = (
            self.db.query(Task)
            .filter(
                Task.project_id == project.id,
                Task.end_date.isnot(None),
                Task.end_date >= start,
                Task.end_date <= end,
            )
            .order_by(Task.end_date.asc(), Task.id.asc())
            .all()
        )
        if not tasks:
            return f"No tasks due {period}."
        methodology = self.context.methodology(project)
        lines = [f"📅 {pluralize(len(tasks))} due {period}:"]
        for task in tasks[:LIST_LIMIT]:
            lines.append(
                f"• #{task.id}: {escape(task.title)} (due {task.end_date.strftime('%b %d')}, "
                f"{phase_label(methodology, task.status)}, {_user_label(task.assignee)})"
            )
        return self._with_more("\n".join(lines), len(tasks))

    def rule_overdue_list(self, project: Project, text: str) -> Optional[str]:
        if not _OVERDUE_LIST_RE.search(text):
            return None
        tasks = self.context.overdue_query(project).all()
        if not tasks:
            return "No overdue tasks found."
        methodology = self.context.methodology(project)
        today = self.context.today()
        lines = [f"⚠️ {pluralize(len(tasks), 'overdue task')}:"]
        for task in sorted(tasks, key=lambda t: (t.end_date, t.id))[:LIST_LIMIT]:
            days = (today - task.end_date).days
            lines.append(
                f"• #{task.id}: {escape(task.title)} ({pluralize(days, 'day')} overdue, "
                f"{phase_label(methodology, task.status)}, {_user_label(task.assignee)})"
            )
        return self._with_more("\n".join(lines), len(tasks))

    def rule_members(self, project: Project, text: str) -> Optional[str]:
        if not _MEMBERS_RE.search(text):
            return None
        users = self.context.project_members(project)
        if not users:
            return "This project has no listed members."
        lines = ["👥 Team members:"]
        for user in users:
            suffix = " (owner)" if user.id == project.user_id else ""
            lines.append(f"• {_user_label(user, with_email=True)}{suffix}")
        return "\n".join(lines)

    def rule_owner(self, project: Project, text: str) -> Optional[str]:
        if not _OWNER_RE.search(text):
            return None
        owner = self.context.project_owner(project)
        if owner is None:
            return "This project has no recorded owner."
        return f"Project owner: {_user_label(owner, with_email=True)}"

    # ------------------------------------------------------------------
    # 補助
    # ------------------------------------------------------------------
    def _open_tasks(self, project: Project):
        return self.db.query(Task).filter(Task.project_id == project.id, Task.status.in_(OPEN_TASK_STATUSES))

    def _period_range(self, period: str) -> Tuple[date, date]:
        today = self.context.today()
        week_start = today - timedelta(days=today.weekday())
        if period == "today":
            return today, today
        if period == "tomorrow":
            tomorrow = today + timedelta(days=1)
            return tomorrow, tomorrow
        if period == "next week":
            week_start += timedelta(days=7)
        return week_start, week_start + timedelta(days=6)

    @staticmethod
    def _with_more(body: str, total: int) -> str:
        if total > LIST_LIMIT:
            return f"{body}\n… and {total - LIST_LIMIT} more."
        return body


# 評価順 = 解釈の優先順位
ANSWER_RULES: Tuple[AnswerRule, ...] = (
    AnswerRule("help", ProjectQuestionAnswerer.rule_help),
    AnswerRule("task_assignee", ProjectQuestionAnswerer.rule_task_assignee),
    AnswerRule("task_creator", ProjectQuestionAnswerer.rule_task_creator),
    AnswerRule("count", ProjectQuestionAnswerer.rule_count),
    AnswerRule("due_period", ProjectQuestionAnswerer.rule_due_period),
    AnswerRule("overdue_list", ProjectQuestionAnswerer.rule_overdue_list),
    AnswerRule("members", ProjectQuestionAnswerer.rule_members),
    AnswerRule("owner", ProjectQuestionAnswerer.rule_owner),
)
