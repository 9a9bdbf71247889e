"""
AI によるタスク一括生成サービス
プロジェクトの既存タスクを踏まえて、依頼内容に沿ったタスク案を生成する
"""
from datetime import date
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .base_service import BaseService
from .command.aliases import resolve_priority
from .command.entity_resolver import parse_relative_date
from .command.exceptions import TaskGenerationError
from .command.llm_client import LLMJsonClient
from .command.plan_normalizer import clamp_generation_count
from .command.plan_schema import ChatMessage
from .command.project_context import ProjectContextService
from models.project_base import Project

GENERATION_TEMPERATURE = 0.7
MAX_TITLE_LENGTH = 100
EXISTING_TASK_CONTEXT = 30


class GeneratedTask(BaseModel):
    """生成されたタスク案"""
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH, description="タスク名")
    description: Optional[str] = Field(None, description="タスクの説明")
    priority: str = Field("medium", description="low / medium / high / urgent")
    start_date: Optional[date] = Field(None, description="開始日")
    end_date: Optional[date] = Field(None, description="期限日")


class TaskGenerationService(BaseService):
    """依頼文からタスク案を生成するサービス"""

    def __init__(
        self,
        db: Session,
        llm_client: Optional[LLMJsonClient] = None,
        default_model_provider: Optional[str] = None,
    ):
        super().__init__(db, default_model_provider)
        self.llm_client = llm_client or LLMJsonClient(self.get_llm)
        self.context = ProjectContextService(db)

    def generate_tasks(self, project: Project, count: int, context: Optional[str]) -> List[GeneratedTask]:
        """
        タスク案を生成する（DB保存はしない）

        Args:
            project: 対象プロジェクト
            count: 生成数（1〜10 に丸める）
            context: 依頼内容（"onboarding flow" など）

        Returns:
            タスク案のリスト（最大 count 件）

        Raises:
            TaskGenerationError: LLM から利用可能なタスクが得られなかった場合
        """
        count = clamp_generation_count(count)
        existing = self.context.recent_tasks(project, limit=EXISTING_TASK_CONTEXT)
        existing_titles = [task.title for task in existing]

        messages = self._build_messages(project, count, context, existing_titles)
        raw = self.llm_client.chat_json(messages, temperature=GENERATION_TEMPERATURE)
        if not raw:
            self.logger.warning("Task generation returned no JSON (project=%s)", project.id)
            raise TaskGenerationError()

        tasks = self._convert_to_generated_tasks(raw, existing_titles, count)
        if not tasks:
            self.logger.warning("Task generation returned no usable tasks (project=%s)", project.id)
            raise TaskGenerationError()

        self.logger.info("Generated %d task drafts (project=%s, requested=%d)", len(tasks), project.id, count)
        return tasks

    def _build_messages(
        self,
        project: Project,
        count: int,
        context: Optional[str],
        existing_titles: List[str],
    ) -> List[ChatMessage]:
        existing_block = "\n".join(f"- {title}" for title in existing_titles) or "(none)"
        user_prompt = self.get_prompt("task_generation", "user").format(
            project_name=project.name,
            methodology=self.context.methodology(project),
            today=self.context.today().isoformat(),
            existing_tasks=existing_block,
            context=context or "General next steps for this project",
            count=count,
        )
        return [
            ChatMessage(role="system", content=self.get_prompt("task_generation", "system")),
            ChatMessage(role="user", content=user_prompt),
        ]

    def _convert_to_generated_tasks(
        self,
        raw: Dict[str, Any],
        existing_titles: List[str],
        count: int,
    ) -> List[GeneratedTask]:
        """LLM 応答をタスク案に変換する（タイトルなし・重複は除外）"""
        items = raw.get("tasks")
        if not isinstance(items, list):
            items = [raw] if raw.get("title") else []

        seen: Set[str] = {title.strip().lower() for title in existing_titles}
        tasks: List[GeneratedTask] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            title = str(item.get("title") or "").strip()[:MAX_TITLE_LENGTH].strip()
            if not title or title.lower() in seen:
                continue
            seen.add(title.lower())

            description = item.get("description")
            tasks.append(GeneratedTask(
                title=title,
                description=str(description).strip() if description else None,
                priority=resolve_priority(item.get("priority")) or "medium",
                start_date=parse_relative_date(item.get("start_date")),
                end_date=parse_relative_date(item.get("end_date")),
            ))
            if len(tasks) >= count:
                break
        return tasks
