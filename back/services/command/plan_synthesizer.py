"""
LLM によるプラン合成（決定的コンパイラのフォールバック）と、無効プランの修復
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from models.project_base import Project
from .aliases import phase_labels
from .llm_client import LLMJsonClient
from .plan_normalizer import normalize_plan
from .plan_schema import ChatMessage, CommandPlan
from .project_context import ProjectContextService

logger = logging.getLogger("command_assistant.PlanSynthesizer")

SYNTHESIS_TEMPERATURE = 0.1
REPAIR_TEMPERATURE = 0.2
RECENT_TASK_LIMIT = 20
HISTORY_CONTEXT_LIMIT = 6


class PlanSynthesizer:
    def __init__(
        self,
        context: ProjectContextService,
        llm_client: LLMJsonClient,
        get_prompt: Callable[[str, str], str],
    ):
        self.context = context
        self.llm_client = llm_client
        self.get_prompt = get_prompt

    def build_system_prompt(self, project: Project) -> str:
        methodology = self.context.methodology(project)
        prompt = self.get_prompt("command_planner", "system").format(
            methodology=methodology,
            phase_labels=", ".join(f'"{label}"' for label in phase_labels(methodology)),
            today=self.context.today().isoformat(),
        )
        tasks = self.context.recent_tasks(project, limit=RECENT_TASK_LIMIT)
        if tasks:
            lines = [f"#{task.id}: {task.title} ({task.status}, {task.priority})" for task in tasks]
            header = self.get_prompt("command_planner", "recent_tasks_header")
            prompt = f"{prompt.rstrip()}\n\n{header}\n" + "\n".join(lines)
        return prompt

    def _user_turn(self, message: str) -> ChatMessage:
        instruction = self.get_prompt("command_planner", "user_instruction")
        return ChatMessage(role="user", content=f"{instruction}\n{message}")

    def synthesize(
        self,
        project: Project,
        message: str,
        history: Optional[List[ChatMessage]] = None,
    ) -> CommandPlan:
        """
        LLM にプランを生成させる。失敗時は type=None のプランを返す（例外は投げない）。
        """
        messages: List[ChatMessage] = [ChatMessage(role="system", content=self.build_system_prompt(project))]
        for entry in (history or [])[-HISTORY_CONTEXT_LIMIT:]:
            if entry.role in ("user", "assistant") and entry.content:
                messages.append(ChatMessage(role=entry.role, content=entry.content))
        messages.append(self._user_turn(message))

        raw = self.llm_client.chat_json(messages, temperature=SYNTHESIS_TEMPERATURE)
        if not raw:
            logger.info("Synthesizer produced no plan for message: %r", message)
            return CommandPlan()
        return self._to_plan(project, raw)

    def repair(
        self,
        project: Project,
        message: str,
        invalid_plan: CommandPlan,
        reason: str,
    ) -> CommandPlan:
        """
        検証で弾かれたプランと理由を添えて、LLM に1回だけ修正させる。
        """
        system = self.build_system_prompt(project) + self.get_prompt("command_planner", "repair_suffix").format(
            reason=reason
        )
        messages = [
            ChatMessage(role="system", content=system),
            ChatMessage(role="assistant", content=json.dumps(invalid_plan.to_command_data(), ensure_ascii=False)),
            ChatMessage(role="user", content=message),
        ]
        raw = self.llm_client.chat_json(messages, temperature=REPAIR_TEMPERATURE)
        if not raw:
            logger.info("Repair produced no plan (reason=%r)", reason)
            return CommandPlan()
        return self._to_plan(project, raw)

    def _to_plan(self, project: Project, raw: Dict[str, Any]) -> CommandPlan:
        # 形の崩れた LLM 出力は type=None として次の手段に回す
        try:
            return normalize_plan(raw, self.context.methodology(project), today=self.context.today())
        except ValidationError:
            logger.warning("Discarding malformed LLM plan: %r", raw, exc_info=True)
            return CommandPlan()
