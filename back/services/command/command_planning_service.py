"""
コマンド計画・実行サービス

発話 → プラン（コンパイラ or LLM 合成）→ 検証 →（無効なら1回だけ修復）→
プレビュー（ドライラン）または実行、という流れをまとめる。

状態遷移:
    COMPILED → VALIDATED
             → INVALID(reason) → REPAIRED → VALIDATED
                                          → INVALID(reason)
    いずれも最後に RESOLVED（プレビュー文 or 理由）になる。修復は最大1回。
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from models.project_base import Project
from ..base_service import BaseService
from ..task_generation_service import TaskGenerationService
from .command_executor import GENERIC_FAILURE_MESSAGE, CommandExecutor, TaskGenerator
from .llm_client import LLMJsonClient
from .plan_compiler import PlanCompiler
from .plan_normalizer import normalize_plan
from .plan_schema import ChatMessage, CommandPlan, ExecutionResult, PlanPreview
from .plan_synthesizer import PlanSynthesizer
from .plan_validator import PlanValidator
from .preview_renderer import PreviewRenderer
from .project_context import ProjectContextService
from .question_answerer import ProjectQuestionAnswerer


class PlanStage(str, Enum):
    """プラン解決の状態"""
    COMPILED = "compiled"
    VALIDATED = "validated"
    INVALID = "invalid"
    REPAIRED = "repaired"
    RESOLVED = "resolved"


@dataclass
class PlanningOutcome:
    stage: PlanStage
    plan: CommandPlan
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.stage == PlanStage.VALIDATED


HistoryInput = Optional[List[Union[ChatMessage, Dict[str, Any]]]]


class CommandPlanningService(BaseService):
    """自然言語コマンドのドライランと実行を提供するサービス"""

    def __init__(
        self,
        db: Session,
        current_user_id: Optional[int] = None,
        llm_client: Optional[LLMJsonClient] = None,
        task_generator: Optional[TaskGenerator] = None,
        default_model_provider: Optional[str] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        super().__init__(db, default_model_provider)
        self.context = ProjectContextService(db, current_user_id, today=today)
        self.llm_client = llm_client or LLMJsonClient(self.get_llm)
        if task_generator is None:
            task_generator = TaskGenerationService(
                db, llm_client=self.llm_client, default_model_provider=self.model_provider
            )
        self.compiler = PlanCompiler(self.context)
        self.synthesizer = PlanSynthesizer(self.context, self.llm_client, self.get_prompt)
        self.validator = PlanValidator(self.context)
        self.renderer = PreviewRenderer(self.context)
        self.executor = CommandExecutor(self.context, task_generator)
        self.answerer = ProjectQuestionAnswerer(self.context)

    # ------------------------------------------------------------------
    # ドライラン
    # ------------------------------------------------------------------
    def generate_plan(
        self,
        project: Project,
        message: str,
        history: HistoryInput = None,
        llm_plan: Optional[Dict[str, Any]] = None,
    ) -> PlanPreview:
        """
        発話からプランを作り、プレビュー文を返す（DB は変更しない）。
        情報系の質問にはその場で答える（command_data=None）。

        Args:
            project: 対象プロジェクト
            message: ユーザーの発話
            history: 直近の会話履歴
            llm_plan: 呼び出し側で事前に得た LLM プラン（あれば優先して検証する）

        Returns:
            PlanPreview。プランが無効なら command_data=None と理由の文
        """
        try:
            answer = self.answerer.answer(project, message)
            if answer is not None:
                return PlanPreview(preview_message=answer)

            outcome = self.resolve_plan(project, message, self._coerce_history(history), llm_plan)
            if not outcome.ok:
                return PlanPreview(preview_message=outcome.reason)

            methodology = self.context.methodology(project)
            preview = self.renderer.render(project, outcome.plan, methodology)
            self.logger.debug("Plan %s: %s", PlanStage.RESOLVED.value, outcome.plan.to_command_data())
            return PlanPreview(preview_message=preview, command_data=outcome.plan.to_command_data())
        except Exception:
            self.logger.exception("Plan generation failed (project=%s, message=%r)", project.id, message)
            return PlanPreview(preview_message=GENERIC_FAILURE_MESSAGE)

    def resolve_plan(
        self,
        project: Project,
        message: str,
        history: List[ChatMessage],
        llm_plan: Optional[Dict[str, Any]] = None,
    ) -> PlanningOutcome:
        methodology = self.context.methodology(project)
        today = self.context.today()

        # 事前計算済みの LLM プランは、検証を通る場合に限り採用する
        if isinstance(llm_plan, dict) and llm_plan.get("type"):
            candidate = normalize_plan(llm_plan, methodology, today=today)
            if self.validator.validate(project, candidate).ok:
                self.logger.debug("Plan %s from supplied LLM plan", PlanStage.VALIDATED.value)
                return PlanningOutcome(PlanStage.VALIDATED, candidate)

        plan = self.compiler.compile(project, message, history)
        if plan.type is None and not plan.error:
            plan = self.synthesizer.synthesize(project, message, history)
        self.logger.debug("Plan %s: %s", PlanStage.COMPILED.value, plan.to_command_data())

        if plan.error:
            return PlanningOutcome(PlanStage.INVALID, plan, plan.error)

        validation = self.validator.validate(project, plan)
        if validation.ok:
            return PlanningOutcome(PlanStage.VALIDATED, plan)
        self.logger.debug("Plan %s: %s", PlanStage.INVALID.value, validation.reason)

        repaired = self.synthesizer.repair(project, message, plan, validation.reason)
        if repaired.plan_type is None:
            # LLM が使えるプランを返さなかった場合は修復前の理由を返す
            return PlanningOutcome(PlanStage.INVALID, plan, validation.reason)
        self.logger.debug("Plan %s: %s", PlanStage.REPAIRED.value, repaired.to_command_data())

        repaired_validation = self.validator.validate(project, repaired)
        if repaired_validation.ok:
            return PlanningOutcome(PlanStage.VALIDATED, repaired)
        return PlanningOutcome(PlanStage.INVALID, repaired, repaired_validation.reason)

    # ------------------------------------------------------------------
    # 実行
    # ------------------------------------------------------------------
    def execute(self, project: Project, plan: Union[CommandPlan, Dict[str, Any]]) -> ExecutionResult:
        """
        プランを再検証してから実行する。検証に失敗したプランは一切変更を加えない。
        """
        try:
            plan = normalize_plan(plan, self.context.methodology(project), today=self.context.today())
            validation = self.validator.validate(project, plan)
        except Exception:
            self.logger.exception("Plan re-validation failed (project=%s)", project.id)
            return ExecutionResult(type="error", message=GENERIC_FAILURE_MESSAGE)

        if not validation.ok:
            return ExecutionResult(
                type="error",
                message=validation.reason,
                data=self.context.build_snapshot(project),
                meta={"intent": plan.type, "executed_plan": None},
            )
        result = self.executor.execute(project, plan)
        self.logger.info("Executed %s on project %s: %s", plan.type, project.id, result.message)
        return result

    @staticmethod
    def _coerce_history(history: HistoryInput) -> List[ChatMessage]:
        messages: List[ChatMessage] = []
        for entry in history or []:
            if isinstance(entry, ChatMessage):
                messages.append(entry)
            elif isinstance(entry, dict) and entry.get("content") is not None:
                messages.append(ChatMessage(role=str(entry.get("role", "user")), content=str(entry["content"])))
        return messages
