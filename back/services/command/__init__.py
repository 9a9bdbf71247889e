"""
自然言語コマンドモジュール

発話をタスク操作プランに変換し、検証・プレビュー・実行を行う。
パイプライン全体（CommandPlanningService）は command_planning_service から直接 import する。
"""

from .command_executor import CommandExecutor
from .exceptions import CommandError, TaskGenerationError, TaskNotFoundError, UnresolvableReferenceError
from .llm_client import LLMJsonClient, parse_json_object
from .plan_compiler import PlanCompiler
from .plan_normalizer import normalize_plan
from .plan_schema import (
    ChatMessage,
    CommandPlan,
    ExecutionResult,
    PlanPreview,
    PlanType,
    ProjectSnapshot,
    TaskChanges,
    TaskFilters,
    TaskPayload,
    TaskSelector,
    ValidationResult,
)
from .plan_synthesizer import PlanSynthesizer
from .plan_validator import PlanValidator
from .preview_renderer import PreviewRenderer
from .project_context import ProjectContextService
from .question_answerer import ProjectQuestionAnswerer

__all__ = [
    "CommandExecutor",
    "CommandError",
    "TaskGenerationError",
    "TaskNotFoundError",
    "UnresolvableReferenceError",
    "LLMJsonClient",
    "parse_json_object",
    "PlanCompiler",
    "normalize_plan",
    "ChatMessage",
    "CommandPlan",
    "ExecutionResult",
    "PlanPreview",
    "PlanType",
    "ProjectSnapshot",
    "TaskChanges",
    "TaskFilters",
    "TaskPayload",
    "TaskSelector",
    "ValidationResult",
    "PlanSynthesizer",
    "PlanValidator",
    "PreviewRenderer",
    "ProjectContextService",
    "ProjectQuestionAnswerer",
]
