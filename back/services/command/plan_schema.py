"""
コマンドプランのスキーマ定義

プランは1ターンごとに生成される一時的な値オブジェクト。
コンパイラ / LLM 合成 → 検証 → プレビュー or 実行 の順に受け渡される。
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanType(str, Enum):
    """プラン種別（閉じた列挙）"""
    CREATE_TASK = "create_task"
    TASK_UPDATE = "task_update"
    TASK_DELETE = "task_delete"
    BULK_UPDATE = "bulk_update"
    BULK_ASSIGN = "bulk_assign"
    BULK_DELETE = "bulk_delete"
    BULK_DELETE_OVERDUE = "bulk_delete_overdue"
    BULK_DELETE_ALL = "bulk_delete_all"
    BULK_TASK_GENERATION = "bulk_task_generation"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["PlanType"]:
        try:
            return cls(value) if value is not None else None
        except ValueError:
            return None


# 一括操作（フィルタで対象を選ぶ）種別
FILTERED_PLAN_TYPES = (PlanType.BULK_UPDATE, PlanType.BULK_ASSIGN, PlanType.BULK_DELETE)

DescriptionMode = Literal["replace_desc", "append_desc"]


class ChatMessage(BaseModel):
    """会話履歴の1メッセージ"""
    role: str = Field(..., description="user / assistant / system")
    content: str = Field(..., description="メッセージ本文")


class _PlanPart(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TaskSelector(_PlanPart):
    id: Optional[int] = Field(None, description="対象タスクID")


class TaskPayload(_PlanPart):
    """create_task 用のペイロード"""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class TaskChanges(_PlanPart):
    """task_update の changes / bulk_update の updates"""
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_hint: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    mode: Optional[DescriptionMode] = Field(None, alias="_mode", description="説明文の置換/追記モード")

    def is_empty(self) -> bool:
        # _mode 単体では変更とみなさない
        return not self.model_dump(exclude_none=True, exclude={"mode"})


class TaskFilters(_PlanPart):
    """一括操作の対象タスク集合"""
    ids: Optional[List[int]] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    overdue: Optional[bool] = None
    unassigned: Optional[bool] = None
    assigned_to_hint: Optional[str] = None
    all: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)
    order_by: Optional[str] = None
    order: Optional[Literal["asc", "desc"]] = None

    def has_selector(self) -> bool:
        """順序指定（limit/order_by/order）以外の絞り込み条件があるか"""
        return any([
            self.ids, self.status, self.priority, self.overdue,
            self.unassigned, self.assigned_to_hint, self.all,
        ])

    def has_narrow_selector(self) -> bool:
        """all 以外の絞り込み条件があるか"""
        return any([
            self.ids, self.status, self.priority, self.overdue,
            self.unassigned, self.assigned_to_hint,
        ])


class CommandPlan(BaseModel):
    """
    コマンドプラン

    type は未知の値も保持する（検証時に "Unsupported command type." として弾くため）。
    error はコンパイラが回復不能と判断した入力に付与するメッセージ。
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: Optional[str] = None
    selector: Optional[TaskSelector] = None
    payload: Optional[TaskPayload] = None
    changes: Optional[TaskChanges] = None
    filters: Optional[TaskFilters] = None
    updates: Optional[TaskChanges] = None
    assignee: Optional[str] = None
    count: Optional[int] = None
    context: Optional[str] = None
    full_message: Optional[str] = None
    error: Optional[str] = Field(None, alias="_error")

    @property
    def plan_type(self) -> Optional[PlanType]:
        return PlanType.parse(self.type)

    def to_command_data(self) -> Dict[str, Any]:
        """クライアントへ返す（そのまま実行APIへ戻せる）JSON 形式"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ValidationResult(BaseModel):
    ok: bool
    reason: str = ""


class PlanPreview(BaseModel):
    """ドライラン結果"""
    preview_message: str
    command_data: Optional[Dict[str, Any]] = None


class ProjectSnapshot(BaseModel):
    """実行後のプロジェクト状態"""
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    overdue: int = 0


class ExecutionResult(BaseModel):
    """実行結果"""
    type: Literal["information", "error"] = "information"
    message: str
    data: Optional[ProjectSnapshot] = None
    requires_confirmation: bool = False
    meta: Dict[str, Any] = Field(default_factory=dict)
