from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from database import get_db
from models.project_base import Project
from services.command.command_planning_service import CommandPlanningService
from services.command.llm_client import LLMJsonClient
from services.command.plan_schema import ChatMessage, ExecutionResult, PlanPreview

router = APIRouter()


class CommandPreviewRequest(BaseModel):
    message: str = Field(..., min_length=1, description="ユーザーの発話")
    history: List[ChatMessage] = Field(default_factory=list, description="直近の会話履歴")
    llm_plan: Optional[Dict[str, Any]] = Field(None, description="事前に得た LLM プラン（任意）")
    current_user_id: Optional[int] = Field(None, description="操作ユーザーID（'me' の解決に使う）")


class CommandExecuteRequest(BaseModel):
    plan: Dict[str, Any] = Field(..., description="プレビューで返された command_data")
    current_user_id: Optional[int] = Field(None, description="操作ユーザーID")


def get_llm_client() -> Optional[LLMJsonClient]:
    """None の場合はサービスが既定プロバイダのクライアントを作る（テストで差し替える）"""
    return None


def _get_project_or_404(db: Session, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project with id {project_id} not found")
    return project


@router.post("/project/{project_id}/command/preview", response_model=PlanPreview, summary="コマンドのドライラン")
def preview_command(
    project_id: int,
    request: CommandPreviewRequest,
    db: Session = Depends(get_db),
    llm_client: Optional[LLMJsonClient] = Depends(get_llm_client),
) -> PlanPreview:
    project = _get_project_or_404(db, project_id)
    service = CommandPlanningService(db, current_user_id=request.current_user_id, llm_client=llm_client)
    return service.generate_plan(project, request.message, request.history, request.llm_plan)


@router.post("/project/{project_id}/command/execute", response_model=ExecutionResult, summary="コマンドの実行")
def execute_command(
    project_id: int,
    request: CommandExecuteRequest,
    db: Session = Depends(get_db),
    llm_client: Optional[LLMJsonClient] = Depends(get_llm_client),
) -> ExecutionResult:
    project = _get_project_or_404(db, project_id)
    service = CommandPlanningService(db, current_user_id=request.current_user_id, llm_client=llm_client)
    return service.execute(project, request.plan)
