"""
プラン正規化

決定的コンパイラの出力と LLM が返した JSON の両方が、この1つの関数を通る。
"""

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .aliases import resolve_priority, resolve_status
from .entity_resolver import normalize_assignee_hint, parse_relative_date
from .plan_schema import (
    CommandPlan,
    PlanType,
    TaskChanges,
    TaskFilters,
    TaskPayload,
    TaskSelector,
)

logger = logging.getLogger("command_assistant.PlanNormalizer")

MIN_GENERATION_COUNT = 1
MAX_GENERATION_COUNT = 10
DEFAULT_GENERATION_COUNT = 3

# ハイフン・アンダースコアを除いた小文字表記 → 正規種別
TYPE_ALIASES: Dict[str, PlanType] = {
    "createtask": PlanType.CREATE_TASK,
    "newtask": PlanType.CREATE_TASK,
    "addtask": PlanType.CREATE_TASK,
    "create": PlanType.CREATE_TASK,
    "taskupdate": PlanType.TASK_UPDATE,
    "updatetask": PlanType.TASK_UPDATE,
    "edittask": PlanType.TASK_UPDATE,
    "movetask": PlanType.TASK_UPDATE,
    "update": PlanType.TASK_UPDATE,
    "taskdelete": PlanType.TASK_DELETE,
    "deletetask": PlanType.TASK_DELETE,
    "removetask": PlanType.TASK_DELETE,
    "delete": PlanType.TASK_DELETE,
    "bulkupdate": PlanType.BULK_UPDATE,
    "massupdate": PlanType.BULK_UPDATE,
    "bulkassign": PlanType.BULK_ASSIGN,
    "assignall": PlanType.BULK_ASSIGN,
    "assign": PlanType.BULK_ASSIGN,
    "bulkdelete": PlanType.BULK_DELETE,
    "deletefiltered": PlanType.BULK_DELETE,
    "bulkdeleteoverdue": PlanType.BULK_DELETE_OVERDUE,
    "deleteoverdue": PlanType.BULK_DELETE_OVERDUE,
    "bulkdeleteall": PlanType.BULK_DELETE_ALL,
    "deleteall": PlanType.BULK_DELETE_ALL,
    "clearall": PlanType.BULK_DELETE_ALL,
    "bulktaskgeneration": PlanType.BULK_TASK_GENERATION,
    "generatetasks": PlanType.BULK_TASK_GENERATION,
    "bulkgenerate": PlanType.BULK_TASK_GENERATION,
}

_DATE_FIELDS = ("start_date", "end_date")
_FIELD_SYNONYMS = {
    "assignee": "assignee_hint",
    "due_date": "end_date",
    "deadline": "end_date",
    "due": "end_date",
    "mode": "_mode",
}

M = TypeVar("M", bound=BaseModel)


def normalize_type(value: Any) -> Optional[str]:
    """種別文字列を閉じた列挙に寄せる。未知の値はそのまま返す。"""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    canonical = PlanType.parse(text)
    if canonical is not None:
        return canonical.value
    key = re.sub(r"[\s_\-]+", "", text.lower())
    alias = TYPE_ALIASES.get(key)
    return alias.value if alias is not None else text


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    match = re.fullmatch(r"\s*#?\s*(-?\d+)\s*", str(value)) if value is not None else None
    return int(match.group(1)) if match else None


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0", ""):
            return False
    return None


def _normalize_fields(section: Any, methodology: str, today: Optional[date]) -> Optional[Dict[str, Any]]:
    """changes / payload / updates に共通の正規化"""
    if not isinstance(section, dict):
        return None
    fields: Dict[str, Any] = {}
    for key, value in section.items():
        fields[_FIELD_SYNONYMS.get(key, key)] = value

    if "status" in fields:
        status = resolve_status(methodology, fields["status"]) if fields["status"] is not None else None
        if status is None:
            logger.info("Dropping unresolvable status %r", fields["status"])
            fields.pop("status")
        else:
            fields["status"] = status

    if "priority" in fields:
        priority = resolve_priority(fields["priority"]) if fields["priority"] is not None else None
        if priority is None:
            logger.info("Dropping unresolvable priority %r", fields["priority"])
            fields.pop("priority")
        else:
            fields["priority"] = priority

    for key in _DATE_FIELDS:
        if key in fields:
            parsed = parse_relative_date(fields[key], today=today)
            if parsed is None:
                fields.pop(key)
            else:
                fields[key] = parsed

    if "assignee_hint" in fields:
        hint = normalize_assignee_hint(fields["assignee_hint"])
        if hint is None:
            fields.pop("assignee_hint")
        else:
            fields["assignee_hint"] = hint

    for key in ("title", "description"):
        if isinstance(fields.get(key), str):
            fields[key] = fields[key].strip()

    if fields.get("_mode") not in ("replace_desc", "append_desc"):
        fields.pop("_mode", None)

    return fields


def _normalize_filters(section: Any, methodology: str) -> Optional[Dict[str, Any]]:
    if not isinstance(section, dict):
        return None
    filters: Dict[str, Any] = {}

    ids = section.get("ids")
    if ids is None and section.get("id") is not None:
        ids = [section.get("id")]
    if ids is not None:
        if not isinstance(ids, (list, tuple)):
            ids = [ids]
        coerced: List[int] = []
        for value in ids:
            task_id = _coerce_int(value)
            if task_id is not None and task_id > 0 and task_id not in coerced:
                coerced.append(task_id)
        if coerced:
            filters["ids"] = coerced

    if section.get("status") is not None:
        status = resolve_status(methodology, section["status"])
        if status is not None:
            filters["status"] = status
        else:
            logger.info("Dropping unresolvable status filter %r", section["status"])

    if section.get("priority") is not None:
        priority = resolve_priority(section["priority"])
        if priority is not None:
            filters["priority"] = priority
        else:
            logger.info("Dropping unresolvable priority filter %r", section["priority"])

    for key in ("overdue", "unassigned", "all"):
        flag = _coerce_bool(section.get(key))
        if flag:
            filters[key] = True

    hint = normalize_assignee_hint(section.get("assigned_to_hint"))
    # "high priority" などが担当者として誤捕捉されたものは捨てる
    if hint and "priority" not in hint.lower():
        filters["assigned_to_hint"] = hint

    limit = _coerce_int(section.get("limit"))
    if limit is not None and limit > 0:
        filters["limit"] = limit
    order = str(section.get("order") or "").strip().lower()
    if order in ("asc", "desc"):
        filters["order"] = order
    if section.get("order_by"):
        filters["order_by"] = str(section["order_by"]).strip().lower()

    # より狭い条件があれば all は落とす（件数の定義をクエリ1つに揃える）
    narrow_keys = ("ids", "status", "priority", "overdue", "unassigned", "assigned_to_hint")
    if any(key in filters for key in narrow_keys):
        filters.pop("all", None)

    return filters


def _build_part(model: Type[M], data: Optional[Dict[str, Any]], name: str) -> Optional[M]:
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Dropping invalid plan section '%s': %s", name, exc.errors())
        return None


def clamp_generation_count(value: Any) -> int:
    count = _coerce_int(value)
    if count is None:
        return DEFAULT_GENERATION_COUNT
    return max(MIN_GENERATION_COUNT, min(MAX_GENERATION_COUNT, count))


def normalize_plan(raw: Any, methodology: str, today: Optional[date] = None) -> CommandPlan:
    """
    生のプラン（dict / CommandPlan / それ以外）を正規化済み CommandPlan に変換する。

    Args:
        raw: コンパイラ出力または LLM 応答の JSON オブジェクト
        methodology: プロジェクトの開発手法（ステータスのフェーズ名解決に使う）
        today: 相対日付の基準日

    Returns:
        CommandPlan（解釈できない入力は type=None のプラン）
    """
    if isinstance(raw, CommandPlan):
        raw = raw.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(raw, dict) or not raw:
        return CommandPlan()

    plan_type = normalize_type(raw.get("type") or raw.get("action") or raw.get("name"))

    selector_data = raw.get("selector")
    if not isinstance(selector_data, dict):
        selector_data = {"id": raw.get("id")} if raw.get("id") is not None else None
    selector = None
    if selector_data is not None:
        selector = TaskSelector(id=_coerce_int(selector_data.get("id")))

    count = raw.get("count")
    if plan_type == PlanType.BULK_TASK_GENERATION.value:
        count = clamp_generation_count(count)
    else:
        count = _coerce_int(count)

    assignee = raw.get("assignee")
    if assignee is not None:
        assignee = normalize_assignee_hint(assignee)

    context = raw.get("context")
    full_message = raw.get("full_message")
    error = raw.get("_error")

    return CommandPlan(
        type=plan_type,
        selector=selector,
        payload=_build_part(TaskPayload, _normalize_fields(raw.get("payload"), methodology, today), "payload"),
        changes=_build_part(TaskChanges, _normalize_fields(raw.get("changes"), methodology, today), "changes"),
        filters=_build_part(TaskFilters, _normalize_filters(raw.get("filters"), methodology), "filters"),
        updates=_build_part(TaskChanges, _normalize_fields(raw.get("updates"), methodology, today), "updates"),
        assignee=assignee,
        count=count,
        context=str(context).strip() if context else None,
        full_message=str(full_message) if full_message is not None else None,
        error=str(error) if error else None,
    )
