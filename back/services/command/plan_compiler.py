"""
決定的プランコンパイラ

発話を優先順位付きのルール列（CompileRule）に順番に通し、最初に一致した
ルールの出力（生の dict）を共通正規化に掛けて CommandPlan を返す。
どのルールにも一致しなければ type=None のプランを返し、呼び出し側が
LLM 合成（PlanSynthesizer）へ回す。
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from models.project_base import Project
from .aliases import extract_status_from_text, resolve_priority, resolve_status
from .entity_resolver import (
    ME_HINT,
    ORDINAL_WINDOW_RE,
    OWNER_HINT,
    normalize_assignee_hint,
    parse_date_phrase,
    parse_ordinal_window,
    parse_relative_date,
)
from .plan_normalizer import MAX_GENERATION_COUNT, MIN_GENERATION_COUNT, normalize_plan
from .plan_schema import ChatMessage, CommandPlan, PlanType
from .project_context import ProjectContextService

logger = logging.getLogger("command_assistant.PlanCompiler")

PRIORITY_TOKEN = r"(low|medium|high|urgent|critical|blocker|normal|moderate|lowest|highest|p[0-3])"

_PRONOUN_RE = re.compile(r"\b(?:them|these|those)\b")
_QUOTED_RE = re.compile(r"\"[^\"]*\"|“[^”]*”|(?<!\w)'[^']*'(?!\w)")
_MONTH_RE = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|jul(?:y)?|aug(?:ust)?|"
    r"sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\s*$"
)
# 捕捉した担当者・ステータス断片の後ろに続く語で切る
_FRAGMENT_CUT_RE = re.compile(
    r"\s+(?:and|with|then|please|now|for|on|by|from|priority|to|as|into)\b|[,;.!?]"
)
_HINT_CUT_RE = re.compile(r"\s+(?:and|with|then|please|now|for|on|by|from|instead)\b|[,;.!?]")
# ステータス解析の前に塗りつぶす担当者フィルタ（"assigned to bob"）
_ASSIGNED_TO_RE = re.compile(r"\bassigned\s+to\s+@?[a-z0-9._@\-]+")

# "for X" を担当者とみなさない語
_HINT_STOPWORDS = {
    "a", "an", "the", "all", "every", "each", "any", "task", "tasks", "overdue",
    "unassigned", "them", "these", "those", "it", "this", "that", "next", "now",
    "project", "sprint", "week", "everyone",
}

_ORDINAL_STAGES = {"first": "todo", "second": "inprogress", "third": "review", "fourth": "done", "last": "done"}

_BULK_GENERATION_PATTERNS = (
    re.compile(r"\b(?:create|generate|make|add)\s+(\d+|several|multiple|some)\s+(?:new\s+)?tasks?\b"),
    re.compile(r"\b(?:create|generate|make|add)\s+(?:a\s+)?(?:bunch\s+of|lot\s+of|few)\s+(?:new\s+)?tasks?\b"),
    re.compile(r"\b(?:create|generate|make)\s+tasks?\s+for\b"),
    re.compile(r"\b(?:generate|create)\s+(?:new\s+)?tasks?\s*$"),
)

_CREATE_TASK_RE = re.compile(
    r"(?:\b(?:create|add|make)\s+(?:a\s+)?(?:new\s+)?|^\s*new\s+)task\b\s*(?::\s*|called\s+|named\s+|titled\s+)?(.*?)\s*$",
    re.IGNORECASE | re.DOTALL,
)
_DELETE_VERB_RE = re.compile(r"\b(?:delete|remove|destroy|purge|drop|erase)\b")
# 「担当者を外す」「期限を消す」などはタスク削除ではない
_DELETE_FIELD_GUARD_RE = re.compile(
    r"\b(?:remove|drop|erase)\b.*\b(?:assignee|due date|deadline|end date|start date|description)\b"
    r"|\bdrop\b.*\bpriority\b.*\bto\b"
)


# =====================================================================
# 入力・ルール定義
# =====================================================================
@dataclass
class CompileInput:
    """1回のコンパイルで各ルールが共有する入力"""
    project: Project
    message: str                      # 原文（前後の空白を除去）
    lowered: str                      # 小文字化した原文
    unquoted: str                     # 引用部分を空白で塗りつぶした小文字文
    methodology: str
    today: date
    history: List[ChatMessage] = field(default_factory=list)

    def original(self, start: int, end: int) -> str:
        """小文字文上の位置から原文の大文字小文字を保った断片を取り出す"""
        if len(self.message) == len(self.lowered):
            return self.message[start:end]
        return self.lowered[start:end]


@dataclass(frozen=True)
class CompileRule:
    name: str
    handler: Callable[["PlanCompiler", CompileInput], Optional[Dict[str, Any]]]


def strip_quoted(text: str) -> str:
    """引用部分を同じ長さの空白に置き換える（位置を保ったまま判定対象から外す）"""
    return _QUOTED_RE.sub(lambda m: " " * len(m.group(0)), text)


def mask_assignee_filter(text: str) -> str:
    """"assigned to X" の部分を同じ長さの空白に置き換える"""
    return _ASSIGNED_TO_RE.sub(lambda m: " " * len(m.group(0)), text)


def has_pronoun_reference(text: str) -> bool:
    return bool(_PRONOUN_RE.search(text))


def find_hash_ids(text: str) -> List[int]:
    ids: List[int] = []
    for value in re.findall(r"#(\d+)\b", text):
        task_id = int(value)
        if task_id not in ids:
            ids.append(task_id)
    return ids


def find_task_id(text: str) -> Optional[int]:
    """
    明示的なタスクIDを探す。

    "#12" → "task 12" / "id 12" → 単独の数字 の順。日付・序数ウィンドウ・
    "3 tasks" や "2 days" のような数量表現の数字は対象外。
    """
    match = re.search(r"#(\d+)\b", text)
    if match:
        return int(match.group(1))
    match = re.search(r"\b(?:task|id)\s+(?:id\s+)?#?(\d+)\b(?!\s*(?:tasks?|days?|weeks?)\b)", text)
    if match:
        return int(match.group(1))

    cleaned = ORDINAL_WINDOW_RE.sub(lambda m: " " * len(m.group(0)), text)
    cleaned = re.sub(
        r"\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/.]\d{1,2}(?:[/.]\d{2,4})?",
        lambda m: " " * len(m.group(0)),
        cleaned,
    )
    for match in re.finditer(r"(?<![\w+.\-/:])(\d+)(?![\w.\-/:])", cleaned):
        following = cleaned[match.end():]
        if re.match(r"\s*(?:tasks?|days?|weeks?|months?|years?|hours?|minutes?|%)\b|%", following):
            continue
        if _MONTH_RE.search(cleaned[:match.start()]):
            continue
        return int(match.group(1))
    return None


def _cut_fragment(fragment: str) -> str:
    return _FRAGMENT_CUT_RE.split(fragment, maxsplit=1)[0].strip()


def _status_from_fragment(methodology: str, fragment: str) -> Optional[str]:
    status = resolve_status(methodology, fragment.strip())
    if status:
        return status
    fragment = _cut_fragment(fragment)
    if not fragment:
        return None
    return resolve_status(methodology, fragment) or extract_status_from_text(methodology, fragment)


def _clean_hint(fragment: str) -> str:
    text = _HINT_CUT_RE.split(fragment, maxsplit=1)[0]
    text = re.sub(r"\s+tasks?$", "", text.strip())
    return text.strip().strip("\"'").strip()


def _first_date(candidates: Sequence[str], text: str, today: date) -> Optional[date]:
    for pattern in candidates:
        match = re.search(pattern, text)
        if match:
            parsed = parse_date_phrase(match.group(1), today=today)
            if parsed is not None:
                return parsed
    return None


_END_DATE_PATTERNS = (
    r"\b(?:due(?:\s+date)?|deadline|end\s+date)\s+(?:is\s+|to\s+|on\s+|by\s+|at\s+|for\s+|=\s*)?(.+)$",
    r"\b(?:due|deadline|end)(?:\s+dates?)?\b.*?\bto\s+(.+)$",
)
_START_DATE_PATTERNS = (
    r"\b(?:start\s+date|starts|starting)\s+(?:is\s+|to\s+|on\s+|at\s+|=\s*)?(.+)$",
    r"\bstart\s+date\b.*?\bto\s+(.+)$",
)


def _parse_title(inp: CompileInput) -> Optional[str]:
    match = re.search(r"\b(?:title|rename|retitle|call\s+it|name\s+it)\b.*?[\"“]([^\"”]+)[\"”]", inp.message, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    match = re.search(r"\brename\b.*?\bto\s+(.+)$", inp.unquoted)
    if match:
        title = inp.original(match.start(1), match.end(1)).strip().rstrip(".!?").strip()
        return title or None
    return None


def _parse_description(inp: CompileInput) -> Tuple[Optional[str], Optional[str]]:
    match = re.search(
        r"\b(?:append|add)\b.*?\b(?:description|desc|notes?)\b.*?[\"“](.+?)[\"”]",
        inp.message, re.IGNORECASE | re.DOTALL,
    )
    if match:
        return match.group(1).strip(), "append_desc"
    match = re.search(r"\b(?:description|desc|describe)\b.*?[\"“](.+?)[\"”]", inp.message, re.IGNORECASE | re.DOTALL)
    if match:
        return match.group(1).strip(), "replace_desc"
    return None, None


# =====================================================================
# 断片パーサ
# =====================================================================
def parse_task_updates(inp: CompileInput) -> Dict[str, Any]:
    """単一タスク向けの変更（status / priority / assignee / 日付 / title / description）"""
    text = inp.unquoted
    status_text = mask_assignee_filter(text)
    changes: Dict[str, Any] = {}

    if re.search(r"\bpriority\b", text):
        match = re.search(rf"\b{PRIORITY_TOKEN}\b", text)
        if match:
            changes["priority"] = match.group(1)

    match = re.search(r"\b(?:move|set|mark|status|change|put)\b.*?\b(?:to|in|as|into)\s+([a-z][a-z\- ]*)", status_text)
    if match:
        status = _status_from_fragment(inp.methodology, match.group(1))
        if status:
            changes["status"] = status
    if "status" not in changes:
        if re.search(r"\b(?:complete|finish|close|resolve)\s+(?:task\s+)?#?\d+", text):
            changes["status"] = "done"
        elif re.search(r"\breopen\s+(?:task\s+)?#?\d+", text):
            changes["status"] = "todo"
        elif re.search(r"\bstart(?:\s+working\s+on)?\s+(?:task\s+)?#?\d+", text):
            changes["status"] = "inprogress"

    match = re.search(r"\bassign\b.*?\bto\s+([a-z0-9._@'\- ]+)", text)
    if match:
        hint = normalize_assignee_hint(_clean_hint(inp.original(match.start(1), match.end(1))))
        if hint:
            changes["assignee_hint"] = hint

    end_date = _first_date(_END_DATE_PATTERNS, text, inp.today)
    if end_date is not None:
        changes["end_date"] = end_date
    start_date = _first_date(_START_DATE_PATTERNS, text, inp.today)
    if start_date is not None:
        changes["start_date"] = start_date

    title = _parse_title(inp)
    if title:
        changes["title"] = title

    description, mode = _parse_description(inp)
    if description:
        changes["description"] = description
        changes["_mode"] = mode

    return changes


def parse_bulk_updates(inp: CompileInput) -> Dict[str, Any]:
    """一括更新向けの変更（status / priority / 期限 / title）"""
    text = inp.unquoted
    status_text = mask_assignee_filter(text)
    updates: Dict[str, Any] = {}

    for pattern in (
        r"\bmove\b.*?\b(?:to|into)\s+(?:the\s+)?([a-z][a-z\- ]*)",
        r"\b(?:mark|set|flag)\b.*?\bas\s+([a-z][a-z\- ]*)",
        r"\bstatus\s+(?:to|as)\s+([a-z][a-z\- ]*)",
        r"\b(?:change|update|set|put)\b.*?\b(?:to|into)\s+(?:the\s+)?([a-z][a-z\- ]*)",
    ):
        match = re.search(pattern, status_text)
        if match:
            status = _status_from_fragment(inp.methodology, match.group(1))
            if status:
                updates["status"] = status
                break

    for pattern in (
        rf"\bpriority\s+(?:to|as|=)\s+{PRIORITY_TOKEN}\b",
        rf"\b(?:to|as)\s+{PRIORITY_TOKEN}\s+priority\b",
        rf"\b(?:set|change|update|make|bump|raise|lower)\b.*?\bpriority\b.*?\b(?:to|as)\s+{PRIORITY_TOKEN}\b",
    ):
        match = re.search(pattern, text)
        if match:
            updates["priority"] = match.group(1)
            break

    match = re.search(
        r"\b(?:update|set|change|push|move|extend)\b.*?\b(?:due|end|deadline)(?:\s+dates?)?\b.*?\bto\s+([^.]+)$",
        text,
    )
    if match:
        end_date = parse_date_phrase(match.group(1), today=inp.today)
        if end_date is not None:
            updates["end_date"] = end_date
            # "move the due date to friday" の "friday" はステータスではない
            if updates.get("status") and not re.search(r"\b(?:status|mark|as)\b", text):
                updates.pop("status")

    title = _parse_title(inp)
    if title:
        updates["title"] = title

    return updates


def _is_hint_candidate(inp: CompileInput, token: str) -> bool:
    token = token.strip().lower().lstrip("@")
    if not token or token in _HINT_STOPWORDS:
        return False
    if resolve_status(inp.methodology, token) or resolve_priority(token):
        return False
    return parse_relative_date(token, today=inp.today) is None


def parse_filters(inp: CompileInput) -> Dict[str, Any]:
    """タスク集合を表すフィルタ（ids / status / priority / overdue / unassigned / 担当者 / all）"""
    text = inp.unquoted
    filters: Dict[str, Any] = {}

    ids = find_hash_ids(text)
    if ids:
        filters["ids"] = ids

    for pattern in (
        rf"(?<!to )(?<!as )\b{PRIORITY_TOKEN}[\s\-]+priority\b",
        r"(?<!to )(?<!as )\b(low|medium|high|urgent|critical)\s+tasks?\b",
        rf"\bpriority\s+(?:is\s+|=\s*|equals?\s+){PRIORITY_TOKEN}\b",
    ):
        match = re.search(pattern, text)
        if match:
            priority = resolve_priority(match.group(1))
            if priority:
                filters["priority"] = priority
                break

    for pattern in (
        r"\b(?:status|column|stage|phase)\s+(?:is\s+|=\s*|of\s+)?(?!to\b|as\b|into\b)([a-z][a-z\- ]*)",
        r"(?<!to )(?<!as )\b(to do|todo|in progress|inprogress|doing|review|done|completed|finished|backlog|open)\s+tasks?\b",
        r"\btasks?\s+(?:in|that are|which are|marked as)\s+([a-z][a-z\- ]*)",
    ):
        match = re.search(pattern, text)
        if match:
            status = _status_from_fragment(inp.methodology, match.group(1))
            if status:
                filters["status"] = status
                break

    if re.search(r"\boverdue\b|\bpast\s+due\b", text):
        filters["overdue"] = True
    if re.search(r"\bunassigned\b|\bnot\s+assigned\b|\bwithout\s+(?:an\s+)?assignee\b", text):
        filters["unassigned"] = True

    hint: Optional[str] = None
    if re.search(r"\bmy\b|\b(?:assigned\s+to|for)\s+me\b", text):
        hint = ME_HINT
    elif re.search(r"\b(?:the\s+)?(?:project\s+)?owner'?s\s+tasks?\b", text):
        hint = OWNER_HINT
    else:
        match = re.search(r"\b([a-z][a-z0-9._\-]*)'s\s+tasks?\b", text)
        if match and match.group(1) not in ("owner", "project"):
            hint = inp.original(match.start(1), match.end(1))
        if hint is None:
            match = re.search(r"\bassigned\s+to\s+(@?[a-z0-9._@\-]+)", text)
            if match and _is_hint_candidate(inp, match.group(1)):
                hint = inp.original(match.start(1), match.end(1))
        if hint is None:
            for match in re.finditer(r"\bfor\s+(@?[a-z0-9._\-]{2,40})\b(?!\s+priority)", text):
                if _is_hint_candidate(inp, match.group(1)):
                    hint = inp.original(match.start(1), match.end(1))
                    break
    # "high priority" のような断片が担当者として捕捉された場合は捨てる
    if hint and "priority" not in hint.lower():
        filters["assigned_to_hint"] = hint

    if re.search(r"\ball\s+(?:of\s+)?(?:the\s+)?tasks?\b|\beverything\b|\bevery\s+task\b", text):
        filters["all"] = True

    return filters


# =====================================================================
# コンパイラ
# =====================================================================
class PlanCompiler:
    """発話を優先順位付きルールで CommandPlan に変換する"""

    def __init__(self, context: ProjectContextService):
        self.context = context
        self.logger = logger

    def compile(
        self,
        project: Project,
        message: str,
        history: Optional[List[ChatMessage]] = None,
    ) -> CommandPlan:
        """
        Args:
            project: 対象プロジェクト
            message: ユーザーの発話
            history: 直近の会話履歴（代名詞解決のヒューリスティックに使う）

        Returns:
            正規化済みプラン。どのルールにも一致しなければ type=None
        """
        inp = self.build_input(project, message, history)
        for rule in COMPILE_RULES:
            raw = rule.handler(self, inp)
            if raw:
                self.logger.debug("Compile rule '%s' matched: %s", rule.name, raw)
                return normalize_plan(raw, inp.methodology, today=inp.today)
        self.logger.debug("No compile rule matched message: %r", message)
        return CommandPlan()

    def build_input(
        self,
        project: Project,
        message: str,
        history: Optional[List[ChatMessage]] = None,
    ) -> CompileInput:
        text = re.sub(r"\s+", " ", (message or "").strip())
        lowered = text.lower()
        return CompileInput(
            project=project,
            message=text,
            lowered=lowered,
            unquoted=strip_quoted(lowered),
            methodology=self.context.methodology(project),
            today=self.context.today(),
            history=list(history or []),
        )

    def history_mentions_tasks(self, inp: CompileInput) -> bool:
        """直近8件にタスクの話題があるか、プロジェクトにタスクが1件でもあるか"""
        for entry in inp.history[-8:]:
            content = (entry.content if isinstance(entry, ChatMessage) else str(entry.get("content", ""))).lower()
            if re.search(r"#\d+|\btasks?\b|\bfound\s+\d+\s+tasks?\b", content):
                return True
        return self.context.has_tasks(inp.project)

    # ------------------------------------------------------------------
    # ルール（COMPILE_RULES の順に評価される）
    # ------------------------------------------------------------------
    def rule_ordinal_bulk_update(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        """"update the first 3 tasks to medium priority" """
        window = parse_ordinal_window(inp.unquoted)
        if not window:
            return None
        updates = parse_bulk_updates(inp)
        if not updates:
            return None
        return {"type": PlanType.BULK_UPDATE.value, "filters": {"all": True, **window}, "updates": updates}

    def rule_nth_stage(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        match = re.search(
            r"\bmove\s+(?:all\s+)?(?:the\s+)?tasks?\s+(?:to|into)\s+(?:the\s+)?(first|second|third|fourth|last)\s+(?:stage|column|phase)\b",
            inp.unquoted,
        )
        if not match:
            return None
        return {
            "type": PlanType.BULK_UPDATE.value,
            "filters": {"all": True},
            "updates": {"status": _ORDINAL_STAGES[match.group(1)]},
        }

    def rule_bulk_generation(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        text = inp.unquoted
        if not any(pattern.search(text) for pattern in _BULK_GENERATION_PATTERNS):
            return None

        count = 3
        match = re.search(r"\b(\d+)\s+(?:new\s+)?tasks?\b", text)
        if match:
            count = max(MIN_GENERATION_COUNT, min(MAX_GENERATION_COUNT, int(match.group(1))))
        elif re.search(r"\b(?:several|few)\b", text):
            count = 3
        elif re.search(r"\b(?:multiple|some)\b", text):
            count = 4

        context = ""
        for pattern in (
            r"\b(?:for|about|regarding|covering)\s+(.+)$",
            r"\btasks?\s+(?:to|that)\s+(.+)$",
            r"\btasks?\s+(.+)$",
        ):
            match = re.search(pattern, inp.lowered)
            if match:
                context = inp.original(match.start(1), match.end(1)).strip().strip("\"'").rstrip(".!?").strip()
                if context:
                    break

        return {
            "type": PlanType.BULK_TASK_GENERATION.value,
            "count": count,
            "context": context[:200],
            "full_message": inp.message,
        }

    def rule_create_task(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        match = _CREATE_TASK_RE.search(inp.message)
        if not match:
            return None
        rest = match.group(1).strip()
        payload: Dict[str, Any] = {"status": "todo", "priority": "medium"}

        quoted = re.match(r"^(?:\"([^\"]+)\"|“([^”]+)”|'([^']+)')\s*(.*)$", rest, re.DOTALL)
        if quoted:
            title = quoted.group(1) or quoted.group(2) or quoted.group(3)
            tail = quoted.group(4).lower()
            priority = re.search(rf"\b{PRIORITY_TOKEN}\s+priority\b|\bpriority\s+(?:of\s+|to\s+)?{PRIORITY_TOKEN}\b", tail)
            if priority:
                payload["priority"] = priority.group(1) or priority.group(2)
            due = re.search(r"\b(?:due|by|deadline)\s+(.+)$", tail)
            if due:
                end_date = parse_date_phrase(due.group(1), today=inp.today)
                if end_date is not None:
                    payload["end_date"] = end_date
            description = re.search(r"\bdescription\s+[\"“](.+?)[\"”]", rest, re.IGNORECASE)
            if description:
                payload["description"] = description.group(1)
        else:
            title = rest.strip("\"'“”").rstrip(".!?")

        payload["title"] = title.strip()
        return {"type": PlanType.CREATE_TASK.value, "payload": payload}

    def rule_delete(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        text = inp.unquoted
        if not _DELETE_VERB_RE.search(text) or _DELETE_FIELD_GUARD_RE.search(text):
            return None

        hash_ids = find_hash_ids(text)
        if len(hash_ids) > 1:
            return {"type": PlanType.BULK_DELETE.value, "filters": {"ids": hash_ids}}

        task_id = find_task_id(text)
        if task_id is not None:
            if not self.context.task_exists(inp.project, task_id):
                return {"type": PlanType.TASK_DELETE.value, "selector": {"id": task_id},
                        "_error": f"Task #{task_id} not found in this project."}
            return {"type": PlanType.TASK_DELETE.value, "selector": {"id": task_id}}

        # 狭い条件から順に判定する（"delete all overdue tasks" は期限切れ削除）
        filters = parse_filters(inp)
        narrow = {key: value for key, value in filters.items() if key not in ("all", "overdue")}
        if narrow:
            filters.pop("all", None)
            return {"type": PlanType.BULK_DELETE.value, "filters": filters}
        if filters.get("overdue"):
            return {"type": PlanType.BULK_DELETE_OVERDUE.value}
        window = parse_ordinal_window(text)
        if window:
            return {"type": PlanType.BULK_DELETE.value, "filters": {"all": True, **window}}
        if filters.get("all") or re.search(r"\b(?:all|everything)\b", text):
            return {"type": PlanType.BULK_DELETE_ALL.value}
        return {
            "_error": 'Please specify which tasks to delete (e.g., "delete #123", "delete all overdue tasks").'
        }

    def rule_single_task_update(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        if len(find_hash_ids(inp.unquoted)) > 1:
            return None
        task_id = find_task_id(inp.unquoted)
        if task_id is None:
            return None
        changes = parse_task_updates(inp)
        if not changes:
            return None
        return {"type": PlanType.TASK_UPDATE.value, "selector": {"id": task_id}, "changes": changes}

    def rule_filtered_bulk_update(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        updates = parse_bulk_updates(inp)
        if not updates:
            return None
        filters = parse_filters(inp)
        if not filters and has_pronoun_reference(inp.unquoted):
            return None
        filters = filters or {"all": True}
        window = parse_ordinal_window(inp.unquoted)
        if window:
            filters.update(window)
        return {"type": PlanType.BULK_UPDATE.value, "filters": filters, "updates": updates}

    def rule_assign(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        match = re.search(r"\bassign\b.*?\bto\s+([a-z0-9._@'\- ]+)", inp.unquoted)
        if not match:
            return None
        filters = parse_filters(inp)
        filters.pop("assigned_to_hint", None)
        if not filters and has_pronoun_reference(inp.unquoted):
            return None

        hint = normalize_assignee_hint(_clean_hint(inp.original(match.start(1), match.end(1))))
        if not hint:
            return None

        hash_ids = find_hash_ids(inp.unquoted)
        task_id = find_task_id(inp.unquoted) if len(hash_ids) <= 1 else None
        if task_id is not None:
            return {"type": PlanType.TASK_UPDATE.value, "selector": {"id": task_id},
                    "changes": {"assignee_hint": hint}}

        # 再割り当てが目的なので担当者フィルタは使わない
        filters = filters or {"all": True}
        window = parse_ordinal_window(inp.unquoted)
        if window:
            filters.update(window)
        return {"type": PlanType.BULK_ASSIGN.value, "filters": filters, "assignee": hint}

    def rule_pronoun_reference(self, inp: CompileInput) -> Optional[Dict[str, Any]]:
        text = inp.unquoted
        if not has_pronoun_reference(text) or not self.history_mentions_tasks(inp):
            return None

        match = re.search(r"\bassign\b.*?\b(?:all\s+of\s+)?(?:them|these|those)\b.*?\bto\s+([a-z0-9._@'\- ]+)", text)
        if match:
            hint = normalize_assignee_hint(_clean_hint(inp.original(match.start(1), match.end(1))))
            if hint:
                return {"type": PlanType.BULK_ASSIGN.value, "filters": {"all": True}, "assignee": hint}

        match = re.search(
            r"\b(?:move|set|mark|change|put)\b.*?\b(?:all\s+of\s+)?(?:them|these|those)\b.*?\b(?:to|as|into)\s+([a-z][a-z\- ]{2,19})",
            text,
        )
        if match:
            status = _status_from_fragment(inp.methodology, match.group(1))
            if status:
                return {"type": PlanType.BULK_UPDATE.value, "filters": {"all": True}, "updates": {"status": status}}

        updates = parse_bulk_updates(inp)
        if updates:
            return {"type": PlanType.BULK_UPDATE.value, "filters": {"all": True}, "updates": updates}
        return None


# 評価順 = 解釈の優先順位（具体的なものから汎用的なものへ）
COMPILE_RULES: Tuple[CompileRule, ...] = (
    CompileRule("ordinal_bulk_update", PlanCompiler.rule_ordinal_bulk_update),
    CompileRule("nth_stage", PlanCompiler.rule_nth_stage),
    CompileRule("bulk_generation", PlanCompiler.rule_bulk_generation),
    CompileRule("create_task", PlanCompiler.rule_create_task),
    CompileRule("delete", PlanCompiler.rule_delete),
    CompileRule("single_task_update", PlanCompiler.rule_single_task_update),
    CompileRule("filtered_bulk_update", PlanCompiler.rule_filtered_bulk_update),
    CompileRule("assign", PlanCompiler.rule_assign),
    CompileRule("pronoun_reference", PlanCompiler.rule_pronoun_reference),
)
