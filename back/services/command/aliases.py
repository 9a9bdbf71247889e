"""
ステータス・優先度のエイリアス解決

開発手法（kanban / scrum / agile / waterfall / lean）ごとのフェーズ名や
自由記述の同義語を、正規ステータス（todo / inprogress / review / done）と
正規優先度（low / medium / high / urgent）に変換する。

テーブルはすべてモジュール読み込み時に一度だけ構築される不変データ。
"""

import re
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from models.project_base import TASK_PRIORITIES, TASK_STATUSES

DEFAULT_METHODOLOGY = "kanban"
METHODOLOGIES = ("kanban", "scrum", "agile", "waterfall", "lean")

# =====================================================================
# 手法横断のステータス同義語
# =====================================================================
STATUS_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "todo": (
        "todo", "to do", "backlog", "product backlog", "sprint backlog", "icebox",
        "ideas", "idea backlog", "requirements", "specification", "specifications",
        "analysis", "planning", "plan", "pending", "not started", "open",
    ),
    "inprogress": (
        "in progress", "inprogress", "doing", "wip", "work in progress", "active",
        "ongoing", "started", "progress", "design", "implementation", "construction",
        "build", "building", "development", "dev", "executing", "execution",
    ),
    "review": (
        "review", "code review", "peer review", "qa", "quality assurance", "testing",
        "test", "verification", "validation", "test phase", "staging", "approval",
        "awaiting review", "awaiting approval", "ready for review",
    ),
    "done": (
        "done", "complete", "completed", "finished", "closed", "resolved", "shipped",
        "deployed", "released", "maintenance", "live", "accepted", "closed out",
    ),
})

# =====================================================================
# 手法ごとのフェーズ名 → 正規ステータス
# =====================================================================
_AGILE_PHASES = {
    "product backlog": "todo", "sprint backlog": "todo", "backlog": "todo", "todo": "todo",
    "inprogress": "inprogress", "in progress": "inprogress", "doing": "inprogress", "wip": "inprogress",
    "review": "review", "code review": "review", "qa": "review", "testing": "review",
    "done": "done", "complete": "done", "finished": "done",
}

METHODOLOGY_PHASES: Mapping[str, Mapping[str, str]] = MappingProxyType({
    "waterfall": MappingProxyType({
        "requirements": "todo", "specification": "todo", "analysis": "todo",
        "design": "inprogress", "implementation": "inprogress", "construction": "inprogress",
        "verification": "review", "validation": "review", "testing phase": "review",
        "maintenance": "done", "done": "done", "complete": "done",
    }),
    "lean": MappingProxyType({
        "backlog": "todo", "kanban backlog": "todo",
        "todo": "inprogress", "value stream": "inprogress",
        "testing": "review", "qa": "review",
        "done": "done", "complete": "done",
    }),
    "scrum": MappingProxyType(dict(_AGILE_PHASES)),
    "agile": MappingProxyType(dict(_AGILE_PHASES)),
    "kanban": MappingProxyType({
        "todo": "todo", "to do": "todo", "backlog": "todo",
        "inprogress": "inprogress", "in progress": "inprogress", "doing": "inprogress", "wip": "inprogress",
        "review": "review", "code review": "review", "qa": "review", "testing": "review",
        "done": "done", "complete": "done", "finished": "done",
    }),
})

# =====================================================================
# 正規ステータス → 表示ラベル
# =====================================================================
_AGILE_LABELS = {"todo": "Backlog", "inprogress": "In Progress", "review": "Review", "done": "Done"}

PHASE_LABELS: Mapping[str, Mapping[str, str]] = MappingProxyType({
    "scrum": MappingProxyType(dict(_AGILE_LABELS)),
    "agile": MappingProxyType(dict(_AGILE_LABELS)),
    "waterfall": MappingProxyType({
        "todo": "Requirements", "inprogress": "Design", "review": "Verification", "done": "Maintenance",
    }),
    "lean": MappingProxyType({
        "todo": "Backlog", "inprogress": "In Progress", "review": "Testing", "done": "Done",
    }),
    "kanban": MappingProxyType({
        "todo": "To Do", "inprogress": "In Progress", "review": "Review", "done": "Done",
    }),
})

# =====================================================================
# 優先度の同義語
# =====================================================================
PRIORITY_ALIASES: Mapping[str, str] = MappingProxyType({
    "p0": "urgent", "p1": "high", "p2": "medium", "p3": "low",
    "critical": "urgent", "blocker": "urgent", "highest": "urgent",
    "higher": "high",
    "normal": "medium", "moderate": "medium",
    "lowest": "low",
})

_STRIP_WORDS = re.compile(r"\b(?:status|column|phase|stage)\b")


def normalize_status_token(token: str) -> str:
    """小文字化・区切り文字の除去・補助語（status/column/phase/stage）の削除を行う。"""
    text = str(token).lower()
    text = re.sub(r"[_\-]+", " ", text)
    text = _STRIP_WORDS.sub(" ", text)
    text = re.sub(r"\s+", " ", text).strip()
    if text == "in progress":
        return "inprogress"
    return text


def _build_alias_lookup() -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for canonical, aliases in STATUS_ALIASES.items():
        for alias in aliases:
            lookup.setdefault(normalize_status_token(alias), canonical)
    return lookup


# 正規化済みエイリアス → 正規ステータス（プロセス開始時に一度だけ構築）
_ALIAS_LOOKUP: Mapping[str, str] = MappingProxyType(_build_alias_lookup())

# 自由文スキャン用：複数語の同義語を長い順、その後に単語の同義語
_MULTI_WORD_ALIASES: Tuple[Tuple[str, str], ...] = tuple(sorted(
    ((alias, canonical) for canonical, aliases in STATUS_ALIASES.items() for alias in aliases if " " in alias),
    key=lambda item: len(item[0]),
    reverse=True,
))
_SINGLE_WORD_ALIASES: Tuple[Tuple[str, str], ...] = tuple(
    (alias, canonical) for canonical, aliases in STATUS_ALIASES.items() for alias in aliases if " " not in alias
)


def normalize_methodology(methodology: Optional[str]) -> str:
    value = (methodology or "").strip().lower()
    return value if value in METHODOLOGIES else DEFAULT_METHODOLOGY


def resolve_status(methodology: Optional[str], token: Optional[str]) -> Optional[str]:
    """
    任意のステータス表現を正規ステータスへ変換する。

    Args:
        methodology: プロジェクトの開発手法
        token: ユーザー入力やLLM出力のステータス文字列

    Returns:
        todo / inprogress / review / done のいずれか。分類できなければ None
    """
    if token is None:
        return None
    normalized = normalize_status_token(token)
    if not normalized:
        return None
    if normalized in TASK_STATUSES:
        return normalized
    if normalized in _ALIAS_LOOKUP:
        return _ALIAS_LOOKUP[normalized]

    phases = METHODOLOGY_PHASES[normalize_methodology(methodology)]
    for phase, canonical in phases.items():
        if normalize_status_token(phase) == normalized:
            return canonical
    return None


def resolve_priority(token: Optional[str]) -> Optional[str]:
    if token is None:
        return None
    normalized = re.sub(r"\s+", " ", str(token).strip().lower())
    normalized = re.sub(r"\s*priority$", "", normalized)
    if normalized in TASK_PRIORITIES:
        return normalized
    return PRIORITY_ALIASES.get(normalized)


def phase_label(methodology: Optional[str], status: str) -> str:
    """正規ステータスを手法ごとの表示ラベルへ変換する（未知のステータスはそのまま返す）。"""
    labels = PHASE_LABELS[normalize_methodology(methodology)]
    return labels.get(status, status)


def phase_labels(methodology: Optional[str]) -> List[str]:
    labels = PHASE_LABELS[normalize_methodology(methodology)]
    return [labels[status] for status in TASK_STATUSES]


def extract_status_from_text(methodology: Optional[str], text: str) -> Optional[str]:
    """
    文章中からステータス表現を探す。

    複数語の同義語（長い順）→ 単語の同義語 → 手法のフェーズ名 の順に走査し、
    最初に一致したものを返す。"code review" は "review" より先に評価される。
    """
    haystack = re.sub(r"[_\-]+", " ", str(text).lower())
    haystack = re.sub(r"\s+", " ", haystack)

    for alias, canonical in _MULTI_WORD_ALIASES:
        if re.search(rf"\b{re.escape(alias)}\b", haystack):
            return canonical
    for alias, canonical in _SINGLE_WORD_ALIASES:
        if re.search(rf"\b{re.escape(alias)}\b", haystack):
            return canonical

    phases = METHODOLOGY_PHASES[normalize_methodology(methodology)]
    for phase in sorted(phases, key=len, reverse=True):
        if re.search(rf"\b{re.escape(phase)}\b", haystack):
            return phases[phase]
    return None
