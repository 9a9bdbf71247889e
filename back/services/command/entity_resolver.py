"""
エンティティ解決

- 担当者ヒント（名前・メール・ID・代名詞・所有格）→ プロジェクトメンバーのユーザーID
- 序数ウィンドウ（"first 3", "last one"）→ limit / order フィルタ
- 相対日付（"tomorrow", "next friday", "+3 days"）→ date
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.project_base import Project, ProjectMember, User

logger = logging.getLogger("command_assistant.EntityResolver")

# プラン内で使う代名詞の番兵値
ME_HINT = "__me__"
OWNER_HINT = "__owner__"

_ME_WORDS = {"me", "myself", ME_HINT}
_OWNER_WORDS = {"owner", "project owner", "the owner", "the project owner", OWNER_HINT}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_assignee_hint(hint: Optional[str]) -> Optional[str]:
    """ヒントの前後の空白・引用符・先頭の@を除去し、代名詞は番兵値に置き換える。"""
    if hint is None:
        return None
    text = str(hint).strip().strip("\"'").strip()
    if text.startswith("@"):
        text = text[1:]
    text = re.sub(r"'s$", "", text).strip()
    lowered = text.lower()
    if lowered in _ME_WORDS:
        return ME_HINT
    if lowered in _OWNER_WORDS:
        return OWNER_HINT
    return text or None


class AssigneeResolver:
    """担当者ヒントを、プロジェクトに所属するユーザーIDへ解決する"""

    def __init__(self, db: Session, current_user_id: Optional[int] = None):
        self.db = db
        self.current_user_id = current_user_id

    def candidates(self, project: Project) -> List[User]:
        """オーナー + メンバー（ID で重複排除、オーナーが先頭）"""
        users: List[User] = []
        seen = set()
        owner = self.db.get(User, project.user_id) if project.user_id else None
        if owner is not None:
            users.append(owner)
            seen.add(owner.id)
        members = (
            self.db.query(User)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .filter(ProjectMember.project_id == project.id)
            .order_by(User.id.asc())
            .all()
        )
        for user in members:
            if user.id not in seen:
                users.append(user)
                seen.add(user.id)
        return users

    def is_member(self, project: Project, user_id: int) -> bool:
        if user_id == project.user_id:
            return True
        return (
            self.db.query(ProjectMember.id)
            .filter(ProjectMember.project_id == project.id, ProjectMember.user_id == user_id)
            .first()
            is not None
        )

    def resolve(self, project: Project, hint: Optional[str]) -> Optional[int]:
        """
        担当者ヒントをユーザーIDへ解決する。

        Args:
            project: 対象プロジェクト
            hint: 名前・メール・ユーザーID・代名詞など

        Returns:
            プロジェクトメンバーのユーザーID。解決できない場合は None（既定値で埋めない）
        """
        text = normalize_assignee_hint(hint)
        if not text:
            return None

        if text == ME_HINT:
            return self.current_user_id if self.current_user_id is not None else project.user_id
        if text == OWNER_HINT:
            return project.user_id

        # 数値ID・メールはメンバーシップを確認してから採用する
        if text.isdigit():
            user = self.db.get(User, int(text))
            if user is not None and self.is_member(project, user.id):
                return user.id
            return None

        if _EMAIL_RE.match(text):
            user = self.db.query(User).filter(User.email.ilike(text)).first()
            if user is not None and self.is_member(project, user.id):
                return user.id
            return None

        needle = re.sub(r"\s+", " ", text.lower())
        candidates = self.candidates(project)

        for user in candidates:
            if (user.name or "").strip().lower() == needle:
                return user.id

        tokens = needle.split(" ")
        for user in candidates:
            name = (user.name or "").lower()
            if all(token in name for token in tokens):
                return user.id

        for user in candidates:
            if needle in (user.name or "").lower():
                return user.id

        logger.info("Assignee hint could not be resolved (project=%s, hint=%r)", project.id, hint)
        return None


# =====================================================================
# 序数ウィンドウ
# =====================================================================
WORD_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

ORDINAL_WINDOW_RE = re.compile(
    r"\b(first|last|top)\s+(\d+|one|two|three|four|five|six|seven|eight|nine|ten)\b(?:\s+tasks?\b)?",
    re.IGNORECASE,
)


def parse_ordinal_window(text: str) -> Optional[Dict[str, Any]]:
    """'first 3' / 'last one' / 'top 5 tasks' を {limit, order} に変換する。"""
    match = ORDINAL_WINDOW_RE.search(text or "")
    if not match:
        return None
    word, amount = match.group(1).lower(), match.group(2).lower()
    limit = int(amount) if amount.isdigit() else WORD_NUMBERS[amount]
    if limit <= 0:
        return None
    return {"limit": limit, "order": "desc" if word == "last" else "asc"}


# =====================================================================
# 相対日付
# =====================================================================
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_DATE_FORMATS = (
    "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y",
    "%B %d %Y", "%B %d, %Y", "%b %d %Y", "%b %d, %Y",
    "%d %B %Y", "%d %b %Y",
)
_DATE_FORMATS_NO_YEAR = ("%B %d", "%b %d", "%d %B", "%d %b")


def _next_or_same(today: date, weekday: int) -> date:
    return today + timedelta(days=(weekday - today.weekday()) % 7)


def _strictly_next(today: date, weekday: int) -> date:
    delta = (weekday - today.weekday()) % 7
    return today + timedelta(days=delta or 7)


def parse_relative_date(raw: Any, today: Optional[date] = None) -> Optional[date]:
    """
    相対表現・一般的な日付表現を date に変換する。例外は送出せず、解釈できなければ None。

    Args:
        raw: "today" / "next friday" / "+2 weeks" / "2025-03-01" など
        today: 基準日（未指定なら当日）
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    today = today or date.today()
    text = re.sub(r"\s+", " ", str(raw).strip().lower()).rstrip(".!?")
    if not text:
        return None

    if text == "today" or text == "this week":
        return today
    if text == "tomorrow":
        return today + timedelta(days=1)
    if text == "next week":
        return today + timedelta(days=7)

    match = re.fullmatch(r"(?:\+|in\s+)?(\d+)\s+(day|week)s?", text)
    if match:
        amount = int(match.group(1))
        unit_days = 7 if match.group(2) == "week" else 1
        return today + timedelta(days=amount * unit_days)

    match = re.fullmatch(r"next\s+(\d+)\s+days?", text)
    if match:
        return today + timedelta(days=int(match.group(1)))

    match = re.fullmatch(r"(this\s+|next\s+)?(" + "|".join(WEEKDAYS) + r")", text)
    if match:
        weekday = WEEKDAYS.index(match.group(2))
        if (match.group(1) or "").strip() == "next":
            return _strictly_next(today, weekday)
        return _next_or_same(today, weekday)

    return _parse_general_date(text, today)


def _parse_general_date(text: str, today: date) -> Optional[date]:
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    candidate = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", text)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    for fmt in _DATE_FORMATS_NO_YEAR:
        try:
            parsed = datetime.strptime(f"{candidate} {today.year}", f"{fmt} %Y")
            return parsed.date()
        except ValueError:
            continue
    return None


def parse_date_phrase(text: str, today: Optional[date] = None, max_words: int = 4) -> Optional[date]:
    """
    文の先頭から日付として読める最長の語句を探す。

    "next friday please" → "next friday" のように後続語を許容する。
    """
    words = str(text or "").strip().split()
    for size in range(min(len(words), max_words), 0, -1):
        parsed = parse_relative_date(" ".join(words[:size]), today=today)
        if parsed is not None:
            return parsed
    return None
