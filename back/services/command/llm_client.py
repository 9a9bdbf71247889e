"""
LLM JSON クライアント

チャットモデルを呼び出し、応答から JSON オブジェクトを取り出す。
タイムアウト・例外・壊れた JSON はすべて None として返し、呼び出し側に例外を投げない。
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Union

from json_repair import repair_json
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .plan_schema import ChatMessage

logger = logging.getLogger("command_assistant.LLMJsonClient")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


def _to_langchain(message: Union[ChatMessage, Dict[str, Any]]) -> BaseMessage:
    if isinstance(message, dict):
        message = ChatMessage(role=str(message.get("role", "user")), content=str(message.get("content", "")))
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _content_text(content: Any) -> str:
    """Gemini などはコンテンツをパーツのリストで返すことがある"""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content or "")


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    LLM 応答テキストから JSON オブジェクトを取り出す。

    コードフェンスを除去し、最初の { から最後の } までを json.loads で読む。
    失敗した場合は json_repair で修復を試みる。オブジェクト以外は None。
    """
    if not text or not text.strip():
        return None
    body = text.strip()
    fenced = _FENCE_RE.search(body)
    if fenced:
        body = fenced.group(1).strip()

    start, end = body.find("{"), body.rfind("}")
    candidate = body[start:end + 1] if start != -1 and end > start else body

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        try:
            parsed = repair_json(candidate, return_objects=True)
        except Exception:
            logger.warning("Failed to repair JSON from LLM response")
            return None
    return parsed if isinstance(parsed, dict) else None


class LLMJsonClient:
    """温度ごとのチャットモデルを受け取り、JSON オブジェクトを返すクライアント"""

    def __init__(self, llm_factory: Callable[[float], BaseChatModel]):
        """
        Args:
            llm_factory: 温度を受け取ってチャットモデルを返す関数（BaseService.get_llm など）
        """
        self.llm_factory = llm_factory

    def chat_json(
        self,
        messages: List[Union[ChatMessage, Dict[str, Any]]],
        temperature: float = 0.1,
    ) -> Optional[Dict[str, Any]]:
        try:
            llm = self.llm_factory(temperature)
            response = llm.invoke([_to_langchain(message) for message in messages])
        except Exception:
            logger.exception("LLM call failed (temperature=%.2f)", temperature)
            return None

        text = _content_text(getattr(response, "content", response))
        parsed = parse_json_object(text)
        if parsed is None:
            logger.warning("LLM returned no usable JSON object: %r", text[:200])
        return parsed
