"""
Unit tests for llm_client.py

Uses LangChain's FakeListChatModel so no provider is contacted.
"""

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from services.command.llm_client import LLMJsonClient, _to_langchain, parse_json_object
from services.command.plan_schema import ChatMessage


class TestParseJsonObject:
    """Test JSON extraction from free-form model output"""

    def test_plain_object(self):
        assert parse_json_object('{"type": "bulk_delete_all"}') == {"type": "bulk_delete_all"}

    def test_code_fence(self):
        text = '```json\n{"type": "task_delete", "selector": {"id": 3}}\n```'
        assert parse_json_object(text) == {"type": "task_delete", "selector": {"id": 3}}

    def test_surrounding_prose(self):
        assert parse_json_object('Sure! {"count": 3} Hope this helps.') == {"count": 3}

    def test_broken_json_is_repaired(self):
        parsed = parse_json_object('{"type": "task_delete", "selector": {"id": 3}')
        assert parsed["type"] == "task_delete"

    def test_trailing_comma_is_repaired(self):
        assert parse_json_object('{"type": "bulk_delete_all",}') == {"type": "bulk_delete_all"}

    @pytest.mark.parametrize("text", ["", "   ", "[1, 2]", '"just a string"'])
    def test_non_object_returns_none(self, text):
        assert parse_json_object(text) is None


class TestMessageConversion:
    def test_roles(self):
        assert isinstance(_to_langchain(ChatMessage(role="system", content="s")), SystemMessage)
        assert isinstance(_to_langchain(ChatMessage(role="assistant", content="a")), AIMessage)
        assert isinstance(_to_langchain({"role": "user", "content": "u"}), HumanMessage)

    def test_unknown_role_is_treated_as_user(self):
        assert isinstance(_to_langchain({"role": "tool", "content": "x"}), HumanMessage)


class TestLLMJsonClient:
    """Test chat_json against a fake chat model"""

    def test_returns_parsed_object(self):
        temperatures = []

        def factory(temperature):
            temperatures.append(temperature)
            return FakeListChatModel(responses=['```json\n{"type": "bulk_delete_overdue"}\n```'])

        client = LLMJsonClient(factory)
        result = client.chat_json([ChatMessage(role="user", content="delete overdue")], temperature=0.2)

        assert result == {"type": "bulk_delete_overdue"}
        assert temperatures == [0.2]

    def test_model_error_returns_none(self):
        def factory(temperature):
            raise RuntimeError("missing API key")

        client = LLMJsonClient(factory)
        assert client.chat_json([ChatMessage(role="user", content="hi")]) is None

    def test_non_json_answer_returns_none(self):
        client = LLMJsonClient(lambda temperature: FakeListChatModel(responses=["I cannot help with that."]))
        assert client.chat_json([{"role": "user", "content": "hi"}]) is None
