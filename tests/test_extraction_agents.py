"""Tests for the Claude extraction agent and tool_use call handling.

Uses mocked Anthropic clients; no network calls.
"""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import httpx
import pytest
from anthropic import APIConnectionError, BadRequestError

from tracelayer.chains.extraction_agents import (
    REQUIREMENT_TOOL,
    AnthropicExtractionAgent,
    get_extraction_agent,
    validate_items,
)
from tracelayer.core.config import get_settings
from tracelayer.core.errors import AgentResponseError, ExtractionNotConfiguredError
from tracelayer.core.llm import _strip_llm_fences, call_tool
from tracelayer.core.schemas_extraction import ProjectContext, RequirementCandidate


# =============================================================================
# Helpers
# =============================================================================


def _tool_response(payload: dict):
    """Mock messages.create response carrying one tool_use block."""
    response = MagicMock()
    response.content = [MagicMock(type="tool_use", input=payload)]
    response.stop_reason = "tool_use"
    return response


def _text_response(text: str):
    response = MagicMock()
    response.content = [MagicMock(type="text", text=text)]
    response.stop_reason = "end_turn"
    return response


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))


def _context() -> ProjectContext:
    return ProjectContext(project_id=uuid4(), name="Checkout Revamp", description="Rebuild checkout")


# =============================================================================
# validate_items
# =============================================================================


class TestValidateItems:
    def test_valid_items(self):
        items = validate_items(
            {"requirements": [{"title": "Guest checkout", "confidence": 0.8, "source_excerpt": "guests"}]},
            "requirements",
            RequirementCandidate,
        )
        assert len(items) == 1
        assert items[0].title == "Guest checkout"

    def test_empty_list_is_valid(self):
        assert validate_items({"requirements": []}, "requirements", RequirementCandidate) == []

    def test_missing_key(self):
        with pytest.raises(AgentResponseError, match="no 'requirements' list"):
            validate_items({"items": []}, "requirements", RequirementCandidate)

    def test_not_a_list(self):
        with pytest.raises(AgentResponseError, match="expected list"):
            validate_items({"requirements": "none"}, "requirements", RequirementCandidate)

    def test_item_not_an_object(self):
        with pytest.raises(AgentResponseError, match=r"requirements\[1\]"):
            validate_items({"requirements": [{"title": "ok"}, "oops"]}, "requirements", RequirementCandidate)

    def test_item_fails_validation(self):
        with pytest.raises(AgentResponseError, match="invalid"):
            validate_items({"requirements": [{"confidence": "very"}]}, "requirements", RequirementCandidate)


# =============================================================================
# call_tool
# =============================================================================


class TestCallTool:
    def _call(self, client, **kwargs):
        return call_tool(
            client,
            model="test-model",
            max_tokens=100,
            system="sys",
            user="user",
            tool=REQUIREMENT_TOOL,
            backoff_seconds=0,
            **kwargs,
        )

    def test_forces_tool_choice(self):
        client = MagicMock()
        client.messages.create.return_value = _tool_response({"requirements": []})

        assert self._call(client) == {"requirements": []}

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": "submit_requirements"}
        assert kwargs["tools"] == [REQUIREMENT_TOOL]

    @patch("tracelayer.core.llm.time.sleep")
    def test_retries_transient_errors(self, mock_sleep):
        client = MagicMock()
        client.messages.create.side_effect = [
            _connection_error(),
            _tool_response({"requirements": []}),
        ]

        assert self._call(client, max_retries=2) == {"requirements": []}
        assert client.messages.create.call_count == 2

    @patch("tracelayer.core.llm.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        client = MagicMock()
        client.messages.create.side_effect = _connection_error()

        with pytest.raises(APIConnectionError):
            self._call(client, max_retries=1)
        assert client.messages.create.call_count == 2

    def test_non_transient_error_not_retried(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = MagicMock()
        client.messages.create.side_effect = BadRequestError(
            "bad request", response=httpx.Response(400, request=request), body=None
        )

        with pytest.raises(BadRequestError):
            self._call(client, max_retries=3)
        assert client.messages.create.call_count == 1

    def test_falls_back_to_fenced_json_text(self):
        client = MagicMock()
        client.messages.create.return_value = _text_response('```json\n{"requirements": []}\n```')

        assert self._call(client) == {"requirements": []}

    def test_unparseable_text_raises(self):
        client = MagicMock()
        client.messages.create.return_value = _text_response("I could not find any requirements.")

        with pytest.raises(AgentResponseError, match="not valid JSON"):
            self._call(client)

    def test_strip_fences(self):
        assert _strip_llm_fences('```\n{"a": 1}\n```') == '{"a": 1}'
        assert _strip_llm_fences('  {"a": 1} ') == '{"a": 1}'


# =============================================================================
# AnthropicExtractionAgent
# =============================================================================


class TestAnthropicExtractionAgent:
    def test_extract_requirements_validates_candidates(self):
        client = MagicMock()
        client.messages.create.return_value = _tool_response(
            {
                "requirements": [
                    {
                        "title": "Support Apple Pay",
                        "description": "Wallet payments at checkout",
                        "category": "functional",
                        "priority": "high",
                        "confidence": 0.92,
                        "source_excerpt": "we must support Apple Pay",
                    }
                ]
            }
        )
        agent = AnthropicExtractionAgent(client=client)

        candidates = agent.extract_requirements("we must support Apple Pay", _context())

        assert [c.title for c in candidates] == ["Support Apple Pay"]
        assert candidates[0].confidence == 0.92
        user_prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Checkout Revamp" in user_prompt
        assert "we must support Apple Pay" in user_prompt

    def test_related_context_is_opt_in(self):
        client = MagicMock()
        client.messages.create.return_value = _tool_response({"stakeholders": []})
        agent = AnthropicExtractionAgent(client=client)
        context = _context()
        context.related_context = ["Billing project requires SOC 2"]

        agent.extract_stakeholders("text", context)

        user_prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Billing project requires SOC 2" in user_prompt

    def test_classify_truncates_long_sources(self):
        client = MagicMock()
        client.messages.create.return_value = _tool_response({"relevance": 0.4, "summary": "tangential"})
        agent = AnthropicExtractionAgent(client=client)

        result = agent.classify("x" * 20_000, _context())

        assert result.relevance == 0.4
        user_prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert user_prompt.count("x") < 9_000

    def test_malformed_response_raises(self):
        client = MagicMock()
        client.messages.create.return_value = _tool_response({"events": "tomorrow"})
        agent = AnthropicExtractionAgent(client=client)

        with pytest.raises(AgentResponseError):
            agent.extract_timeline("text", _context())


def test_get_extraction_agent_requires_api_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    get_settings.cache_clear()

    with pytest.raises(ExtractionNotConfiguredError):
        get_extraction_agent()
