"""Anthropic client utilities: forced tool_use calls with bounded retries."""

import json
import re
import time
from typing import Any

from anthropic import (
    Anthropic,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)

from tracelayer.core.config import get_settings
from tracelayer.core.errors import AgentResponseError, ExtractionNotConfiguredError
from tracelayer.core.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, InternalServerError, RateLimitError)


def get_anthropic_client() -> Anthropic:
    """
    Build an Anthropic client from settings.

    Raises:
        ExtractionNotConfiguredError: If no API key is configured
    """
    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise ExtractionNotConfiguredError(
            "No AI API key configured. Set ANTHROPIC_API_KEY to enable extraction."
        )
    return Anthropic(api_key=settings.ANTHROPIC_API_KEY)


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    return cleaned


def _parse_text_fallback(raw: str) -> dict[str, Any]:
    """Parse a JSON object from text output. Fallback only; tool_use is the primary path."""
    try:
        data = json.loads(_strip_llm_fences(raw))
    except json.JSONDecodeError as e:
        raise AgentResponseError(f"Response was not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AgentResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def call_tool(
    client: Anthropic,
    *,
    model: str,
    max_tokens: int,
    system: str,
    user: str,
    tool: dict[str, Any],
    max_retries: int | None = None,
    backoff_seconds: float | None = None,
) -> dict[str, Any]:
    """
    Call Claude with a forced tool choice and return the tool input.

    Transient API errors are retried with exponential backoff. Other errors
    propagate on the first attempt.

    Args:
        client: Anthropic client
        model: Model name
        max_tokens: Output token budget
        system: System prompt
        user: User prompt
        tool: Tool definition whose input schema shapes the response
        max_retries: Retries after the first attempt (default from settings)
        backoff_seconds: Initial delay, doubled per retry (default from settings)

    Returns:
        The tool input dict

    Raises:
        AgentResponseError: If the response carries neither tool input nor JSON text
    """
    settings = get_settings()
    retries = settings.STAGE_MAX_RETRIES if max_retries is None else max_retries
    delay = settings.STAGE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    for attempt in range(retries + 1):
        try:
            response = client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
                temperature=0.1,
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
            )
            break
        except TRANSIENT_ERRORS as e:
            if attempt >= retries:
                raise
            wait = delay * (2 ** attempt)
            logger.warning(
                f"{tool['name']} attempt {attempt + 1}/{retries + 1} failed "
                f"({type(e).__name__}), retrying in {wait}s"
            )
            time.sleep(wait)

    for block in response.content:
        if block.type == "tool_use":
            if not isinstance(block.input, dict):
                raise AgentResponseError(f"{tool['name']} returned non-object input")
            return block.input

    logger.warning(f"No tool_use block in {tool['name']} response, falling back to text")
    for block in response.content:
        if getattr(block, "text", None):
            return _parse_text_fallback(block.text)

    raise AgentResponseError(f"{tool['name']} returned no content (stop_reason={response.stop_reason})")
