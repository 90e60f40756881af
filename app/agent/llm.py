"""
Decision LLM: OpenAI (primary) or Hugging Face router (when no OpenAI key is set).

Both paths ask for JSON constrained by a response schema and return the raw text;
parsing and validation belong to the decision engine.
"""

import logging
from typing import Any

import httpx
from openai import OpenAI, OpenAIError

from app.core.config import (
    DECISION_MAX_TOKENS,
    DECISION_TEMPERATURE,
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from app.core.errors import DecisionTransportError, ServiceUnavailableError

logger = logging.getLogger(__name__)


def _messages(system_instruction: str, user_prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_instruction},
        {"role": "user", "content": user_prompt},
    ]


def _response_format(schema: dict[str, Any]) -> dict[str, Any]:
    return {"type": "json_schema", "json_schema": {"name": "decision", "schema": schema}}


def _call_openai(system_instruction: str, user_prompt: str, schema: dict[str, Any]) -> str:
    client = OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=_messages(system_instruction, user_prompt),
            response_format=_response_format(schema),
            temperature=DECISION_TEMPERATURE,
            max_tokens=DECISION_MAX_TOKENS,
        )
    except OpenAIError as e:
        logger.warning("[llm:openai] request failed: %s", e)
        raise DecisionTransportError("Language model request failed") from e
    msg = response.choices[0].message if response.choices else None
    out = ((msg.content if msg else None) or "").strip()
    logger.info("[llm:openai] OUT response_len=%d", len(out))
    return out


def _call_hf(system_instruction: str, user_prompt: str, schema: dict[str, Any]) -> str:
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {
        "model": HF_LLM_MODEL,
        "messages": _messages(system_instruction, user_prompt),
        "response_format": _response_format(schema),
        "temperature": DECISION_TEMPERATURE,
        "max_tokens": DECISION_MAX_TOKENS,
    }
    try:
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            response = client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("[llm:hf] request failed: %s", e)
        raise DecisionTransportError("Language model request failed") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise DecisionTransportError(f"Language model returned HTTP {response.status_code}")
    try:
        data = response.json()
    except ValueError as e:
        raise DecisionTransportError("Language model returned a non-JSON envelope") from e
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    out = ((choices[0].get("message") or {}).get("content") or "").strip()
    logger.info("[llm:hf] OUT response_len=%d", len(out))
    return out


def generate_structured(system_instruction: str, user_prompt: str, schema: dict[str, Any]) -> str:
    """
    Ask the configured model for a JSON answer matching schema. Returns the raw text.
    Uses OpenAI when OPENAI_API_KEY is set, else Hugging Face. One attempt, no fallback.
    """
    logger.info("[llm] IN  system_len=%d prompt_len=%d", len(system_instruction), len(user_prompt))
    if OPENAI_API_KEY:
        return _call_openai(system_instruction, user_prompt, schema)
    if HF_API_KEY:
        return _call_hf(system_instruction, user_prompt, schema)
    raise ServiceUnavailableError("No language model configured (set OPENAI_API_KEY or HF_API_KEY)")
