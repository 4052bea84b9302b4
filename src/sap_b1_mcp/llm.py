# SAP B1 Query MCP Server
# File: llm.py
# Version: v2

"""Minimal OpenAI-compatible chat-completions client returning JSON objects."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, RequestError

from .config import B1Config

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class LLMError(RuntimeError):
    """The LLM endpoint failed or returned no usable JSON."""


def parse_json_object(text: str) -> Dict[str, Any]:
    """Extract the first JSON object from a model reply (code fences tolerated)."""
    cleaned = _FENCE_RE.sub("", text or "").replace("```", "").strip()
    match = _JSON_OBJECT_RE.search(cleaned)
    if not match:
        raise LLMError("No valid JSON found in LLM response")
    try:
        data = json.loads(match.group(0))
    except ValueError as exc:
        raise LLMError(f"LLM response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMError("LLM response JSON is not an object")
    return data


@dataclass
class ChatCompletionClient:
    config: B1Config
    transport: Optional[httpx.AsyncBaseTransport] = None

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 300,
        temperature: float = 0.2,
    ) -> Dict[str, Any]:
        """Send one chat request and parse the reply as a JSON object."""
        api_key = (self.config.openai_api_key or "").strip()
        if len(api_key) < 20:
            raise LLMError("Invalid OpenAI API key: key is missing or too short")

        url = f"{self.config.openai_base_url}/chat/completions"
        body = {
            "model": self.config.openai_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

        kwargs: Dict[str, Any] = {"timeout": self.config.llm_timeout}
        if self.transport is not None:
            kwargs["transport"] = self.transport

        async with httpx.AsyncClient(**kwargs) as http_client:
            try:
                response = await http_client.post(url, json=body, headers=headers)
                response.raise_for_status()
            except RequestError as exc:
                raise LLMError(f"Error calling LLM endpoint '{url}': {exc}") from exc
            except HTTPStatusError as exc:
                raise LLMError(
                    f"LLM endpoint returned HTTP {exc.response.status_code}. "
                    f"Response snippet: {exc.response.text[:300]}"
                ) from exc

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMError(f"Unexpected LLM response shape: {exc}") from exc

        logger.debug("LLM reply: %s", str(content)[:500])
        return parse_json_object(str(content or ""))
