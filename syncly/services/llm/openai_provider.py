import json
from typing import List, Optional

import httpx

from syncly.config import settings
from syncly.logging_config import get_logger
from syncly.services.llm.base import LLMProvider, LLMProviderError, LLMResponse, ToolCall

logger = get_logger("llm.openai")


def _parse_tool_calls(message: dict) -> List[ToolCall]:
    calls = []
    for raw in message.get("tool_calls") or []:
        function = raw.get("function") or {}
        try:
            arguments = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning("Tool call arguments are not valid JSON", extra={"context": {"tool": function.get("name")}})
            arguments = {}
        calls.append(
            ToolCall(
                id=raw.get("id") or "",
                name=function.get("name") or "",
                arguments=arguments if isinstance(arguments, dict) else {},
            )
        )
    return calls


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self, api_key: Optional[str], default_model: str = "gpt-5-mini", base_url: Optional[str] = None):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = f"{(base_url or settings.openai_base_url).rstrip('/')}/chat/completions"

    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        max_tokens: int = 1000,
        tools: Optional[List[dict]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        if not self.api_key:
            raise LLMProviderError("OpenAI API key is not configured")

        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, tools={len(tools or [])}")

        timeout = timeout_seconds if timeout_seconds is not None else 60.0
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"OpenAI request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text[:500]}")
            raise LLMProviderError(
                f"OpenAI API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json()
        content = ""
        tool_calls: List[ToolCall] = []
        if data.get("choices"):
            message = data["choices"][0].get("message", {})
            content = message.get("content") or ""
            tool_calls = _parse_tool_calls(message)

        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}, tool_calls={len(tool_calls)}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            tool_calls=tool_calls,
        )
