"""CompletionProvider backed by the Groq chat completions API."""

import json
import logging
from typing import Any

from groq import AsyncGroq

from ..errors import FatalError
from .types import ChatMessage, Completion, ToolCall, ToolSpec, Usage

logger = logging.getLogger(__name__)


class GroqCompletionProvider:
    """Wraps AsyncGroq behind the CompletionProvider protocol.

    Groq SDK errors are passed through untouched so the retry layer can
    classify them by type and HTTP status.

    Example:
        from groq import AsyncGroq

        provider = GroqCompletionProvider(AsyncGroq(api_key="..."))
        completion = await provider.chat([ChatMessage("user", "Hi")])
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
            temperature: Optional sampling temperature.
            max_tokens: Optional cap on completion tokens.
        """
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpec] | None = None,
    ) -> Completion:
        """Send a chat request and normalize the reply."""
        request: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
            request["tool_choice"] = "auto"
        if self._temperature is not None:
            request["temperature"] = self._temperature
        if self._max_tokens is not None:
            request["max_tokens"] = self._max_tokens

        response = await self._client.chat.completions.create(**request)
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> Completion:
        choices = getattr(response, "choices", None)
        if not choices:
            raise FatalError("Invalid completion response: no choices")

        message = choices[0].message
        if message is None:
            raise FatalError("Invalid completion response: no message")

        tool_calls = [self._parse_tool_call(tc) for tc in message.tool_calls or []]

        usage = None
        raw_usage = getattr(response, "usage", None)
        if raw_usage is not None:
            usage = Usage(
                prompt_tokens=raw_usage.prompt_tokens or 0,
                completion_tokens=raw_usage.completion_tokens or 0,
                total_tokens=raw_usage.total_tokens or 0,
            )

        return Completion(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
        )

    def _parse_tool_call(self, tool_call: Any) -> ToolCall:
        """Decode one tool call; malformed arguments are flagged, not raised."""
        name = tool_call.function.name
        raw_args = tool_call.function.arguments or "{}"
        try:
            parameters = json.loads(raw_args)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed arguments for tool {name}: {e}")
            return ToolCall(
                id=tool_call.id,
                name=name,
                parse_error=f"Malformed arguments: {e}",
            )

        if not isinstance(parameters, dict):
            return ToolCall(
                id=tool_call.id,
                name=name,
                parse_error="Arguments must be a JSON object",
            )

        return ToolCall(id=tool_call.id, name=name, parameters=parameters)
