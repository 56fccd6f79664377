"""OpenAI chat-completions provider for the echotest conversation loop."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from echotest.config.settings import get_settings
from echotest.core.interfaces import LanguageModelProvider
from echotest.core.types import (
    ConversationMessage,
    FinishReason,
    ImageBlock,
    ProviderResponse,
    ProviderToolCall,
    TextBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from echotest.error_handling.exceptions import ConfigurationError, ProviderError, RateLimitError

IMAGE_PLACEHOLDER = "[screenshot attached in the next message]"

_FINISH_REASONS = {
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "stop": FinishReason.STOP,
}


def map_finish_reason(raw: Optional[str], has_tool_calls: bool = False) -> FinishReason:
    """Normalise an OpenAI finish reason."""
    if has_tool_calls and raw in (None, "stop", "tool_calls", "function_call"):
        return FinishReason.TOOL_CALLS
    if raw is None:
        return FinishReason.OTHER
    return _FINISH_REASONS.get(raw, FinishReason.OTHER)


def _image_part(block: ImageBlock) -> Dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
    }


def to_chat_messages(system: str, history: Sequence[ConversationMessage]) -> List[Dict[str, Any]]:
    """
    Convert the conversation history into chat-completions messages.

    Tool results become ``tool`` messages directly after the assistant turn
    that requested them. Images cannot be sent in a tool message, so they
    follow in one extra user message.
    """
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]

    for message in history:
        if message.role == "assistant":
            text = message.text()
            entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
            tool_uses = message.tool_uses()
            if tool_uses:
                entry["tool_calls"] = [
                    {
                        "id": block.id,
                        "type": "function",
                        "function": {"name": block.name, "arguments": json.dumps(block.input)},
                    }
                    for block in tool_uses
                ]
            messages.append(entry)
            continue

        parts: List[Dict[str, Any]] = []
        images: List[Dict[str, Any]] = []
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                texts = [item.text for item in block.content if isinstance(item, TextBlock)]
                block_images = [item for item in block.content if isinstance(item, ImageBlock)]
                if block_images:
                    texts.append(IMAGE_PLACEHOLDER)
                    images.extend(_image_part(image) for image in block_images)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": block.tool_use_id,
                        "content": "\n".join(texts),
                    }
                )
            elif isinstance(block, TextBlock):
                parts.append({"type": "text", "text": block.text})
            elif isinstance(block, ImageBlock):
                parts.append(_image_part(block))

        if images:
            messages.append({"role": "user", "content": images})
        if parts:
            messages.append({"role": "user", "content": parts})

    return messages


def _parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIProvider(LanguageModelProvider):
    """Tool-calling provider backed by the OpenAI chat completions API."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        request_timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            model: Model to use for completions
            api_key: Optional API key (defaults to env/config)
            base_url: Optional API base URL
            temperature: Sampling temperature
            request_timeout: Per-request timeout in seconds
            client: Pre-built client, mainly for tests
        """
        settings = get_settings()
        self.model = model or settings.openai_model
        self.temperature = temperature if temperature is not None else settings.openai_temperature
        self.request_timeout = request_timeout or float(settings.openai_request_timeout_seconds)
        self.logger = logging.getLogger("openai_provider")

        if client is not None:
            self.client = client
            return

        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ConfigurationError(
                "OpenAI API key not provided. Set OPENAI_API_KEY environment variable."
            )
        # Retries are owned by the conversation loop.
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.openai_base_url,
            max_retries=0,
        )

    async def complete(
        self,
        system: str,
        history: Sequence[ConversationMessage],
        tools: List[Dict[str, Any]],
        max_tokens: int,
    ) -> ProviderResponse:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": to_chat_messages(system, history),
            "temperature": self.temperature,
            "max_completion_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = [{"type": "function", "function": tool} for tool in tools]

        self.logger.debug(
            f"OpenAI API call: model={self.model}, messages={len(kwargs['messages'])}"
        )

        try:
            response = await self.client.chat.completions.create(
                timeout=self.request_timeout,
                **kwargs,
            )
        except openai.RateLimitError as e:
            self.logger.warning(f"OpenAI rate limit: {e}")
            raise RateLimitError(str(e), cause=e) from e
        except openai.APIStatusError as e:
            self.logger.error(f"OpenAI API error: {e}")
            raise ProviderError(str(e), status_code=e.status_code, cause=e) from e
        except openai.APIError as e:
            self.logger.error(f"OpenAI connection error: {e}")
            raise ProviderError(str(e), cause=e) from e

        return self._to_provider_response(response)

    def _to_provider_response(self, response: Any) -> ProviderResponse:
        if not response.choices:
            return ProviderResponse(finish_reason=FinishReason.ERROR)

        choice = response.choices[0]
        message = choice.message
        text = message.content or ""

        tool_calls: List[ProviderToolCall] = []
        for raw_call in message.tool_calls or []:
            arguments = _parse_arguments(raw_call.function.arguments)
            tool_calls.append(
                ProviderToolCall(id=raw_call.id, name=raw_call.function.name, input=arguments)
            )

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        content: List[Any] = []
        if text:
            content.append(TextBlock(text=text))
        content.extend(
            ToolUseBlock(id=call.id, name=call.name, input=call.input) for call in tool_calls
        )

        return ProviderResponse(
            text=text,
            finish_reason=map_finish_reason(choice.finish_reason, bool(tool_calls)),
            tool_calls=tool_calls,
            usage=usage,
            response_messages=[ConversationMessage(role="assistant", content=content)],
        )
