"""
OpenAI Adapter - Chat completions, embeddings and image generation.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from flowmesh.config import get_settings
from node_sdk.base import BaseAdapter
from node_sdk.context import ExecutionContext
from node_sdk.credentials import ApiKeyCredentials, Credentials
from node_sdk.errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_IMAGE_MODEL = "dall-e-3"
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7

# Optional chat parameters: node config key -> API field
_CHAT_OPTIONS = {
    "topP": "top_p",
    "frequencyPenalty": "frequency_penalty",
    "presencePenalty": "presence_penalty",
    "stop": "stop",
    "responseFormat": "response_format",
}


def _build_messages(input: Dict[str, Any]) -> List[Dict[str, Any]]:
    messages = input.get("messages")
    if isinstance(messages, list) and messages:
        return messages

    built: List[Dict[str, Any]] = []
    if input.get("systemPrompt"):
        built.append({"role": "system", "content": input["systemPrompt"]})
    if input.get("prompt"):
        built.append({"role": "user", "content": input["prompt"]})
    if not built:
        raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Messages or prompt is required")
    return built


class OpenAIAdapter(BaseAdapter):
    """OpenAI REST API adapter (API key auth)."""

    provider = "openai"
    supported_operations = (
        "chat.completion",
        "chat.stream",
        "embeddings.create",
        "images.generate",
    )

    def execute_operation(
        self,
        operation: str,
        input: Dict[str, Any],
        credentials: Optional[Credentials],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        api_key = self._api_key(credentials)
        client = self.http_client(get_settings().openai_base_url, bearer_token=api_key)

        if operation == "chat.completion":
            return self.chat_completion(client, input)
        if operation == "chat.stream":
            return self.chat_stream(client, input)
        if operation == "embeddings.create":
            return self.create_embeddings(client, input)
        return self.generate_image(client, input)

    def _api_key(self, credentials: Optional[Credentials]) -> str:
        if credentials is None:
            raise ExecutionError(ErrorCode.MISSING_CREDENTIALS, "OpenAI API key is required")
        if not isinstance(credentials, ApiKeyCredentials):
            raise ExecutionError(
                ErrorCode.INVALID_CREDENTIALS, "OpenAI requires API key credentials"
            )
        return credentials.api_key

    def chat_completion(self, client: Any, input: Dict[str, Any]) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": input.get("model") or DEFAULT_CHAT_MODEL,
            "messages": _build_messages(input),
            "max_tokens": input.get("maxTokens") or DEFAULT_MAX_TOKENS,
            "temperature": (
                DEFAULT_TEMPERATURE if input.get("temperature") is None else input["temperature"]
            ),
        }
        for key, field in _CHAT_OPTIONS.items():
            if input.get(key) is not None:
                body[field] = input[key]

        result = client.post("/chat/completions", json=body).json_or_none() or {}
        choices = result.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        usage = result.get("usage") or {}
        content = message.get("content") or ""

        return {
            "content": content,
            "role": message.get("role") or "assistant",
            "finishReason": choice.get("finish_reason"),
            "model": result.get("model"),
            "usage": {
                "promptTokens": usage.get("prompt_tokens"),
                "completionTokens": usage.get("completion_tokens"),
                "totalTokens": usage.get("total_tokens"),
            },
            "output": content,
        }

    def chat_stream(self, client: Any, input: Dict[str, Any]) -> Dict[str, Any]:
        """Stream a completion and return the aggregated text."""
        model = input.get("model") or DEFAULT_CHAT_MODEL
        body = {
            "model": model,
            "messages": _build_messages(input),
            "max_tokens": input.get("maxTokens") or DEFAULT_MAX_TOKENS,
            "temperature": (
                DEFAULT_TEMPERATURE if input.get("temperature") is None else input["temperature"]
            ),
            "stream": True,
        }

        content_parts: List[str] = []
        finish_reason = ""
        with client.post("/chat/completions", json=body, stream=True) as response:
            try:
                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[len("data: "):].strip()
                    if data == "[DONE]":
                        continue
                    try:
                        chunk = json.loads(data)
                    except ValueError:
                        # Incomplete chunk
                        continue
                    choice = (chunk.get("choices") or [{}])[0]
                    delta = (choice.get("delta") or {}).get("content")
                    if delta:
                        content_parts.append(delta)
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]
            except ExecutionError:
                raise
            except Exception as e:
                raise ExecutionError(ErrorCode.STREAM_ERROR, f"Failed to read response stream: {e}") from e

        content = "".join(content_parts)
        return {
            "content": content,
            "role": "assistant",
            "finishReason": finish_reason,
            "model": model,
            "streamed": True,
            "output": content,
        }

    def create_embeddings(self, client: Any, input: Dict[str, Any]) -> Dict[str, Any]:
        text = input.get("input")
        if not text:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Input text is required")

        body: Dict[str, Any] = {
            "model": input.get("model") or DEFAULT_EMBEDDING_MODEL,
            "input": text,
        }
        if input.get("dimensions"):
            body["dimensions"] = input["dimensions"]

        result = client.post("/embeddings", json=body).json_or_none() or {}
        data = result.get("data") or []
        usage = result.get("usage") or {}
        embeddings = [d.get("embedding") for d in data]

        return {
            "embeddings": embeddings,
            "model": result.get("model"),
            "usage": {
                "promptTokens": usage.get("prompt_tokens"),
                "totalTokens": usage.get("total_tokens"),
            },
            "embedding": embeddings[0] if embeddings else [],
        }

    def generate_image(self, client: Any, input: Dict[str, Any]) -> Dict[str, Any]:
        prompt = input.get("prompt")
        if not prompt:
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "Prompt is required")

        model = input.get("model") or DEFAULT_IMAGE_MODEL
        body: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "n": input.get("n") or 1,
            "size": input.get("size") or "1024x1024",
            "response_format": input.get("responseFormat") or "url",
        }
        if model == "dall-e-3":
            body["quality"] = input.get("quality") or "standard"
            body["style"] = input.get("style") or "vivid"

        result = client.post("/images/generations", json=body).json_or_none() or {}
        images = result.get("data") or []
        first = images[0] if images else {}

        return {
            "images": images,
            "url": first.get("url") or "",
            "revisedPrompt": first.get("revised_prompt"),
            "output": first.get("url") or "",
        }


__all__ = ["OpenAIAdapter"]
