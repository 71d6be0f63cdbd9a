"""
Tokenizers used to infer usage when a generation arrives without token counts.

Each tokenizer turns a recorded input/output value (plain string, chat
message list, or arbitrary JSON) into a token count.
"""

import asyncio
from typing import Any, Dict, List, Optional

import anthropic
import orjson
import tiktoken

from app.core.exceptions import TokenizerError
from app.core.logging import get_logger
from app.models.model_definition import TokenizerConfig

logger = get_logger(__name__)

DEFAULT_ENCODING = "cl100k_base"
DEFAULT_CLAUDE_MODEL = "claude-3-5-sonnet-latest"
REPLY_PRIMING_TOKENS = 3

_encodings: Dict[str, tiktoken.Encoding] = {}


def _get_encoding(model: Optional[str]) -> tiktoken.Encoding:
    key = model or DEFAULT_ENCODING
    if key not in _encodings:
        try:
            _encodings[key] = tiktoken.encoding_for_model(key) if model else tiktoken.get_encoding(key)
        except KeyError:
            logger.info("tokenizer_model_unknown", model=model, fallback=DEFAULT_ENCODING)
            _encodings[key] = tiktoken.get_encoding(DEFAULT_ENCODING)
    return _encodings[key]


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return orjson.dumps(value, default=str).decode()


def chat_messages(value: Any) -> Optional[List[Dict[str, Any]]]:
    """Return the message list when value looks like chat input, else None."""
    if isinstance(value, dict) and isinstance(value.get("messages"), list):
        value = value["messages"]
    if isinstance(value, list) and value and all(
        isinstance(m, dict) and "role" in m for m in value
    ):
        return value
    return None


def output_text(value: Any) -> str:
    if isinstance(value, dict):
        if isinstance(value.get("content"), str):
            return value["content"]
        message = value.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
    return _to_text(value)


class Tokenizer:
    tokenizer_id: str = ""

    async def count_input(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        raise NotImplementedError

    async def count_output(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        raise NotImplementedError


class OpenAITokenizer(Tokenizer):
    """
    Local tiktoken counting. Encoding runs in a worker thread so long inputs
    do not stall the other consumers on the event loop.
    """

    tokenizer_id = "openai"

    def __init__(self, encoding_loader=_get_encoding):
        self._load = encoding_loader

    def _encode_len(self, text: str, config: TokenizerConfig) -> int:
        try:
            encoding = self._load(config.tokenizer_model)
            return len(encoding.encode(text, disallowed_special=()))
        except Exception as e:
            # tiktoken fetches encodings over the network on first use
            raise TokenizerError(
                f"tiktoken failed for '{config.tokenizer_model or DEFAULT_ENCODING}': {e}",
                self.tokenizer_id,
            ) from e

    def _count_input_sync(self, value: Any, config: TokenizerConfig) -> int:
        messages = chat_messages(value)
        if messages is not None and config.tokens_per_message is not None:
            return self._count_chat(messages, config)
        return self._encode_len(_to_text(value), config)

    async def count_input(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        if value is None:
            return None
        return await asyncio.to_thread(self._count_input_sync, value, config)

    async def count_output(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        if value is None:
            return None
        return await asyncio.to_thread(self._encode_len, output_text(value), config)

    def _count_chat(self, messages: List[Dict[str, Any]], config: TokenizerConfig) -> int:
        tokens = 0
        for message in messages:
            tokens += config.tokens_per_message or 0
            for key, value in message.items():
                if value is None:
                    continue
                tokens += self._encode_len(_to_text(value), config)
                if key == "name":
                    tokens += config.tokens_per_name or 0
        return tokens + REPLY_PRIMING_TOKENS


class ClaudeTokenizer(Tokenizer):
    """Counts tokens through Anthropic's token counting endpoint."""

    tokenizer_id = "claude"

    def __init__(self, client: anthropic.AsyncAnthropic):
        self._client = client

    async def _count(self, messages: List[Dict[str, Any]], system: Optional[str], config: TokenizerConfig) -> int:
        kwargs: Dict[str, Any] = {
            "model": config.tokenizer_model or DEFAULT_CLAUDE_MODEL,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        try:
            result = await self._client.messages.count_tokens(**kwargs)
        except anthropic.APIError as e:
            raise TokenizerError(f"Claude token count failed: {e}", self.tokenizer_id) from e
        return result.input_tokens

    async def count_input(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        if value is None:
            return None
        messages = chat_messages(value)
        if messages is None:
            return await self._count([{"role": "user", "content": _to_text(value)}], None, config)

        system_parts = [_to_text(m.get("content", "")) for m in messages if m["role"] == "system"]
        turns = [
            {"role": m["role"], "content": _to_text(m.get("content", ""))}
            for m in messages
            if m["role"] in ("user", "assistant")
        ]
        if not turns:
            turns = [{"role": "user", "content": ""}]
        return await self._count(turns, "\n".join(system_parts) or None, config)

    async def count_output(self, value: Any, config: TokenizerConfig) -> Optional[int]:
        if value is None:
            return None
        return await self._count([{"role": "user", "content": output_text(value)}], None, config)


class TokenizerRegistry:
    def __init__(self, tokenizers: Optional[Dict[str, Tokenizer]] = None):
        self._tokenizers: Dict[str, Tokenizer] = dict(tokenizers or {})

    @classmethod
    def from_settings(cls, settings) -> "TokenizerRegistry":
        tokenizers: Dict[str, Tokenizer] = {"openai": OpenAITokenizer()}
        if settings.anthropic_api_key:
            tokenizers["claude"] = ClaudeTokenizer(
                anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
            )
        else:
            logger.info("tokenizer_disabled", tokenizer="claude", reason="no anthropic_api_key")
        return cls(tokenizers)

    def get(self, tokenizer_id: Optional[str]) -> Optional[Tokenizer]:
        if not tokenizer_id:
            return None
        return self._tokenizers.get(tokenizer_id)

    def available(self) -> List[str]:
        return sorted(self._tokenizers)
