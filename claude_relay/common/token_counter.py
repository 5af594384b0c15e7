"""
Token Counter Module

Local token counting, used only as a fallback when upstream usage is absent
or incomplete, and to estimate prompt tokens for legacy completion requests.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

import tiktoken


class TokenCounter(ABC):
    """
    Token Counter Abstract Base Class

    Defines the standard interface for Token counting, with concrete implementations provided by subclasses.
    """

    @abstractmethod
    def count_tokens(self, text: str, model: str = "") -> int:
        """
        Count tokens in text

        Args:
            text: Text to count
            model: Model name (different models may use different tokenizers)

        Returns:
            int: Token count
        """
        pass

    def count_messages(self, messages: list[dict[str, Any]], model: str = "") -> int:
        """
        Count tokens in an OpenAI style message list

        Args:
            messages: Message list, e.g., [{"role": "user", "content": "Hello"}]
            model: Model name

        Returns:
            int: Token count
        """
        if not messages:
            return 0

        total_tokens = 0
        for message in messages:
            if not isinstance(message, dict):
                continue
            # <|start|>role<|separator|>content<|end|>
            total_tokens += 4
            total_tokens += self.count_tokens(str(message.get("role") or ""), model)
            total_tokens += self.count_tokens(_extract_text_from_content(message.get("content")), model)
            tool_calls = message.get("tool_calls")
            if tool_calls:
                total_tokens += self.count_tokens(json.dumps(tool_calls, ensure_ascii=False), model)

        # Every reply is primed with <|start|>assistant<|message|>
        total_tokens += 3
        return total_tokens

    def count_request(self, body: dict[str, Any], model: str = "") -> int:
        """
        Count prompt tokens of an OpenAI chat request body (messages + tools).
        """
        if not isinstance(body, dict):
            return 0
        total = 0
        messages = body.get("messages")
        if isinstance(messages, list):
            total += self.count_messages(messages, model)
        tools = body.get("tools")
        if isinstance(tools, list) and tools:
            total += self.count_tokens(json.dumps(tools, ensure_ascii=False), model)
        return total


class TiktokenCounter(TokenCounter):
    """
    Tiktoken Token Counter

    Claude has no public tokenizer; cl100k_base is used as the closest estimate.
    """

    DEFAULT_ENCODING = "cl100k_base"

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self._encoding: Any = None

    def _get_encoding(self) -> Any:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count_tokens(self, text: str, model: str = "") -> int:
        if not text:
            return 0
        return len(self._get_encoding().encode(text, disallowed_special=()))


_default_counter: TokenCounter | None = None


def get_token_counter() -> TokenCounter:
    """
    Get the process-wide token counter

    Returns:
        TokenCounter: Shared counter instance (encodings are cached)
    """
    global _default_counter
    if _default_counter is None:
        _default_counter = TiktokenCounter()
    return _default_counter


def _extract_text_from_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return ""
