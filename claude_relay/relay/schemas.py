"""
OpenAI Chat Request Schema

Pydantic models for the inbound chat completions body. Loosely typed fields
are normalized once by validators; unknown fields are kept.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from claude_relay.common.errors import UnsupportedShapeError
from claude_relay.relay.normalize import (
    Content,
    normalize_content,
    normalize_stop,
    normalize_tool_choice,
)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = "user"
    content: Optional[Content] = None
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[list[dict[str, Any]]] = None

    @field_validator("content", mode="before")
    @classmethod
    def _normalize_content(cls, value: Any) -> Optional[Content]:
        return normalize_content(value)

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, value: Any) -> str:
        return value or "user"

    def is_string_content(self) -> bool:
        return isinstance(self.content, str)

    def is_empty(self) -> bool:
        return self.content is None or self.content == "" or self.content == []


class ChatRequest(BaseModel):
    """OpenAI chat completions request."""

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[ChatMessage] = []
    tools: Optional[list[Any]] = None
    tool_choice: Optional[str | dict[str, Any]] = None
    parallel_tool_calls: Optional[bool] = None
    stop: Optional[list[str]] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stream: bool = False
    stream_options: Optional[dict[str, Any]] = None
    max_tokens: Optional[int] = None
    max_completion_tokens: Optional[int] = None
    reasoning_effort: Optional[str] = None
    reasoning: Any = None
    web_search_options: Optional[dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_functions(cls, data: Any) -> Any:
        """
        Normalize legacy function-calling fields

        - functions -> tools
        - function_call -> tool_choice
        """
        if not isinstance(data, dict):
            return data
        out = dict(data)
        if "tools" not in out and isinstance(out.get("functions"), list):
            out["tools"] = [
                {"type": "function", "function": fn}
                for fn in out["functions"]
                if isinstance(fn, dict) and fn.get("name")
            ]
        if "tool_choice" not in out and "function_call" in out:
            fc = out["function_call"]
            if isinstance(fc, str):
                out["tool_choice"] = fc
            elif isinstance(fc, dict) and fc.get("name"):
                out["tool_choice"] = {"type": "function", "function": {"name": fc["name"]}}
        out.pop("functions", None)
        out.pop("function_call", None)
        return out

    @field_validator("stop", mode="before")
    @classmethod
    def _normalize_stop(cls, value: Any) -> Optional[list[str]]:
        return normalize_stop(value)

    @field_validator("tool_choice", mode="before")
    @classmethod
    def _normalize_tool_choice(cls, value: Any) -> Any:
        return normalize_tool_choice(value)

    def get_max_tokens(self) -> int:
        """max_completion_tokens wins over max_tokens; 0 when neither is set."""
        return self.max_completion_tokens or self.max_tokens or 0

    @property
    def include_usage(self) -> bool:
        return bool(self.stream_options and self.stream_options.get("include_usage"))


def parse_chat_request(body: Any) -> ChatRequest:
    """
    Validate an inbound body

    Raises:
        UnsupportedShapeError: Body or one of its fields has an unrecognized shape
    """
    if not isinstance(body, dict):
        raise UnsupportedShapeError("body", body)
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as e:
        errors = e.errors()
        location = ".".join(str(part) for part in errors[0]["loc"]) if errors else "body"
        raise UnsupportedShapeError(location, message=f"Invalid request field '{location}': {errors[0]['msg'] if errors else e}") from e
