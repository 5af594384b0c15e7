"""
Field Normalizer

Pure functions that coerce the accepted legacy and current shapes of loosely
typed request fields into one canonical shape. Nothing downstream inspects
the raw shape again.
"""

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from claude_relay.common.errors import InvalidStopSequenceError, UnsupportedShapeError

Content = str | list[dict[str, Any]]


def normalize_content(value: Any) -> Optional[Content]:
    """
    Normalize message content

    - str -> str
    - typed mapping -> [mapping]
    - list of typed mappings / strings -> list of typed mappings (strings become text parts)
    - None -> None
    """
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return [_typed_part(value, "content")]
    if isinstance(value, list):
        parts: list[dict[str, Any]] = []
        for item in value:
            if isinstance(item, str):
                parts.append({"type": "text", "text": item})
            elif isinstance(item, Mapping):
                parts.append(_typed_part(item, "content"))
            elif isinstance(item, BaseModel):
                parts.append(_typed_part(item.model_dump(exclude_none=True), "content"))
            else:
                raise UnsupportedShapeError("content", item)
        return parts
    raise UnsupportedShapeError("content", value)


def _typed_part(part: Mapping[str, Any], field: str) -> dict[str, Any]:
    out = dict(part)
    part_type = out.get("type")
    if part_type is None:
        if "text" in out:
            out["type"] = "text"
        elif "image_url" in out:
            out["type"] = "image_url"
        else:
            raise UnsupportedShapeError(field, part, message=f"Untyped part in '{field}'")
    elif not isinstance(part_type, str):
        raise UnsupportedShapeError(field, part_type)
    return out


def content_to_text(content: Optional[Content]) -> str:
    """Concatenate the text parts of normalized content."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(
        part.get("text", "")
        for part in content
        if part.get("type") == "text" and isinstance(part.get("text"), str)
    )


def normalize_stop(value: Any) -> Optional[list[str]]:
    """
    Normalize stop sequences

    Raises:
        InvalidStopSequenceError: A list element is not a string
        UnsupportedShapeError: Neither string nor list
    """
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        stops: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise InvalidStopSequenceError(item)
            stops.append(item)
        return stops
    raise UnsupportedShapeError("stop", value)


def normalize_tool(tool: Any) -> Optional[dict[str, Any]]:
    """
    Normalize one tool definition to {name, description, input_schema}

    Accepts the current shape (name / description / input_schema at the root)
    and the legacy function shape ({"type": "function", "function": {...}}).
    A legacy tool whose parameters are not a mapping is skipped (None).
    Unknown keys of the parameters root pass through unchanged.
    """
    if isinstance(tool, BaseModel):
        tool = tool.model_dump(exclude_none=True)
    if not isinstance(tool, Mapping):
        raise UnsupportedShapeError("tools", tool)

    function = tool.get("function")
    if function is None:
        return {
            "name": tool.get("name"),
            "description": tool.get("description"),
            "input_schema": tool.get("input_schema"),
        }

    if not isinstance(function, Mapping):
        raise UnsupportedShapeError("tools.function", function)
    params = function.get("parameters")
    if not isinstance(params, Mapping):
        return None

    input_schema: dict[str, Any] = {}
    if params.get("type") is not None:
        input_schema["type"] = params["type"]
    input_schema["properties"] = params.get("properties")
    input_schema["required"] = params.get("required")
    for key, value in params.items():
        if key in ("type", "properties", "required"):
            continue
        input_schema[key] = value

    return {
        "name": function.get("name"),
        "description": function.get("description"),
        "input_schema": input_schema,
    }


def normalize_system(value: Any) -> Optional[list[dict[str, Any]]]:
    """
    Normalize the Anthropic `system` field to a list of canonical text blocks

    Accepted shapes: string, typed list, untyped list (non-mapping entries are
    dropped), pre-canonical list, list of pydantic media blocks.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return [{"type": "text", "text": value}]
    if not isinstance(value, (list, tuple)):
        raise UnsupportedShapeError("system", value)

    blocks: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, BaseModel):
            item = item.model_dump(exclude_none=True)
        if isinstance(item, str):
            blocks.append({"type": "text", "text": item})
            continue
        if not isinstance(item, Mapping):
            continue
        blocks.append(canonical_system_block(item))
    return blocks


def canonical_system_block(item: Mapping[str, Any]) -> dict[str, Any]:
    block: dict[str, Any] = {"type": item.get("type") or "text"}
    if item.get("text") is not None:
        block["text"] = item["text"]
    for key, value in item.items():
        if key in ("type", "text"):
            continue
        block[key] = copy.deepcopy(value)
    return block


def normalize_tool_choice(value: Any) -> Optional[str | dict[str, Any]]:
    """Normalize tool_choice to a string directive or a mapping."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return dict(value)
    raise UnsupportedShapeError("tool_choice", value)
