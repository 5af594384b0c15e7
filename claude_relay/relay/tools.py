"""
Tool & Tool-Choice Mapper

Translates OpenAI tool definitions, web search options, tool_choice and
parallel_tool_calls into their Anthropic counterparts.
"""

from typing import Any, Mapping, Optional

from claude_relay.relay.normalize import normalize_tool

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"

# search_context_size -> max_uses
WEB_SEARCH_MAX_USES = {
    "low": 1,
    "medium": 5,
    "high": 10,
}

_TOOL_CHOICE_MAP = {
    "auto": "auto",
    "required": "any",
    "none": "none",
}

_LOCATION_FIELDS = ("timezone", "country", "region", "city")


def convert_tools(
    tools: Optional[list[Any]],
    web_search_options: Optional[Mapping[str, Any]] = None,
) -> list[dict[str, Any]]:
    """
    Build the Anthropic tools list

    Args:
        tools: OpenAI tools (legacy or current shape)
        web_search_options: OpenAI web_search_options

    Returns:
        list[dict]: Anthropic tool definitions, web search tool last
    """
    claude_tools: list[dict[str, Any]] = []
    for tool in tools or []:
        converted = normalize_tool(tool)
        if converted is not None:
            claude_tools.append(converted)

    if web_search_options is not None:
        claude_tools.append(build_web_search_tool(web_search_options))
    return claude_tools


def build_web_search_tool(options: Mapping[str, Any]) -> dict[str, Any]:
    """Map OpenAI web_search_options to the Anthropic server-side web search tool."""
    tool: dict[str, Any] = {"type": WEB_SEARCH_TOOL_TYPE, "name": "web_search"}

    user_location = options.get("user_location")
    if user_location is not None:
        location: dict[str, Any] = {"type": "approximate"}
        approximate = user_location.get("approximate") if isinstance(user_location, Mapping) else None
        if isinstance(approximate, Mapping):
            for key in _LOCATION_FIELDS:
                value = approximate.get(key)
                if isinstance(value, str) and value:
                    location[key] = value
        tool["user_location"] = location

    max_uses = WEB_SEARCH_MAX_USES.get(options.get("search_context_size") or "")
    if max_uses is not None:
        tool["max_uses"] = max_uses
    return tool


def map_tool_choice(
    tool_choice: Optional[str | Mapping[str, Any]],
    parallel_tool_calls: Optional[bool] = None,
) -> Optional[dict[str, Any]]:
    """
    Map OpenAI tool_choice / parallel_tool_calls to Anthropic tool_choice

    - "auto" -> auto, "required" -> any, "none" -> none
    - {"function": {"name": n}} -> {"type": "tool", "name": n}
    - parallel_tool_calls present -> defaults to auto and sets
      disable_parallel_tool_use to its negation
    """
    claude_choice: Optional[dict[str, Any]] = None

    if isinstance(tool_choice, str):
        mapped = _TOOL_CHOICE_MAP.get(tool_choice)
        if mapped:
            claude_choice = {"type": mapped}
    elif isinstance(tool_choice, Mapping):
        function = tool_choice.get("function")
        if isinstance(function, Mapping) and isinstance(function.get("name"), str):
            claude_choice = {"type": "tool", "name": function["name"]}

    if parallel_tool_calls is not None:
        if claude_choice is None:
            claude_choice = {"type": "auto"}
        claude_choice["disable_parallel_tool_use"] = not parallel_tool_calls

    return claude_choice
