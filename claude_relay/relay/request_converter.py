"""
Request Converter

Builds the Anthropic request body from an OpenAI chat request, in legacy
completion mode (single prompt transcript) or message mode. Also prepares
requests from clients that already speak the Anthropic Messages API.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Mapping, Optional

from claude_relay.common.image import ImageResolver
from claude_relay.config import Settings
from claude_relay.relay.cache_control import add_cache_control, fix_cache_control
from claude_relay.relay.metadata import add_metadata_if_missing
from claude_relay.relay.normalize import content_to_text
from claude_relay.relay.schemas import ChatMessage, ChatRequest
from claude_relay.relay.system_prompt import inject_system_prompt
from claude_relay.relay.thinking import resolve_max_tokens, resolve_thinking
from claude_relay.relay.tools import convert_tools, map_tool_choice
from claude_relay.relay.types import PLACEHOLDER_TEXT, RequestMode

logger = logging.getLogger(__name__)

SAMPLING_FIELDS = ("top_k", "top_p", "temperature")

DEFAULT_MAX_TOKENS_TO_SAMPLE = 4096


def clear_sampling_fields(payload: dict[str, Any], pinned: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    """
    Remove top_k / top_p / temperature from an upstream payload

    Fields listed in `pinned` are set to the pinned value instead (None removes).
    """
    pinned = pinned or {}
    for key in SAMPLING_FIELDS:
        payload.pop(key, None)
        if pinned.get(key) is not None:
            payload[key] = pinned[key]
    return payload


async def convert_openai_request(
    request: ChatRequest,
    mode: RequestMode,
    settings: Settings,
    image_resolver: ImageResolver,
) -> dict[str, Any]:
    """
    Convert an OpenAI chat request for the given request mode

    Raises:
        AppError subclasses on unsupported shapes or image failures; nothing has been sent upstream yet
    """
    if mode is RequestMode.COMPLETION:
        return convert_completion_request(request)
    return await convert_message_request(request, settings, image_resolver)


def convert_completion_request(request: ChatRequest) -> dict[str, Any]:
    """Build a legacy /v1/complete body with a Human/Assistant transcript."""
    prompt = ""
    for message in request.messages:
        text = content_to_text(message.content)
        if message.role == "user":
            prompt += f"\n\nHuman: {text}"
        elif message.role == "assistant":
            prompt += f"\n\nAssistant: {text}"
        elif message.role == "system" and prompt == "":
            prompt = text
    prompt += "\n\nAssistant:"

    payload: dict[str, Any] = {
        "model": request.model,
        "prompt": prompt,
        "max_tokens_to_sample": request.get_max_tokens() or DEFAULT_MAX_TOKENS_TO_SAMPLE,
        "stream": request.stream,
    }
    if request.stop:
        payload["stop_sequences"] = list(request.stop)
    add_metadata_if_missing(payload)
    return clear_sampling_fields(payload)


async def convert_message_request(
    request: ChatRequest,
    settings: Settings,
    image_resolver: ImageResolver,
) -> dict[str, Any]:
    """Build a /v1/messages body."""
    tools = convert_tools(request.tools, request.web_search_options)

    max_tokens = resolve_max_tokens(request.get_max_tokens(), request.model, settings)
    resolution = resolve_thinking(
        request.model,
        max_tokens,
        settings,
        reasoning_effort=request.reasoning_effort,
        reasoning=request.reasoning,
    )

    payload: dict[str, Any] = {
        "model": resolution.model,
        "max_tokens": resolution.max_tokens,
        "stream": request.stream,
    }
    if tools:
        payload["tools"] = tools
    if request.tool_choice is not None or request.parallel_tool_calls is not None:
        tool_choice = map_tool_choice(request.tool_choice, request.parallel_tool_calls)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
    if resolution.thinking is not None:
        payload["thinking"] = resolution.thinking
    if request.stop is not None:
        payload["stop_sequences"] = list(request.stop)

    system_blocks, messages = await _convert_messages(flatten_messages(request.messages), image_resolver)

    system = inject_system_prompt(system_blocks or None)
    fix_cache_control(system)
    payload["system"] = system
    payload["messages"] = add_cache_control(messages)

    add_metadata_if_missing(payload)
    return clear_sampling_fields(payload, resolution.pinned)


def flatten_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """
    Merge adjacent same-role string messages and fill empty content

    Anthropic rejects consecutive turns of the same role. Tool messages and
    messages carrying tool calls are never merged.
    """
    formatted: list[ChatMessage] = []
    for message in messages:
        current = message.model_copy(deep=True)
        previous = formatted[-1] if formatted else None
        if (
            previous is not None
            and previous.role == current.role
            and current.role != "tool"
            and previous.is_string_content()
            and current.is_string_content()
            and not previous.tool_calls
            and not current.tool_calls
        ):
            current.content = f"{previous.content} {current.content}".strip('"')
            formatted.pop()
        if current.is_empty() and not current.tool_calls:
            current.content = PLACEHOLDER_TEXT
        formatted.append(current)
    return formatted


async def _convert_messages(
    messages: list[ChatMessage],
    image_resolver: ImageResolver,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    system_blocks: list[dict[str, Any]] = []
    claude_messages: list[dict[str, Any]] = []
    is_first_message = True

    for message in messages:
        if message.role == "system":
            system_blocks.append({"type": "text", "text": content_to_text(message.content)})
            continue

        if is_first_message:
            is_first_message = False
            if message.role != "user":
                claude_messages.append(
                    {"role": "user", "content": [{"type": "text", "text": PLACEHOLDER_TEXT}]}
                )

        if message.role == "tool":
            tool_result = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content if message.content is not None else PLACEHOLDER_TEXT,
            }
            if claude_messages and claude_messages[-1]["role"] == "user":
                previous = claude_messages[-1]
                if isinstance(previous["content"], str):
                    previous["content"] = [{"type": "text", "text": previous["content"]}]
                previous["content"].append(tool_result)
            else:
                claude_messages.append({"role": "user", "content": [tool_result]})
            continue

        role = message.role if message.role in ("user", "assistant") else "user"
        if message.is_string_content() and not message.tool_calls:
            claude_messages.append({"role": role, "content": message.content})
            continue

        blocks: list[dict[str, Any]] = []
        if isinstance(message.content, str):
            if message.content:
                blocks.append({"type": "text", "text": message.content})
        elif message.content:
            blocks.extend(await _convert_parts(message.content, image_resolver))
        for tool_call in message.tool_calls or []:
            tool_use = _tool_call_to_tool_use(tool_call)
            if tool_use is not None:
                blocks.append(tool_use)
        if not blocks:
            blocks.append({"type": "text", "text": PLACEHOLDER_TEXT})
        claude_messages.append({"role": role, "content": blocks})

    return system_blocks, claude_messages


async def _convert_parts(parts: list[dict[str, Any]], image_resolver: ImageResolver) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for part in parts:
        part_type = part.get("type")
        if part_type == "text":
            block = {"type": "text", "text": part.get("text") or ""}
            if "cache_control" in part:
                block["cache_control"] = copy.deepcopy(part["cache_control"])
            blocks.append(block)
        elif part_type in ("image_url", "input_image"):
            blocks.append(await _resolve_image(part, image_resolver))
        else:
            # Already an Anthropic block (image, document, ...)
            blocks.append(copy.deepcopy(part))
    return blocks


async def _resolve_image(part: dict[str, Any], image_resolver: ImageResolver) -> dict[str, Any]:
    image_url = part.get("image_url")
    url = image_url.get("url") if isinstance(image_url, dict) else image_url
    url = url or ""

    if url.startswith("http"):
        media_type, data = await image_resolver.fetch(url)
    else:
        image_format, data = image_resolver.decode_embedded(url)
        media_type = f"image/{image_format}"
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def _tool_call_to_tool_use(tool_call: dict[str, Any]) -> Optional[dict[str, Any]]:
    function = tool_call.get("function") or {}
    arguments = function.get("arguments")
    if isinstance(arguments, dict):
        input_obj = arguments
    elif arguments is None or arguments == "":
        input_obj = {}
    else:
        try:
            input_obj = json.loads(arguments)
        except (TypeError, ValueError):
            input_obj = None
        if not isinstance(input_obj, dict):
            logger.warning("tool call function arguments is not a JSON object: %r", arguments)
            return None
    return {
        "type": "tool_use",
        "id": tool_call.get("id"),
        "name": function.get("name"),
        "input": input_obj,
    }


def convert_claude_request(body: dict[str, Any]) -> dict[str, Any]:
    """
    Prepare a request that is already in Anthropic Messages format

    Injects the preamble, fixes cache markers, clears sampling fields, marks
    the last user turn and attaches metadata. The input is not mutated.
    """
    payload = copy.deepcopy(body)

    system = inject_system_prompt(payload.get("system"))
    fix_cache_control(system)
    payload["system"] = system

    clear_sampling_fields(payload)

    messages = payload.get("messages")
    if isinstance(messages, list):
        payload["messages"] = add_cache_control([m for m in messages if isinstance(m, dict)])

    return add_metadata_if_missing(payload)
