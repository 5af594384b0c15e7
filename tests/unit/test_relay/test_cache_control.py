"""
Cache-Control Fixer Unit Tests
"""

from claude_relay.relay.cache_control import add_cache_control, fix_cache_control

CANONICAL = {"type": "ephemeral", "ttl": "1h"}


def test_fix_adds_ttl_to_bare_ephemeral():
    blocks = [{"type": "text", "text": "a", "cache_control": {"type": "ephemeral"}}]
    assert fix_cache_control(blocks) == 1
    assert blocks[0]["cache_control"] == CANONICAL


def test_fix_keeps_existing_ttl():
    blocks = [{"type": "text", "text": "a", "cache_control": {"type": "ephemeral", "ttl": "5m"}}]
    assert fix_cache_control(blocks) == 0
    assert blocks[0]["cache_control"] == {"type": "ephemeral", "ttl": "5m"}


def test_fix_ignores_non_list():
    assert fix_cache_control("text") == 0
    assert fix_cache_control(None) == 0


def test_add_marks_last_block_of_last_user_message():
    messages = [
        {"role": "user", "content": [{"type": "text", "text": "first"}]},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]},
        {"role": "assistant", "content": "last"},
    ]
    add_cache_control(messages)
    assert "cache_control" not in messages[0]["content"][0]
    assert "cache_control" not in messages[2]["content"][0]
    assert messages[2]["content"][1]["cache_control"] == CANONICAL
    assert messages[3]["content"] == "last"


def test_add_promotes_string_content():
    messages = [{"role": "user", "content": "hi"}]
    add_cache_control(messages)
    assert messages[0]["content"] == [{"type": "text", "text": "hi", "cache_control": CANONICAL}]


def test_add_never_overwrites_existing_marker():
    custom = {"type": "ephemeral", "ttl": "5m"}
    messages = [{"role": "user", "content": [{"type": "text", "text": "a", "cache_control": custom}]}]
    add_cache_control(messages)
    assert messages[0]["content"][0]["cache_control"] == {"type": "ephemeral", "ttl": "5m"}


def test_add_fixes_bare_marker_on_last_block():
    messages = [{"role": "user", "content": [{"type": "text", "text": "a", "cache_control": {"type": "ephemeral"}}]}]
    add_cache_control(messages)
    assert messages[0]["content"][0]["cache_control"] == CANONICAL


def test_add_fixes_markers_in_earlier_messages():
    messages = [
        {"role": "assistant", "content": [{"type": "text", "text": "a", "cache_control": {"type": "ephemeral"}}]},
        {"role": "user", "content": "q"},
    ]
    add_cache_control(messages)
    assert messages[0]["content"][0]["cache_control"] == CANONICAL


def test_add_empty():
    assert add_cache_control([]) == []
    assert add_cache_control(None) is None
