"""
Token Counter Unit Tests
"""

from claude_relay.common.token_counter import TiktokenCounter, get_token_counter


def test_tiktoken_counts_text():
    counter = TiktokenCounter()
    assert counter.count_tokens("") == 0
    assert counter.count_tokens("Hello, world!") > 0


def test_special_tokens_are_plain_text():
    assert TiktokenCounter().count_tokens("<|endoftext|>") > 0


def test_get_token_counter_is_shared():
    assert get_token_counter() is get_token_counter()


def test_count_request_includes_messages_and_tools(token_counter):
    body = {
        "messages": [{"role": "user", "content": [{"type": "text", "text": "one two"}]}],
        "tools": [{"name": "t"}],
    }
    # 4 framing + role + "one two" + 3 priming + tools json (two whitespace separated words)
    assert token_counter.count_request(body) == 4 + 1 + 2 + 3 + 2
    assert token_counter.count_request("nope") == 0
