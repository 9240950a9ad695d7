import asyncio
import json

import httpx
import pytest

from freeflow.rewriter import (
    SYSTEM_PROMPT,
    InvalidResponse,
    RequestFailed,
    Rewriter,
    build_system_prompt,
    sanitize_output,
)


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def make_rewriter(handler):
    return Rewriter("groq-key", base_url="https://llm.test/v1", transport=httpx.MockTransport(handler))


def test_sanitize_strips_wrapping_quotes():
    assert sanitize_output('  "Hello team."  ') == "Hello team."


def test_sanitize_drops_preamble_and_collapses_blank_lines():
    raw = "Here is the rewritten text:\nHello team.\n\n\n\nBest,\nAnn\n\n"

    assert sanitize_output(raw) == "Hello team.\n\nBest,\nAnn"


def test_sanitize_unwraps_before_filtering():
    raw = '"Here\'s the email:\nHi Ann,\n\nSee you Friday.\n[No further text provided]"'

    assert sanitize_output(raw) == "Hi Ann,\n\nSee you Friday."


def test_sanitize_quote_wrapped_line_is_not_a_preamble():
    # Only a quote pair around the whole output is removed; the first line
    # still begins with a quote, so no banned prefix matches it.
    raw = '"Here is the rewritten text: Hello team."\n\n\nBest,\nAnn'

    assert sanitize_output(raw) == '"Here is the rewritten text: Hello team."\n\nBest,\nAnn'


def test_sanitize_drops_content_lines_starting_with_banned_phrase():
    # Known false positive: a real sentence that starts like a preamble is lost.
    assert sanitize_output("Based on context, we ship Friday.\nThanks") == "Thanks"


def test_sanitize_keeps_indentation_of_kept_lines():
    assert sanitize_output("Agenda:\n  - budget\n  - hiring") == "Agenda:\n  - budget\n  - hiring"


def test_sanitize_empty_output():
    assert sanitize_output("  \n\n ") == ""
    assert sanitize_output('""') == ""


def test_build_system_prompt_appends_vocabulary_only_when_present():
    assert build_system_prompt([]) == SYSTEM_PROMPT
    prompt = build_system_prompt(["Deep Thought", "Aanya"])
    assert prompt.startswith(SYSTEM_PROMPT)
    assert prompt.endswith("Deep Thought, Aanya")


def test_system_prompt_carries_quote_and_vocabulary_rules():
    rules = [line for line in SYSTEM_PROMPT.splitlines() if line.startswith("- ")]

    assert len(rules) == 23
    assert "- Do not return the final output wrapped in quotes." in rules
    assert any(rule.startswith("- If the raw model output is fully wrapped in quotation marks") for rule in rules)
    assert any(rule.startswith("- Correct transcribed names and entities using the custom vocabulary") for rule in rules)
    assert rules[-1] == "- Return only the rewritten transcript text."


def test_rewrite_sends_deterministic_request():
    captured = {}

    def handler(request):
        captured["request"] = request
        return completion('"Here is the rewritten text:\nHi Aanya Shah, see you at ten."')

    result = asyncio.run(
        make_rewriter(handler).rewrite(
            "hi anya shah um see you at ten",
            "Email to Aanya Shah",
            "Deep Thought",
        )
    )

    request = captured["request"]
    payload = json.loads(request.content)
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer groq-key"
    assert payload["temperature"] == 0.0
    assert payload["model"] == "meta-llama/llama-4-scout-17b-16e-instruct"
    system, user = payload["messages"]
    assert system["role"] == "system"
    assert system["content"].endswith("Deep Thought, Aanya Shah, Thought, Aanya, Deep, Shah")
    assert user["role"] == "user"
    assert "hi anya shah um see you at ten" in user["content"]
    assert "Email to Aanya Shah" in user["content"]

    assert result.text == "Hi Aanya Shah, see you at ten."
    assert result.prompt_used == f"SYSTEM:\n{system['content']}\n\nUSER:\n{user['content']}"


def test_rewrite_without_vocabulary_uses_base_prompt():
    captured = {}

    def handler(request):
        captured["payload"] = json.loads(request.content)
        return completion("ok")

    asyncio.run(make_rewriter(handler).rewrite("ok", "Notes app", ""))

    assert captured["payload"]["messages"][0]["content"] == SYSTEM_PROMPT


def test_rewrite_non_success_status():
    def handler(request):
        return httpx.Response(429, text="rate limited")

    with pytest.raises(RequestFailed) as excinfo:
        asyncio.run(make_rewriter(handler).rewrite("text", "", ""))

    assert excinfo.value.status_code == 429
    assert excinfo.value.body == "rate limited"


def test_rewrite_transport_failure():
    def handler(request):
        raise httpx.ConnectTimeout("timed out")

    with pytest.raises(RequestFailed) as excinfo:
        asyncio.run(make_rewriter(handler).rewrite("text", "", ""))

    assert excinfo.value.status_code == 0


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"choices": []}),
        httpx.Response(200, json={"choices": [{"message": {}}]}),
        httpx.Response(200, json={"choices": [{"message": {"content": None}}]}),
        httpx.Response(200, text="not json"),
    ],
)
def test_rewrite_invalid_response(response):
    def handler(request):
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    with pytest.raises(InvalidResponse):
        asyncio.run(make_rewriter(handler).rewrite("text", "", ""))
