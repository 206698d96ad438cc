import asyncio
from types import MappingProxyType

import pytest

from conftest import NOW
from guru_gateway.ai.client import split_system_messages
from guru_gateway.ai.dispatcher import (
    CONTEXT_TRUNCATION_MARKER,
    RequestDispatcher,
    estimate_tokens,
    parse_reply,
    render_context,
)
from guru_gateway.config import AIConfig, ContextConfig
from guru_gateway.context.assembler import ContextSnapshot
from guru_gateway.conversation.models import Message
from guru_gateway.core.errors import ModelUnavailable
from guru_gateway.core.types import MessageRole


def _snapshot(sections=None, missing=()):
    return ContextSnapshot(
        page="deals",
        generated_at=NOW,
        sections=MappingProxyType(sections or {"recent_deals": ({"id": "deal-1", "title": "Acme"},)}),
        missing=missing,
    )


@pytest.fixture
def dispatcher(ai_client, clock):
    return RequestDispatcher(ai_client, AIConfig(), ContextConfig(), clock=clock)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_render_context_truncates_to_exact_length():
    big = {"recent_deals": tuple({"id": f"deal-{i}", "title": "x" * 40} for i in range(50))}
    rendered = render_context(_snapshot(big), 200)

    assert len(rendered) == 200
    assert rendered.endswith(CONTEXT_TRUNCATION_MARKER)
    assert render_context(_snapshot(big), 200) == rendered


def test_render_context_small_snapshot_untouched():
    rendered = render_context(_snapshot(), 4000)
    assert CONTEXT_TRUNCATION_MARKER not in rendered
    assert '"title": "Acme"' in rendered


def test_messages_have_one_leading_system_entry(dispatcher):
    history = [
        Message.create(MessageRole.ASSISTANT, "Hi! I'm Guru"),
        Message.create(MessageRole.USER, "earlier question"),
        Message.create(MessageRole.SYSTEM, "limit notice"),
        Message.create(MessageRole.ASSISTANT, "earlier answer"),
    ]
    messages = dispatcher.build_messages(history, "what now?", _snapshot(), "manager", "Deals")

    roles = [m["role"] for m in messages]
    assert roles == ["system", "assistant", "user", "assistant", "user"]
    assert messages[-1] == {"role": "user", "content": "what now?"}
    system = messages[0]["content"]
    assert "Role: manager" in system
    assert "Current page: Deals (deals)" in system
    assert "Current time (UTC): 2026-10-19T15:30:00Z" in system
    assert "Acme" in system


def test_system_prompt_notes_missing_sections(dispatcher):
    prompt = dispatcher.build_system_prompt(_snapshot(missing=("stage_history",)), "user", "Deals")
    assert "Unavailable right now: stage_history" in prompt


def test_system_prompt_truncates_large_context(ai_client, clock):
    dispatcher = RequestDispatcher(ai_client, AIConfig(), ContextConfig(max_context_chars=200), clock=clock)
    big = {"recent_deals": tuple({"id": f"deal-{i}", "notes": "y" * 100} for i in range(30))}

    prompt = dispatcher.build_system_prompt(_snapshot(big), "user", "Deals")
    assert CONTEXT_TRUNCATION_MARKER in prompt


async def test_dispatch_returns_reply_and_estimate(dispatcher, ai_client):
    ai_client.replies.append("Three deals are open.")

    result = await dispatcher.dispatch([], "how many deals?", _snapshot(), "user", "Deals")

    assert result.text == "Three deals are open."
    assert result.metadata is None
    assert result.prompt == "how many deals?"
    assert result.model == AIConfig().model
    prompt_chars = "".join(m["content"] for m in result.messages)
    assert result.tokens.prompt_tokens == estimate_tokens(prompt_chars)
    assert result.tokens.reply_tokens == estimate_tokens("Three deals are open.")
    assert result.tokens.total == result.tokens.prompt_tokens + result.tokens.reply_tokens
    assert (result.input_tokens, result.output_tokens) == (10, 10)
    assert len(ai_client.calls) == 1


async def test_dispatch_timeout_is_model_unavailable(ai_client, clock):
    dispatcher = RequestDispatcher(ai_client, AIConfig(request_timeout=0.01), ContextConfig(), clock=clock)
    ai_client.delay = 1.0

    with pytest.raises(ModelUnavailable, match="timed out"):
        await dispatcher.dispatch([], "hello", _snapshot())


async def test_dispatch_backend_error_is_model_unavailable(dispatcher, ai_client):
    ai_client.error = ConnectionError("upstream reset")

    with pytest.raises(ModelUnavailable, match="upstream reset"):
        await dispatcher.dispatch([], "hello", _snapshot())


async def test_dispatch_empty_reply_is_model_unavailable(dispatcher, ai_client):
    ai_client.replies.append("   ")

    with pytest.raises(ModelUnavailable):
        await dispatcher.dispatch([], "hello", _snapshot())


async def test_dispatch_parses_envelope(dispatcher, ai_client):
    ai_client.replies.append(
        '{"content": "Follow up with Acme.", "confidence": 85, "sources": ["deals"], '
        '"actions": [{"label": "Create task", "type": "create_task", "data": {"title": "Call Acme"}}]}'
    )

    result = await dispatcher.dispatch([], "next step?", _snapshot())

    assert result.text == "Follow up with Acme."
    assert result.metadata.confidence_score == 85
    assert result.metadata.sources == ("deals",)
    action = result.metadata.suggested_actions[0]
    assert (action.label, action.action_id, action.payload) == ("Create task", "create_task", {"title": "Call Acme"})


class TestParseReply:
    def test_plain_text_passes_through(self):
        assert parse_reply("  Just text.  ") == ("Just text.", None)

    def test_code_fenced_json(self):
        text, metadata = parse_reply('```json\n{"content": "Fenced", "confidence": 150}\n```')
        assert text == "Fenced"
        assert metadata.confidence_score == 100

    def test_invalid_json_kept_verbatim(self):
        raw = '{"content": "broken"'
        assert parse_reply(raw) == (raw, None)

    def test_envelope_without_content_kept_verbatim(self):
        raw = '{"confidence": 50}'
        assert parse_reply(raw) == (raw, None)

    def test_content_only_has_no_metadata(self):
        assert parse_reply('{"content": "Only content"}') == ("Only content", None)

    def test_malformed_fields_ignored(self):
        text, metadata = parse_reply(
            '{"content": "ok", "confidence": "high", "sources": "deals", '
            '"actions": ["bad", {"label": "no id"}, {"action_id": "navigate", "payload": {"page": "tasks"}}]}'
        )
        assert text == "ok"
        assert metadata.confidence_score is None
        assert metadata.sources == ()
        assert [(a.label, a.action_id) for a in metadata.suggested_actions] == [("Navigate", "navigate")]


class TestSplitSystemMessages:
    def test_system_extracted_and_leading_assistant_dropped(self):
        system, turns = split_system_messages([
            {"role": "system", "content": "rules"},
            {"role": "assistant", "content": "welcome"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ])
        assert system == "rules"
        assert turns == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

    def test_consecutive_same_role_merged(self):
        _, turns = split_system_messages([
            {"role": "user", "content": "first"},
            {"role": "user", "content": "second"},
        ])
        assert turns == [{"role": "user", "content": "first\n\nsecond"}]


async def test_dispatch_does_not_block_other_calls(dispatcher, ai_client):
    ai_client.gate = asyncio.Event()
    pending = asyncio.create_task(dispatcher.dispatch([], "slow", _snapshot()))
    await asyncio.sleep(0)

    assert not pending.done()
    ai_client.gate.set()
    result = await pending
    assert result.prompt == "slow"
