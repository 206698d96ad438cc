"""Builds the model prompt, calls the backend, and parses the reply."""

from __future__ import annotations

import asyncio
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from guru_gateway.ai.client import AIClient
from guru_gateway.config import AIConfig, ContextConfig
from guru_gateway.context.assembler import ContextSnapshot
from guru_gateway.conversation.models import Message, MessageMetadata, SuggestedAction
from guru_gateway.core.errors import ModelUnavailable
from guru_gateway.core.types import MessageRole
from guru_gateway.log import get_logger
from guru_gateway.storage.models import utcnow

logger = get_logger(__name__)

CONTEXT_TRUNCATION_MARKER = "...[context truncated]"

_INSTRUCTIONS = """**Guidelines:**
- Be helpful, professional, and concise.
- Respond in a structured format: short paragraphs or bullet lists, most important point first.
- For analytical questions, be specific with numbers (counts, values, dates) taken from the CRM data.
- Only rely on the CRM data above; say so when it does not contain the answer.

**Optional response format:**
When you want to attach suggested actions or sources, reply with a single JSON object:
{"content": "your answer", "confidence": 0-100, "sources": ["..."],
 "actions": [{"label": "...", "type": "create_task|compose_email|navigate", "data": {}}]}
Otherwise reply with plain text."""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


@dataclass(frozen=True, slots=True)
class TokenEstimate:
    prompt_tokens: int
    reply_tokens: int

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.reply_tokens


@dataclass(frozen=True, slots=True)
class DispatchResult:
    text: str
    metadata: Optional[MessageMetadata]
    prompt: str
    messages: tuple[dict[str, Any], ...]
    tokens: TokenEstimate
    model: str
    # as reported by the backend; 0 when it reports nothing
    input_tokens: int = 0
    output_tokens: int = 0


def render_context(snapshot: ContextSnapshot, max_chars: int) -> str:
    """JSON-render the snapshot sections, cut to *max_chars* characters."""
    rendered = json.dumps(dict(snapshot.sections), default=str, sort_keys=True)
    if len(rendered) <= max_chars:
        return rendered
    return rendered[: max_chars - len(CONTEXT_TRUNCATION_MARKER)] + CONTEXT_TRUNCATION_MARKER


def parse_reply(raw: str) -> tuple[str, Optional[MessageMetadata]]:
    """Unwrap a JSON-envelope reply into text and metadata; plain text passes through."""
    text = raw.strip()
    fenced = _CODE_FENCE.match(text)
    candidate = fenced.group(1) if fenced else text
    if not candidate.startswith("{"):
        return text, None

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return text, None

    content = data.get("content") if isinstance(data, dict) else None
    if not isinstance(content, str) or not content.strip():
        return text, None

    confidence = _parse_confidence(data.get("confidence"))
    raw_sources = data.get("sources")
    sources = (
        tuple(str(s) for s in raw_sources if isinstance(s, (str, int, float)))
        if isinstance(raw_sources, list)
        else ()
    )
    actions = tuple(_parse_actions(data.get("actions")))

    if confidence is None and not sources and not actions:
        return content.strip(), None
    return content.strip(), MessageMetadata(
        confidence_score=confidence,
        sources=sources,
        suggested_actions=actions,
    )


def _parse_confidence(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        score = round(float(value))
    except (ValueError, OverflowError):
        return None
    return max(0, min(100, score))


def _parse_actions(value: Any) -> list[SuggestedAction]:
    if not isinstance(value, list):
        return []
    actions = []
    for item in value:
        if not isinstance(item, dict):
            continue
        action_id = item.get("action_id") or item.get("type")
        if not action_id:
            continue
        label = item.get("label") or str(action_id).replace("_", " ").capitalize()
        payload = item.get("payload") or item.get("data")
        actions.append(
            SuggestedAction(
                label=str(label),
                action_id=str(action_id),
                payload=payload if isinstance(payload, dict) else None,
            )
        )
    return actions


class RequestDispatcher:
    """Turns a conversation plus a context snapshot into one model call."""

    def __init__(
        self,
        client: AIClient,
        ai_config: AIConfig,
        context_config: ContextConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._ai = ai_config
        self._max_context_chars = context_config.max_context_chars
        self._clock = clock

    @property
    def model(self) -> str:
        return self._ai.model

    def build_system_prompt(self, context: ContextSnapshot, role_name: str, page_title: str) -> str:
        lines = [
            f"You are {self._ai.assistant_name}, an AI sales assistant embedded in a CRM.",
            "",
            "**User Context:**",
            f"- Role: {role_name or 'user'}",
            f"- Current page: {page_title} ({context.page})",
            f"- Current time (UTC): {self._clock().strftime('%Y-%m-%dT%H:%M:%SZ')}",
            "",
            "**CRM Data:**",
            render_context(context, self._max_context_chars),
        ]
        if context.missing:
            lines.append(f"(Unavailable right now: {', '.join(context.missing)})")
        lines += ["", _INSTRUCTIONS]
        return "\n".join(lines)

    def build_messages(
        self,
        history: Sequence[Message],
        user_text: str,
        context: ContextSnapshot,
        role_name: str = "",
        page_title: str = "",
    ) -> list[dict[str, Any]]:
        """One system message, the prior user/assistant turns, then the new user turn."""
        messages = [
            {"role": "system", "content": self.build_system_prompt(context, role_name, page_title or context.page)}
        ]
        messages += [
            m.to_api_dict()
            for m in history
            if m.role in (MessageRole.USER, MessageRole.ASSISTANT)
        ]
        messages.append({"role": "user", "content": user_text})
        return messages

    async def dispatch(
        self,
        history: Sequence[Message],
        user_text: str,
        context: ContextSnapshot,
        role_name: str = "",
        page_title: str = "",
    ) -> DispatchResult:
        messages = self.build_messages(history, user_text, context, role_name, page_title)
        prompt_chars = "".join(m["content"] for m in messages)

        try:
            response = await asyncio.wait_for(
                self._client.complete(
                    messages,
                    model=self._ai.model,
                    max_tokens=self._ai.max_tokens,
                    temperature=self._ai.temperature,
                ),
                timeout=self._ai.request_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("model_timeout", timeout=self._ai.request_timeout, model=self._ai.model)
            raise ModelUnavailable(f"Model call timed out after {self._ai.request_timeout}s") from e
        except Exception as e:
            logger.warning("model_error", model=self._ai.model, error=str(e))
            raise ModelUnavailable(str(e)) from e

        if not response.text or not response.text.strip():
            raise ModelUnavailable("Model returned an empty reply")

        text, metadata = parse_reply(response.text)
        tokens = TokenEstimate(
            prompt_tokens=estimate_tokens(prompt_chars),
            reply_tokens=estimate_tokens(response.text),
        )
        logger.info(
            "model_replied",
            model=self._ai.model,
            prompt_chars=len(prompt_chars),
            reply_chars=len(response.text),
            estimated_tokens=tokens.total,
        )
        return DispatchResult(
            text=text,
            metadata=metadata,
            prompt=user_text,
            messages=tuple(messages),
            tokens=tokens,
            model=self._ai.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )
