"""Prompt assembly: turns persisted history into provider messages."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from parley.providers.base import ChatMessage

DEFAULT_SYSTEM_PROMPT = """You are a friendly, clear and practical AI assistant.

Guidelines:
- Understand the question before answering. If key information is missing, ask one to three focused follow-up questions, but when a reasonable assumption lets you answer, give a workable answer first.
- Prefer actionable steps, examples and caveats over vague descriptions.
- Say "I'm not sure" or "I need more information" when uncertain. Never make things up.
- For code or configuration, use bullet points and fenced code blocks.

Format:
- Default to short paragraphs plus bullet lists.
- Use JSON or tables when showing structured data.

Boundaries:
- Do not give concrete instructions for illegal, harmful or intrusive activities.
- When personal or sensitive data is involved, point out the risk and never ask for secret keys or passwords."""

CONTEXT_HEADING = "Relevant context:"


class Turn(Protocol):
    role: str
    content: str


class PromptBuilder:
    """Builds the message list sent to the provider."""

    def __init__(self, system_prompt: str | None = None):
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    def build(self, history: Iterable[Turn], extra_context: str | None = None) -> list[ChatMessage]:
        """
        Prepend the system instructions to the conversation history.

        Args:
            history: Persisted turns in creation order.
            extra_context: Optional text appended to the system message.
        """
        system_text = self.system_prompt
        if extra_context and extra_context.strip():
            system_text = f"{system_text}\n\n{CONTEXT_HEADING}\n{extra_context}"

        prompt = [ChatMessage(role="system", content=system_text)]
        prompt.extend(ChatMessage(role=turn.role, content=turn.content) for turn in history)
        return prompt

    def build_from_raw(self, messages: Sequence[ChatMessage]) -> list[ChatMessage]:
        """Add the default system message unless the caller supplied one."""
        if any(m.role == "system" for m in messages):
            return list(messages)
        return [ChatMessage(role="system", content=self.system_prompt), *messages]
