"""Tests for prompt assembly."""

from types import SimpleNamespace

from parley.providers.base import ChatMessage
from parley.services import DEFAULT_SYSTEM_PROMPT, PromptBuilder


def test_build_prepends_system_message() -> None:
    history = [
        SimpleNamespace(role="user", content="hi"),
        SimpleNamespace(role="assistant", content="hello"),
    ]
    prompt = PromptBuilder().build(history)

    assert prompt == [
        ChatMessage(role="system", content=DEFAULT_SYSTEM_PROMPT),
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="assistant", content="hello"),
    ]


def test_build_appends_extra_context() -> None:
    prompt = PromptBuilder().build([], extra_context="Paris is in France.")
    assert prompt[0].content.endswith("\n\nRelevant context:\nParis is in France.")


def test_blank_extra_context_is_ignored() -> None:
    prompt = PromptBuilder().build([], extra_context="   ")
    assert prompt[0].content == DEFAULT_SYSTEM_PROMPT


def test_custom_system_prompt() -> None:
    prompt = PromptBuilder("Be terse.").build([SimpleNamespace(role="user", content="x")])
    assert prompt[0] == ChatMessage(role="system", content="Be terse.")


def test_build_from_raw_inserts_system_once() -> None:
    builder = PromptBuilder()
    raw = [ChatMessage(role="user", content="hi")]

    once = builder.build_from_raw(raw)
    twice = builder.build_from_raw(once)

    assert [m.role for m in once] == ["system", "user"]
    assert twice == once


def test_build_from_raw_keeps_caller_system_message() -> None:
    raw = [
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="system", content="custom"),
    ]
    assert PromptBuilder().build_from_raw(raw) == raw
