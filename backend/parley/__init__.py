"""Parley: streaming chat orchestration over OpenAI-compatible LLM providers."""

__version__ = "0.1.0"
