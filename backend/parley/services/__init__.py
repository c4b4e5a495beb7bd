"""Business logic services."""

from parley.services.chat_service import ChatService, RunState, StreamRun, apply_delta
from parley.services.prompt_builder import DEFAULT_SYSTEM_PROMPT, PromptBuilder
from parley.services.rate_limiter import RateLimiter
from parley.services.run_pool import RunPool
from parley.services.stream_channel import OutputChannel, StreamEvent
from parley.services.usage_ledger import UsageLedger

__all__ = [
    "ChatService",
    "RunState",
    "StreamRun",
    "apply_delta",
    "DEFAULT_SYSTEM_PROMPT",
    "PromptBuilder",
    "RateLimiter",
    "RunPool",
    "OutputChannel",
    "StreamEvent",
    "UsageLedger",
]
