"""Token budgeting for assembled prompts.

Counts are estimates. They decide what fits in a model's window and feed
the usage meter; nothing is billed from them.
"""

from abc import ABC, abstractmethod

from ytangent.models import ContextUsage


class TokenCounter(ABC):
    @abstractmethod
    def count(self, text: str) -> int:
        ...


class ApproximateTokenCounter(TokenCounter):
    """About four characters per token for English prose."""

    def __init__(self, chars_per_token: int = 4) -> None:
        self.chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        return len(text) // self.chars_per_token


def fit_messages(
    counter: TokenCounter,
    messages: list[dict[str, str]],
    system_prompt: str | None,
    limit: int,
) -> tuple[list[dict[str, str]], ContextUsage]:
    """Drop whole messages oldest-first until the prompt fits within limit.

    The system prompt is never trimmed and the final message always survives,
    even when it alone exceeds the limit.
    """
    system_tokens = counter.count(system_prompt) if system_prompt else 0
    counts = [counter.count(m["content"]) for m in messages]

    dropped = 0
    while dropped < len(messages) - 1 and system_tokens + sum(counts[dropped:]) > limit:
        dropped += 1

    kept = messages[dropped:]
    breakdown = {"system": system_tokens}
    for message, tokens in zip(kept, counts[dropped:]):
        breakdown[message["role"]] = breakdown.get(message["role"], 0) + tokens

    usage = ContextUsage(
        total_tokens=sum(breakdown.values()),
        max_tokens=limit,
        breakdown=breakdown,
        truncated_count=dropped,
    )
    return kept, usage
