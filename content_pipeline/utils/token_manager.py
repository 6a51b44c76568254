"""
Token management utilities for context window optimization.
Handles token estimation, budgeting, and priority-based truncation.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from content_pipeline.utils.structured_logging import get_logger

logger = get_logger("token_manager")

TRUNCATION_MARKER = "\n\n[...truncated...]"
CHARS_PER_TOKEN = 4


class ContextPriority(int, Enum):
    """
    Context priority determines truncation order.
    Lower value = served first and truncated last.
    """
    CRITICAL = 1              # System prompt and tool definitions, never truncated
    REQUIRED = 2              # Current user message, never truncated
    SCREEN_CONTEXT = 3        # UI context, truncated last
    CONVERSATION_HISTORY = 4  # Summarized if needed
    RESEARCH_DATA = 5         # Truncated first

    @property
    def is_protected(self) -> bool:
        return self in (ContextPriority.CRITICAL, ContextPriority.REQUIRED)


@dataclass
class TokenBudget:
    """Fixed context window split into reserved allocations and a derived remainder."""
    max: int = 200000
    system_prompt: int = 3000
    tool_definitions: int = 8000
    user_context: int = 500
    response_buffer: int = 4000

    @property
    def reserved(self) -> Dict[str, int]:
        return {
            "system_prompt": self.system_prompt,
            "tool_definitions": self.tool_definitions,
            "user_context": self.user_context,
            "response_buffer": self.response_buffer,
        }

    @property
    def available(self) -> int:
        """Tokens left for dynamic content. Recomputed on every access."""
        return self.max - sum(self.reserved.values())


@dataclass
class TokenUsage:
    """Token usage across named context sources."""
    total: int
    breakdown: Dict[str, int]
    remaining: int
    needs_truncation: bool


@dataclass
class ContextSource:
    """A named source competing for a share of the budget."""
    name: str
    priority: ContextPriority
    estimated_tokens: int


def _truncation_marker(dropped: int) -> str:
    return f"[Earlier {dropped} messages truncated to fit token budget]"


class TokenBudgetManager:
    """
    Estimates and allocates a finite token budget across competing content sources.

    Estimation is a conservative character heuristic (ceil(len / 4)) rather than
    a tokenizer, so it slightly over-counts instead of silently overflowing.
    """

    def __init__(self, budget: Optional[TokenBudget] = None):
        self.budget = budget or TokenBudget()

    def calculate_usage(self, text: str) -> int:
        """Estimated token count for text."""
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def calculate_total_usage(self, sources: Dict[str, object]) -> TokenUsage:
        """
        Sum per-category estimates against the total budget.

        Args:
            sources: Category name to text, or to a list of texts (e.g. history)

        Returns:
            Usage breakdown with the remaining headroom
        """
        breakdown: Dict[str, int] = {}
        for name, content in sources.items():
            if isinstance(content, (list, tuple)):
                breakdown[name] = sum(self.calculate_usage(item) for item in content)
            else:
                breakdown[name] = self.calculate_usage(content or "")

        total = sum(breakdown.values())
        remaining = self.budget.max - total

        return TokenUsage(
            total=total,
            breakdown=breakdown,
            remaining=remaining,
            needs_truncation=remaining < 0,
        )

    def truncate_if_needed(self, text: str, priority: ContextPriority, max_tokens: int) -> str:
        """
        Truncate content to a token limit according to its priority.

        Critical and required content is returned unchanged even when over
        budget. Lower priorities are cut so the result, marker included, stays
        within ``max_tokens * 4`` characters.
        """
        if not text:
            return text

        current_tokens = self.calculate_usage(text)
        if current_tokens <= max_tokens:
            return text

        if priority.is_protected:
            logger.warning(
                "Cannot truncate critical/required content",
                priority=priority.name,
                current_tokens=current_tokens,
                max_tokens=max_tokens,
            )
            return text

        max_chars = max_tokens * CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text

        keep = max(0, max_chars - len(TRUNCATION_MARKER))
        truncated = text[:keep] + TRUNCATION_MARKER

        logger.info(
            "Content truncated",
            priority=priority.name,
            original_tokens=current_tokens,
            target_tokens=max_tokens,
            original_length=len(text),
            truncated_length=len(truncated),
        )
        return truncated

    def optimize_conversation_history(self, messages: List[str], max_tokens: int) -> List[str]:
        """
        Keep the newest messages that fit, replacing the dropped prefix with a marker.

        Works backward from the end of the list. The newest message is always
        kept, even when it alone exceeds the budget.
        """
        if not messages:
            return []

        total_tokens = sum(self.calculate_usage(m) for m in messages)
        if total_tokens <= max_tokens:
            return list(messages)

        kept: List[str] = []
        used = 0
        dropped = 0

        for index in range(len(messages) - 1, -1, -1):
            message_tokens = self.calculate_usage(messages[index])
            if used + message_tokens <= max_tokens or not kept:
                kept.append(messages[index])
                used += message_tokens
                if used > max_tokens:
                    dropped = index
                    break
            else:
                dropped = index + 1
                break

        kept.reverse()
        if dropped:
            marker = _truncation_marker(dropped)
            # The marker counts against the budget too: give up the oldest kept
            # messages until it fits, never the newest one
            while len(kept) > 1 and used + self.calculate_usage(marker) > max_tokens:
                used -= self.calculate_usage(kept.pop(0))
                dropped += 1
                marker = _truncation_marker(dropped)
            if used + self.calculate_usage(marker) <= max_tokens or used > max_tokens:
                kept.insert(0, marker)

        logger.info(
            "Conversation history optimized",
            original_messages=len(messages),
            optimized_messages=len(kept),
            original_tokens=total_tokens,
            optimized_tokens=used,
        )
        return kept

    def get_available_tokens(self) -> int:
        """Tokens available for dynamic content."""
        return self.budget.available

    def will_fit(self, content: str, category: str) -> bool:
        """Check whether content fits within the available budget."""
        tokens = self.calculate_usage(content)
        available = self.get_available_tokens()
        fits = tokens <= available

        if not fits:
            logger.warning(
                "Content exceeds available tokens",
                category=category,
                tokens=tokens,
                available=available,
                overage=tokens - available,
            )
        return fits

    def allocate_tokens(self, sources: List[ContextSource], total_budget: int) -> Dict[str, int]:
        """
        Greedily allocate a budget across sources in priority order.

        Lower numeric priority is served first; every source gets
        min(requested, remaining), and zero once the budget is exhausted.
        """
        allocation: Dict[str, int] = {}
        remaining = total_budget

        for source in sorted(sources, key=lambda s: s.priority):
            if remaining <= 0:
                allocation[source.name] = 0
                continue
            granted = min(source.estimated_tokens, remaining)
            allocation[source.name] = granted
            remaining -= granted

        return allocation
