"""
Token budget manager tests.
"""

import pytest

from content_pipeline.utils.token_manager import (
    TRUNCATION_MARKER,
    ContextPriority,
    ContextSource,
    TokenBudget,
    TokenBudgetManager,
)


class TestTokenBudget:
    """Tests for budget arithmetic."""

    def test_available_is_total_minus_reserved(self):
        budget = TokenBudget()
        assert sum(budget.reserved.values()) == 15500
        assert budget.available == 184500

    def test_available_recomputed_after_change(self):
        budget = TokenBudget()
        budget.response_buffer = 5000
        assert budget.available == 183500


class TestTokenManager:
    """Tests for estimation and truncation."""

    @pytest.fixture
    def manager(self):
        return TokenBudgetManager()

    def test_calculate_usage_rounds_up(self, manager):
        assert manager.calculate_usage("") == 0
        assert manager.calculate_usage("abcd") == 1
        assert manager.calculate_usage("abcde") == 2

    def test_calculate_total_usage(self, manager):
        usage = manager.calculate_total_usage({
            "system": "a" * 40,
            "history": ["b" * 8, "c" * 4],
        })
        assert usage.breakdown == {"system": 10, "history": 3}
        assert usage.total == 13
        assert usage.remaining == 200000 - 13
        assert usage.needs_truncation is False

    def test_truncate_noop_under_budget(self, manager):
        text = "short text"
        assert manager.truncate_if_needed(text, ContextPriority.RESEARCH_DATA, 100) == text

    def test_protected_priorities_never_truncated(self, manager):
        text = "x" * 1000
        assert manager.truncate_if_needed(text, ContextPriority.CRITICAL, 10) == text
        assert manager.truncate_if_needed(text, ContextPriority.REQUIRED, 10) == text

    def test_truncate_low_priority(self, manager):
        text = "x" * 1000
        result = manager.truncate_if_needed(text, ContextPriority.RESEARCH_DATA, 50)
        assert result.endswith(TRUNCATION_MARKER)
        assert len(result) <= 50 * 4
        assert manager.calculate_usage(result) <= 50

    def test_truncate_is_idempotent(self, manager):
        text = "y" * 5000
        once = manager.truncate_if_needed(text, ContextPriority.CONVERSATION_HISTORY, 100)
        twice = manager.truncate_if_needed(once, ContextPriority.CONVERSATION_HISTORY, 100)
        assert once == twice

    def test_will_fit(self, manager):
        assert manager.will_fit("a" * 400, "research") is True
        assert manager.will_fit("a" * (184501 * 4), "research") is False


class TestConversationHistory:
    """Tests for newest-first history optimization."""

    @pytest.fixture
    def manager(self):
        return TokenBudgetManager()

    def test_everything_fits(self, manager):
        messages = ["a" * 4, "b" * 4]
        assert manager.optimize_conversation_history(messages, 10) == messages

    def test_keeps_newest_and_marks_dropped(self, manager):
        messages = [f"m{i}" + "x" * 38 for i in range(10)]  # 10 tokens each
        result = manager.optimize_conversation_history(messages, 45)

        assert result[-1] == messages[-1]
        assert result[0].startswith("[Earlier ")
        kept = result[1:]
        assert kept == messages[-len(kept):]
        total = sum(manager.calculate_usage(m) for m in result)
        assert total <= 45

    def test_newest_alone_over_budget(self, manager):
        messages = ["old", "z" * 400]
        result = manager.optimize_conversation_history(messages, 10)
        assert result[-1] == messages[-1]
        assert len(result) <= 2
        assert "old" not in result

    def test_empty_history(self, manager):
        assert manager.optimize_conversation_history([], 10) == []


class TestAllocation:
    """Tests for priority-ordered allocation."""

    def test_allocate_in_priority_order(self):
        manager = TokenBudgetManager()
        sources = [
            ContextSource("research", ContextPriority.RESEARCH_DATA, 500),
            ContextSource("system", ContextPriority.CRITICAL, 300),
            ContextSource("history", ContextPriority.CONVERSATION_HISTORY, 400),
        ]
        allocation = manager.allocate_tokens(sources, 600)
        assert allocation == {"system": 300, "history": 300, "research": 0}
