"""
Customer context assembler tests.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from content_pipeline.context.assembler import (
    FALLBACK_CONTEXT,
    TRUNCATION_STEPS,
    ContextAssembler,
    apply_truncation_step,
    compute_health_signals,
    render_context,
)
from content_pipeline.context.models import Agreement, CustomerEvent, Receivable
from content_pipeline.utils.token_manager import TokenBudgetManager
from tests.fixtures import CustomerFactory, InMemoryCustomerDataSource

NOW = datetime(2026, 10, 18, 12, 0, 0)


def full_source(**kwargs) -> InMemoryCustomerDataSource:
    values = dict(
        customer=CustomerFactory.customer(),
        agreements=CustomerFactory.agreements(6),
        receivables=[Receivable(type="invoice", amount=100.0), Receivable(type="payment", amount=40.0)],
        projects=CustomerFactory.projects(9),
        events=CustomerFactory.events(10, NOW - timedelta(days=1)),
        artifacts=CustomerFactory.deliverables(8),
        action_items=CustomerFactory.action_items(8),
    )
    values.update(kwargs)
    return InMemoryCustomerDataSource(**values)


class TestHealthSignals:
    """Tests for derived warnings."""

    def test_expiring_agreements(self):
        agreements = [
            Agreement(scope="soon", end_date=date(2026, 10, 28)),
            Agreement(scope="later", end_date=date(2027, 3, 1)),
            Agreement(scope="ended", end_date=date(2026, 10, 20), override_status="terminated"),
        ]
        signals = compute_health_signals(agreements, [], CustomerFactory.events(1, NOW), NOW)
        assert signals == ["1 agreement(s) expiring within 30 days"]

    def test_overdue_invoices(self):
        receivables = [
            Receivable(type="invoice", amount=120.5, status="overdue"),
            Receivable(type="invoice", amount=79.5, status="overdue"),
            Receivable(type="invoice", amount=999.0, status="paid"),
        ]
        signals = compute_health_signals([], receivables, CustomerFactory.events(1, NOW), NOW)
        assert signals == ["2 overdue invoice(s) totaling $200.00"]

    def test_no_events(self):
        assert compute_health_signals([], [], [], NOW) == ["No recorded interactions"]

    def test_inactivity(self):
        events = CustomerFactory.events(2, NOW - timedelta(days=20))
        assert compute_health_signals([], [], events, NOW) == ["No activity in 20 days"]

    def test_recent_activity_is_healthy(self):
        events = CustomerFactory.events(1, NOW - timedelta(days=13))
        assert compute_health_signals([], [], events, NOW) == []

    def test_offset_event_behind_utc_counts_as_recent(self):
        # 06:00 at -10:00 is 16:00 UTC, 13 days 20 hours before NOW
        hawaii = timezone(timedelta(hours=-10))
        events = [CustomerEvent(event_date=datetime(2026, 10, 4, 6, 0, tzinfo=hawaii), event_type="call", title="Check-in")]
        assert compute_health_signals([], [], events, NOW) == []

    def test_offset_event_ahead_of_utc_counts_as_stale(self):
        # 20:00 at +10:00 is 10:00 UTC, 14 days 2 hours before NOW
        sydney = timezone(timedelta(hours=10))
        events = [CustomerEvent(event_date=datetime(2026, 10, 4, 20, 0, tzinfo=sydney), event_type="call", title="Check-in")]
        assert compute_health_signals([], [], events, NOW) == ["No activity in 14 days"]

    def test_aware_clock_with_naive_events(self):
        aware_now = NOW.replace(tzinfo=timezone.utc)
        events = CustomerFactory.events(1, NOW - timedelta(days=20))
        assert compute_health_signals([], [], events, aware_now) == ["No activity in 20 days"]


class TestContextAssembler:
    """Tests for building and truncating the context block."""

    @pytest.fixture
    def manager(self):
        return TokenBudgetManager()

    @pytest.mark.asyncio
    async def test_fetches_every_collection(self, manager):
        source = full_source()
        assembler = ContextAssembler(source, manager, clock=lambda: NOW)
        context = await assembler.build("cust-1", token_budget=100000)

        assert sorted(source.fetches) == sorted([
            "customer", "agreements", "receivables", "projects", "events", "artifacts", "action_items",
        ])
        assert "**Customer**: Acme Corp" in context
        assert "**Recent Events** (last 10)" in context
        assert "- Outstanding: $60.00" in context

    @pytest.mark.asyncio
    async def test_events_truncated_first(self, manager):
        source = full_source()
        assembler = ContextAssembler(source, manager, clock=lambda: NOW)

        snapshot = await assembler.fetch_snapshot("cust-1")
        signals = compute_health_signals(snapshot.agreements, snapshot.receivables, snapshot.events, NOW)
        after_first = apply_truncation_step(snapshot.slices(), TRUNCATION_STEPS[0])
        budget = manager.calculate_usage(render_context(snapshot, after_first, signals, NOW))

        context = await assembler.build("cust-1", token_budget=budget)
        assert "**Recent Events** (last 3)" in context
        assert "Project 9" in context
        assert "**Action Items** (8 pending)" in context

    @pytest.mark.asyncio
    async def test_all_steps_applied_when_budget_tiny(self, manager):
        assembler = ContextAssembler(full_source(), manager, clock=lambda: NOW)
        context = await assembler.build("cust-1", token_budget=10)

        assert "**Recent Events** (last 3)" in context
        assert "Project 5" in context
        assert "Project 6" not in context
        assert "Retainer 3" in context
        assert "Retainer 4" not in context
        assert "**Action Items** (3 pending)" in context
        # Profile block is never cut
        assert "**Customer**: Acme Corp" in context
        assert "Dana (CTO)" in context

    @pytest.mark.asyncio
    async def test_missing_customer_falls_back(self, manager):
        assembler = ContextAssembler(full_source(customer=None), manager, clock=lambda: NOW)
        assert await assembler.build("cust-1") == FALLBACK_CONTEXT

    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back(self, manager):
        assembler = ContextAssembler(full_source(fail_customer=True), manager, clock=lambda: NOW)
        assert await assembler.build("cust-1") == FALLBACK_CONTEXT
