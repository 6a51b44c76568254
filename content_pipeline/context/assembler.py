"""
Customer Context Assembler.

Builds a bounded-size customer summary for prompt injection. Sub-collections
are fetched concurrently, health signals are derived from the raw records,
and the rendered block is shrunk step by step until it fits its budget.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from content_pipeline.context.models import (
    ActionItem,
    Agreement,
    Customer,
    CustomerDeliverable,
    CustomerEvent,
    CustomerSnapshot,
    Project,
    Receivable,
)
from content_pipeline.utils.structured_logging import get_logger
from content_pipeline.utils.token_manager import TokenBudgetManager

logger = get_logger("context_assembler")

EXPIRY_LOOKAHEAD = timedelta(days=30)
INACTIVITY_LOOKBACK = timedelta(days=14)
FETCH_LIMIT = 10

FALLBACK_CONTEXT = "## Current Customer Context\n\nCustomer data could not be loaded."

# Applied cumulatively, in order, until the block fits.
# Events go first, then secondary lists, then the primary list.
TRUNCATION_STEPS: List[Dict[str, int]] = [
    {"events": 3},
    {"projects": 5, "artifacts": 5, "action_items": 5},
    {"agreements": 3, "action_items": 3},
]


class CustomerDataSource(ABC):
    """Read access to the CRM records behind a customer profile."""

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...

    @abstractmethod
    async def list_agreements(self, customer_id: str) -> List[Agreement]:
        ...

    @abstractmethod
    async def list_receivables(self, customer_id: str) -> List[Receivable]:
        ...

    @abstractmethod
    async def list_projects(self, customer_id: str) -> List[Project]:
        ...

    @abstractmethod
    async def list_events(self, customer_id: str, limit: int = FETCH_LIMIT) -> List[CustomerEvent]:
        """Most recent first."""

    @abstractmethod
    async def list_artifacts(self, customer_id: str, limit: int = FETCH_LIMIT) -> List[CustomerDeliverable]:
        ...

    @abstractmethod
    async def list_action_items(self, customer_id: str, limit: int = FETCH_LIMIT) -> List[ActionItem]:
        """Open items only, soonest due first."""


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_health_signals(
    agreements: List[Agreement],
    receivables: List[Receivable],
    events: List[CustomerEvent],
    now: datetime,
) -> List[str]:
    """
    Derive warning lines from raw records.

    Pure function of its inputs; ``events`` must be newest-first.
    """
    signals = []
    today = now.date()
    horizon = (now + EXPIRY_LOOKAHEAD).date()

    expiring = [
        a for a in agreements
        if a.override_status not in ("terminated", "suspended")
        and a.end_date is not None
        and today <= a.end_date <= horizon
    ]
    if expiring:
        signals.append(f"{len(expiring)} agreement(s) expiring within 30 days")

    overdue = [r for r in receivables if r.type == "invoice" and r.status == "overdue"]
    if overdue:
        total = sum(r.amount for r in overdue)
        signals.append(f"{len(overdue)} overdue invoice(s) totaling ${total:.2f}")

    if not events:
        signals.append("No recorded interactions")
    else:
        idle = _as_utc(now) - _as_utc(events[0].event_date)
        if idle > INACTIVITY_LOOKBACK:
            signals.append(f"No activity in {idle.days} days")

    return signals


def financial_summary(receivables: List[Receivable]) -> Tuple[float, float, float]:
    """(invoiced, paid, outstanding)"""
    invoiced = sum(r.amount for r in receivables if r.type == "invoice")
    paid = sum(r.amount for r in receivables if r.type == "payment")
    return invoiced, paid, invoiced - paid


def _bullets(lines: List[str], empty: str) -> str:
    return "\n".join(f"- {line}" for line in lines) if lines else f"- {empty}"


def _agreement_line(a: Agreement) -> str:
    pricing = ""
    if a.pricing:
        amount = a.pricing.amount if a.pricing.amount is not None else "?"
        pricing = f" | ${amount} {a.pricing.currency} {a.pricing.frequency}".rstrip()
    terminated = " [TERMINATED]" if a.override_status == "terminated" else ""
    end = a.end_date.isoformat() if a.end_date else "Ongoing"
    start = a.start_date.isoformat() if a.start_date else "?"
    return f"{a.scope or 'Untitled'} | {a.type or 'unspecified'} | {start} - {end}{pricing}{terminated}"


def render_context(
    snapshot: CustomerSnapshot,
    slices: Dict[str, List[Any]],
    signals: List[str],
    now: datetime,
) -> str:
    """Render the block. The profile section is always rendered in full."""
    customer = snapshot.customer
    info = customer.info
    invoiced, paid, outstanding = financial_summary(snapshot.receivables)

    team = [
        f"{t.name} ({t.role or 'No role'})" + (f" - {t.notes}" if t.notes else "")
        for t in info.team
    ]
    agreements = [_agreement_line(a) for a in slices["agreements"]]
    projects = [
        f"{p.name} ({p.status})" + (f" - {p.description[:80]}" if p.description else "")
        for p in slices["projects"]
    ]
    events = [f"[{e.event_date.date().isoformat()}] {e.event_type}: {e.title}" for e in slices["events"]]
    artifacts = [f"{a.title} ({a.type}, {a.status})" for a in slices["artifacts"]]
    action_items = [
        f"[{i.type}] {i.description}" + (f" (due: {i.due_date.isoformat()})" if i.due_date else "") + f" [{i.status}]"
        for i in slices["action_items"]
    ]

    return f"""## Current Customer Context

**Today's Date**: {now.date().isoformat()}

**Customer**: {customer.name}
**Customer ID**: {customer.id}
**Status**: {customer.status}
**Vertical**: {info.vertical or 'Not specified'}
**Persona**: {info.persona or 'Not specified'}
**ICP**: {info.icp or 'Not specified'}

**About**: {info.about or 'No description'}

**Product**: {info.product or 'No product details'}

**Team**:
{_bullets(team, 'No team members listed')}

**Agreements** ({len(snapshot.agreements)}):
{_bullets(agreements, 'No agreements')}

**Financial Summary**:
- Total Invoiced: ${invoiced:.2f}
- Total Paid: ${paid:.2f}
- Outstanding: ${outstanding:.2f}

**Health Signals**:
{_bullets(signals, 'No concerns')}

**Action Items** ({len(slices['action_items'])} pending):
{_bullets(action_items, 'No pending action items')}

**Active Projects** ({len(snapshot.projects)}):
{_bullets(projects, 'No projects')}

**Deliverables** ({len(snapshot.artifacts)} total):
{_bullets(artifacts, 'No artifacts')}

**Recent Events** (last {len(slices['events'])}):
{_bullets(events, 'No recent events')}""".strip()


def apply_truncation_step(slices: Dict[str, List[Any]], step: Dict[str, int]) -> Dict[str, List[Any]]:
    """Return new slices with each named collection cut to its limit."""
    reduced = dict(slices)
    for name, limit in step.items():
        reduced[name] = reduced[name][:limit]
    return reduced


class ContextAssembler:
    """
    Builds the customer context block within a token budget.

    Usage:
        assembler = ContextAssembler(data_source, TokenBudgetManager())
        block = await assembler.build("cust-1", token_budget=3000)
    """

    def __init__(
        self,
        data_source: CustomerDataSource,
        budget_manager: TokenBudgetManager,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.data_source = data_source
        self.budget_manager = budget_manager
        self._clock = clock

    async def fetch_snapshot(self, customer_id: str) -> Optional[CustomerSnapshot]:
        """Fetch the profile and every sub-collection concurrently."""
        ds = self.data_source
        (
            customer,
            agreements,
            receivables,
            projects,
            events,
            artifacts,
            action_items,
        ) = await asyncio.gather(
            ds.get_customer(customer_id),
            ds.list_agreements(customer_id),
            ds.list_receivables(customer_id),
            ds.list_projects(customer_id),
            ds.list_events(customer_id, limit=FETCH_LIMIT),
            ds.list_artifacts(customer_id, limit=FETCH_LIMIT),
            ds.list_action_items(customer_id, limit=FETCH_LIMIT),
        )
        if customer is None:
            return None
        return CustomerSnapshot(
            customer=customer,
            agreements=agreements,
            receivables=receivables,
            projects=projects,
            events=events,
            artifacts=artifacts,
            action_items=action_items,
        )

    async def build(self, customer_id: str, token_budget: int = 3000) -> str:
        """
        Render the context block, shrinking the lower-priority collections
        until the estimate is within ``token_budget`` or no step remains.
        """
        try:
            snapshot = await self.fetch_snapshot(customer_id)
        except Exception as e:
            logger.error("Failed to fetch customer", customer_id=customer_id, error=str(e))
            return FALLBACK_CONTEXT

        if snapshot is None:
            logger.error("Failed to fetch customer", customer_id=customer_id, error="not found")
            return FALLBACK_CONTEXT

        now = self._clock()
        signals = compute_health_signals(snapshot.agreements, snapshot.receivables, snapshot.events, now)

        slices = snapshot.slices()
        context = render_context(snapshot, slices, signals, now)
        steps_applied = 0

        for step in TRUNCATION_STEPS:
            if self.budget_manager.calculate_usage(context) <= token_budget:
                break
            slices = apply_truncation_step(slices, step)
            context = render_context(snapshot, slices, signals, now)
            steps_applied += 1

        estimated = self.budget_manager.calculate_usage(context)
        if estimated > token_budget:
            logger.warning(
                "Customer context still over budget after truncation",
                customer_id=customer_id,
                estimated_tokens=estimated,
                token_budget=token_budget,
            )

        logger.debug(
            "Customer context built",
            customer_id=customer_id,
            estimated_tokens=estimated,
            truncation_steps=steps_applied,
            agreement_count=len(snapshot.agreements),
            project_count=len(snapshot.projects),
            event_count=len(snapshot.events),
        )
        return context
