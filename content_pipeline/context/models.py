"""
Customer record shapes consumed by the context assembler.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TeamMember(BaseModel):
    name: str
    role: Optional[str] = None
    notes: Optional[str] = None


class CustomerInfo(BaseModel):
    """Free-form profile details."""
    vertical: Optional[str] = None
    persona: Optional[str] = None
    icp: Optional[str] = None
    about: Optional[str] = None
    product: Optional[str] = None
    team: List[TeamMember] = Field(default_factory=list)


class Customer(BaseModel):
    id: str
    name: str
    status: str = "active"
    info: CustomerInfo = Field(default_factory=CustomerInfo)


class Pricing(BaseModel):
    amount: Optional[float] = None
    currency: str = ""
    frequency: str = ""


class Agreement(BaseModel):
    scope: Optional[str] = None
    type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pricing: Optional[Pricing] = None
    override_status: Optional[str] = None


class Receivable(BaseModel):
    type: str  # invoice | payment
    amount: float = 0.0
    status: Optional[str] = None


class Project(BaseModel):
    name: str
    status: str = "active"
    description: Optional[str] = None


class CustomerEvent(BaseModel):
    event_date: datetime
    event_type: str
    title: str


class CustomerDeliverable(BaseModel):
    title: str
    type: str
    status: str


class ActionItem(BaseModel):
    type: str
    description: str
    due_date: Optional[date] = None
    status: str = "todo"


class CustomerSnapshot(BaseModel):
    """Everything fetched for one customer, newest-first where ordered."""
    customer: Customer
    agreements: List[Agreement] = Field(default_factory=list)
    receivables: List[Receivable] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    events: List[CustomerEvent] = Field(default_factory=list)
    artifacts: List[CustomerDeliverable] = Field(default_factory=list)
    action_items: List[ActionItem] = Field(default_factory=list)

    def slices(self) -> Dict[str, List[Any]]:
        """The truncatable collections, keyed by name."""
        return {
            "events": self.events,
            "projects": self.projects,
            "agreements": self.agreements,
            "artifacts": self.artifacts,
            "action_items": self.action_items,
        }
