"""Data models for the assignment and SLA engine."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Priority(str, Enum):
    """Ticket priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Ascending urgency; used to order tickets (least urgent first) when rebalancing.
PRIORITY_ORDER = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


class TicketStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


# Statuses that count towards an agent's workload
ACTIVE_STATUSES = frozenset({TicketStatus.OPEN, TicketStatus.PENDING, TicketStatus.IN_PROGRESS})
# Statuses after which SLA clocks stop
INACTIVE_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})


class UserRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"


STAFF_ROLES = (UserRole.AGENT, UserRole.ADMIN)


class Availability(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    AWAY = "away"
    OFFLINE = "offline"


class CustomerTier(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"
    VIP = "vip"


class ExpertiseLevel(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    EXPERT = "expert"


class SLAState(str, Enum):
    OK = "ok"
    WARNING = "warning"
    OVERDUE = "overdue"
    MET = "met"
    STOPPED = "stopped"


class NotificationType(str, Enum):
    TICKET_ASSIGNED = "ticket_assigned"
    ASSIGNMENT_CHANGED = "assignment_changed"
    SLA_WARNING = "sla_warning"
    SLA_BREACH = "sla_breach"
    FIRST_RESPONSE = "first_response"


class AssignmentFailure(str, Enum):
    """Why an assignment attempt did not produce an agent."""

    NO_AGENTS_AVAILABLE = "no_agents_available"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    RULE_CONSTRAINT_UNSATISFIABLE = "rule_constraint_unsatisfiable"
    INVALID_MANUAL_ASSIGNMENT = "invalid_manual_assignment"


# --- Records supplied by the storage / directory collaborator ---


class UserRecord(BaseModel):
    """A user from the directory (customer, agent or admin)."""

    id: str
    full_name: str = ""
    email: str = ""
    role: UserRole = UserRole.CUSTOMER
    availability: Availability = Availability.AVAILABLE


class PerformanceStats(BaseModel):
    """Agent performance over a rolling window."""

    avg_resolution_hours: float = Field(..., ge=0.0)
    resolution_rate: float = Field(..., ge=0.0, le=1.0)
    satisfaction_score: float = Field(..., ge=0.0, le=5.0)


class ExpertiseRecord(BaseModel):
    """Declared expertise of an agent in a category or subcategory."""

    target_id: str = Field(..., description="Category or subcategory id")
    level: ExpertiseLevel = ExpertiseLevel.BASIC
    is_primary: bool = False


class AgentSkillRecord(BaseModel):
    """Raw skills, languages and customer-history stats for one agent."""

    skill_tags: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=lambda: ["en"])
    category_expertise: list[ExpertiseRecord] = Field(default_factory=list)
    subcategory_expertise: list[ExpertiseRecord] = Field(default_factory=list)
    resolved_category_counts: dict[str, int] = Field(
        default_factory=dict,
        description="Resolved tickets per category; used when no expertise is declared",
    )
    total_customers_served: int = Field(default=0, ge=0)
    repeat_customer_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_customer_satisfaction: float = Field(default=4.0, ge=0.0, le=5.0)


class CustomerRecord(BaseModel):
    """Customer settings from the directory; tier/language may be unset."""

    id: str
    tier: Optional[CustomerTier] = None
    language_preference: Optional[str] = None


class TicketRecord(BaseModel):
    """A ticket as stored by the ticket collaborator."""

    id: str
    customer_id: str
    title: str = ""
    description: str = ""
    priority: Priority = Priority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    satisfaction_score: Optional[float] = Field(default=None, ge=0.0, le=5.0)


class CommentRecord(BaseModel):
    """A comment or chat message on a ticket."""

    id: str
    ticket_id: str
    author_id: str
    author_role: UserRole = UserRole.CUSTOMER
    created_at: datetime


# --- Engine inputs / snapshots ---


class CustomerHistoryStats(BaseModel):
    total_customers_served: int = Field(default=0, ge=0)
    repeat_customer_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_satisfaction: float = Field(default=4.0, ge=0.0, le=5.0)


class AgentSnapshot(BaseModel):
    """Point-in-time view of one agent, rebuilt per assignment cycle."""

    id: str
    full_name: str = ""
    email: str = ""
    role: UserRole = UserRole.AGENT
    current_workload: int = Field(default=0, ge=0)
    max_concurrent_tickets: int = Field(default=10, ge=1)
    average_resolution_hours: float = Field(default=24.0, ge=0.0)
    resolution_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    customer_satisfaction_score: float = Field(default=4.0, ge=0.0, le=5.0)
    availability: Availability = Availability.AVAILABLE
    skill_tags: set[str] = Field(default_factory=set)
    category_expertise: dict[str, float] = Field(default_factory=dict)
    subcategory_expertise: dict[str, float] = Field(default_factory=dict)
    specializations: list[str] = Field(default_factory=list)
    languages: set[str] = Field(default_factory=set)
    customer_history: CustomerHistoryStats = Field(default_factory=CustomerHistoryStats)
    certifications: set[str] = Field(default_factory=set)
    has_skill_data: bool = Field(
        default=True,
        description="False when skills/customer-history could not be loaded",
    )

    @property
    def has_capacity(self) -> bool:
        return self.current_workload < self.max_concurrent_tickets


class TicketContext(BaseModel):
    """Input to one assignment attempt."""

    id: str
    priority: Priority
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    title: str = ""
    description: str = ""
    customer_id: str
    created_at: datetime

    @classmethod
    def from_record(cls, ticket: TicketRecord) -> "TicketContext":
        return cls(
            id=ticket.id,
            priority=ticket.priority,
            category_id=ticket.category_id,
            subcategory_id=ticket.subcategory_id,
            title=ticket.title,
            description=ticket.description,
            customer_id=ticket.customer_id,
            created_at=ticket.created_at,
        )

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"


class Interaction(BaseModel):
    agent_id: str
    satisfaction_score: float = Field(default=4.0, ge=0.0, le=5.0)
    date: datetime
    resolution_hours: float = Field(default=0.0, ge=0.0)


class CustomerProfile(BaseModel):
    """Per-customer history derived from ticket records."""

    customer_id: str
    tier: CustomerTier = CustomerTier.BASIC
    language_preference: str = "en"
    preferred_agent_id: Optional[str] = None
    previous_interactions: list[Interaction] = Field(default_factory=list)
    total_tickets: int = Field(default=0, ge=0)
    avg_resolution_hours: float = Field(default=0.0, ge=0.0)


# --- Rules ---


class TimeWindow(BaseModel):
    """Time-of-day window, HH:MM strings, evaluated as [start, end)."""

    start: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    end: str = Field(..., pattern=r"^\d{2}:\d{2}$")


class RuleConditions(BaseModel):
    """Condition groups of a rule; unset groups are ignored."""

    categories: Optional[list[str]] = None
    priorities: Optional[list[Priority]] = None
    customer_tiers: Optional[list[CustomerTier]] = None
    time_of_day_window: Optional[TimeWindow] = None
    keywords: Optional[list[str]] = None
    customer_languages: Optional[list[str]] = None


class RuleActions(BaseModel):
    assign_to_specific_agent: Optional[str] = None
    require_skills: Optional[list[str]] = None
    require_certifications: Optional[list[str]] = None
    max_response_minutes: Optional[int] = Field(default=None, ge=0)
    escalate_after_minutes: Optional[int] = Field(default=None, ge=0)
    notify_manager: bool = False
    priority_boost: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class AssignmentRule(BaseModel):
    """A routing rule; higher priority_rank is evaluated first."""

    id: str
    name: str
    description: str = ""
    priority_rank: int = 0
    enabled: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: RuleActions = Field(default_factory=RuleActions)


# --- Engine outputs ---


class AssignmentResult(BaseModel):
    success: bool
    assigned_agent_id: Optional[str] = None
    reason: str
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    alternative_agent_ids: list[str] = Field(default_factory=list, max_length=3)
    failure: Optional[AssignmentFailure] = None
    applied_rule_ids: list[str] = Field(default_factory=list)


class Reassignment(BaseModel):
    ticket_id: str
    from_agent_id: str
    to_agent_id: str


class RebalanceReport(BaseModel):
    success: bool = True
    reassignments: list[Reassignment] = Field(default_factory=list)
    message: str = ""


class SLARule(BaseModel):
    priority: Priority
    response_time_hours: float = Field(..., ge=0.0)
    resolution_time_hours: float = Field(..., ge=0.0)
    active: bool = True


class SLAStatus(BaseModel):
    ticket_id: str
    response_status: SLAState = SLAState.OK
    resolution_status: SLAState = SLAState.OK
    response_elapsed_hours: float = 0.0
    total_elapsed_hours: float = 0.0
    first_response_at: Optional[datetime] = None
    is_active: bool = True


class NotificationIntent(BaseModel):
    """Something a user should be told; delivery happens elsewhere."""

    type: NotificationType
    target_user_id: str
    ticket_id: str
    priority: str = "medium"


class SLASweepReport(BaseModel):
    checked: int = 0
    warnings: int = 0
    breaches: int = 0
