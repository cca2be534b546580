from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


CommandAction = Literal[
    "create_client",
    "create_estimate",
    "schedule_installation",
    "order_materials",
    "navigate",
    "search",
    "help",
]

COMMAND_ACTIONS = (
    "create_client",
    "create_estimate",
    "schedule_installation",
    "order_materials",
    "navigate",
    "search",
    "help",
)

ProjectStatus = Literal["scheduled", "in_progress", "completed", "on_hold"]
TaskStatus = Literal["pending", "in_progress", "completed"]
PaymentMethod = Literal["credit_card", "check", "cash", "bank_transfer"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ===== CRM RECORDS =====

class Room(BaseModel):
    name: str
    length: float
    width: float
    sqft: float


class Client(BaseModel):
    id: str = ""
    name: str
    company: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    type: Literal["Residential", "Commercial"] = "Residential"
    status: Literal["Active", "Inactive"] = "Active"
    totalProjects: int = 0
    totalRevenue: float = 0.0
    rooms: Optional[List[Room]] = None
    notes: Optional[str] = None


class ProjectTask(BaseModel):
    id: str
    title: str
    status: TaskStatus = "pending"
    assignedTo: str = ""
    dueDate: str = ""


class Project(BaseModel):
    id: str
    title: str
    clientId: str
    clientName: str = ""
    status: ProjectStatus = "scheduled"
    startDate: str = ""
    endDate: str = ""
    budget: float = 0.0
    progress: int = 0
    tasks: List[ProjectTask] = Field(default_factory=list)
    estimateId: str = ""

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, value: int) -> int:
        if not (0 <= value <= 100):
            raise ValueError("progress must be between 0 and 100")
        return value


class EstimateItem(BaseModel):
    id: str
    description: str
    area: float = 0.0
    unitPrice: float
    quantity: float
    total: float
    type: Literal["labor", "material"]
    room: str = ""
    roomArea: Optional[float] = None
    # Material fields
    materialType: Optional[str] = None
    brand: Optional[str] = None
    color: Optional[str] = None
    # Labor fields
    laborType: Optional[str] = None
    hourlyRate: Optional[float] = None
    hours: Optional[float] = None


class Estimate(BaseModel):
    id: str = ""
    clientId: str
    clientName: str = ""
    status: Literal["draft", "pending", "approved", "rejected"] = "draft"
    date: str = Field(default_factory=utc_now_iso)
    items: List[EstimateItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    notes: str = ""
    rooms: List[str] = Field(default_factory=list)
    roomDimensions: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    # Client-facing share link
    shareUrl: Optional[str] = None
    shareToken: Optional[str] = None
    clientFeedback: Optional[str] = None
    clientViewedAt: Optional[str] = None
    clientRespondedAt: Optional[str] = None
    expiresAt: Optional[str] = None


class EstimateShare(BaseModel):
    estimateId: str
    token: str
    url: str
    expiresAt: Optional[str] = None
    createdAt: str = Field(default_factory=utc_now_iso)


class InvoiceItem(BaseModel):
    id: str = ""
    description: str
    quantity: float
    unitPrice: float
    total: float
    type: Literal["material", "labor"]


class Invoice(BaseModel):
    id: str = ""
    clientId: str
    clientName: str = ""
    estimateId: Optional[str] = None
    projectId: Optional[str] = None
    date: str = ""
    dueDate: str = ""
    items: List[InvoiceItem] = Field(default_factory=list)
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    balance: float = 0.0
    status: Literal["draft", "sent", "paid", "overdue", "cancelled"] = "draft"
    notes: Optional[str] = None


class PaymentFormData(BaseModel):
    amount: Any
    method: PaymentMethod
    reference: Optional[str] = None
    checkNumber: Optional[str] = None
    cardLast4: Optional[str] = None
    notes: Optional[str] = None


class Payment(BaseModel):
    id: str
    clientId: str
    amount: float
    method: PaymentMethod
    status: PaymentStatus = "pending"
    date: str = Field(default_factory=utc_now_iso)
    reference: Optional[str] = None
    checkNumber: Optional[str] = None
    cardLast4: Optional[str] = None
    notes: Optional[str] = None
    createdAt: str = Field(default_factory=utc_now_iso)
    updatedAt: str = Field(default_factory=utc_now_iso)


# ===== DAMAGE ASSESSMENT =====

class DamageCost(BaseModel):
    item: str = ""
    amount: float = 0.0


class DamageAnalysis(BaseModel):
    severity: float = 0.0  # 0-1, 1 is most severe
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    costs: List[DamageCost] = Field(default_factory=list)


class DamageReport(BaseModel):
    id: str
    clientId: Optional[str] = None
    date: str = ""
    imageUrl: str = ""
    analysis: DamageAnalysis
    notes: Optional[str] = None


# ===== CRM CONVERSATIONS =====

class Conversation(BaseModel):
    id: str = ""
    contactId: str = ""
    locationId: str = ""
    lastMessageBody: str = ""
    lastMessageType: str = "TYPE_SMS"
    lastMessageDate: str = ""
    type: str = "TYPE_SMS"
    unreadCount: int = 0
    inbox: bool = False
    starred: bool = False
    deleted: bool = False
    assignedTo: str = ""
    userId: str = ""


class ConversationMessage(BaseModel):
    id: str = ""
    conversationId: str = ""
    contactId: str = ""
    body: str = ""
    direction: str = ""
    status: str = ""
    messageType: str = ""
    dateAdded: str = ""


# ===== VOICE PIPELINE =====

class CommandResult(BaseModel):
    action: CommandAction
    parameters: Dict[str, Any] = Field(default_factory=dict)
    success: bool
    feedback: Optional[str] = None
    error: Optional[str] = None


class VoiceResponse(BaseModel):
    transcript: str
    success: bool
    error: Optional[str] = None
    audio: Optional[bytes] = Field(default=None, exclude=True)


class ActionOutcome(BaseModel):
    action: str
    success: bool
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


class VoiceTurn(BaseModel):
    session_id: str
    transcript: str
    handled: bool = True
    reason: Optional[str] = None
    result: Optional[CommandResult] = None
    outcome: Optional[ActionOutcome] = None
    speech: Optional[VoiceResponse] = None
    suggestions: List[str] = Field(default_factory=list)


class UserContext(BaseModel):
    timeOfDay: str = "00:00"
    location: str = ""
    previousCommands: List[str] = Field(default_factory=list)
    frequentActions: Dict[str, int] = Field(default_factory=dict)

    @field_validator("timeOfDay")
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        hours = value.split(":")[0]
        if not hours.isdigit() or not (0 <= int(hours) <= 23):
            raise ValueError("timeOfDay must look like HH:MM")
        return value
