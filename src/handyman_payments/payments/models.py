from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string (``Z`` suffix allowed) or datetime -> aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TaskStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPaymentStatus:
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"


class PaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentType:
    BOOKING = "booking"
    QUOTE_PAYMENT = "quote_payment"
    ADDITIONAL_MATERIALS = "additional_materials"

    # Payment types that represent the original authorization hold
    HOLD_TYPES = (BOOKING, QUOTE_PAYMENT)


class HoldStatus:
    REQUIRES_CAPTURE = "requires_capture"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class QuoteStatus:
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"


class _Record:
    """Builds a record from a store item, ignoring unknown attributes."""

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in item.items() if k in known})

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Task(_Record):
    id: str
    task_id: str
    customer_phone: str
    total_amount: Decimal
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    task_category: Optional[str] = None
    task_description: str = ""
    scheduled_date: Optional[str] = None
    time_window: Optional[str] = None
    estimated_hours: Optional[Decimal] = None
    notes: Optional[str] = None
    status: str = TaskStatus.PENDING
    payment_status: str = TaskPaymentStatus.AUTHORIZED
    payment_captured_at: Optional[str] = None
    additional_materials_cost: Decimal = Decimal("0")
    last_additional_payment_intent_id: Optional[str] = None
    # Dispatch and reminder fields are filled in after booking
    scheduled_datetime: Optional[str] = None
    assigned_handyman_name: Optional[str] = None
    assigned_handyman_phone: Optional[str] = None
    reminder_2hr_sent: bool = False
    reminder_2hr_sent_at: Optional[str] = None
    reminder_30min_sent: bool = False
    reminder_30min_sent_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Payment(_Record):
    payment_id: str
    task_id: str
    amount: Decimal
    status: str = PaymentStatus.PENDING
    payment_type: str = PaymentType.BOOKING
    payment_intent_id: Optional[str] = None
    quote_id: Optional[str] = None
    hold_reason: Optional[str] = None
    hold_until: Optional[str] = None
    captured_at: Optional[str] = None
    completion_photos: List[str] = field(default_factory=list)
    completion_notes: Optional[str] = None
    material_costs: Optional[Decimal] = None
    travel_fee: Optional[Decimal] = None
    material_receipts: List[str] = field(default_factory=list)
    handyman_notes: Optional[str] = None
    customer_approved: Optional[bool] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_open_hold(self) -> bool:
        return self.status == PaymentStatus.PENDING and self.payment_type in PaymentType.HOLD_TYPES


@dataclass
class Quote(_Record):
    quote_id: str
    quote_token: str
    amount: Decimal
    expires_at: str
    service_type: Optional[str] = None
    description: Optional[str] = None
    estimated_hours: Optional[Decimal] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    status: str = QuoteStatus.PENDING
    payment_intent_id: Optional[str] = None
    used_at: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def expires_at_dt(self) -> datetime:
        return parse_timestamp(self.expires_at)


@dataclass
class Hold:
    """Gateway-side authorization or charge, as seen through the gateway client."""

    id: str
    status: str
    amount: int
    currency: str = "usd"
    customer: Optional[str] = None
    payment_method: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    client_secret: Optional[str] = None
    amount_received: Optional[int] = None
