"""
Typed outcomes returned by the payment orchestrators.

Money movement is authoritative: once the gateway has authorized, captured or
charged, the result reports success and any bookkeeping or notification
problems that followed are listed in ``warnings`` instead of raising.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from handyman_payments.payments.models import Quote


class CaptureOutcome:
    CAPTURED = "captured"
    ALREADY_PROCESSED = "already_processed"


@dataclass
class CaptureResult:
    outcome: str
    task_id: str
    payment_intent_id: Optional[str]
    amount_captured: Optional[Decimal]
    warnings: List[str] = field(default_factory=list)

    @property
    def already_processed(self) -> bool:
        return self.outcome == CaptureOutcome.ALREADY_PROCESSED

    def to_body(self) -> Dict[str, Any]:
        if self.already_processed:
            message = "Payment was already captured for this task"
        else:
            message = "Payment captured successfully"
        return {
            "success": True,
            "outcome": self.outcome,
            "already_processed": self.already_processed,
            "payment_intent_id": self.payment_intent_id,
            "amount_captured": self.amount_captured,
            "task_id": self.task_id,
            "message": message,
            "warnings": self.warnings,
        }


@dataclass
class ChargeResult:
    task_id: str
    payment_intent_id: str
    additional_amount: Decimal
    material_costs: Decimal
    travel_fee: Decimal
    new_total_amount: Optional[Decimal] = None
    warnings: List[str] = field(default_factory=list)

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": True,
            "payment_intent_id": self.payment_intent_id,
            "additional_amount": self.additional_amount,
            "travel_fee": self.travel_fee,
            "material_costs": self.material_costs,
            "total_amount": self.new_total_amount,
            "message": "Additional materials charged successfully",
            "task_id": self.task_id,
            "warnings": self.warnings,
        }


@dataclass
class BookingResult:
    id: Optional[str]
    task_number: str
    payment_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": True,
            "task_id": self.id,
            "task_number": self.task_number,
            "message": "Task created successfully",
            "warnings": self.warnings,
        }


@dataclass
class QuoteResult:
    payment_intent_id: str
    requires_action: bool = False
    client_secret: Optional[str] = None
    task_id: Optional[str] = None
    amount: Optional[Decimal] = None
    service: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_body(self) -> Dict[str, Any]:
        if self.requires_action:
            return {
                "requires_action": True,
                "payment_intent": {
                    "id": self.payment_intent_id,
                    "client_secret": self.client_secret,
                },
            }
        return {
            "success": True,
            "payment_intent_id": self.payment_intent_id,
            "task_id": self.task_id,
            "amount": self.amount,
            "service": self.service,
            "message": (
                "Payment authorized! Funds are held on your card and your "
                "handyman service has been booked."
            ),
            "warnings": self.warnings,
        }


@dataclass
class ReconcileResult:
    task_id: str
    payment_intent_id: str
    hold_status: str
    payment_status: Optional[str]
    repaired: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": True,
            "task_id": self.task_id,
            "payment_intent_id": self.payment_intent_id,
            "hold_status": self.hold_status,
            "payment_status": self.payment_status,
            "repaired": self.repaired,
            "warnings": self.warnings,
        }


@dataclass
class AuthorizationResult:
    payment_intent_id: str
    status: str
    client_secret: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        return {
            "client_secret": self.client_secret,
            "payment_intent_id": self.payment_intent_id,
            "status": self.status,
            "requires_action": self.status == "requires_action",
        }


@dataclass
class QuoteCreated:
    quote: Quote
    quote_url: str

    def to_body(self) -> Dict[str, Any]:
        return {
            "success": True,
            "quote_id": self.quote.quote_id,
            "quote_token": self.quote.quote_token,
            "quote_url": self.quote_url,
            "expires_at": self.quote.expires_at,
            "customer_name": self.quote.customer_name,
            "service_type": self.quote.service_type,
            "amount": self.quote.amount,
            "message": "Quote created successfully",
        }
