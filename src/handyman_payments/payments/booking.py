import random
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from handyman_payments.payments.errors import ValidationError
from handyman_payments.payments.models import (
    PaymentStatus,
    PaymentType,
    TaskPaymentStatus,
    TaskStatus,
    utcnow,
)
from handyman_payments.payments.money import parse_amount, to_minor_units
from handyman_payments.payments.results import AuthorizationResult, BookingResult
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.notifications import dispatch_warnings

logger = get_logger("booking")

MINIMUM_AMOUNT = Decimal("0.50")
HOLD_WINDOW = timedelta(hours=48)


def generate_task_number() -> str:
    return f"TASK-{int(time.time() * 1000)}-{random.randint(0, 999)}"


class BookingService:
    """
    Normal booking flow: authorize the price, then create the task and its
    pending payment. Quote checkout reuses ``create_booking`` so every task
    reaches capture in the same shape.
    """

    def __init__(self, store, gateway, notifier, currency: str = "usd", clock=utcnow):
        self._store = store
        self._gateway = gateway
        self._notifier = notifier
        self._currency = currency
        self._clock = clock

    def authorize_booking(
        self,
        amount: Any,
        customer_info: Optional[Dict[str, Any]] = None,
        job_details: Optional[Dict[str, Any]] = None,
        payment_method: Optional[str] = None,
        customer: Optional[str] = None,
    ) -> AuthorizationResult:
        """
        Place a manual-capture hold for a booking.

        The customer name/email go into the hold metadata; the capture
        reconciler matches on them when a task has no stored hold id.
        """
        total = parse_amount(amount, "amount")
        if total < MINIMUM_AMOUNT:
            raise ValidationError("Invalid amount", error="Invalid amount")

        customer_info = customer_info or {}
        job_details = job_details or {}
        metadata = {
            "customer_name": customer_info.get("name") or "Unknown",
            "customer_email": customer_info.get("email") or "Unknown",
            "customer_phone": customer_info.get("phone") or "Unknown",
            "service_category": job_details.get("category") or "Unknown",
            "service_window": job_details.get("window") or "Unknown",
            "estimated_hours": job_details.get("hours") or "Unknown",
        }

        hold = self._gateway.authorize(
            to_minor_units(total),
            self._currency,
            payment_method,
            metadata,
            description=(
                f"Handyman Service: {job_details.get('category') or 'Service'} - "
                f"{customer_info.get('name') or 'Customer'}"
            ),
            customer=customer,
        )
        logger.info(
            "booking.authorized",
            extra={"payment_intent_id": hold.id, "status": hold.status, "amount": total},
        )
        return AuthorizationResult(payment_intent_id=hold.id, status=hold.status, client_secret=hold.client_secret)

    def create_booking(
        self,
        fields: Dict[str, Any],
        payment_intent_id: Optional[str] = None,
        payment_type: str = PaymentType.BOOKING,
        quote_id: Optional[str] = None,
        notify: bool = True,
    ) -> BookingResult:
        """
        Create the task and its pending payment.

        ``fields`` uses the booking form names (name, phone, email, address,
        category, description, window, estimated_hours, total_amount, ...).
        DuplicateTaskId propagates; a failed payment insert is a warning since
        the hold already exists at the gateway.
        """
        if not fields.get("phone"):
            raise ValidationError("phone is required", error="Customer phone is required")
        total = parse_amount(fields.get("total_amount"), "total_amount")
        task_number = fields.get("task_id") or generate_task_number()
        now = self._clock()

        task = self._store.create_task(
            {
                "task_id": task_number,
                "customer_name": fields.get("name"),
                "customer_phone": fields.get("phone"),
                "customer_email": fields.get("email"),
                "customer_address": fields.get("address") or fields.get("property_address"),
                "task_category": fields.get("category"),
                "task_description": fields.get("description") or "",
                "scheduled_date": now.date().isoformat(),
                "time_window": fields.get("window"),
                "estimated_hours": fields.get("estimated_hours"),
                "status": TaskStatus.PENDING,
                "payment_status": TaskPaymentStatus.AUTHORIZED,
                "total_amount": total,
                "notes": (
                    f"Access: {fields.get('access_details') or 'N/A'} | "
                    f"Pets: {fields.get('pets_and_special') or 'N/A'} | "
                    f"Additional: {fields.get('additional_details') or 'N/A'}"
                ),
            }
        )

        warnings = []
        payment_id = None
        try:
            payment = self._store.create_payment(
                {
                    "task_id": task.id,
                    "amount": total,
                    "payment_intent_id": payment_intent_id,
                    "status": PaymentStatus.PENDING,
                    "payment_type": payment_type,
                    "quote_id": quote_id,
                    "hold_reason": "Authorization hold - awaiting service completion",
                    "hold_until": (now + HOLD_WINDOW).isoformat(),
                }
            )
            payment_id = payment.payment_id
        except Exception:
            logger.exception(
                "booking.payment_record_failed",
                extra={"task_id": task.id, "payment_intent_id": payment_intent_id},
            )
            warnings.append("payment_record_create_failed")

        if notify:
            sms = self._notifier.notify_sms(
                "booking_confirmation",
                {
                    "to": task.customer_phone,
                    "task_id": task.task_id,
                    "service_name": task.task_category,
                    "time_window": task.time_window,
                    "total_amount": task.total_amount,
                },
            )
            warnings += dispatch_warnings({"sms": sms})

        logger.info(
            "booking.created",
            extra={"task_id": task.id, "task_number": task.task_id, "payment_type": payment_type},
        )
        return BookingResult(id=task.id, task_number=task.task_id, payment_id=payment_id, warnings=warnings)
