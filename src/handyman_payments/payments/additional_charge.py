from decimal import Decimal
from typing import Any, List, Optional

from handyman_payments.payments.errors import (
    AdditionalChargeLimitExceeded,
    GatewayError,
    NoSavedInstrument,
    OriginalPaymentNotFound,
    TaskNotFound,
    ValidationError,
)
from handyman_payments.payments.models import (
    HoldStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    Task,
    utcnow,
)
from handyman_payments.payments.money import parse_amount, to_minor_units
from handyman_payments.payments.results import ChargeResult
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.notifications import dispatch_warnings

logger = get_logger("additional_charge")


class AdditionalChargeOrchestrator:
    """
    Charges post-completion costs (materials, travel) as a new immediate charge
    against the customer and payment method saved on the original hold.

    Each call creates its own ``additional_materials`` payment and adds its
    total to the task atomically in the store, so concurrent charges stack
    instead of overwriting each other.
    """

    def __init__(
        self,
        store,
        gateway,
        notifier,
        currency: str = "usd",
        default_travel_fee: Decimal = Decimal("80"),
        cap_ratio: Optional[Decimal] = None,
        clock=utcnow,
    ):
        self._store = store
        self._gateway = gateway
        self._notifier = notifier
        self._currency = currency
        self._default_travel_fee = default_travel_fee
        self._cap_ratio = cap_ratio
        self._clock = clock

    def charge_additional(
        self,
        task_id: str,
        material_costs: Any,
        travel_fee: Any = None,
        receipts: Optional[List[str]] = None,
        notes: Optional[str] = None,
        customer_approved: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        materials = parse_amount(material_costs, "material_costs")
        travel = self._default_travel_fee if travel_fee is None else parse_amount(travel_fee, "travel_fee")
        total = materials + travel
        if total <= 0:
            raise ValidationError("additional charge total must be greater than zero")
        receipts = list(receipts or [])

        task = self._store.get_task(task_id)
        if task is None:
            logger.warning("charge.task_not_found", extra={"task_id": task_id})
            raise TaskNotFound(f"task {task_id}")

        payments = self._store.list_payments(task.id)
        original = next(
            (
                p
                for p in payments
                if p.status == PaymentStatus.COMPLETED and p.payment_type in PaymentType.HOLD_TYPES
            ),
            None,
        )
        if original is None or not original.payment_intent_id:
            logger.error("charge.original_payment_missing", extra={"task_id": task.id})
            raise OriginalPaymentNotFound(f"no captured payment for task {task.id}")

        self._check_cap(task, original, payments, total)

        original_hold = self._gateway.get(original.payment_intent_id)
        if original_hold is None:
            logger.error(
                "charge.original_hold_missing",
                extra={"task_id": task.id, "payment_intent_id": original.payment_intent_id},
            )
            raise OriginalPaymentNotFound(f"payment intent {original.payment_intent_id} not found")
        if not original_hold.customer or not original_hold.payment_method:
            logger.error(
                "charge.no_saved_instrument",
                extra={"task_id": task.id, "payment_intent_id": original_hold.id},
            )
            raise NoSavedInstrument(f"payment intent {original_hold.id} has no customer/payment method")

        amount_minor = to_minor_units(total)
        logger.info(
            "charge.creating",
            extra={
                "task_id": task.id,
                "customer": original_hold.customer,
                "amount": amount_minor,
                "material_costs": materials,
                "travel_fee": travel,
            },
        )

        charge = self._gateway.charge_now(
            amount_minor,
            self._currency,
            original_hold.customer,
            original_hold.payment_method,
            {
                "original_task_id": task.id,
                "original_payment_intent": original.payment_intent_id,
                "charge_type": PaymentType.ADDITIONAL_MATERIALS,
                "travel_fee": travel,
                "material_costs": materials,
                "handyman_notes": notes or "",
                "customer_approved": str(bool(customer_approved)).lower(),
            },
            description=f"Additional materials for task {task.task_id}",
            idempotency_key=idempotency_key,
        )
        if charge.status != HoldStatus.SUCCEEDED:
            logger.error(
                "charge.not_completed",
                extra={"task_id": task.id, "payment_intent_id": charge.id, "status": charge.status},
            )
            raise GatewayError(
                f"charge {charge.id} ended in status {charge.status}",
                error="Additional charge was not completed",
                gateway_code=charge.status,
                declined=True,
            )

        logger.info(
            "charge.succeeded",
            extra={"task_id": task.id, "payment_intent_id": charge.id, "amount": total},
        )

        warnings, new_total = self._record_charge(task, charge.id, total, materials, travel, receipts, notes, customer_approved)
        warnings += self._notify(task, total, materials, travel, receipts)

        return ChargeResult(
            task_id=task.id,
            payment_intent_id=charge.id,
            additional_amount=total,
            material_costs=materials,
            travel_fee=travel,
            new_total_amount=new_total,
            warnings=warnings,
        )

    def _check_cap(self, task: Task, original: Payment, payments: List[Payment], total: Decimal) -> None:
        if self._cap_ratio is None:
            return
        already = sum(
            (p.amount for p in payments if p.payment_type == PaymentType.ADDITIONAL_MATERIALS and p.status == PaymentStatus.COMPLETED),
            Decimal("0"),
        )
        limit = original.amount * self._cap_ratio
        if already + total > limit:
            logger.warning(
                "charge.cap_exceeded",
                extra={"task_id": task.id, "already_charged": already, "requested": total, "limit": limit},
            )
            raise AdditionalChargeLimitExceeded(
                f"requested {total} with {already} already charged exceeds limit {limit}"
            )

    def _record_charge(self, task, charge_id, total, materials, travel, receipts, notes, customer_approved):
        warnings = []
        new_total = None
        now = self._clock().isoformat()

        try:
            self._store.create_payment(
                {
                    "task_id": task.id,
                    "amount": total,
                    "payment_intent_id": charge_id,
                    "status": PaymentStatus.COMPLETED,
                    "payment_type": PaymentType.ADDITIONAL_MATERIALS,
                    "travel_fee": travel,
                    "material_costs": materials,
                    "material_receipts": receipts,
                    "handyman_notes": notes,
                    "customer_approved": bool(customer_approved),
                    "captured_at": now,
                }
            )
        except Exception:
            logger.exception(
                "charge.payment_record_failed",
                extra={"task_id": task.id, "payment_intent_id": charge_id},
            )
            warnings.append("payment_record_create_failed")

        try:
            new_total = self._store.increment_task_total(
                task.id,
                total,
                {"last_additional_payment_intent_id": charge_id},
            )
        except Exception:
            logger.exception(
                "charge.task_total_update_failed",
                extra={"task_id": task.id, "payment_intent_id": charge_id, "amount": total},
            )
            warnings.append("task_total_update_failed")

        return warnings, new_total

    def _notify(self, task: Task, total, materials, travel, receipts) -> List[str]:
        sms = self._notifier.notify_sms(
            "additional_charge",
            {
                "to": task.customer_phone,
                "task_id": task.task_id,
                "additional_amount": total,
                "travel_fee": travel,
                "material_costs": materials,
                "service_name": task.task_category,
                "customer_name": task.customer_name,
            },
        )
        email = self._notifier.notify_email(
            "additional_charge",
            {
                "customer": {
                    "name": task.customer_name,
                    "email": task.customer_email,
                    "phone": task.customer_phone,
                    "address": task.customer_address,
                },
                "task": {
                    "id": task.task_id,
                    "category": task.task_category,
                    "description": task.task_description,
                },
                "additional_charge": {
                    "total_amount": total,
                    "travel_fee": travel,
                    "material_costs": materials,
                    "receipts": receipts,
                },
            },
        )
        return dispatch_warnings({"sms": sms, "email": email})
