from typing import List, Optional

from handyman_payments.payments.errors import (
    GatewayError,
    HoldNotFound,
    NoCapturableHold,
    PaymentRecordMissing,
    TaskNotFound,
    TransientTimeout,
    ValidationError,
)
from handyman_payments.payments.models import (
    Hold,
    HoldStatus,
    Payment,
    PaymentStatus,
    Task,
    TaskPaymentStatus,
    TaskStatus,
    utcnow,
)
from handyman_payments.payments.money import from_minor_units, to_minor_units
from handyman_payments.payments.reconciler import PaymentReconciler
from handyman_payments.payments.results import CaptureOutcome, CaptureResult, ReconcileResult
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.notifications import dispatch_warnings

logger = get_logger("capture")


def _photo_list(completion_photos) -> List[str]:
    if completion_photos is None:
        return []
    if not isinstance(completion_photos, (list, tuple)) or not all(
        isinstance(photo, str) for photo in completion_photos
    ):
        raise ValidationError("completion_photos must be a list of URLs")
    return list(completion_photos)


class CaptureOrchestrator:
    """
    Moves a task from "authorized" to "completed + captured".

    The gateway capture always happens before the completion writes. Once it has
    succeeded the result is a success, whatever happens to the payment/task
    updates and notifications afterwards; those problems are returned as
    warnings. A repeated capture for the same task is reported as
    ``already_processed`` and never charges twice.
    """

    def __init__(self, store, gateway, reconciler: PaymentReconciler, notifier, clock=utcnow):
        self._store = store
        self._gateway = gateway
        self._reconciler = reconciler
        self._notifier = notifier
        self._clock = clock

    def capture(
        self,
        task_id: str,
        completion_photos: Optional[List[str]] = None,
        completion_notes: Optional[str] = None,
    ) -> CaptureResult:
        completion_photos = _photo_list(completion_photos)

        task = self._store.get_task(task_id)
        if task is None:
            logger.warning("capture.task_not_found", extra={"task_id": task_id})
            raise TaskNotFound(f"task {task_id}")

        payment = self._store.get_open_payment(task.id)
        if payment is None:
            return self._already_processed_or_missing(task)

        hold = self._reconciler.resolve_hold(task, payment)
        if hold is None:
            logger.error("capture.no_capturable_hold", extra={"task_id": task.id})
            raise NoCapturableHold(f"no requires_capture hold for task {task.id}")

        if hold.status == HoldStatus.SUCCEEDED:
            # Captured at the gateway but the local write never landed
            logger.warning(
                "capture.hold_already_captured",
                extra={"task_id": task.id, "payment_intent_id": hold.id},
            )
            warnings = self._record_capture(task, payment, hold, completion_photos, completion_notes)
            return CaptureResult(
                outcome=CaptureOutcome.ALREADY_PROCESSED,
                task_id=task.id,
                payment_intent_id=hold.id,
                amount_captured=self._captured_amount(hold, task),
                warnings=warnings,
            )

        if hold.status != HoldStatus.REQUIRES_CAPTURE:
            logger.error(
                "capture.stored_hold_not_capturable",
                extra={"task_id": task.id, "payment_intent_id": hold.id, "status": hold.status},
            )
            raise NoCapturableHold(f"hold {hold.id} is {hold.status}")

        if hold.id != payment.payment_intent_id:
            # Bind a searched hold before money moves so a retry finds it by id
            self._store.update_payment(payment.task_id, payment.payment_id, {"payment_intent_id": hold.id})
            payment.payment_intent_id = hold.id

        amount_minor = to_minor_units(task.total_amount)
        metadata = {
            "task_completed_at": self._clock().isoformat(),
            "completion_photos_count": len(completion_photos),
            "completion_notes": completion_notes or "No notes provided",
        }

        outcome = CaptureOutcome.CAPTURED
        try:
            captured = self._gateway.capture(
                hold.id,
                amount_minor=amount_minor,
                metadata=metadata,
                idempotency_key=f"capture-{hold.id}",
            )
        except GatewayError as e:
            try:
                current = self._reconciler.lookup(hold.id)
            except GatewayError:
                logger.exception(
                    "capture.lookup_after_error_failed",
                    extra={"task_id": task.id, "payment_intent_id": hold.id},
                )
                raise e
            if current is None or current.status != HoldStatus.SUCCEEDED:
                logger.error(
                    "capture.gateway_failed",
                    extra={"task_id": task.id, "payment_intent_id": hold.id, "error": e.detail},
                )
                raise
            # A timed-out capture that landed is ours; any other error means
            # someone else captured first.
            if not isinstance(e, TransientTimeout):
                outcome = CaptureOutcome.ALREADY_PROCESSED
            logger.warning(
                "capture.reconciled_after_error",
                extra={"task_id": task.id, "payment_intent_id": hold.id, "outcome": outcome},
            )
            captured = current

        logger.info(
            "capture.captured",
            extra={"task_id": task.id, "payment_intent_id": captured.id, "amount": task.total_amount},
        )

        warnings = self._record_capture(task, payment, captured, completion_photos, completion_notes)
        if outcome == CaptureOutcome.CAPTURED:
            warnings += self._notify(task, captured.id, completion_photos, completion_notes)

        return CaptureResult(
            outcome=outcome,
            task_id=task.id,
            payment_intent_id=captured.id,
            amount_captured=task.total_amount,
            warnings=warnings,
        )

    def reconcile(self, task_id: str, hold_id: Optional[str] = None) -> ReconcileResult:
        """
        Resolve an ambiguous outcome (e.g. a capture that timed out) by hold id.

        If the gateway shows the hold captured while the local payment is still
        pending, the local payment and task are brought up to date.
        """
        task = self._store.get_task(task_id)
        if task is None:
            raise TaskNotFound(f"task {task_id}")

        payment = self._store.get_open_payment(task.id) or self._store.get_completed_payment(task.id)
        hold_id = hold_id or (payment.payment_intent_id if payment else None)
        if not hold_id:
            raise HoldNotFound(f"no hold id recorded for task {task.id}")

        hold = self._reconciler.lookup(hold_id)
        if hold is None:
            raise HoldNotFound(f"hold {hold_id}")

        if payment is not None and payment.payment_intent_id and payment.payment_intent_id != hold.id:
            raise ValidationError(f"hold {hold.id} does not belong to task {task.id}")
        if payment is not None and not payment.payment_intent_id:
            target = to_minor_units(task.total_amount)
            if not PaymentReconciler.matches(hold, task, target, status=hold.status):
                raise ValidationError(f"hold {hold.id} does not match task {task.id}")

        repaired = False
        warnings: List[str] = []
        if (
            payment is not None
            and payment.status == PaymentStatus.PENDING
            and hold.status == HoldStatus.SUCCEEDED
        ):
            logger.warning(
                "reconcile.repairing_local_records",
                extra={"task_id": task.id, "payment_intent_id": hold.id},
            )
            warnings = self._record_capture(task, payment, hold, payment.completion_photos, payment.completion_notes)
            repaired = not warnings

        logger.info(
            "reconcile.checked",
            extra={
                "task_id": task.id,
                "payment_intent_id": hold.id,
                "hold_status": hold.status,
                "repaired": repaired,
            },
        )
        return ReconcileResult(
            task_id=task.id,
            payment_intent_id=hold.id,
            hold_status=hold.status,
            payment_status=PaymentStatus.COMPLETED if repaired else (payment.status if payment else None),
            repaired=repaired,
            warnings=warnings,
        )

    def _already_processed_or_missing(self, task: Task) -> CaptureResult:
        completed = self._store.get_completed_payment(task.id)
        if completed is not None:
            logger.info(
                "capture.already_processed",
                extra={"task_id": task.id, "payment_intent_id": completed.payment_intent_id},
            )
            return CaptureResult(
                outcome=CaptureOutcome.ALREADY_PROCESSED,
                task_id=task.id,
                payment_intent_id=completed.payment_intent_id,
                amount_captured=completed.amount,
            )
        logger.error("capture.payment_record_missing", extra={"task_id": task.id})
        raise PaymentRecordMissing(f"no pending payment for task {task.id}")

    @staticmethod
    def _captured_amount(hold: Hold, task: Task):
        if hold.amount_received:
            return from_minor_units(hold.amount_received)
        return task.total_amount

    def _record_capture(
        self,
        task: Task,
        payment: Payment,
        hold: Hold,
        completion_photos: List[str],
        completion_notes: Optional[str],
    ) -> List[str]:
        """Best-effort bookkeeping after the money moved; returns warning codes."""
        warnings = []
        now = self._clock().isoformat()

        try:
            self._store.update_payment(
                payment.task_id,
                payment.payment_id,
                {
                    "status": PaymentStatus.COMPLETED,
                    "payment_intent_id": hold.id,
                    "captured_at": now,
                    "completion_photos": completion_photos,
                    "completion_notes": completion_notes,
                },
            )
        except Exception:
            logger.exception(
                "capture.payment_update_failed",
                extra={"task_id": task.id, "payment_id": payment.payment_id, "payment_intent_id": hold.id},
            )
            warnings.append("payment_record_update_failed")

        try:
            self._store.update_task(
                task.id,
                {
                    "status": TaskStatus.COMPLETED,
                    "payment_status": TaskPaymentStatus.CAPTURED,
                    "payment_captured_at": now,
                },
            )
        except Exception:
            logger.exception(
                "capture.task_update_failed",
                extra={"task_id": task.id, "payment_intent_id": hold.id},
            )
            warnings.append("task_status_update_failed")

        return warnings

    def _notify(self, task: Task, payment_intent_id: str, completion_photos: List[str], completion_notes: Optional[str]) -> List[str]:
        sms = self._notifier.notify_sms(
            "job_complete",
            {
                "to": task.customer_phone,
                "task_id": task.task_id,
                "final_amount": task.total_amount,
                "service_name": task.task_category,
                "customer_name": task.customer_name,
            },
        )
        email = self._notifier.notify_email(
            "task_completion",
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
                    "completed_at": self._clock().isoformat(),
                    "completion_notes": completion_notes or "Task completed successfully",
                },
                "handyman": {
                    "name": task.assigned_handyman_name,
                    "phone": task.assigned_handyman_phone,
                },
                "payment": {
                    "amount": task.total_amount,
                    "payment_intent_id": payment_intent_id,
                    "status": PaymentStatus.COMPLETED,
                },
                "completion_photos": completion_photos,
            },
        )
        return dispatch_warnings({"sms": sms, "email": email})
