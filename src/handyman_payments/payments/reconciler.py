from typing import Optional

from handyman_payments.payments.models import Hold, HoldStatus, Payment, Task
from handyman_payments.payments.money import to_minor_units
from handyman_payments.utils.logger import get_logger

logger = get_logger("reconciler")

# A stored hold in any other state still belongs to the task and is never
# traded for a search result.
REPLACEABLE_STATUSES = (HoldStatus.CANCELED,)


class PaymentReconciler:
    """
    Locates the authorization hold behind a task's open payment.

    The stored ``payment_intent_id`` is authoritative and is returned whatever
    its status, so the caller can tell a captured hold ("already processed")
    from a capturable one. Only when no id is stored, or the stored hold is
    gone or canceled, are the gateway's most recent holds searched for one
    with the task's exact amount in cents, status ``requires_capture`` and a
    matching customer name or email in its metadata. That search is a
    compatibility fallback for bookings created before the hold id was
    persisted; amount alone never matches.
    """

    def __init__(self, gateway, list_limit: int = 100):
        self._gateway = gateway
        self._list_limit = list_limit

    def lookup(self, hold_id: Optional[str]) -> Optional[Hold]:
        """Fetch a hold by id; None only when the gateway does not know it."""
        if not hold_id:
            return None
        return self._gateway.get(hold_id)

    def resolve_hold(self, task: Task, payment: Payment) -> Optional[Hold]:
        if payment.payment_intent_id:
            hold = self.lookup(payment.payment_intent_id)
            if hold is not None and hold.status not in REPLACEABLE_STATUSES:
                logger.info(
                    "reconcile.stored_hold",
                    extra={"task_id": task.id, "payment_intent_id": hold.id, "status": hold.status},
                )
                return hold
            logger.warning(
                "reconcile.stored_hold_replaced",
                extra={
                    "task_id": task.id,
                    "payment_intent_id": payment.payment_intent_id,
                    "status": hold.status if hold else None,
                },
            )

        return self.match_recent(task)

    def match_recent(self, task: Task) -> Optional[Hold]:
        target = to_minor_units(task.total_amount)
        holds = self._gateway.list_recent(self._list_limit)
        matches = [hold for hold in holds if self.matches(hold, task, target)]

        logger.info(
            "reconcile.heuristic_search",
            extra={
                "task_id": task.id,
                "target_amount": target,
                "searched": len(holds),
                "matched": [hold.id for hold in matches],
            },
        )

        if not matches:
            return None
        if len(matches) > 1:
            # First in gateway order (most recent) wins; in-flight bookings depend on it.
            # TODO: drop the heuristic for a strict payment_intent_id join once every
            # booking persists the hold id at creation.
            logger.warning(
                "reconcile.ambiguous_match",
                extra={"task_id": task.id, "candidates": [hold.id for hold in matches]},
            )
        return matches[0]

    @staticmethod
    def matches(hold: Hold, task: Task, target_amount: int, status: str = HoldStatus.REQUIRES_CAPTURE) -> bool:
        if hold.amount != target_amount or hold.status != status:
            return False
        name = hold.metadata.get("customer_name")
        email = hold.metadata.get("customer_email")
        name_matches = bool(task.customer_name) and name == task.customer_name
        email_matches = bool(task.customer_email) and email == task.customer_email
        return name_matches or email_matches
