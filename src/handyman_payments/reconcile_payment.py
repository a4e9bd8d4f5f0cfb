import json

from handyman_payments.payments.errors import ValidationError
from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("reconcile_payment")


def lambda_handler(event, context):
    """
    POST /reconcile-payment  {task_id, payment_intent_id?}

    Looks up the task's hold at the gateway and repairs local records when a
    capture went through but was never recorded (e.g. after a timeout).
    Safe to call repeatedly.
    """
    logger.info(
        "reconcile.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "invalid_json", "detail": "invalid_json"})

    task_id = payload.get("task_id")
    if not task_id:
        return response(400, ValidationError("missing task_id", error="Task ID is required").to_body())

    return run_operation(
        "reconcile",
        "Payment reconciliation failed",
        lambda: get_services().capture.reconcile(task_id, payload.get("payment_intent_id")),
    )
