import json

from handyman_payments.payments.errors import ValidationError
from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("capture_payment")


def lambda_handler(event, context):
    """
    POST /capture-payment  {task_id, completion_photos?, completion_notes?}

    Captures the task's authorization hold when the job is done.
    """
    logger.info(
        "capture.lambda_start",
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

    logger.info("capture.requested", extra={"task_id": task_id})

    return run_operation(
        "capture",
        "Payment capture failed",
        lambda: get_services().capture.capture(
            task_id,
            payload.get("completion_photos"),
            payload.get("completion_notes"),
        ),
    )
