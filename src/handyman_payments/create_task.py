import json

from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("create_task")


def lambda_handler(event, context):
    """
    POST /create-task  booking form fields + optional payment_intent_id

    Creates the task and its pending booking payment after the customer has
    confirmed the authorization hold.
    """
    logger.info(
        "create_task.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "invalid_json", "detail": "invalid_json"})

    logger.info("create_task.requested", extra={"task_number": payload.get("task_id")})

    return run_operation(
        "create_task",
        "Task creation failed",
        lambda: get_services().booking.create_booking(
            payload,
            payment_intent_id=payload.get("payment_intent_id"),
        ),
    )
