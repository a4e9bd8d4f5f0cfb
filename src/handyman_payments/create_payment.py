import json

from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("create_payment")


def lambda_handler(event, context):
    """
    POST /create-payment  {amount, customer_info?, job_details?, payment_method_id?, customer_id?}

    Places the booking's authorization hold (manual capture) and returns the
    client secret for confirmation in the browser.
    """
    logger.info(
        "create_payment.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "invalid_json", "detail": "invalid_json"})

    return run_operation(
        "create_payment",
        "Payment setup failed",
        lambda: get_services().booking.authorize_booking(
            payload.get("amount"),
            customer_info=payload.get("customer_info"),
            job_details=payload.get("job_details"),
            payment_method=payload.get("payment_method_id"),
            customer=payload.get("customer_id"),
        ),
    )
