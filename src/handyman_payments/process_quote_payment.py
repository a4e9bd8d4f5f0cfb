import json

from handyman_payments.payments.errors import ValidationError
from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, origin, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("process_quote_payment")

CUSTOMER_FIELDS = (
    "customer_name",
    "customer_phone",
    "customer_email",
    "customer_address",
    "timing_preference",
)


def lambda_handler(event, context):
    """
    POST /process-quote-payment
        {quote_token, payment_method_id, customer_name?, customer_phone?,
         customer_email?, customer_address?, timing_preference?}

    Authorizes an admin quote and books the task. A ``requires_action`` body
    (200) hands 3-D Secure step-up back to the client.
    """
    logger.info(
        "quote_payment.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "Invalid request data", "detail": "invalid_json"})

    quote_token = payload.get("quote_token")
    payment_method_id = payload.get("payment_method_id")
    if not quote_token or not payment_method_id:
        logger.warning(
            "quote_payment.missing_fields",
            extra={"quote_token": bool(quote_token), "payment_method_id": bool(payment_method_id)},
        )
        return response(
            400,
            ValidationError(
                "missing quote_token or payment_method_id",
                error="Quote token and payment method are required",
            ).to_body(),
        )

    logger.info("quote_payment.requested", extra={"quote_token_prefix": quote_token[:8]})

    def _pay():
        services = get_services()
        return services.quote_checkout.pay_quote(
            quote_token,
            {field: payload.get(field) for field in CUSTOMER_FIELDS},
            payment_method_id,
            origin=origin(event, services.settings.site_origin),
        )

    return run_operation("quote_payment", "Payment processing failed", _pay)
