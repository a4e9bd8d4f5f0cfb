import json

from handyman_payments.payments.errors import Unauthorized
from handyman_payments.services import get_services
from handyman_payments.utils.admin_auth import bearer_token
from handyman_payments.utils.http import check_method, parse_body, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("admin_create_quote")


def _base_url(event: dict, default: str) -> str:
    headers = event.get("headers") or {}
    host = headers.get("host") or headers.get("Host") or headers.get("x-forwarded-host")
    if not host:
        return default
    protocol = headers.get("x-forwarded-proto") or "https"
    return f"{protocol}://{host}"


def lambda_handler(event, context):
    """
    POST /admin-create-quote  (Authorization: Bearer <admin token>)
        {customer_name, customer_phone, service_type, amount,
         customer_email?, description?, estimated_hours?, expiry_days?}

    Issues a pending quote and returns its checkout URL.
    """
    logger.info(
        "admin_quote.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "POST")
    if early:
        return early

    try:
        payload = parse_body(event)
    except json.JSONDecodeError:
        return response(400, {"error": "invalid_json", "detail": "invalid_json"})

    def _create():
        services = get_services()
        if services.verify_admin is None:
            raise RuntimeError("Missing required environment variables: ADMIN_SECRET_NAME")
        admin = services.verify_admin(bearer_token(event))
        if admin is None:
            raise Unauthorized("missing or invalid admin credentials")

        logger.info(
            "admin_quote.requested",
            extra={"admin": admin.name, "service_type": payload.get("service_type"), "amount": payload.get("amount")},
        )
        return services.quote_checkout.create_quote(
            payload,
            base_url=_base_url(event, services.settings.site_origin),
            created_by=admin.name,
        )

    return run_operation("admin_quote", "Failed to create quote", _create)
