import math

from handyman_payments.payments.errors import QuoteExpired, QuoteUnavailable
from handyman_payments.payments.models import utcnow
from handyman_payments.services import get_services
from handyman_payments.utils.http import check_method, response, run_operation
from handyman_payments.utils.logger import get_logger

logger = get_logger("get_quote")

METHODS = "GET, OPTIONS"
MIN_TOKEN_LENGTH = 16


class QuoteView:
    status_code = 200

    def __init__(self, quote, now):
        self.quote = quote
        self.now = now

    def to_body(self):
        quote = self.quote
        remaining = (quote.expires_at_dt - self.now).total_seconds()
        return {
            "success": True,
            "quote": {
                "quote_id": quote.quote_id,
                "customer_name": quote.customer_name,
                "customer_phone": quote.customer_phone,
                "customer_email": quote.customer_email,
                "service_type": quote.service_type,
                "amount": quote.amount,
                "description": quote.description,
                "expires_at": quote.expires_at,
                "created_at": quote.created_at,
                "days_until_expiry": math.ceil(remaining / 86400),
            },
        }


class QuoteGone:
    """410 body for quotes that expired or were already paid."""

    status_code = 410

    def __init__(self, exc):
        self.exc = exc

    def to_body(self):
        body = self.exc.to_body()
        if isinstance(self.exc, QuoteExpired):
            body["expired"] = True
        else:
            body["error"] = "Quote has already been used"
            body["already_paid"] = True
        return body


def _token_from_path(event: dict) -> str:
    params = event.get("pathParameters") or {}
    if params.get("token"):
        return params["token"]
    path = event.get("rawPath") or event.get("path") or ""
    return path.rstrip("/").split("/")[-1]


def lambda_handler(event, context):
    """
    GET /quote/{token}

    Returns the public view of a pending quote for the checkout page.
    Expired quotes are marked expired and answered with 410, as are quotes
    that were already paid.
    """
    logger.info(
        "get_quote.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )

    early = check_method(event, "GET")
    if early:
        return early

    token = _token_from_path(event)
    if not token or len(token) < MIN_TOKEN_LENGTH:
        return response(400, {"error": "Invalid quote token", "detail": "invalid_token"}, METHODS)

    logger.info("get_quote.requested", extra={"quote_token_prefix": token[:8]})

    def _lookup():
        try:
            quote = get_services().quote_checkout.lookup_quote(token)
        except (QuoteExpired, QuoteUnavailable) as e:
            return QuoteGone(e)
        logger.info("get_quote.found", extra={"quote_id": quote.quote_id, "amount": quote.amount})
        return QuoteView(quote, utcnow())

    return run_operation("get_quote", "Failed to retrieve quote", _lookup, METHODS)
