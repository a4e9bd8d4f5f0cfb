import random
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from handyman_payments.payments.booking import MINIMUM_AMOUNT, BookingService, generate_task_number
from handyman_payments.payments.errors import (
    GatewayError,
    QuoteExpired,
    QuoteNotFound,
    QuoteUnavailable,
    ValidationError,
)
from handyman_payments.payments.models import HoldStatus, PaymentType, Quote, QuoteStatus, utcnow
from handyman_payments.payments.money import parse_amount, to_minor_units
from handyman_payments.payments.results import QuoteCreated, QuoteResult
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.notifications import dispatch_warnings

logger = get_logger("quote_checkout")

QUOTE_REQUIRED_FIELDS = ("customer_name", "customer_phone", "service_type", "amount")
DEFAULT_EXPIRY_DAYS = 14


class QuoteCheckoutOrchestrator:
    """
    Issues admin quotes and redeems them: redemption authorizes
    ``quote.amount`` as a manual-capture hold and books the task through
    BookingService.

    Quote states: pending -> paid (terminal), pending -> expired (terminal).
    Failed authorizations leave the quote pending so the customer can retry.
    """

    def __init__(self, quotes, gateway, booking: BookingService, notifier, currency: str = "usd", clock=utcnow):
        self._quotes = quotes
        self._gateway = gateway
        self._booking = booking
        self._notifier = notifier
        self._currency = currency
        self._clock = clock

    def _require_quote(self, quote_token: str) -> Quote:
        quote = self._quotes.get_quote(quote_token)
        if quote is None:
            logger.warning("quote.not_found", extra={"quote_token_prefix": quote_token[:8]})
            raise QuoteNotFound(f"no quote for token {quote_token[:8]}...")
        return quote

    def create_quote(
        self,
        fields: Dict[str, Any],
        base_url: Optional[str] = None,
        created_by: str = "admin",
    ) -> QuoteCreated:
        """
        Issue a pending quote redeemable through its token until it expires.

        Requires customer name, phone, service type and a positive amount;
        ``expiry_days`` defaults to 14.
        """
        missing = [name for name in QUOTE_REQUIRED_FIELDS if fields.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"missing {', '.join(missing)}",
                error="Missing required fields: " + ", ".join(QUOTE_REQUIRED_FIELDS),
            )

        amount = parse_amount(fields.get("amount"), "amount")
        if amount < MINIMUM_AMOUNT:
            raise ValidationError(f"amount must be at least {MINIMUM_AMOUNT}", error="Invalid quote amount")

        expiry_days = fields.get("expiry_days")
        if expiry_days is None or expiry_days == "":
            expiry_days = DEFAULT_EXPIRY_DAYS
        try:
            expiry_days = int(expiry_days)
        except (TypeError, ValueError):
            raise ValidationError("expiry_days must be a whole number of days", error="Invalid expiry_days")
        if isinstance(fields.get("expiry_days"), bool) or expiry_days < 1:
            raise ValidationError("expiry_days must be at least 1", error="Invalid expiry_days")

        now = self._clock()
        quote = self._quotes.create_quote(
            {
                "quote_id": f"QUOTE-{int(now.timestamp() * 1000)}-{random.randint(0, 999)}",
                "quote_token": secrets.token_hex(16),
                "amount": amount,
                "expires_at": (now + timedelta(days=expiry_days)).isoformat(),
                "service_type": fields["service_type"],
                "description": fields.get("description") or None,
                "estimated_hours": fields.get("estimated_hours"),
                "customer_name": fields["customer_name"],
                "customer_phone": fields["customer_phone"],
                "customer_email": fields.get("customer_email") or None,
                "status": QuoteStatus.PENDING,
                "created_by": created_by,
                "created_at": now.isoformat(),
            }
        )

        logger.info(
            "quote.created",
            extra={
                "quote_id": quote.quote_id,
                "amount": quote.amount,
                "expires_at": quote.expires_at,
                "created_by": created_by,
            },
        )
        return QuoteCreated(quote=quote, quote_url=f"{(base_url or '').rstrip('/')}/quote/{quote.quote_token}")

    def lookup_quote(self, quote_token: str) -> Quote:
        """
        Load a quote for display at checkout. Expired quotes are marked
        expired (QuoteExpired); paid ones raise QuoteUnavailable.
        """
        quote = self._require_quote(quote_token)

        if self._clock() >= quote.expires_at_dt:
            if quote.status == QuoteStatus.PENDING:
                self._mark_expired(quote)
            raise QuoteExpired(f"quote {quote.quote_id} expired at {quote.expires_at}")

        if quote.status != QuoteStatus.PENDING:
            logger.info("quote.unavailable", extra={"quote_id": quote.quote_id, "status": quote.status})
            raise QuoteUnavailable(f"quote {quote.quote_id} is {quote.status}")

        return quote

    def pay_quote(
        self,
        quote_token: str,
        customer_fields: Optional[Dict[str, Any]],
        payment_method_ref: str,
        origin: Optional[str] = None,
    ) -> QuoteResult:
        if not quote_token or not payment_method_ref:
            raise ValidationError(
                "quote_token and payment_method_id are required",
                error="Quote token and payment method are required",
            )
        customer_fields = customer_fields or {}

        quote = self._require_quote(quote_token)

        if quote.status != QuoteStatus.PENDING:
            logger.info("quote.unavailable", extra={"quote_id": quote.quote_id, "status": quote.status})
            raise QuoteUnavailable(f"quote {quote.quote_id} is {quote.status}")

        if self._clock() >= quote.expires_at_dt:
            self._mark_expired(quote)
            raise QuoteExpired(f"quote {quote.quote_id} expired at {quote.expires_at}")

        name = customer_fields.get("customer_name") or quote.customer_name
        phone = customer_fields.get("customer_phone") or quote.customer_phone
        email = customer_fields.get("customer_email") or quote.customer_email
        address = customer_fields.get("customer_address")
        timing = customer_fields.get("timing_preference")

        return_url = None
        if origin:
            return_url = f"{origin}/quote-payment-success?token={quote_token}"

        hold = self._gateway.authorize(
            to_minor_units(quote.amount),
            self._currency,
            payment_method_ref,
            {
                "quote_id": quote.quote_id,
                "quote_token": quote_token,
                "customer_name": name,
                "customer_email": email,
                "service_type": quote.service_type,
                "source": "admin_quote",
            },
            description=f"Quote Payment: {quote.service_type} for {name}",
            return_url=return_url,
        )

        if hold.status == HoldStatus.REQUIRES_ACTION:
            logger.info("quote.requires_action", extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id})
            return QuoteResult(payment_intent_id=hold.id, requires_action=True, client_secret=hold.client_secret)

        if hold.status not in (HoldStatus.REQUIRES_CAPTURE, HoldStatus.SUCCEEDED):
            logger.error(
                "quote.authorization_failed",
                extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id, "status": hold.status},
            )
            raise GatewayError(
                f"payment intent {hold.id} ended in status {hold.status}",
                error="Payment authorization failed",
                gateway_code=hold.status,
                declined=True,
            )

        logger.info(
            "quote.authorized",
            extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id, "amount": quote.amount},
        )

        warnings = []
        try:
            self._quotes.update_quote(
                quote_token,
                {
                    "status": QuoteStatus.PAID,
                    "payment_intent_id": hold.id,
                    "used_at": self._clock().isoformat(),
                    "final_customer_name": name,
                    "final_customer_phone": phone,
                    "final_customer_email": email,
                    "final_customer_address": address,
                    "timing_preference": timing,
                },
                expected_status=QuoteStatus.PENDING,
            )
        except QuoteUnavailable:
            # Another checkout redeemed the quote between our read and this write
            logger.warning(
                "quote.redeemed_concurrently",
                extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id},
            )
            self._release(hold)
            raise
        except Exception:
            logger.exception("quote.mark_paid_failed", extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id})
            warnings.append("quote_update_failed")

        task_number = generate_task_number()
        try:
            booking = self._booking.create_booking(
                {
                    "task_id": task_number,
                    "name": name,
                    "phone": phone,
                    "email": email,
                    "address": address,
                    "category": quote.service_type,
                    "description": quote.description or quote.service_type,
                    "window": timing or "flexible",
                    "estimated_hours": quote.estimated_hours,
                    "total_amount": quote.amount,
                    "access_details": "Created from admin quote",
                    "pets_and_special": "N/A",
                    "additional_details": f"Admin quote {quote.quote_id}. Timing: {timing or 'flexible'}",
                },
                payment_intent_id=hold.id,
                payment_type=PaymentType.QUOTE_PAYMENT,
                quote_id=quote.quote_id,
                notify=False,
            )
            warnings += booking.warnings
        except Exception:
            # The hold exists and the quote points at it; ops can rebuild the task from there
            logger.exception(
                "quote.task_creation_failed",
                extra={"quote_id": quote.quote_id, "payment_intent_id": hold.id, "task_number": task_number},
            )
            warnings.append("task_creation_failed")

        warnings += self._notify(quote, task_number, name, phone, email)

        return QuoteResult(
            payment_intent_id=hold.id,
            task_id=task_number,
            amount=quote.amount,
            service=quote.service_type,
            warnings=warnings,
        )

    def _release(self, hold) -> None:
        try:
            self._gateway.cancel(hold.id, reason="duplicate")
        except Exception:
            logger.exception("quote.release_hold_failed", extra={"payment_intent_id": hold.id})

    def _mark_expired(self, quote: Quote) -> None:
        logger.info("quote.expired", extra={"quote_id": quote.quote_id, "expires_at": quote.expires_at})
        try:
            self._quotes.update_quote(
                quote.quote_token, {"status": QuoteStatus.EXPIRED}, expected_status=QuoteStatus.PENDING
            )
        except Exception:
            logger.exception("quote.mark_expired_failed", extra={"quote_id": quote.quote_id})

    def _notify(self, quote: Quote, task_number: str, name, phone, email):
        sms = self._notifier.notify_sms(
            "quote_booking_confirmation",
            {
                "to": phone,
                "customer_name": name,
                "service_name": quote.service_type,
                "amount": quote.amount,
                "task_id": task_number,
            },
        )
        email_sent = self._notifier.notify_email(
            "quote_booking",
            {
                "customer": {"name": name, "email": email, "phone": phone},
                "quote": {
                    "id": quote.quote_id,
                    "service_type": quote.service_type,
                    "amount": quote.amount,
                    "description": quote.description,
                },
                "task": {"id": task_number, "created_at": self._clock().isoformat()},
            },
        )
        return dispatch_warnings({"sms": sms, "email": email_sent})
