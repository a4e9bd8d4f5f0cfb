# utils/stripe_gateway.py

from typing import Any, Dict, List, Optional

import stripe

from handyman_payments.payments.errors import GatewayError, TransientTimeout, redact_secrets
from handyman_payments.payments.models import Hold
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.secrets import get_stripe_secrets

logger = get_logger("stripe_gateway")


def _ref(value: Any) -> Optional[str]:
    # customer / payment_method come back as ids or as expanded objects
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return getattr(value, "id", None) or (value.get("id") if hasattr(value, "get") else None)


def hold_from_intent(pi: Any) -> Hold:
    """Flatten a Stripe PaymentIntent into a Hold."""
    metadata = pi.get("metadata") or {}
    return Hold(
        id=pi.get("id"),
        status=pi.get("status"),
        amount=int(pi.get("amount") or 0),
        currency=pi.get("currency") or "usd",
        customer=_ref(pi.get("customer")),
        payment_method=_ref(pi.get("payment_method")),
        metadata={str(k): str(v) for k, v in dict(metadata).items()},
        client_secret=pi.get("client_secret"),
        amount_received=pi.get("amount_received"),
    )


def _metadata(values: Optional[Dict[str, Any]]) -> Dict[str, str]:
    # Stripe metadata values must be strings
    return {k: "" if v is None else str(v) for k, v in (values or {}).items()}


class StripeGateway:
    """
    Payment gateway client backed by Stripe PaymentIntents.

    Holds are manual-capture PaymentIntents; immediate charges are confirmed
    off-session against a saved customer + payment method. Stripe errors are
    translated into GatewayError (declines and invalid requests are marked
    ``declined``) and TransientTimeout (no response; outcome unknown).
    """

    def __init__(self, api_key: str, currency: str = "usd"):
        self._api_key = api_key
        self.currency = currency

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self._api_key, **kwargs)
        except stripe.APIConnectionError as e:
            detail = redact_secrets(getattr(e, "user_message", None) or str(e))
            logger.error("stripe.timeout", extra={"operation": operation, "error": detail})
            raise TransientTimeout(detail)
        except stripe.CardError as e:
            detail = redact_secrets(getattr(e, "user_message", None) or str(e))
            logger.warning(
                "stripe.card_declined",
                extra={"operation": operation, "code": e.code, "error": detail},
            )
            raise GatewayError(detail, error="Payment was declined", gateway_code=e.code, declined=True)
        except stripe.InvalidRequestError as e:
            detail = redact_secrets(getattr(e, "user_message", None) or str(e))
            logger.warning(
                "stripe.invalid_request",
                extra={"operation": operation, "code": e.code, "error": detail},
            )
            raise GatewayError(detail, gateway_code=e.code, declined=True)
        except stripe.StripeError as e:
            detail = redact_secrets(getattr(e, "user_message", None) or str(e))
            logger.error("stripe.error", extra={"operation": operation, "error": detail})
            raise GatewayError(detail, gateway_code=getattr(e, "code", None))

    def authorize(
        self,
        amount_minor: int,
        currency: Optional[str] = None,
        payment_method: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        description: Optional[str] = None,
        return_url: Optional[str] = None,
        customer: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Hold:
        """
        Create a manual-capture authorization hold.

        With a payment method the intent is confirmed immediately (status is
        ``requires_capture`` or ``requires_action``); without one the client
        confirms it using the returned client secret.
        """
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency or self.currency,
            "capture_method": "manual",
            "metadata": _metadata(metadata),
        }
        if description:
            params["description"] = description
        if customer:
            params["customer"] = customer
            params["setup_future_usage"] = "off_session"
        if payment_method:
            params["payment_method"] = payment_method
            params["confirm"] = True
            if return_url:
                params["return_url"] = return_url
        else:
            params["automatic_payment_methods"] = {"enabled": True}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        pi = self._call("authorize", stripe.PaymentIntent.create, **params)
        hold = hold_from_intent(pi)
        logger.info(
            "stripe.authorized",
            extra={"payment_intent_id": hold.id, "status": hold.status, "amount": hold.amount},
        )
        return hold

    def capture(
        self,
        hold_id: str,
        amount_minor: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Hold:
        params: Dict[str, Any] = {}
        if amount_minor is not None:
            params["amount_to_capture"] = amount_minor
        if metadata:
            params["metadata"] = _metadata(metadata)
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        pi = self._call("capture", stripe.PaymentIntent.capture, hold_id, **params)
        hold = hold_from_intent(pi)
        logger.info(
            "stripe.captured",
            extra={"payment_intent_id": hold.id, "status": hold.status, "amount": hold.amount_received},
        )
        return hold

    def charge_now(
        self,
        amount_minor: int,
        currency: Optional[str],
        customer: str,
        payment_method: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Hold:
        """Create and confirm an immediate (automatic-capture) off-session charge."""
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency or self.currency,
            "customer": customer,
            "payment_method": payment_method,
            "confirm": True,
            "off_session": True,
            "metadata": _metadata(metadata),
        }
        if description:
            params["description"] = description
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        pi = self._call("charge_now", stripe.PaymentIntent.create, **params)
        hold = hold_from_intent(pi)
        logger.info(
            "stripe.charged",
            extra={"payment_intent_id": hold.id, "status": hold.status, "amount": hold.amount},
        )
        return hold

    def cancel(self, hold_id: str, reason: Optional[str] = None) -> Hold:
        """Release an uncaptured hold."""
        params: Dict[str, Any] = {}
        if reason:
            params["cancellation_reason"] = reason
        pi = self._call("cancel", stripe.PaymentIntent.cancel, hold_id, **params)
        hold = hold_from_intent(pi)
        logger.info("stripe.canceled", extra={"payment_intent_id": hold.id, "status": hold.status})
        return hold

    def get(self, hold_id: str) -> Optional[Hold]:
        """Retrieve a hold by id; None when Stripe does not know it."""
        try:
            pi = self._call("get", stripe.PaymentIntent.retrieve, hold_id)
        except GatewayError as e:
            if e.gateway_code == "resource_missing":
                return None
            raise
        return hold_from_intent(pi)

    def list_recent(self, limit: int = 100) -> List[Hold]:
        """Most recent PaymentIntents first, as returned by Stripe."""
        page = self._call("list_recent", stripe.PaymentIntent.list, limit=limit)
        return [hold_from_intent(pi) for pi in page.get("data", [])]


def build_gateway(currency: str = "usd", timeout: int = 10, max_network_retries: int = 1) -> StripeGateway:
    """
    Build a StripeGateway from the Stripe secret in Secrets Manager.

    Network calls are bounded by ``timeout`` seconds; a call that times out
    surfaces as TransientTimeout and must be reconciled by hold id before
    the mutating call is retried.
    """
    secrets = get_stripe_secrets()
    api_key = secrets.get("secret_key") or secrets.get("api_key")
    if not api_key:
        logger.error("stripe.missing_secrets", extra={"missing": ["secret_key"]})
        raise RuntimeError("Missing Stripe secrets: secret_key")

    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    stripe.max_network_retries = max_network_retries

    logger.info("stripe.client_initialized", extra={"timeout": timeout})
    return StripeGateway(api_key, currency=currency)
