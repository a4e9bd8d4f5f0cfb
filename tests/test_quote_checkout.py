from decimal import Decimal

import pytest
from conftest import InMemoryQuoteStore, fixed_clock, make_quote

from handyman_payments.payments.booking import BookingService
from handyman_payments.payments.capture import CaptureOrchestrator
from handyman_payments.payments.errors import (
    GatewayError,
    QuoteExpired,
    QuoteNotFound,
    QuoteUnavailable,
    ValidationError,
)
from handyman_payments.payments.models import HoldStatus, PaymentStatus, PaymentType, QuoteStatus
from handyman_payments.payments.quote_checkout import QuoteCheckoutOrchestrator
from handyman_payments.payments.reconciler import PaymentReconciler
from handyman_payments.payments.results import CaptureOutcome

TOKEN = "q" * 32


def _orchestrator(store, quotes, gateway, notifier):
    booking = BookingService(store, gateway, notifier, clock=fixed_clock)
    return QuoteCheckoutOrchestrator(quotes, gateway, booking, notifier, clock=fixed_clock)


def _task_for(store, task_number):
    return next(t for t in store.tasks.values() if t.task_id == task_number)


def test_pay_quote_authorizes_and_books(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN))

    result = _orchestrator(store, quotes, gateway, notifier).pay_quote(
        TOKEN,
        {"customer_name": "Sam O.", "customer_address": "12 Elm St", "timing_preference": "weekend"},
        "pm_card",
        origin="https://sendahandyman.com",
    )

    assert not result.requires_action
    assert result.payment_intent_id == "pi_auth_1"
    assert result.amount == Decimal("240.00")
    assert result.warnings == []

    auth = gateway.authorizations[0]
    assert auth["amount"] == 24000
    assert auth["payment_method"] == "pm_card"
    assert auth["metadata"]["source"] == "admin_quote"
    assert auth["metadata"]["customer_name"] == "Sam O."
    assert auth["return_url"] == f"https://sendahandyman.com/quote-payment-success?token={TOKEN}"

    assert quote.status == QuoteStatus.PAID
    assert quote.payment_intent_id == "pi_auth_1"

    task = _task_for(store, result.task_id)
    assert task.customer_name == "Sam O."
    assert task.customer_phone == "+15555550199"
    assert task.customer_address == "12 Elm St"
    assert task.total_amount == Decimal("240.00")
    [payment] = store.list_payments(task.id)
    assert payment.payment_type == PaymentType.QUOTE_PAYMENT
    assert payment.quote_id == "quote-1"
    assert payment.payment_intent_id == "pi_auth_1"
    assert payment.status == PaymentStatus.PENDING

    assert [kind for kind, _ in notifier.sms] == ["quote_booking_confirmation"]
    assert [kind for kind, _ in notifier.email] == ["quote_booking"]


def test_quote_amount_survives_capture_exactly(store, quotes, gateway, notifier):
    quotes.add(make_quote(TOKEN, amount="240.00"))
    result = _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")
    task = _task_for(store, result.task_id)

    capture = CaptureOrchestrator(store, gateway, PaymentReconciler(gateway), notifier, clock=fixed_clock)
    captured = capture.capture(task.id)

    assert captured.outcome == CaptureOutcome.CAPTURED
    assert gateway.captures[0]["amount"] == 24000
    [payment] = store.list_payments(task.id)
    assert payment.amount == Decimal("240.00")
    assert payment.status == PaymentStatus.COMPLETED


def test_expired_quote_is_rejected_and_marked(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN, expires_at="2026-02-28T12:00:00Z"))

    with pytest.raises(QuoteExpired) as exc:
        _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert exc.value.status_code == 400
    assert exc.value.to_body()["error"] == "Quote has expired"
    assert quote.status == QuoteStatus.EXPIRED
    assert gateway.authorizations == []


def test_paid_quote_cannot_be_paid_twice(store, quotes, gateway, notifier):
    quotes.add(make_quote(TOKEN))
    orchestrator = _orchestrator(store, quotes, gateway, notifier)
    orchestrator.pay_quote(TOKEN, {}, "pm_card")

    with pytest.raises(QuoteUnavailable):
        orchestrator.pay_quote(TOKEN, {}, "pm_card")

    assert len(gateway.authorizations) == 1
    assert len(store.tasks) == 1


def test_unknown_quote(store, quotes, gateway, notifier):
    with pytest.raises(QuoteNotFound):
        _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")


def test_missing_payment_method(store, quotes, gateway, notifier):
    quotes.add(make_quote(TOKEN))

    with pytest.raises(ValidationError):
        _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "")


def test_requires_action_leaves_quote_pending(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN))
    gateway.authorize_status = HoldStatus.REQUIRES_ACTION

    result = _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert result.requires_action
    assert result.to_body() == {
        "requires_action": True,
        "payment_intent": {"id": "pi_auth_1", "client_secret": "pi_auth_1_secret_abc"},
    }
    assert quote.status == QuoteStatus.PENDING
    assert store.tasks == {}


def test_failed_authorization_leaves_quote_pending(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN))
    gateway.authorize_status = HoldStatus.CANCELED

    with pytest.raises(GatewayError):
        _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert quote.status == QuoteStatus.PENDING
    assert store.tasks == {}


def test_task_creation_failure_is_a_warning(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN))
    store.fail = {"create_task"}

    result = _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert result.payment_intent_id == "pi_auth_1"
    assert result.warnings == ["task_creation_failed"]
    assert quote.status == QuoteStatus.PAID


def test_lookup_quote_marks_expired(store, quotes, gateway, notifier):
    quote = quotes.add(make_quote(TOKEN, expires_at="2026-03-01T11:59:59Z"))

    with pytest.raises(QuoteExpired):
        _orchestrator(store, quotes, gateway, notifier).lookup_quote(TOKEN)

    assert quote.status == QuoteStatus.EXPIRED


def test_lookup_quote_returns_pending_quote(store, quotes, gateway, notifier):
    quotes.add(make_quote(TOKEN))

    quote = _orchestrator(store, quotes, gateway, notifier).lookup_quote(TOKEN)

    assert quote.quote_id == "quote-1"


class RedeemedElsewhereQuotes(InMemoryQuoteStore):
    """The quote flips to paid between the checkout's read and its mark-paid write."""

    def update_quote(self, quote_token, fields, expected_status=None):
        self.quotes[quote_token].status = QuoteStatus.PAID
        super().update_quote(quote_token, fields, expected_status=expected_status)


def test_concurrent_redemption_releases_hold_and_skips_booking(store, gateway, notifier):
    quotes = RedeemedElsewhereQuotes()
    quote = quotes.add(make_quote(TOKEN))

    with pytest.raises(QuoteUnavailable):
        _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert store.tasks == {}
    assert store.payments == {}
    assert gateway.cancellations == [{"hold_id": "pi_auth_1", "reason": "duplicate"}]
    assert gateway.holds["pi_auth_1"].status == HoldStatus.CANCELED
    assert quote.payment_intent_id is None
    assert notifier.sms == []


def test_quote_store_outage_after_authorization_is_a_warning(store, quotes, gateway, notifier):
    quotes.add(make_quote(TOKEN))
    quotes.fail = True

    result = _orchestrator(store, quotes, gateway, notifier).pay_quote(TOKEN, {}, "pm_card")

    assert result.warnings == ["quote_update_failed"]
    assert _task_for(store, result.task_id).total_amount == Decimal("240.00")
    assert gateway.cancellations == []


def test_create_quote_issues_pending_token(quotes, store, gateway, notifier):
    created = _orchestrator(store, quotes, gateway, notifier).create_quote(
        {
            "customer_name": "Sam Ortiz",
            "customer_phone": "+15555550199",
            "service_type": "Fence repair",
            "amount": "240",
            "description": "Replace two fence panels",
        },
        base_url="https://sendahandyman.com/",
        created_by="ops",
    )

    quote = created.quote
    assert len(quote.quote_token) == 32
    assert set(quote.quote_token) <= set("0123456789abcdef")
    assert quote.quote_id.startswith("QUOTE-")
    assert quote.amount == Decimal("240.00")
    assert quote.status == QuoteStatus.PENDING
    assert quote.expires_at == "2026-03-15T12:00:00+00:00"
    assert quote.created_by == "ops"
    assert quote.customer_email is None
    assert quotes.get_quote(quote.quote_token) is quote
    assert created.quote_url == f"https://sendahandyman.com/quote/{quote.quote_token}"

    body = created.to_body()
    assert body["success"] is True
    assert body["quote_token"] == quote.quote_token
    assert body["message"] == "Quote created successfully"


def test_created_quote_can_be_paid(quotes, store, gateway, notifier):
    orchestrator = _orchestrator(store, quotes, gateway, notifier)
    created = orchestrator.create_quote(
        {
            "customer_name": "Sam Ortiz",
            "customer_phone": "+15555550199",
            "service_type": "Fence repair",
            "amount": 240,
            "expiry_days": 3,
        }
    )

    result = orchestrator.pay_quote(created.quote.quote_token, {}, "pm_card")

    assert created.quote.expires_at == "2026-03-04T12:00:00+00:00"
    assert gateway.authorizations[0]["amount"] == 24000
    assert created.quote.status == QuoteStatus.PAID
    assert result.amount == Decimal("240.00")


@pytest.mark.parametrize(
    "overrides",
    [
        {"customer_name": ""},
        {"customer_phone": None},
        {"service_type": ""},
        {"amount": None},
        {"amount": "0.10"},
        {"amount": "abc"},
        {"expiry_days": 0},
        {"expiry_days": "soon"},
        {"expiry_days": True},
    ],
)
def test_create_quote_validates_fields(quotes, store, gateway, notifier, overrides):
    fields = {
        "customer_name": "Sam Ortiz",
        "customer_phone": "+15555550199",
        "service_type": "Fence repair",
        "amount": "240.00",
        **overrides,
    }

    with pytest.raises(ValidationError):
        _orchestrator(store, quotes, gateway, notifier).create_quote(fields)

    assert quotes.quotes == {}
