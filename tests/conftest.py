import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from handyman_payments.payments.errors import (
    DuplicateTaskId,
    GatewayError,
    OpenHoldExists,
    QuoteUnavailable,
    StoreWriteError,
)
from handyman_payments.payments.models import (
    Hold,
    HoldStatus,
    Payment,
    PaymentStatus,
    PaymentType,
    Quote,
    Task,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.holds = {}
        self.recent = []
        self.captures = []
        self.authorizations = []
        self.charges = []
        self.cancellations = []
        self.capture_error = None
        self.capture_lands = True
        self.authorize_status = HoldStatus.REQUIRES_CAPTURE
        self.charge_status = HoldStatus.SUCCEEDED

    def add(self, hold: Hold, recent: bool = True) -> Hold:
        self.holds[hold.id] = hold
        if recent:
            self.recent.append(hold)
        return hold

    def get(self, hold_id):
        return self.holds.get(hold_id)

    def list_recent(self, limit=100):
        return self.recent[:limit]

    def cancel(self, hold_id, reason=None):
        self.cancellations.append({"hold_id": hold_id, "reason": reason})
        hold = self.holds[hold_id]
        hold.status = HoldStatus.CANCELED
        return hold

    def capture(self, hold_id, amount_minor=None, metadata=None, *, idempotency_key=None):
        self.captures.append(
            {"hold_id": hold_id, "amount": amount_minor, "metadata": metadata, "idempotency_key": idempotency_key}
        )
        hold = self.holds[hold_id]
        if self.capture_error is not None:
            if self.capture_lands:
                hold.status = HoldStatus.SUCCEEDED
                hold.amount_received = amount_minor
            raise self.capture_error
        if hold.status != HoldStatus.REQUIRES_CAPTURE:
            raise GatewayError(
                "This PaymentIntent could not be captured because it has a status of succeeded.",
                gateway_code="payment_intent_unexpected_state",
                declined=True,
            )
        hold.status = HoldStatus.SUCCEEDED
        hold.amount_received = amount_minor
        return hold

    def authorize(self, amount_minor, currency=None, payment_method=None, metadata=None, *,
                  description=None, return_url=None, customer=None, idempotency_key=None):
        hold = Hold(
            id=f"pi_auth_{len(self.authorizations) + 1}",
            status=self.authorize_status,
            amount=amount_minor,
            currency=currency or "usd",
            customer=customer,
            payment_method=payment_method,
            metadata=dict(metadata or {}),
            client_secret=f"pi_auth_{len(self.authorizations) + 1}_secret_abc",
        )
        self.authorizations.append(
            {"amount": amount_minor, "payment_method": payment_method, "metadata": metadata,
             "description": description, "return_url": return_url, "customer": customer}
        )
        return self.add(hold)

    def charge_now(self, amount_minor, currency, customer, payment_method, metadata=None, *,
                   description=None, idempotency_key=None):
        hold = Hold(
            id=f"pi_charge_{len(self.charges) + 1}",
            status=self.charge_status,
            amount=amount_minor,
            currency=currency,
            customer=customer,
            payment_method=payment_method,
            metadata=dict(metadata or {}),
        )
        self.charges.append(
            {"amount": amount_minor, "customer": customer, "payment_method": payment_method,
             "metadata": metadata, "idempotency_key": idempotency_key}
        )
        return self.add(hold, recent=False)


class InMemoryStore:
    """Task/payment store with the DynamoTaskStore interface. Names in ``fail`` raise StoreWriteError."""

    def __init__(self):
        self.tasks = {}
        self.payments = {}
        self.fail = set()

    def _maybe_fail(self, operation):
        if operation in self.fail:
            raise StoreWriteError(f"{operation} failed")

    def create_task(self, fields):
        self._maybe_fail("create_task")
        if any(t.task_id == fields.get("task_id") for t in self.tasks.values()):
            raise DuplicateTaskId(f"task_id {fields.get('task_id')} already exists")
        task = Task.from_item({**fields, "id": fields.get("id") or str(uuid.uuid4())})
        self.tasks[task.id] = task
        return task

    def get_task(self, id):
        return self.tasks.get(id)

    def update_task(self, id, fields):
        self._maybe_fail("update_task")
        task = self.tasks[id]
        for key, value in fields.items():
            setattr(task, key, value)

    def increment_task_total(self, id, amount, fields=None):
        self._maybe_fail("increment_task_total")
        task = self.tasks[id]
        task.total_amount += amount
        task.additional_materials_cost += amount
        for key, value in (fields or {}).items():
            setattr(task, key, value)
        return task.total_amount

    def create_payment(self, fields):
        self._maybe_fail("create_payment")
        payment = Payment.from_item({**fields, "payment_id": fields.get("payment_id") or str(uuid.uuid4())})
        if payment.is_open_hold and self.get_open_payment(payment.task_id):
            raise OpenHoldExists(f"task {payment.task_id} already has an open hold")
        self.payments.setdefault(payment.task_id, []).append(payment)
        return payment

    def list_payments(self, task_id):
        return list(self.payments.get(task_id, []))

    def get_open_payment(self, task_id):
        return next((p for p in self.list_payments(task_id) if p.is_open_hold), None)

    def get_completed_payment(self, task_id):
        return next(
            (
                p
                for p in self.list_payments(task_id)
                if p.status == PaymentStatus.COMPLETED and p.payment_type in PaymentType.HOLD_TYPES
            ),
            None,
        )

    def update_payment(self, task_id, payment_id, fields):
        self._maybe_fail("update_payment")
        payment = next(p for p in self.payments[task_id] if p.payment_id == payment_id)
        for key, value in fields.items():
            setattr(payment, key, value)


class InMemoryQuoteStore:
    """Quote store with the DynamoQuoteStore interface, including the status-conditioned update."""

    def __init__(self):
        self.quotes = {}
        self.fail = False

    def add(self, quote: Quote) -> Quote:
        self.quotes[quote.quote_token] = quote
        return quote

    def create_quote(self, fields):
        if self.fail:
            raise StoreWriteError("create_quote failed")
        if fields["quote_token"] in self.quotes:
            raise StoreWriteError("quote_token already exists")
        return self.add(Quote.from_item(fields))

    def get_quote(self, quote_token):
        return self.quotes.get(quote_token)

    def update_quote(self, quote_token, fields, expected_status=None):
        if self.fail:
            raise StoreWriteError("update_quote failed")
        quote = self.quotes[quote_token]
        if expected_status is not None and quote.status != expected_status:
            raise QuoteUnavailable(f"quote is no longer {expected_status}")
        for key, value in fields.items():
            setattr(quote, key, value)


class RecordingNotifier:
    def __init__(self, result=True):
        self.sms = []
        self.email = []
        self.result = result

    def notify_sms(self, kind, payload):
        self.sms.append((kind, payload))
        return self.result

    def notify_email(self, kind, payload):
        self.email.append((kind, payload))
        return self.result


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def quotes():
    return InMemoryQuoteStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def seed_task(store, total="160.00", name="Dana Reyes", email="dana@example.com",
              payment_intent_id=None, payment_status=PaymentStatus.PENDING, task_number="TASK-1700000000000-42"):
    task = store.create_task(
        {
            "task_id": task_number,
            "customer_name": name,
            "customer_email": email,
            "customer_phone": "+15555550123",
            "task_category": "Drywall repair",
            "time_window": "morning",
            "total_amount": Decimal(total),
        }
    )
    payment = store.create_payment(
        {
            "task_id": task.id,
            "amount": Decimal(total),
            "payment_intent_id": payment_intent_id,
            "status": payment_status,
            "payment_type": PaymentType.BOOKING,
        }
    )
    return task, payment


def make_hold(id, amount, status=HoldStatus.REQUIRES_CAPTURE, name=None, email=None,
              customer="cus_123", payment_method="pm_123"):
    metadata = {}
    if name is not None:
        metadata["customer_name"] = name
    if email is not None:
        metadata["customer_email"] = email
    return Hold(id=id, status=status, amount=amount, customer=customer, payment_method=payment_method, metadata=metadata)


def make_quote(token="q" * 32, amount="240.00", expires_at=None, status="pending"):
    return Quote(
        quote_id="quote-1",
        quote_token=token,
        amount=Decimal(amount),
        expires_at=expires_at or "2026-03-08T12:00:00Z",
        service_type="Fence repair",
        description="Replace two fence panels",
        customer_name="Sam Ortiz",
        customer_phone="+15555550199",
        customer_email="sam@example.com",
        status=status,
    )

