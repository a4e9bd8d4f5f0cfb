from decimal import Decimal

import pytest
from botocore.exceptions import ClientError
from conftest import fixed_clock

from handyman_payments.payments.errors import DuplicateTaskId, OpenHoldExists, QuoteUnavailable, StoreWriteError
from handyman_payments.payments.models import PaymentStatus, PaymentType
from handyman_payments.utils.task_store import (
    OPEN_HOLD_GUARD,
    DynamoQuoteStore,
    DynamoTaskStore,
    deserialize_item,
    serialize_item,
)


def _cancelled(*codes):
    return ClientError(
        {
            "Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"},
            "CancellationReasons": [{"Code": code} for code in codes],
        },
        "TransactWriteItems",
    )


class StubDynamo:
    """Records calls made through the low-level DynamoDB client API."""

    def __init__(self):
        self.transactions = []
        self.puts = []
        self.updates = []
        self.items = {}
        self.query_pages = []
        self.transact_error = None
        self.put_error = None
        self.update_error = None
        self.update_response = {}

    def transact_write_items(self, TransactItems):
        if self.transact_error is not None:
            raise self.transact_error
        self.transactions.append(TransactItems)
        return {}

    def put_item(self, **kwargs):
        if self.put_error is not None:
            raise self.put_error
        self.puts.append(kwargs)
        return {}

    def get_item(self, TableName, Key, ConsistentRead=False):
        key = next(iter(Key.values()))["S"]
        item = self.items.get((TableName, key))
        return {"Item": item} if item else {}

    def update_item(self, **kwargs):
        if self.update_error is not None:
            raise self.update_error
        self.updates.append(kwargs)
        return self.update_response

    def query(self, **kwargs):
        return self.query_pages.pop(0)


@pytest.fixture
def ddb():
    return StubDynamo()


@pytest.fixture
def task_store(ddb):
    return DynamoTaskStore(ddb, "tasks", "payments", clock=fixed_clock)


def test_create_task_writes_guard_and_task_in_one_transaction(ddb, task_store):
    task = task_store.create_task(
        {"task_id": "TASK-1", "customer_phone": "+15555550123", "total_amount": Decimal("160.00")}
    )

    [items] = ddb.transactions
    guard = deserialize_item(items[0]["Put"]["Item"])
    record = deserialize_item(items[1]["Put"]["Item"])
    assert guard == {"id": "task_id#TASK-1", "task_ref": task.id}
    assert items[0]["Put"]["ConditionExpression"] == "attribute_not_exists(id)"
    assert record["id"] == task.id
    assert record["total_amount"] == Decimal("160.00")
    assert record["status"] == "pending"
    assert record["created_at"] == "2026-03-01T12:00:00+00:00"


def test_create_task_duplicate_task_id(ddb, task_store):
    ddb.transact_error = _cancelled("ConditionalCheckFailed", "None")

    with pytest.raises(DuplicateTaskId):
        task_store.create_task({"task_id": "TASK-1", "customer_phone": "+1", "total_amount": Decimal("1")})


def test_create_task_other_failure_is_store_write_error(ddb, task_store):
    ddb.transact_error = ClientError({"Error": {"Code": "ProvisionedThroughputExceededException"}}, "TransactWriteItems")

    with pytest.raises(StoreWriteError):
        task_store.create_task({"task_id": "TASK-1", "customer_phone": "+1", "total_amount": Decimal("1")})


def test_get_task_ignores_guard_ids(ddb, task_store):
    ddb.items[("tasks", "abc")] = serialize_item(
        {"id": "abc", "task_id": "TASK-1", "customer_phone": "+1", "total_amount": Decimal("160"), "legacy": "x"}
    )

    task = task_store.get_task("abc")

    assert task.task_id == "TASK-1"
    assert task.total_amount == Decimal("160")
    assert task_store.get_task("task_id#TASK-1") is None
    assert task_store.get_task("missing") is None


def test_increment_task_total_uses_atomic_add(ddb, task_store):
    ddb.update_response = {"Attributes": {"total_amount": {"N": "285.5"}}}

    new_total = task_store.increment_task_total("abc", Decimal("125.50"), {"last_additional_payment_intent_id": "pi_2"})

    [call] = ddb.updates
    assert call["UpdateExpression"].startswith("ADD #total :inc, #extra_cost :inc SET ")
    assert call["ExpressionAttributeValues"][":inc"] == {"N": "125.50"}
    assert call["ConditionExpression"] == "attribute_exists(id)"
    assert "last_additional_payment_intent_id" in call["ExpressionAttributeNames"].values()
    assert new_total == Decimal("285.5")


def test_update_task_uses_placeholder_names(ddb, task_store):
    task_store.update_task("abc", {"status": "completed"})

    [call] = ddb.updates
    assert call["ExpressionAttributeNames"]["#f0"] == "status"
    assert call["ExpressionAttributeValues"][":v0"] == {"S": "completed"}
    assert call["ExpressionAttributeNames"]["#f1"] == "updated_at"


def test_open_hold_payment_claims_guard(ddb, task_store):
    payment = task_store.create_payment(
        {"task_id": "abc", "amount": Decimal("160.00"), "status": PaymentStatus.PENDING, "payment_type": PaymentType.BOOKING}
    )

    [items] = ddb.transactions
    guard = deserialize_item(items[0]["Put"]["Item"])
    assert guard["payment_id"] == OPEN_HOLD_GUARD
    assert guard["hold_payment_id"] == payment.payment_id
    assert ddb.puts == []


def test_second_open_hold_is_rejected(ddb, task_store):
    ddb.transact_error = _cancelled("ConditionalCheckFailed", "None")

    with pytest.raises(OpenHoldExists):
        task_store.create_payment(
            {"task_id": "abc", "amount": Decimal("1"), "status": PaymentStatus.PENDING, "payment_type": PaymentType.QUOTE_PAYMENT}
        )


def test_additional_payment_is_a_plain_put(ddb, task_store):
    task_store.create_payment(
        {
            "task_id": "abc",
            "amount": Decimal("125.50"),
            "status": PaymentStatus.COMPLETED,
            "payment_type": PaymentType.ADDITIONAL_MATERIALS,
            "travel_fee": 80.0,
        }
    )

    [put] = ddb.puts
    assert ddb.transactions == []
    assert deserialize_item(put["Item"])["travel_fee"] == Decimal("80.0")


def test_list_payments_paginates_and_skips_guards(ddb, task_store):
    def payment(pid, status):
        return serialize_item({"task_id": "abc", "payment_id": pid, "amount": Decimal("160"), "status": status})

    ddb.query_pages = [
        {"Items": [serialize_item({"task_id": "abc", "payment_id": OPEN_HOLD_GUARD}), payment("p1", "completed")],
         "LastEvaluatedKey": {"task_id": {"S": "abc"}, "payment_id": {"S": "p1"}}},
        {"Items": [payment("p2", "pending")]},
    ]

    payments = task_store.list_payments("abc")

    assert [p.payment_id for p in payments] == ["p1", "p2"]


def test_quote_store_round_trip(ddb):
    quotes = DynamoQuoteStore(ddb, "quotes")
    ddb.items[("quotes", "tok")] = serialize_item(
        {"quote_id": "q1", "quote_token": "tok", "amount": Decimal("240.00"), "expires_at": "2026-03-08T12:00:00Z"}
    )

    quote = quotes.get_quote("tok")
    quotes.update_quote("tok", {"status": "paid"})

    assert quote.amount == Decimal("240.00")
    assert ddb.updates[0]["ConditionExpression"] == "attribute_exists(quote_token)"


def _condition_failed(operation):
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


def test_mark_paid_is_conditioned_on_pending_status(ddb):
    quotes = DynamoQuoteStore(ddb, "quotes")

    quotes.update_quote("tok", {"status": "paid", "payment_intent_id": "pi_1"}, expected_status="pending")

    [update] = ddb.updates
    assert update["ConditionExpression"] == "attribute_exists(quote_token) AND #status = :expected_status"
    assert update["ExpressionAttributeNames"]["#status"] == "status"
    assert update["ExpressionAttributeValues"][":expected_status"] == {"S": "pending"}


def test_rejected_status_condition_is_quote_unavailable(ddb):
    quotes = DynamoQuoteStore(ddb, "quotes")
    ddb.update_error = _condition_failed("UpdateItem")

    with pytest.raises(QuoteUnavailable):
        quotes.update_quote("tok", {"status": "paid"}, expected_status="pending")


def test_unconditioned_update_failure_is_store_write_error(ddb):
    quotes = DynamoQuoteStore(ddb, "quotes")
    ddb.update_error = _condition_failed("UpdateItem")

    with pytest.raises(StoreWriteError):
        quotes.update_quote("tok", {"status": "expired"})


def test_create_quote_refuses_existing_token(ddb):
    quotes = DynamoQuoteStore(ddb, "quotes", clock=fixed_clock)

    quote = quotes.create_quote(
        {"quote_id": "QUOTE-1", "quote_token": "tok", "amount": Decimal("240.00"),
         "expires_at": "2026-03-15T12:00:00+00:00", "status": "pending", "customer_email": None}
    )

    [put] = ddb.puts
    assert put["ConditionExpression"] == "attribute_not_exists(quote_token)"
    assert put["Item"]["amount"] == {"N": "240.00"}
    assert put["Item"]["created_at"] == {"S": "2026-03-01T12:00:00+00:00"}
    assert "customer_email" not in put["Item"]
    assert quote.quote_token == "tok"

    ddb.put_error = _condition_failed("PutItem")
    with pytest.raises(StoreWriteError):
        quotes.create_quote({"quote_id": "QUOTE-2", "quote_token": "tok", "amount": Decimal("1"), "expires_at": "x"})
