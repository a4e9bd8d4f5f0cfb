"""
DynamoDB persistence for tasks, payments and quotes.

Tables:
- tasks     (pk ``id``)                   task rows + ``task_id#<task_id>`` uniqueness guards
- payments  (pk ``task_id``, sk ``payment_id``)  payment rows + ``#open_hold`` guards
- quotes    (pk ``quote_token``)

Uniqueness of the caller-generated ``task_id`` and of the open hold per task
is enforced with guard items written in the same transaction as the record.
Totals are incremented with ``ADD`` so concurrent additional charges never
overwrite each other.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from handyman_payments.payments.errors import DuplicateTaskId, OpenHoldExists, QuoteUnavailable, StoreWriteError
from handyman_payments.payments.models import (
    Payment,
    PaymentStatus,
    PaymentType,
    Quote,
    Task,
    TaskPaymentStatus,
    TaskStatus,
    utcnow,
)
from handyman_payments.utils.logger import get_logger

logger = get_logger("task_store")

TASK_ID_GUARD_PREFIX = "task_id#"
OPEN_HOLD_GUARD = "#open_hold"

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _coerce(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _coerce(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_coerce(v) for v in value]
    return value


def serialize_item(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(_coerce(v)) for k, v in data.items()}


def deserialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in item.items()}


def _update_expression(fields: Dict[str, Any]):
    """SET expression with placeholder names; attribute names like status/window are reserved."""
    names = {}
    values = {}
    parts = []
    for i, (key, value) in enumerate(fields.items()):
        names[f"#f{i}"] = key
        values[f":v{i}"] = _serializer.serialize(_coerce(value))
        parts.append(f"#f{i} = :v{i}")
    return "SET " + ", ".join(parts), names, values


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class DynamoTaskStore:
    def __init__(self, client, tasks_table: str, payments_table: str, clock=utcnow):
        self._ddb = client
        self._tasks = tasks_table
        self._payments = payments_table
        self._clock = clock

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, fields: Dict[str, Any]) -> Task:
        """
        Insert a task. Fails with DuplicateTaskId if ``task_id`` was used before.
        """
        now = self._clock().isoformat()
        record = {
            "status": TaskStatus.PENDING,
            "payment_status": TaskPaymentStatus.AUTHORIZED,
            "reminder_2hr_sent": False,
            "reminder_30min_sent": False,
            **fields,
            "id": fields.get("id") or str(uuid.uuid4()),
            "created_at": now,
            "updated_at": now,
        }
        task = Task.from_item(record)
        guard = {"id": TASK_ID_GUARD_PREFIX + task.task_id, "task_ref": task.id}

        try:
            self._ddb.transact_write_items(
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self._tasks,
                            "Item": serialize_item(guard),
                            "ConditionExpression": "attribute_not_exists(id)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self._tasks,
                            "Item": serialize_item(task.to_item()),
                            "ConditionExpression": "attribute_not_exists(id)",
                        }
                    },
                ]
            )
        except ClientError as e:
            reasons = e.response.get("CancellationReasons") or []
            if (
                _error_code(e) == "TransactionCanceledException"
                and reasons
                and reasons[0].get("Code") == "ConditionalCheckFailed"
            ):
                logger.warning("store.duplicate_task_id", extra={"task_number": task.task_id})
                raise DuplicateTaskId(f"task_id {task.task_id} already exists")
            logger.error("store.create_task_failed", extra={"task_number": task.task_id, "error": str(e)})
            raise StoreWriteError(f"create_task failed: {_error_code(e)}")
        except BotoCoreError as e:
            logger.error("store.create_task_failed", extra={"task_number": task.task_id, "error": str(e)})
            raise StoreWriteError(f"create_task failed: {e}")

        logger.info("store.task_created", extra={"id": task.id, "task_number": task.task_id})
        return task

    def get_task(self, id: str) -> Optional[Task]:
        if not id or id.startswith(TASK_ID_GUARD_PREFIX):
            return None
        resp = self._ddb.get_item(
            TableName=self._tasks,
            Key={"id": {"S": id}},
            ConsistentRead=True,
        )
        item = resp.get("Item")
        if not item:
            return None
        return Task.from_item(deserialize_item(item))

    def update_task(self, id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": self._clock().isoformat()}
        expression, names, values = _update_expression(fields)
        try:
            self._ddb.update_item(
                TableName=self._tasks,
                Key={"id": {"S": id}},
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("store.update_task_failed", extra={"id": id, "error": str(e)})
            raise StoreWriteError(f"update_task failed for {id}: {e}")

    def increment_task_total(self, id: str, amount: Decimal, fields: Optional[Dict[str, Any]] = None) -> Decimal:
        """
        Atomically add ``amount`` to ``total_amount`` (and ``additional_materials_cost``).

        Returns the new total.
        """
        extra = {**(fields or {}), "updated_at": self._clock().isoformat()}
        set_expression, names, values = _update_expression(extra)
        names["#total"] = "total_amount"
        names["#extra_cost"] = "additional_materials_cost"
        values[":inc"] = _serializer.serialize(_coerce(amount))
        try:
            resp = self._ddb.update_item(
                TableName=self._tasks,
                Key={"id": {"S": id}},
                UpdateExpression=f"ADD #total :inc, #extra_cost :inc {set_expression}",
                ConditionExpression="attribute_exists(id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="UPDATED_NEW",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("store.increment_total_failed", extra={"id": id, "amount": amount, "error": str(e)})
            raise StoreWriteError(f"increment_task_total failed for {id}: {e}")

        attrs = deserialize_item(resp.get("Attributes") or {})
        return attrs.get("total_amount")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def create_payment(self, fields: Dict[str, Any]) -> Payment:
        """
        Insert a payment row. The first pending booking/quote payment of a task
        also claims the task's open-hold guard; a second one fails with
        OpenHoldExists.
        """
        now = self._clock().isoformat()
        record = {
            **fields,
            "payment_id": fields.get("payment_id") or str(uuid.uuid4()),
            "created_at": now,
            "updated_at": now,
        }
        payment = Payment.from_item(record)
        put = {
            "TableName": self._payments,
            "Item": serialize_item(payment.to_item()),
            "ConditionExpression": "attribute_not_exists(payment_id)",
        }

        try:
            if payment.is_open_hold:
                guard = {"task_id": payment.task_id, "payment_id": OPEN_HOLD_GUARD, "hold_payment_id": payment.payment_id}
                self._ddb.transact_write_items(
                    TransactItems=[
                        {
                            "Put": {
                                "TableName": self._payments,
                                "Item": serialize_item(guard),
                                "ConditionExpression": "attribute_not_exists(payment_id)",
                            }
                        },
                        {"Put": put},
                    ]
                )
            else:
                self._ddb.put_item(**put)
        except ClientError as e:
            reasons = e.response.get("CancellationReasons") or []
            if (
                _error_code(e) == "TransactionCanceledException"
                and reasons
                and reasons[0].get("Code") == "ConditionalCheckFailed"
            ):
                logger.warning("store.open_hold_exists", extra={"task_id": payment.task_id})
                raise OpenHoldExists(f"task {payment.task_id} already has an open hold")
            logger.error("store.create_payment_failed", extra={"task_id": payment.task_id, "error": str(e)})
            raise StoreWriteError(f"create_payment failed: {_error_code(e)}")
        except BotoCoreError as e:
            logger.error("store.create_payment_failed", extra={"task_id": payment.task_id, "error": str(e)})
            raise StoreWriteError(f"create_payment failed: {e}")

        logger.info(
            "store.payment_created",
            extra={
                "task_id": payment.task_id,
                "payment_id": payment.payment_id,
                "payment_type": payment.payment_type,
                "status": payment.status,
            },
        )
        return payment

    def list_payments(self, task_id: str) -> List[Payment]:
        payments = []
        kwargs = {
            "TableName": self._payments,
            "KeyConditionExpression": "task_id = :t",
            "ExpressionAttributeValues": {":t": {"S": task_id}},
            "ConsistentRead": True,
        }
        while True:
            resp = self._ddb.query(**kwargs)
            for item in resp.get("Items", []):
                data = deserialize_item(item)
                if str(data.get("payment_id", "")).startswith("#"):
                    continue
                payments.append(Payment.from_item(data))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            kwargs["ExclusiveStartKey"] = last_key
        return payments

    def get_open_payment(self, task_id: str) -> Optional[Payment]:
        """The pending booking/quote payment (open authorization hold), if any."""
        for payment in self.list_payments(task_id):
            if payment.is_open_hold:
                return payment
        return None

    def get_completed_payment(self, task_id: str) -> Optional[Payment]:
        """The captured original booking/quote payment, if any."""
        for payment in self.list_payments(task_id):
            if payment.status == PaymentStatus.COMPLETED and payment.payment_type in PaymentType.HOLD_TYPES:
                return payment
        return None

    def update_payment(self, task_id: str, payment_id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": self._clock().isoformat()}
        expression, names, values = _update_expression(fields)
        try:
            self._ddb.update_item(
                TableName=self._payments,
                Key={"task_id": {"S": task_id}, "payment_id": {"S": payment_id}},
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(payment_id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "store.update_payment_failed",
                extra={"task_id": task_id, "payment_id": payment_id, "error": str(e)},
            )
            raise StoreWriteError(f"update_payment failed for {payment_id}: {e}")


class DynamoQuoteStore:
    def __init__(self, client, quotes_table: str, clock=utcnow):
        self._ddb = client
        self._quotes = quotes_table
        self._clock = clock

    def create_quote(self, fields: Dict[str, Any]) -> Quote:
        """Insert a new quote; the token is the key and must not exist yet."""
        item = {**fields, "created_at": fields.get("created_at") or self._clock().isoformat()}
        item = {k: v for k, v in item.items() if v is not None}
        try:
            self._ddb.put_item(
                TableName=self._quotes,
                Item=serialize_item(item),
                ConditionExpression="attribute_not_exists(quote_token)",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("store.create_quote_failed", extra={"quote_id": item.get("quote_id"), "error": str(e)})
            raise StoreWriteError(f"create_quote failed for {item.get('quote_id')}: {e}")
        return Quote.from_item(item)

    def get_quote(self, quote_token: str) -> Optional[Quote]:
        resp = self._ddb.get_item(
            TableName=self._quotes,
            Key={"quote_token": {"S": quote_token}},
            ConsistentRead=True,
        )
        item = resp.get("Item")
        if not item:
            return None
        return Quote.from_item(deserialize_item(item))

    def update_quote(self, quote_token: str, fields: Dict[str, Any], expected_status: Optional[str] = None) -> None:
        """
        Update a quote. With ``expected_status`` the write only lands while the
        stored status still matches; otherwise QuoteUnavailable is raised.
        """
        expression, names, values = _update_expression(fields)
        condition = "attribute_exists(quote_token)"
        if expected_status is not None:
            condition += " AND #status = :expected_status"
            names["#status"] = "status"
            values[":expected_status"] = {"S": expected_status}
        try:
            self._ddb.update_item(
                TableName=self._quotes,
                Key={"quote_token": {"S": quote_token}},
                UpdateExpression=expression,
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if expected_status is not None and _error_code(e) == "ConditionalCheckFailedException":
                logger.warning(
                    "store.quote_status_changed",
                    extra={"quote_id_prefix": quote_token[:8], "expected_status": expected_status},
                )
                raise QuoteUnavailable(f"quote is no longer {expected_status}")
            logger.error("store.update_quote_failed", extra={"quote_id_prefix": quote_token[:8], "error": str(e)})
            raise StoreWriteError(f"update_quote failed: {e}")
        except BotoCoreError as e:
            logger.error("store.update_quote_failed", extra={"quote_id_prefix": quote_token[:8], "error": str(e)})
            raise StoreWriteError(f"update_quote failed: {e}")


def build_stores(settings):
    """Task and quote stores sharing one DynamoDB client."""
    client = boto3.client("dynamodb", region_name=settings.region)
    return (
        DynamoTaskStore(client, settings.tasks_table, settings.payments_table),
        DynamoQuoteStore(client, settings.quotes_table),
    )
