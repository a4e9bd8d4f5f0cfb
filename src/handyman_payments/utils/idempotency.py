import os
import time

import boto3
from botocore.exceptions import ClientError


def was_processed(event_id: str, ttl_secs: int = 86400, table: str = None) -> bool:
    """
    Record ``event_id`` in the idempotency table and report whether it was
    already there. Without a configured table every event counts as new.
    """
    table = table or os.getenv("IDEMPOTENCY_TABLE")
    if not table or not event_id:
        return False
    ddb = boto3.client("dynamodb")
    try:
        ddb.put_item(
            TableName=table,
            Item={"pk": {"S": event_id}, "exp": {"N": str(int(time.time()) + ttl_secs)}},
            ConditionExpression="attribute_not_exists(pk)",
        )
        return False
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return True
        raise


def forget(event_id: str, table: str = None) -> None:
    """Drop a recorded ``event_id`` so a redelivery is processed again."""
    table = table or os.getenv("IDEMPOTENCY_TABLE")
    if not table or not event_id:
        return
    ddb = boto3.client("dynamodb")
    ddb.delete_item(TableName=table, Key={"pk": {"S": event_id}})
