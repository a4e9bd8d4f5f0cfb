import json
import uuid
from typing import Any, Dict, Optional

import boto3

from handyman_payments.utils.logger import get_logger

logger = get_logger("notifications")


class NotificationDispatcher:
    """
    Fire-and-forget notification hand-off.

    SMS and email messages are queued on SQS for the SMS worker and the email
    sender respectively. Each call returns True when queued, False when the
    enqueue failed (logged, never raised) and None when the channel has no
    queue configured.
    """

    def __init__(self, sqs_client, sms_queue_url: Optional[str] = None, email_queue_url: Optional[str] = None):
        self._sqs = sqs_client
        self._sms_queue_url = sms_queue_url
        self._email_queue_url = email_queue_url

    def notify_sms(self, kind: str, payload: Dict[str, Any]) -> Optional[bool]:
        return self._enqueue("sms", self._sms_queue_url, kind, payload)

    def notify_email(self, kind: str, payload: Dict[str, Any]) -> Optional[bool]:
        return self._enqueue("email", self._email_queue_url, kind, payload)

    def _enqueue(self, channel: str, queue_url: Optional[str], kind: str, payload: Dict[str, Any]) -> Optional[bool]:
        if not queue_url:
            logger.debug("notify.channel_disabled", extra={"channel": channel, "kind": kind})
            return None

        message = {"event_id": uuid.uuid4().hex, "kind": kind, "payload": payload}
        try:
            resp = self._sqs.send_message(
                QueueUrl=queue_url,
                MessageBody=json.dumps(message, default=str),
            )
        except Exception as e:
            logger.error(
                "notify.enqueue_failed",
                extra={"channel": channel, "kind": kind, "error": str(e)},
            )
            return False

        logger.info(
            "notify.enqueued",
            extra={
                "channel": channel,
                "kind": kind,
                "event_id": message["event_id"],
                "message_id": resp.get("MessageId"),
            },
        )
        return True


def build_dispatcher(settings) -> NotificationDispatcher:
    sqs = boto3.client("sqs", region_name=settings.region)
    return NotificationDispatcher(sqs, settings.sms_queue_url, settings.email_queue_url)


def dispatch_warnings(results: Dict[str, Optional[bool]]) -> list:
    """Warning codes for channels whose enqueue failed."""
    return [f"{channel}_notification_failed" for channel, ok in results.items() if ok is False]
