import json
from decimal import Decimal
from typing import Any, Dict

from handyman_payments.utils.idempotency import forget, was_processed
from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.twilio_client import build_client

logger = get_logger("worker")

_client = None
_conf: Dict[str, Any] = {}


def _money(value: Any) -> str:
    return f"${Decimal(str(value)):.2f}"


# Supported SMS templates by message kind
SMS_TEMPLATES = {
    "booking_confirmation": lambda p: (
        "SendAHandyman Confirmation 📋\n"
        f"Task ID: {p['task_id']}\n"
        f"Service: {p.get('service_name') or 'Handyman service'}\n"
        f"Time: {p.get('time_window') or 'TBD'}\n"
        f"Total: {_money(p['total_amount'])}\n\n"
        "Your handyman will text you 30 mins before arrival with their details. "
        "Cancel anytime before work starts.\n\n"
        "Questions? Reply STOP to opt out."
    ),
    "job_complete": lambda p: (
        "Job Complete! ✅\n"
        f"Task ID: {p['task_id']}\n"
        f"Total Charged: {_money(p['final_amount'])}\n\n"
        "Thanks for choosing SendAHandyman! Please leave us a review and save our number for future needs."
    ),
    "additional_charge": lambda p: (
        "SendAHandyman Additional Charge 🧾\n"
        f"Task ID: {p['task_id']}\n"
        f"Materials: {_money(p['material_costs'])}\n"
        f"Travel fee: {_money(p['travel_fee'])}\n"
        f"Total Charged: {_money(p['additional_amount'])}\n\n"
        "Charged to the card on file. Receipts are on their way by email."
    ),
    "quote_booking_confirmation": lambda p: (
        "SendAHandyman Quote Confirmed 📋\n"
        f"Task ID: {p['task_id']}\n"
        f"Service: {p.get('service_name') or 'Handyman service'}\n"
        f"Amount: {_money(p['amount'])}\n\n"
        "Your card has been authorized and will be charged when the job is complete.\n\n"
        "Questions? Reply STOP to opt out."
    ),
}


def build_body(msg: Dict[str, Any]) -> str:
    """
    Build the SMS body based on the message kind and payload.
    """
    kind = msg.get("kind")
    if kind not in SMS_TEMPLATES:
        raise ValueError(f"Unsupported message kind: {kind}")
    return SMS_TEMPLATES[kind](msg.get("payload") or {})


def _twilio():
    global _client, _conf
    if _client is None:
        # Twilio client + config (from Secrets Manager), once per container
        _client, _conf = build_client()
    return _client, _conf


def lambda_handler(event, context):
    records = event.get("Records", [])
    logger.info("worker.lambda_start", extra={"records": len(records)})

    failures = []

    for rec in records:
        raw_body = rec.get("body") or ""
        message_id = rec.get("messageId")

        # 1) Parse JSON from SQS
        try:
            msg = json.loads(raw_body)
        except json.JSONDecodeError:
            logger.warning(
                "worker.payload_invalid_json",
                extra={"preview": raw_body[:200], "message_id": message_id},
            )
            # Retrying will not fix a malformed body
            continue

        payload = msg.get("payload") or {}
        phone = payload.get("to")
        if not phone:
            logger.warning("worker.missing_phone", extra={"kind": msg.get("kind"), "message_id": message_id})
            continue

        # 2) Build SMS body
        try:
            body = build_body(msg)
        except (KeyError, ValueError, ArithmeticError) as e:
            logger.error(
                "worker.build_body_error",
                extra={"error": str(e), "kind": msg.get("kind"), "message_id": message_id},
            )
            continue

        # 3) Skip redeliveries of a message already sent
        if was_processed(msg.get("event_id")):
            logger.info("worker.duplicate_skipped", extra={"event_id": msg.get("event_id")})
            continue

        # 4) Send via Twilio
        try:
            client, conf = _twilio()
            resp = client.messages.create(
                messaging_service_sid=conf["messaging_service_sid"],
                to=phone,
                body=body,
            )
            logger.info(
                "worker.twilio_sent",
                extra={
                    "sid": getattr(resp, "sid", "<no-sid>"),
                    "kind": msg.get("kind"),
                    "event_id": msg.get("event_id"),
                },
            )
        except Exception as e:
            logger.error(
                "worker.twilio_error",
                extra={"error": str(e), "kind": msg.get("kind"), "message_id": message_id},
            )
            forget(msg.get("event_id"))
            # Let SQS retry this record and eventually DLQ
            if message_id:
                failures.append({"itemIdentifier": message_id})

    return {"batchItemFailures": failures}
