# utils/twilio_client.py

from twilio.rest import Client as TwilioClient

from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.secrets import get_twilio_secrets

logger = get_logger("twilio_client")


def build_client():
    """
    Build and return a Twilio client plus a small config dict.

    Returns:
        (client, conf) where:
          - client: twilio.rest.Client
          - conf: dict with {"messaging_service_sid": "MG..."}
    """
    secrets = get_twilio_secrets()

    account_sid = secrets.get("account_sid")
    auth_token = secrets.get("auth_token")
    # Support both "messaging_service_sid" and legacy "msid"
    messaging_service_sid = secrets.get("messaging_service_sid") or secrets.get("msid")

    missing = [
        name
        for name, value in [
            ("account_sid", account_sid),
            ("auth_token", auth_token),
            ("messaging_service_sid", messaging_service_sid),
        ]
        if not value
    ]

    if missing:
        logger.error("twilio.missing_secrets", extra={"missing": missing})
        raise RuntimeError(f"Missing Twilio secrets: {', '.join(missing)}")

    client = TwilioClient(account_sid, auth_token)
    logger.info("twilio.client_initialized")

    conf = {"messaging_service_sid": messaging_service_sid}

    return client, conf
