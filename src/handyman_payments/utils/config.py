import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from handyman_payments.utils.logger import get_logger

logger = get_logger("config")


@dataclass(frozen=True)
class Settings:
    tasks_table: str
    payments_table: str
    quotes_table: str
    region: str = "us-east-1"
    sms_queue_url: Optional[str] = None
    email_queue_url: Optional[str] = None
    currency: str = "usd"
    payment_timeout_seconds: int = 10
    payment_max_network_retries: int = 1
    reconcile_list_limit: int = 100
    default_travel_fee: Decimal = Decimal("80")
    additional_charge_cap_ratio: Optional[Decimal] = None
    site_origin: str = "https://sendahandyman.com"
    admin_secret_name: Optional[str] = None


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        msg = f"Invalid {name}='{raw}'. Must be an integer."
        logger.error(msg)
        raise RuntimeError(msg)


def _decimal_env(name: str, default: Optional[str]) -> Optional[Decimal]:
    raw = os.getenv(name, default)
    if raw is None or raw == "":
        return None
    try:
        value = Decimal(raw)
    except InvalidOperation:
        msg = f"Invalid {name}='{raw}'. Must be a decimal number."
        logger.error(msg)
        raise RuntimeError(msg)
    if value < 0:
        msg = f"Invalid {name}='{raw}'. Must not be negative."
        logger.error(msg)
        raise RuntimeError(msg)
    return value


def load_settings() -> Settings:
    """
    Load handler configuration from environment variables.

    TASKS_TABLE / PAYMENTS_TABLE / QUOTES_TABLE: DynamoDB tables (required)
    SMS_QUEUE_URL / EMAIL_QUEUE_URL: notification queues (optional; dispatch
        on a channel is skipped when its queue is not configured)
    PAYMENT_TIMEOUT_SECONDS: Stripe HTTP timeout
    ADDITIONAL_CHARGE_CAP_RATIO: optional cap on cumulative additional charges,
        as a multiple of the original authorized amount
    ADMIN_SECRET_NAME: Secrets Manager secret holding the admin bearer token
        (admin quote creation is refused when unset)

    Raises RuntimeError with a clear message if something is missing/invalid.
    """
    tasks_table = os.getenv("TASKS_TABLE")
    payments_table = os.getenv("PAYMENTS_TABLE")
    quotes_table = os.getenv("QUOTES_TABLE")

    missing = [
        name
        for name, value in [
            ("TASKS_TABLE", tasks_table),
            ("PAYMENTS_TABLE", payments_table),
            ("QUOTES_TABLE", quotes_table),
        ]
        if not value
    ]
    if missing:
        msg = f"Missing required environment variables: {', '.join(missing)}"
        logger.error(msg)
        raise RuntimeError(msg)

    return Settings(
        tasks_table=tasks_table,
        payments_table=payments_table,
        quotes_table=quotes_table,
        region=os.getenv("AWS_REGION", "us-east-1"),
        sms_queue_url=os.getenv("SMS_QUEUE_URL") or None,
        email_queue_url=os.getenv("EMAIL_QUEUE_URL") or None,
        currency=os.getenv("CURRENCY", "usd").lower(),
        payment_timeout_seconds=_int_env("PAYMENT_TIMEOUT_SECONDS", "10"),
        payment_max_network_retries=_int_env("PAYMENT_MAX_NETWORK_RETRIES", "1"),
        reconcile_list_limit=_int_env("RECONCILE_LIST_LIMIT", "100"),
        default_travel_fee=_decimal_env("DEFAULT_TRAVEL_FEE", "80"),
        additional_charge_cap_ratio=_decimal_env("ADDITIONAL_CHARGE_CAP_RATIO", None),
        site_origin=os.getenv("SITE_ORIGIN", "https://sendahandyman.com"),
        admin_secret_name=os.getenv("ADMIN_SECRET_NAME") or None,
    )
