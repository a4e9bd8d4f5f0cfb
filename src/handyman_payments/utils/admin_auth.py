import hmac
from dataclasses import dataclass
from typing import Optional

from handyman_payments.utils.logger import get_logger
from handyman_payments.utils.secrets import get_json_secret

logger = get_logger("admin_auth")


@dataclass
class AdminIdentity:
    name: str


def bearer_token(event: dict) -> Optional[str]:
    headers = event.get("headers") or {}
    auth = headers.get("authorization") or headers.get("Authorization") or ""
    if not auth.startswith("Bearer "):
        return None
    return auth[len("Bearer "):].strip() or None


def build_admin_verifier():
    """
    ``verify_admin(token) -> AdminIdentity | None`` backed by the admin secret, e.g.:

        {"bearer": "...", "admin_name": "ops"}
    """
    secret = get_json_secret("ADMIN_SECRET_NAME")
    expected = secret.get("bearer")
    if not expected:
        logger.error("admin_auth.missing_secrets", extra={"missing": ["bearer"]})
        raise RuntimeError("Missing admin secrets: bearer")
    name = secret.get("admin_name") or "admin"

    def verify_admin(token: Optional[str]) -> Optional[AdminIdentity]:
        if not token or not hmac.compare_digest(token, expected):
            return None
        return AdminIdentity(name=name)

    return verify_admin
