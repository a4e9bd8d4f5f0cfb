import json
from decimal import Decimal
from typing import Any, Dict, Optional

from handyman_payments.payments.errors import PaymentsError, ValidationError, redact_secrets
from handyman_payments.utils.logger import get_logger

logger = get_logger("http")


def _json_default(value: Any) -> Any:
    # Money is kept as Decimal internally and rendered as a JSON number
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def cors_headers(methods: str = "POST, OPTIONS") -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Content-Type": "application/json",
    }


def response(status_code: int, body: Optional[Dict[str, Any]] = None, methods: str = "POST, OPTIONS") -> dict:
    return {
        "statusCode": status_code,
        "headers": cors_headers(methods),
        "body": json.dumps(body, default=_json_default) if body is not None else "",
    }


def http_method(event: dict) -> str:
    """Method from REST-style (``httpMethod``) or HTTP API v2 (``requestContext.http``) events."""
    method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method")
    return (method or "").upper()


def check_method(event: dict, allowed: str) -> Optional[dict]:
    """
    Preflight/method gate shared by all handlers.

    Returns a ready response for OPTIONS (200) or a disallowed method (405),
    or None when the request should be processed.
    """
    methods = f"{allowed}, OPTIONS"
    method = http_method(event)
    if method == "OPTIONS":
        return response(200, None, methods)
    if method and method != allowed:
        return response(405, {"error": "Method not allowed"}, methods)
    return None


def parse_body(event: dict) -> dict:
    """
    Extract and parse the JSON body from the Lambda event.

    - For API Gateway / HttpApi: event["body"] is a JSON string.
    - For direct invocation tests: event["body"] may already be a dict.
    """
    body = event.get("body")

    if isinstance(body, dict):
        return body
    if body is None or body == "":
        return {}

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("http.invalid_json", extra={"body_preview": str(body)[:200]})
        raise

    if not isinstance(payload, dict):
        logger.warning("http.invalid_json", extra={"body_preview": str(body)[:200]})
        raise json.JSONDecodeError("Expected a JSON object", str(body), 0)
    return payload


TRUE_VALUES = ("true", "1", "yes")
FALSE_VALUES = ("false", "0", "no", "")


def parse_flag(value: Any, field_name: str, default: bool = False) -> bool:
    """JSON booleans, 0/1 and the strings true/false/yes/no; anything else is a ValidationError."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_VALUES:
            return True
        if text in FALSE_VALUES:
            return False
    raise ValidationError(f"{field_name} must be true or false", error=f"Invalid {field_name}")


def origin(event: dict, default: str) -> str:
    headers = event.get("headers") or {}
    return headers.get("origin") or headers.get("Origin") or default


def run_operation(operation: str, failure_error: str, call, methods: str = "POST, OPTIONS") -> dict:
    """
    Run an orchestrator call and map its outcome to a Lambda proxy response.

    PaymentsError subclasses carry their own status and body; anything else
    becomes a 500 with ``failure_error`` and the (redacted) exception text.
    A RuntimeError raised while building clients is a misconfiguration.
    """
    try:
        result = call()
    except PaymentsError as e:
        level = logger.error if e.status_code >= 500 else logger.warning
        level(
            f"{operation}.failed",
            extra={"status_code": e.status_code, "error": e.error, "detail": e.detail},
        )
        return response(e.status_code, e.to_body(), methods)
    except RuntimeError as e:
        logger.error(f"{operation}.misconfigured", extra={"error": str(e)})
        return response(500, {"error": "server_misconfigured", "detail": str(e)}, methods)
    except Exception as e:
        logger.exception(f"{operation}.unexpected_error")
        return response(500, {"error": failure_error, "detail": redact_secrets(str(e))}, methods)

    return response(getattr(result, "status_code", 200), result.to_body(), methods)
