import json
import os

import boto3

from handyman_payments.utils.logger import get_logger

logger = get_logger("secrets")


def _get_secret_name_and_region(env_var: str) -> tuple[str, str]:
    """
    Resolve a secret name and AWS region from environment variables.

    The secret name variable (e.g. STRIPE_SECRET_NAME) is required.
    AWS_REGION is optional; defaults to us-east-1 inside Lambda if not set.
    """
    secret_name = os.getenv(env_var)
    region_name = os.getenv("AWS_REGION", "us-east-1")

    if not secret_name:
        msg = f"Missing required environment variables: {env_var}"
        logger.error(msg)
        raise RuntimeError(msg)

    return secret_name, region_name


def get_json_secret(env_var: str) -> dict:
    """
    Fetch a JSON secret from AWS Secrets Manager, named by ``env_var``.

    The secret value must be a JSON object. Values are never logged.
    """
    secret_name, region_name = _get_secret_name_and_region(env_var)

    logger.info(
        "secrets.fetch",
        extra={"secret_name": secret_name, "region": region_name},
    )

    client = boto3.client("secretsmanager", region_name=region_name)

    resp = client.get_secret_value(SecretId=secret_name)
    secret_str = resp.get("SecretString")

    if not secret_str:
        msg = f"Secret '{secret_name}' has no SecretString payload"
        logger.error(msg)
        raise RuntimeError(msg)

    try:
        data = json.loads(secret_str)
    except json.JSONDecodeError as e:
        logger.error(
            "secrets.invalid_json",
            extra={"secret_name": secret_name, "error": str(e)},
        )
        raise

    if not isinstance(data, dict):
        msg = f"Secret '{secret_name}' must be a JSON object"
        logger.error(msg)
        raise RuntimeError(msg)

    return data


def get_twilio_secrets() -> dict:
    """
    Twilio credentials, e.g.:

        {
          "account_sid": "...",
          "auth_token": "...",
          "messaging_service_sid": "MG..."   # or legacy "msid"
        }
    """
    return get_json_secret("TWILIO_SECRET_NAME")


def get_stripe_secrets() -> dict:
    """
    Stripe credentials, e.g. ``{"secret_key": "sk_live_..."}``.
    """
    return get_json_secret("STRIPE_SECRET_NAME")
