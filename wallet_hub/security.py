import hashlib
import hmac
import re

from fastapi import Header, HTTPException

from wallet_hub.config import Settings, settings as default_settings
from wallet_hub.logging_config import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Circle-Signature"
SIGNATURE_PATTERN = re.compile(r"v1=([a-f0-9]+)")


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    signature_header: str | None,
    raw_body: bytes,
    settings: Settings | None = None,
) -> bool:
    """
    Check that a transfer-status notification was signed by the custody provider.

    Never raises: every failure path is ``False``.
    """
    settings = settings or default_settings
    try:
        secret = settings.webhook_secret
        if not secret:
            if settings.is_production:
                logger.error("Webhook secret not configured in production; rejecting notification")
                return False
            logger.warning("INSECURE: webhook secret not configured, accepting unsigned notification")
            return True

        if not signature_header:
            logger.warning("Webhook signature missing")
            return False

        match = SIGNATURE_PATTERN.search(signature_header)
        if not match:
            logger.warning("Invalid webhook signature format")
            return False

        expected = compute_webhook_signature(raw_body, secret)
        valid = hmac.compare_digest(match.group(1), expected)
        if not valid:
            logger.warning("Webhook signature verification failed")
        return valid
    except Exception as exc:  # noqa: BLE001
        logger.error("Error verifying webhook signature: %s", exc)
        return False


def require_bearer_token(authorization: str | None = Header(None, alias="Authorization")):
    """
    FastAPI dependency to enforce Authorization: Bearer <token> when configured.
    """
    if not default_settings.bearer_token:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token, default_settings.bearer_token):
        raise HTTPException(status_code=401, detail="Unauthorized")
