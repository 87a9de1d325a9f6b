"""
HMAC-SHA256 signature validation for live webhook deliveries.

Deliveries carry ``X-Hub-Signature-256: sha256=<hex digest of the raw body>``
computed with the app secret.
"""
import hmac
import hashlib
from typing import Optional

from fastapi import Request, HTTPException, Depends

from chatserver.core.config import get_settings, Settings
from chatserver.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """
    Compute the header value for the given body.

    Args:
        secret: The app secret
        body: Raw request body bytes

    Returns:
        ``sha256=`` followed by the hex-encoded HMAC-SHA256 digest
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Verify a signature header value using constant-time comparison."""
    expected_signature = compute_signature(secret, body)
    return hmac.compare_digest(expected_signature, signature)


async def get_validated_body(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """
    Validate the signature header against the request body.

    Returns:
        The raw request body bytes if valid

    Raises:
        HTTPException: 401 if signature is missing or invalid
    """
    signature: Optional[str] = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        logger.warning(f"Webhook request missing {SIGNATURE_HEADER} header")
        raise HTTPException(status_code=401, detail="invalid signature")

    if not settings.is_webhook_secret_configured:
        logger.error("WEBHOOK_SECRET environment variable not configured")
        raise HTTPException(status_code=401, detail="invalid signature")

    body = await request.body()

    if not verify_signature(settings.webhook_secret, body, signature):
        logger.warning(
            "Webhook signature verification failed",
            extra={
                "extra_data": {
                    "received_signature": signature[:16] + "...",
                }
            }
        )
        raise HTTPException(status_code=401, detail="invalid signature")

    logger.debug("Webhook signature verified successfully")
    return body
