"""Shopify webhook authenticity checks.

Verification always runs over the raw request body exactly as received;
a re-serialised JSON document would never match Shopify's signature.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict

from api.exceptions import BadRequestError, ConfigError, UnauthorizedError

logger = logging.getLogger(__name__)

HMAC_HEADER = "X-Shopify-Hmac-SHA256"
TOPIC_HEADER = "X-Shopify-Topic"
SHOP_HEADER = "X-Shopify-Shop-Domain"


class InboundEvent(BaseModel):
    """One webhook delivery as received from Shopify."""

    model_config = ConfigDict(frozen=True)

    topic: str = ""
    shop_domain: str = ""
    signature: str = ""
    raw_body: bytes = b""

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], raw_body: bytes) -> InboundEvent:
        return cls(
            topic=headers.get(TOPIC_HEADER, "") or "",
            shop_domain=headers.get(SHOP_HEADER, "") or "",
            signature=headers.get(HMAC_HEADER, "") or "",
            raw_body=raw_body,
        )


def compute_signature(data: bytes, secret: str) -> str:
    """Return the base64 HMAC-SHA256 digest Shopify would send for *data*."""
    digest = hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_shopify_webhook(data: bytes, hmac_header: str, secret: str) -> bool:
    """Verify Shopify webhook HMAC-SHA256 signature.

    Args:
        data: Raw request body bytes.
        hmac_header: Value of X-Shopify-Hmac-SHA256 header.
        secret: Shared webhook signing secret.

    Returns:
        True if signature is valid.
    """
    expected = compute_signature(data, secret).encode("utf-8")
    supplied = (hmac_header or "").encode("utf-8")
    if len(expected) != len(supplied):
        return False
    return hmac.compare_digest(expected, supplied)


def verify_event(event: InboundEvent, *, secret: str, expected_shop: str) -> None:
    """Raise unless *event* is a signed delivery from the expected shop.

    Raises:
        BadRequestError: A required Shopify header is missing.
        UnauthorizedError: Wrong shop domain or invalid signature.
        ConfigError: No signing secret or shop domain is configured.
    """
    if not event.signature or not event.topic or not event.shop_domain:
        raise BadRequestError("Bad Request")

    if not secret or not expected_shop:
        raise ConfigError("Shopify webhook secret or shop domain not configured")

    if event.shop_domain != expected_shop:
        logger.warning("Webhook from unexpected shop %s", event.shop_domain)
        raise UnauthorizedError("Unauthorized")

    if not verify_shopify_webhook(event.raw_body, event.signature, secret):
        logger.warning("Invalid webhook signature from %s", event.shop_domain)
        raise UnauthorizedError("Unauthorized")
