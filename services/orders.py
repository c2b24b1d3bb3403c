"""Parse a Shopify order payload into the fields the bridge needs."""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel

from api.exceptions import BadRequestError
from utils.sku import normalize_sku

logger = logging.getLogger(__name__)


class PurchaseRecord(BaseModel):
    """Purchaser and purchased SKUs extracted from one order."""

    email: str = ""
    first_name: str = ""
    last_name: str = ""
    skus: list[str] = []


def _section(payload: dict, key: str) -> dict:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def extract_purchase(raw_body: bytes) -> PurchaseRecord:
    """Build a PurchaseRecord from the raw order body.

    Email comes from the top-level ``email`` field, falling back to
    ``customer.email``; a missing email yields an empty string rather than
    an error.  Names prefer ``customer`` over ``billing_address``.  SKUs keep
    line-item order and drop blanks.

    Raises:
        BadRequestError: If the body is not a JSON object.
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Invalid JSON in webhook body")
        raise BadRequestError("Bad Request") from None

    if not isinstance(payload, dict):
        logger.error("Webhook body is not a JSON object")
        raise BadRequestError("Bad Request")

    customer = _section(payload, "customer")
    billing = _section(payload, "billing_address")

    email = _text(payload.get("email")) or _text(customer.get("email"))
    first_name = _text(customer.get("first_name")) or _text(billing.get("first_name"))
    last_name = _text(customer.get("last_name")) or _text(billing.get("last_name"))

    line_items = payload.get("line_items")
    if not isinstance(line_items, list):
        line_items = []

    skus = []
    for item in line_items:
        if not isinstance(item, dict):
            continue
        sku = normalize_sku(item.get("sku"))
        if sku:
            skus.append(sku)

    return PurchaseRecord(email=email, first_name=first_name, last_name=last_name, skus=skus)
