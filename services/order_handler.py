"""Shopify ``orders/paid`` -> Systeme tag flow.

Verification, extraction, tag resolution, contact upsert and tagging run
in that order.  Failures before verification succeeds are raised to the
transport (400/401); anything after that is handed to the delivery policy,
which by default acknowledges with 200 so Shopify does not re-deliver an
order that can never succeed.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, NamedTuple

from api.exceptions import UpstreamError
from services.contacts import ContactService
from services.orders import extract_purchase
from services.signature import InboundEvent, verify_event
from services.tags import TagResolver, TagSpec
from utils.sku import FIRST_PRESENT, select_sku

logger = logging.getLogger(__name__)

PAID_TOPIC = "orders/paid"


class DeliveryPolicy(enum.Enum):
    """How post-verification failures are reported back to Shopify."""

    ABSORB = "absorb"
    RETRY_TRANSIENT = "retry-transient"

    def status_for(self, exc: Exception) -> int:
        """HTTP status to acknowledge a delivery that failed with *exc*."""
        if self is DeliveryPolicy.RETRY_TRANSIENT and isinstance(exc, UpstreamError) and exc.transient:
            return 503
        return 200


class HandlerResult(NamedTuple):
    status_code: int
    body: dict[str, Any]


class OrderPaidHandler:
    """Apply the tag mapped to an order's SKU to the purchaser's contact."""

    def __init__(
        self,
        resolver: TagResolver,
        contacts: ContactService,
        tag_map: dict[str, TagSpec],
        *,
        secret: str,
        expected_shop: str,
        sku_policy: str = FIRST_PRESENT,
        delivery_policy: DeliveryPolicy = DeliveryPolicy.ABSORB,
    ) -> None:
        self.resolver = resolver
        self.contacts = contacts
        self.tag_map = tag_map
        self.secret = secret
        self.expected_shop = expected_shop
        self.sku_policy = sku_policy
        self.delivery_policy = delivery_policy

    def handle(self, event: InboundEvent) -> HandlerResult:
        """Process one delivery.

        Raises:
            BadRequestError: Missing headers or an unparseable body.
            UnauthorizedError: Wrong shop or bad signature.
            ConfigError: Signing secret or shop domain not configured.
        """
        verify_event(event, secret=self.secret, expected_shop=self.expected_shop)

        if event.topic != PAID_TOPIC:
            logger.info("Ignoring webhook topic %s", event.topic)
            return HandlerResult(200, {"ok": True, "ignored": True})

        purchase = extract_purchase(event.raw_body)
        if not purchase.email:
            logger.info("Order without email, nothing to do")
            return HandlerResult(200, {"ok": True, "reason": "order-without-email"})
        if not purchase.skus:
            logger.info("Order without SKUs, nothing to do")
            return HandlerResult(200, {"ok": True, "reason": "order-without-sku"})

        sku = select_sku(purchase.skus, self.tag_map, self.sku_policy)
        if sku is None:
            logger.info("No mapped SKU in %s", purchase.skus)
            return HandlerResult(200, {"ok": True, "reason": "sku-not-mapped"})

        try:
            return self._apply_tag(sku, purchase.email, purchase.first_name, purchase.last_name)
        except Exception as exc:
            logger.exception("Handler error for %s (SKU %s)", purchase.email, sku)
            status = self.delivery_policy.status_for(exc)
            return HandlerResult(status, {"ok": status < 300, "error": str(exc)})

    def _apply_tag(self, sku: str, email: str, first_name: str, last_name: str) -> HandlerResult:
        spec = self.tag_map[sku]
        logger.info("SKU %s -> configured tag %s", sku, spec.describe())

        from_cache = self.resolver.is_cached(spec)
        tag_id = self.resolver.resolve(spec)
        logger.info("Tag ID to use: %d", tag_id)

        contact_id = self.contacts.upsert_contact(email, first_name, last_name)
        logger.info("Systeme contact id: %d", contact_id)

        try:
            self.contacts.attach_tag(contact_id, tag_id)
        except UpstreamError:
            if not from_cache:
                raise
            # cached ID may be stale; resolve again from Systeme
            logger.warning("Cached tag %d rejected, re-resolving %s", tag_id, spec.describe())
            self.resolver.invalidate(spec)
            tag_id = self.resolver.resolve(spec)
            self.contacts.attach_tag(contact_id, tag_id)

        logger.info("Tag %d attached to contact %d", tag_id, contact_id)
        return HandlerResult(
            200, {"ok": True, "sku": sku, "tag_id": tag_id, "contact_id": contact_id},
        )
