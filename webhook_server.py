"""Shopify webhook listener.

Runs as a Flask process on the webhook port.  Handles orders/paid
webhooks with HMAC-SHA256 signature verification and tags the
purchaser's Systeme.io contact according to the SKU -> tag map.
"""

from __future__ import annotations

import logging

from flask import Flask, request

from api.errors import error_response, handle_errors
from config import Config, settings
from services.contacts import ContactService
from services.order_handler import DeliveryPolicy, OrderPaidHandler
from services.signature import InboundEvent
from services.systeme import SystemeGateway
from services.tags import TagCache, TagResolver, load_tag_map

logger = logging.getLogger(__name__)


def build_handler(cfg: Config, cache: TagCache | None = None) -> OrderPaidHandler:
    """Wire the order handler from configuration.

    The tag map is parsed here, once per process.

    Raises:
        ConfigError: If ``COURSE_TAG_MAP_JSON`` is invalid.
    """
    gateway = SystemeGateway.from_settings(cfg)
    return OrderPaidHandler(
        TagResolver(gateway, cache),
        ContactService.from_settings(gateway, cfg),
        load_tag_map(cfg.course_tag_map_json),
        secret=cfg.shopify_webhook_secret,
        expected_shop=cfg.shopify_shop_domain,
        sku_policy=cfg.sku_match_policy,
        delivery_policy=DeliveryPolicy(cfg.delivery_policy),
    )


def create_webhook_app(handler: OrderPaidHandler | None = None) -> Flask:
    """Create the webhook Flask application."""
    app = Flask(__name__)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    order_handler = handler if handler is not None else build_handler(settings)
    logger.info("Loaded %d SKU tag mappings", len(order_handler.tag_map))

    @app.route("/webhooks/orders/paid", methods=["POST"])
    @app.route("/api/orders-paid", methods=["POST"])
    @handle_errors
    def handle_order_paid():
        """Handle Shopify orders/paid webhook."""
        # Raw body first: the signature covers the exact bytes received
        data = request.get_data()
        event = InboundEvent.from_headers(request.headers, data)
        result = order_handler.handle(event)
        return result.body, result.status_code

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("Method Not Allowed", 405)

    @app.route("/health", methods=["GET"])
    def health():
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    app = create_webhook_app()
    app.run(
        host=settings.webhook_host,
        port=settings.webhook_port,
        debug=False,
    )
