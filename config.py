"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

load_dotenv()

logger = logging.getLogger(__name__)


class Config(BaseModel):
    """Centralised app configuration backed by env vars."""

    # Shopify
    shopify_shop_domain: str = ""
    shopify_webhook_secret: str = ""

    # Systeme.io
    systeme_api_key: str = ""
    systeme_base_url: str = ""  # empty = try the default hosts in order
    systeme_timeout: float = 15.0
    systeme_max_retries: int = 2
    systeme_retry_delay: float = 1.0
    systeme_max_retry_delay: float = 10.0
    systeme_call_deadline: float = 10.0  # 0 = no overall budget per call
    systeme_fallback_form_id: str = ""
    contact_poll_attempts: int = 3
    contact_poll_delay: float = 2.0

    # SKU -> tag mapping
    course_tag_map_json: str = "{}"
    sku_match_policy: Literal["first-present", "first-mapped"] = "first-present"
    delivery_policy: Literal["absorb", "retry-transient"] = "absorb"

    # Webhook server
    webhook_host: str = "0.0.0.0"  # noqa: S104
    webhook_port: int = 5001

    @model_validator(mode="after")
    def _warn_empty_critical_fields(self) -> Config:
        """Log warnings when critical integration fields are empty."""
        if not self.shopify_webhook_secret:
            logger.warning("SHOPIFY_WEBHOOK_SECRET is not set; webhooks will be rejected")
        if not self.shopify_shop_domain:
            logger.warning("SHOPIFY_SHOP_DOMAIN is not set; webhooks will be rejected")
        if not self.systeme_api_key:
            logger.warning("SYSTEME_API_KEY is not set; Systeme calls will go out unauthenticated")
        return self

    @classmethod
    def from_env(cls) -> Config:
        """Build config from environment variables."""
        return cls(
            shopify_shop_domain=os.getenv("SHOPIFY_SHOP_DOMAIN", ""),
            shopify_webhook_secret=os.getenv("SHOPIFY_WEBHOOK_SECRET", ""),
            systeme_api_key=os.getenv("SYSTEME_API_KEY", ""),
            systeme_base_url=os.getenv("SYSTEME_BASE_URL", ""),
            systeme_timeout=float(os.getenv("SYSTEME_TIMEOUT", "15")),
            systeme_max_retries=int(os.getenv("SYSTEME_MAX_RETRIES", "2")),
            systeme_retry_delay=float(os.getenv("SYSTEME_RETRY_DELAY", "1")),
            systeme_max_retry_delay=float(os.getenv("SYSTEME_MAX_RETRY_DELAY", "10")),
            systeme_call_deadline=float(os.getenv("SYSTEME_CALL_DEADLINE", "10")),
            systeme_fallback_form_id=os.getenv("SYSTEME_FALLBACK_FORM_ID", ""),
            contact_poll_attempts=int(os.getenv("CONTACT_POLL_ATTEMPTS", "3")),
            contact_poll_delay=float(os.getenv("CONTACT_POLL_DELAY", "2")),
            course_tag_map_json=os.getenv("COURSE_TAG_MAP_JSON", "{}") or "{}",
            sku_match_policy=os.getenv("SKU_MATCH_POLICY", "first-present"),  # type: ignore[arg-type]
            delivery_policy=os.getenv("DELIVERY_POLICY", "absorb"),  # type: ignore[arg-type]
            webhook_host=os.getenv("WEBHOOK_HOST", "0.0.0.0"),  # noqa: S104
            webhook_port=int(os.getenv("WEBHOOK_PORT", "5001")),
        )


settings = Config.from_env()
