"""CLI entry point for the Shopify -> Systeme.io course tagging bridge."""

from __future__ import annotations

import logging
import sys

import click

from api.exceptions import AppError, ConfigError
from config import settings
from services.signature import compute_signature


@click.group()
def cli() -> None:
    """Shopify orders/paid -> Systeme.io contact tagging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command()
def serve() -> None:
    """Start the webhook server."""
    from webhook_server import create_webhook_app

    app = create_webhook_app()
    app.run(
        host=settings.webhook_host,
        port=settings.webhook_port,
        debug=False,
    )


@cli.command()
def check_config() -> None:
    """Validate the SKU -> tag map and print it."""
    from services.tags import load_tag_map

    try:
        tag_map = load_tag_map(settings.course_tag_map_json)
    except ConfigError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if not tag_map:
        print("No SKU mappings configured (COURSE_TAG_MAP_JSON is empty)")
        return

    print(f"SKU mappings ({len(tag_map)}):")
    for sku, spec in tag_map.items():
        kind = "id" if spec.tag_id is not None else "name"
        print(f"  {sku:<20} {kind:<5} {spec.describe()}")
    print(f"\nSKU policy:      {settings.sku_match_policy}")
    print(f"Delivery policy: {settings.delivery_policy}")


@cli.command()
@click.argument("value")
def resolve_tag(value: str) -> None:
    """Resolve a tag ID or name against Systeme (creates missing names)."""
    from services.systeme import SystemeGateway
    from services.tags import TagResolver, TagSpec

    try:
        spec = TagSpec.parse(value)
        tag_id = TagResolver(SystemeGateway.from_settings(settings)).resolve(spec)
    except AppError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    print(f"{spec.describe()} -> tag {tag_id}")


@cli.command()
@click.argument("body_file", type=click.Path(exists=True, dir_okay=False))
def sign(body_file: str) -> None:
    """Print the X-Shopify-Hmac-SHA256 value for a payload file."""
    from pathlib import Path

    if not settings.shopify_webhook_secret:
        print("Error: SHOPIFY_WEBHOOK_SECRET is not set")
        sys.exit(1)
    print(compute_signature(Path(body_file).read_bytes(), settings.shopify_webhook_secret))


if __name__ == "__main__":
    cli()
