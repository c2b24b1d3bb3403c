"""SKU -> Systeme tag resolution.

The tag map (``COURSE_TAG_MAP_JSON``) maps a Shopify SKU to either a
numeric Systeme tag ID or a tag name.  Names are looked up in Systeme and
created when missing.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from api.exceptions import ConfigError
from services.systeme import SystemeGateway, positive_id, response_items
from utils.sku import normalize_sku

logger = logging.getLogger(__name__)

TAGS_PATH = "/api/tags"
PAGE_SIZE = 100
MAX_PAGES = 50


class TagSpec(BaseModel):
    """A configured tag: either a numeric ID or a name to resolve."""

    model_config = ConfigDict(frozen=True)

    tag_id: int | None = None
    name: str | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> TagSpec:
        if (self.tag_id is None) == (self.name is None):
            msg = "TagSpec needs exactly one of tag_id or name"
            raise ValueError(msg)
        return self

    @classmethod
    def parse(cls, value: Any) -> TagSpec:
        """Interpret a tag map value.

        Positive integers and strings of ASCII digits are tag IDs; other
        non-empty strings are tag names.

        Raises:
            ConfigError: For anything else (0, negatives, floats, lists,
                non-ASCII digits such as "²").
        """
        if isinstance(value, bool):
            raise ConfigError(f"Invalid tag value: {value!r}")
        if isinstance(value, int):
            if value <= 0:
                raise ConfigError(f"Tag ID must be positive: {value}")
            return cls(tag_id=value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                raise ConfigError("Empty tag value")
            if text.isdigit():
                if not text.isascii():
                    raise ConfigError(f"Tag ID must use ASCII digits: {text!r}")
                if int(text) <= 0:
                    raise ConfigError(f"Tag ID must be positive: {text}")
                return cls(tag_id=int(text))
            return cls(name=text)
        raise ConfigError(f"Invalid tag value: {value!r}")

    def describe(self) -> str:
        return str(self.tag_id) if self.tag_id is not None else repr(self.name)


def load_tag_map(raw: str) -> dict[str, TagSpec]:
    """Parse ``COURSE_TAG_MAP_JSON`` into SKU -> TagSpec.

    Raises:
        ConfigError: If the JSON is malformed, not an object, or holds a
            value that can never resolve to a tag.
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ConfigError(f"COURSE_TAG_MAP_JSON is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("COURSE_TAG_MAP_JSON must be a JSON object")

    tag_map = {}
    for sku, value in data.items():
        key = normalize_sku(sku)
        if not key:
            raise ConfigError("COURSE_TAG_MAP_JSON contains an empty SKU")
        try:
            tag_map[key] = TagSpec.parse(value)
        except ConfigError as exc:
            raise ConfigError(f"SKU {key}: {exc}") from exc
    return tag_map


class TagCache:
    """Process-lifetime tag name -> ID memo.

    Never authoritative: a stale entry only costs a rejected attach and a
    re-resolve.
    """

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().casefold()

    def get(self, name: str) -> int | None:
        with self._lock:
            return self._ids.get(self._key(name))

    def set(self, name: str, tag_id: int) -> None:
        with self._lock:
            self._ids[self._key(name)] = tag_id

    def invalidate(self, name: str) -> None:
        with self._lock:
            self._ids.pop(self._key(name), None)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class TagResolver:
    """Turn a TagSpec into a Systeme tag ID."""

    def __init__(self, gateway: SystemeGateway, cache: TagCache | None = None) -> None:
        self.gateway = gateway
        self.cache = cache if cache is not None else TagCache()

    def resolve(self, spec: TagSpec) -> int:
        """Return the tag ID for *spec*, creating a named tag if needed."""
        if spec.tag_id is not None:
            return spec.tag_id

        name = spec.name or ""
        cached = self.cache.get(name)
        if cached is not None:
            return cached

        tag_id = self.find_tag_id(name)
        if tag_id is None:
            tag_id = self.create_tag(name)
        self.cache.set(name, tag_id)
        return tag_id

    def is_cached(self, spec: TagSpec) -> bool:
        return spec.name is not None and self.cache.get(spec.name) is not None

    def invalidate(self, spec: TagSpec) -> None:
        if spec.name is not None:
            self.cache.invalidate(spec.name)

    def find_tag_id(self, name: str) -> int | None:
        """Scan every page of the tag listing for *name* (case-insensitive)."""
        wanted = name.strip().casefold()
        params: dict[str, Any] = {"limit": PAGE_SIZE}

        for _ in range(MAX_PAGES):
            result = self.gateway.call(TAGS_PATH, "GET", params=params, tolerate_not_found=True)
            if result.not_found:
                return None

            items = response_items(result.data)
            for tag in items:
                if not isinstance(tag, dict):
                    continue
                if str(tag.get("name") or "").strip().casefold() == wanted:
                    tag_id = positive_id(tag.get("id"))
                    if tag_id is not None:
                        return tag_id

            has_more = isinstance(result.data, dict) and result.data.get("hasMore")
            last_id = items[-1].get("id") if items and isinstance(items[-1], dict) else None
            if not has_more or last_id is None:
                return None
            params = {"limit": PAGE_SIZE, "startingAfter": last_id}

        logger.warning("Stopped scanning Systeme tags after %d pages", MAX_PAGES)
        return None

    def create_tag(self, name: str) -> int:
        """Create a tag called *name* and return its ID.

        Raises:
            ConfigError: Systeme accepted the request but returned no ID.
        """
        result = self.gateway.call(TAGS_PATH, "POST", json={"name": name})
        data = result.data if isinstance(result.data, dict) else {}
        tag_id = positive_id(data.get("id"))
        if tag_id is None:
            raise ConfigError(f"Systeme created tag {name!r} without returning an ID")
        logger.info("Created Systeme tag %r (id %d)", name, tag_id)
        return tag_id
