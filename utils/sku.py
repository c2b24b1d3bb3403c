"""SKU helpers."""

from __future__ import annotations

from collections.abc import Container, Sequence

FIRST_PRESENT = "first-present"
FIRST_MAPPED = "first-mapped"


def normalize_sku(value: object) -> str:
    """Return *value* as a trimmed SKU string ('' for missing values)."""
    if value is None:
        return ""
    return str(value).strip()


def select_sku(
    skus: Sequence[str],
    tag_map: Container[str],
    policy: str = FIRST_PRESENT,
) -> str | None:
    """Pick the SKU whose tag should be applied, or None.

    ``first-present`` takes the first SKU on the order and returns it only
    if it is mapped; an unmapped first SKU ends the search.
    ``first-mapped`` returns the first SKU that appears in *tag_map*.
    """
    if policy == FIRST_PRESENT:
        if skus and skus[0] in tag_map:
            return skus[0]
        return None
    if policy == FIRST_MAPPED:
        for sku in skus:
            if sku in tag_map:
                return sku
        return None
    msg = f"Unknown SKU match policy: {policy}"
    raise ValueError(msg)
