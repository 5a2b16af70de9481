# Overview: Fetches system quantity and unit cost for resolved products at one location.

from __future__ import annotations

import logging
from typing import Sequence

from .errors import CatalogRowError
from .rows import CatalogProductRow, LocationInventoryRow


logger = logging.getLogger(__name__)


def normalize_location_code(code: str | None) -> str | None:
    """
    Map a local location code to the inventory source's code.

    Strips whitespace and a leading "T" prefix ("T01" -> "01"). Returns None
    when nothing usable remains.
    """
    if code is None:
        return None
    normalized = str(code).strip()
    if normalized.startswith("T"):
        normalized = normalized[1:].strip()
    return normalized or None


class LocationInventoryFetcher:
    """Per-location inventory lookup via an injected catalog client."""

    def __init__(self, client):
        self.client = client

    def fetch(self, location_code: str, products: Sequence[CatalogProductRow]) -> list[LocationInventoryRow]:
        """
        Inventory rows for `products` at `location_code`.

        Only requested codes are kept, first row per code wins, invalid rows
        are skipped with a warning. CatalogUnavailableError propagates so the
        caller can skip the location.
        """
        requested = {product.code for product in products}
        if not requested:
            return []

        rows: dict[str, LocationInventoryRow] = {}
        for mapping in self.client.query_location_inventory(location_code, sorted(requested)):
            try:
                row = LocationInventoryRow.from_mapping(mapping)
            except CatalogRowError as exc:
                logger.warning("Skipping invalid inventory row at location %s: %s", location_code, exc)
                continue
            if row.item_code not in requested:
                continue
            if row.item_code in rows:
                logger.warning("Duplicate inventory row for %s at location %s ignored", row.item_code, location_code)
                continue
            rows[row.item_code] = row

        return [rows[code] for code in sorted(rows)]
