# Overview: Turns a catalog filter into the concrete, de-duplicated product list.

from __future__ import annotations

import logging

from ..errors import EmptyFilterResult
from .errors import CatalogRowError
from .rows import CatalogFilter, CatalogProductRow


logger = logging.getLogger(__name__)


class CatalogFilterResolver:
    """Resolve a CatalogFilter to CatalogProductRow instances via an injected client."""

    def __init__(self, client):
        self.client = client

    def resolve(self, catalog_filter: CatalogFilter, limit: int | None = None) -> list[CatalogProductRow]:
        """
        Return matching products ordered by code.

        Rows that fail validation are skipped with a warning. Raises
        EmptyFilterResult when nothing valid matches.
        """
        catalog_filter.validate()
        products: dict[str, CatalogProductRow] = {}
        for mapping in self.client.query_products(catalog_filter, limit):
            try:
                row = CatalogProductRow.from_mapping(mapping)
            except CatalogRowError as exc:
                logger.warning("Skipping invalid catalog product row: %s", exc)
                continue
            products.setdefault(row.code, row)

        if not products:
            raise EmptyFilterResult("No products match the specified filter")

        return [products[code] for code in sorted(products)]
