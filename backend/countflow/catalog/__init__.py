"""
Catalog/inventory source integration.

The client is owned by the Flask app (app.extensions["countflow.catalog"]);
resolvers and fetchers receive it through their constructors.
"""

from flask import current_app

from .client import CatalogClient, catalog_metadata, catalog_products, location_inventory
from .errors import CatalogError, CatalogRowError, CatalogUnavailableError
from .fetcher import LocationInventoryFetcher, normalize_location_code
from .resolver import CatalogFilterResolver
from .rows import CatalogFilter, CatalogProductRow, LocationInventoryRow

EXTENSION_KEY = "countflow.catalog"


def get_catalog_client():
    """Catalog client of the current app; raises CatalogUnavailableError when none is configured."""
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        raise CatalogUnavailableError("Catalog source is not configured")
    return client


__all__ = [
    "CatalogClient", "catalog_metadata", "catalog_products", "location_inventory",
    "CatalogError", "CatalogRowError", "CatalogUnavailableError",
    "LocationInventoryFetcher", "normalize_location_code",
    "CatalogFilterResolver",
    "CatalogFilter", "CatalogProductRow", "LocationInventoryRow",
    "EXTENSION_KEY", "get_catalog_client",
]
