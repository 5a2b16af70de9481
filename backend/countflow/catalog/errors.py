from __future__ import annotations


class CatalogError(Exception):
    """Base class for catalog/inventory source failures."""
    pass


class CatalogUnavailableError(CatalogError):
    """The catalog source could not be reached or the query failed."""
    pass


class CatalogRowError(CatalogError):
    """A row returned by the catalog source failed validation."""
    pass
