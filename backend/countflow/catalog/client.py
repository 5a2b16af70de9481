# Overview: Explicitly opened/closed client for the read-only catalog/inventory database.

"""
Catalog Client

Wraps a SQLAlchemy Core engine for the external catalog views. The client is
created per application (or injected by the caller) and opened/closed
explicitly; there is no module-level connection.

Raw rows come back as mappings; validation into typed rows happens in the
resolver and fetcher.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Sequence

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import CatalogUnavailableError
from .rows import CatalogFilter


logger = logging.getLogger(__name__)

DEFAULT_MAX_PRODUCTS = 1000
DEFAULT_CHUNK_SIZE = 500

catalog_metadata = MetaData()

# Product master view
catalog_products = Table(
    "catalog_products",
    catalog_metadata,
    Column("code", String(64), primary_key=True),
    Column("description", String(255)),
    Column("description2", String(255)),
    Column("division_code", String(32)),
    Column("division_name", String(120)),
    Column("category_code", String(32)),
    Column("category_name", String(120)),
    Column("group_code", String(32)),
    Column("group_name", String(120)),
    Column("subgroup_code", String(32)),
    Column("subgroup_name", String(120)),
    Column("brand_code", String(32)),
    Column("brand_name", String(120)),
)

# Per-location stock view
location_inventory = Table(
    "location_inventory",
    catalog_metadata,
    Column("location_code", String(32), primary_key=True),
    Column("item_code", String(64), primary_key=True),
    Column("description", String(255)),
    Column("description2", String(255)),
    Column("division_code", String(32)),
    Column("category_code", String(32)),
    Column("group_code", String(32)),
    Column("unit_measure_code", String(16)),
    Column("system_inventory", Numeric(18, 4)),
    Column("unit_cost_cents", Integer),
)


def _chunks(values: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class CatalogClient:
    """
    Read-only access to the catalog/inventory source.

    Usage:
        with CatalogClient(url) as client:
            client.query_products(catalog_filter)
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        max_products: int = DEFAULT_MAX_PRODUCTS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if not url and engine is None:
            raise ValueError("CatalogClient needs a database URL or an engine")
        self.url = url
        self.max_products = max_products
        self.chunk_size = max(1, chunk_size)
        self._engine = engine
        self._owns_engine = engine is None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "CatalogClient":
        if self._engine is None:
            self._engine = create_engine(self.url, pool_pre_ping=True, future=True)
            self._owns_engine = True
            logger.info("Catalog client opened")
        return self

    def close(self) -> None:
        # Injected engines belong to the caller
        if self._engine is None or not self._owns_engine:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Catalog client closed")

    def __enter__(self) -> "CatalogClient":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise CatalogUnavailableError("Catalog client is not open")
        return self._engine

    def _fetch(self, stmt) -> list[dict[str, Any]]:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as exc:
            raise CatalogUnavailableError(f"Catalog query failed: {exc.__class__.__name__}") from exc

    def ping(self) -> bool:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise CatalogUnavailableError("Catalog database is unreachable") from exc
        return True

    def query_products(self, catalog_filter: CatalogFilter, limit: int | None = None) -> list[dict[str, Any]]:
        """Products matching the filter, ordered by code, at most `limit` rows."""
        catalog_filter.validate()
        stmt = select(catalog_products)
        if catalog_filter.is_explicit:
            stmt = stmt.where(catalog_products.c.code.in_(catalog_filter.specific_codes))
        if catalog_filter.divisions:
            stmt = stmt.where(catalog_products.c.division_code.in_(catalog_filter.divisions))
        if catalog_filter.categories:
            stmt = stmt.where(catalog_products.c.category_code.in_(catalog_filter.categories))
        if catalog_filter.groups:
            stmt = stmt.where(catalog_products.c.group_code.in_(catalog_filter.groups))
        limit = limit or self.max_products
        rows = self._fetch(stmt.order_by(catalog_products.c.code).limit(limit))
        if len(rows) >= limit:
            logger.warning("Catalog filter %s hit the %d product limit; result may be truncated",
                           catalog_filter.to_dict(), limit)
        return rows

    def query_location_inventory(self, location_code: str, codes: Sequence[str]) -> list[dict[str, Any]]:
        """Stock rows for `codes` at one location; codes are queried in chunks."""
        if not codes:
            return []
        rows: list[dict[str, Any]] = []
        for chunk in _chunks(list(codes), self.chunk_size):
            stmt = (
                select(location_inventory)
                .where(
                    location_inventory.c.location_code == location_code,
                    location_inventory.c.item_code.in_(chunk),
                )
                .order_by(location_inventory.c.item_code)
            )
            rows.extend(self._fetch(stmt))
        return rows

    def search_products(self, term: str, limit: int = 50) -> list[dict[str, Any]]:
        """Case-insensitive search by code or description."""
        term = (term or "").strip()
        if not term:
            return []
        pattern = f"%{term}%"
        stmt = (
            select(catalog_products)
            .where(
                or_(
                    catalog_products.c.code.ilike(pattern),
                    catalog_products.c.description.ilike(pattern),
                )
            )
            .order_by(catalog_products.c.code)
            .limit(max(1, min(limit, self.max_products)))
        )
        return self._fetch(stmt)
