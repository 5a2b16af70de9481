# backend/countflow/routes/system.py
"""
Service health endpoint.

Checks the workflow database and the catalog source. A missing catalog
configuration degrades the service (requests cannot be created) but does
not make it unhealthy.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..catalog import EXTENSION_KEY, CatalogUnavailableError
from ..extensions import db
from ..models import CountItem, InventoryRequest, Location, User
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/inventory")


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    """Run a few cheap counts against the workflow tables."""
    start_time = time.time()
    try:
        details = {
            "locations": db.session.query(func.count(Location.id)).scalar(),
            "users": db.session.query(func.count(User.id)).scalar(),
            "requests": db.session.query(func.count(InventoryRequest.id)).scalar(),
            "count_items": db.session.query(func.count(CountItem.id)).scalar(),
        }
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": details,
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Database error",
        }


def check_catalog_health() -> dict:
    start_time = time.time()
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        return {
            "status": "degraded",
            "latency_ms": _elapsed_ms(start_time),
            "warning": "not_configured",
        }
    try:
        client.ping()
    except CatalogUnavailableError:
        current_app.logger.warning("Catalog health check failed", exc_info=True)
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Catalog unreachable",
        }
    return {
        "status": "healthy",
        "latency_ms": _elapsed_ms(start_time),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database or catalog unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    catalog_health = check_catalog_health()

    all_checks = [database_health, catalog_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": {
            "database": database_health,
            "catalog": catalog_health,
        },
    }
    return response, http_status
