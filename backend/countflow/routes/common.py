# Overview: Error-to-response helpers shared by the inventory blueprints.

from flask import current_app, jsonify, request

from ..catalog import CatalogUnavailableError
from ..errors import InventoryWorkflowError
from ..extensions import db


def workflow_error(exc: InventoryWorkflowError):
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.status_code


def missing_field(exc: KeyError):
    db.session.rollback()
    return jsonify({"error": f"Missing required field: {exc}", "code": "VALIDATION_ERROR"}), 400


def catalog_unavailable(exc: CatalogUnavailableError):
    db.session.rollback()
    current_app.logger.warning("Catalog unavailable: %s", exc)
    return jsonify({"error": str(exc), "code": "CATALOG_UNAVAILABLE"}), 503


def unexpected_error(action: str):
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
