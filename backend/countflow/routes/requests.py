# backend/countflow/routes/requests.py
"""
Inventory request API routes: create, list, detail, send, cancel, catalog search.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..catalog import (
    CatalogFilter,
    CatalogFilterResolver,
    CatalogProductRow,
    CatalogRowError,
    CatalogUnavailableError,
    LocationInventoryFetcher,
    get_catalog_client,
)
from ..decorators import require_auth, require_permission
from ..errors import InventoryWorkflowError
from ..services import request_service
from .common import catalog_unavailable, json_body, missing_field, unexpected_error, workflow_error


requests_bp = Blueprint("inventory_requests", __name__, url_prefix="/api/inventory")


@requests_bp.route("/requests", methods=["POST"])
@require_auth
@require_permission("CREATE_INVENTORY_REQUESTS")
def create_request():
    """
    Create a draft request and seed its count items.

    Request body:
    {
        "request_type": str,  // manual, automatic, division, category, group
        "location_ids": [int],
        "filter_specific_codes": [str] (optional),
        "filter_divisions": [str] (optional),
        "filter_categories": [str] (optional),
        "filter_groups": [str] (optional),
        "comments": str (optional),
        "attachment_files": [str] (optional)
    }

    Returns:
        201: Request created
        400: Invalid request
        403: Forbidden
        422: Filter or inventory produced nothing
        503: Catalog unavailable
    """
    data = json_body()

    try:
        catalog_filter = CatalogFilter.from_lists(
            specific_codes=data.get("filter_specific_codes"),
            divisions=data.get("filter_divisions"),
            categories=data.get("filter_categories"),
            groups=data.get("filter_groups"),
        )
        client = get_catalog_client()
        req = request_service.create_request(
            user_id=g.current_user.id,
            request_type=data["request_type"],
            location_ids=data["location_ids"],
            catalog_filter=catalog_filter,
            resolver=CatalogFilterResolver(client),
            fetcher=LocationInventoryFetcher(client),
            comments=data.get("comments"),
            attachment_files=data.get("attachment_files"),
        )
        detail = request_service.get_request_detail(user_id=g.current_user.id, request_id=req.id)
        return jsonify(detail), 201

    except KeyError as e:
        return missing_field(e)
    except InventoryWorkflowError as e:
        return workflow_error(e)
    except CatalogUnavailableError as e:
        return catalog_unavailable(e)
    except Exception:
        return unexpected_error("create inventory request")


@requests_bp.route("/requests", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def list_requests():
    """
    List requests, newest first.

    Query params: status, location_id, limit (default 50), offset.
    Managers and counters only see requests with items at their location.
    """
    try:
        rows, total = request_service.list_requests(
            user_id=g.current_user.id,
            status=request.args.get("status"),
            location_id=request.args.get("location_id", type=int),
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"requests": [row.to_dict() for row in rows], "total": total}), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("list inventory requests")


@requests_bp.route("/requests/<int:request_id>", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def get_request(request_id: int):
    try:
        detail = request_service.get_request_detail(user_id=g.current_user.id, request_id=request_id)
        return jsonify(detail), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("load inventory request")


@requests_bp.route("/requests/<int:request_id>/send", methods=["POST"])
@require_auth
@require_permission("SEND_INVENTORY_REQUESTS")
def send_request(request_id: int):
    """
    Send a draft request to its locations.

    Returns:
        200: Request sent
        404: Request not found
        409: Request is not a draft
    """
    try:
        req = request_service.send_request(user_id=g.current_user.id, request_id=request_id)
        return jsonify(req.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("send inventory request")


@requests_bp.route("/requests/<int:request_id>/cancel", methods=["POST"])
@require_auth
@require_permission("CANCEL_INVENTORY_REQUESTS")
def cancel_request(request_id: int):
    """
    Cancel a request before counting starts.

    Request body:
    {
        "reason": str
    }
    """
    data = json_body()

    try:
        req = request_service.cancel_request(
            user_id=g.current_user.id,
            request_id=request_id,
            reason=data.get("reason"),
        )
        return jsonify(req.to_dict()), 200

    except InventoryWorkflowError as e:
        return workflow_error(e)
    except Exception:
        return unexpected_error("cancel inventory request")


@requests_bp.route("/catalog/products/search", methods=["GET"])
@require_auth
@require_permission("VIEW_INVENTORY_REQUESTS")
def search_products():
    """
    Search the catalog by code or description.

    Query params: q (required), limit (default 50).
    """
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"error": "Query parameter q is required", "code": "VALIDATION_ERROR"}), 400

    try:
        client = get_catalog_client()
        products = []
        for mapping in client.search_products(term, limit=request.args.get("limit", 50, type=int)):
            try:
                products.append(CatalogProductRow.from_mapping(mapping).to_dict())
            except CatalogRowError as exc:
                current_app.logger.warning("Skipping invalid catalog product row: %s", exc)
        return jsonify({"products": products}), 200

    except CatalogUnavailableError as e:
        return catalog_unavailable(e)
    except Exception:
        return unexpected_error("search catalog products")
