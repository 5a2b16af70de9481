"""
Pytest fixtures for countflow backend tests.

Provides the app with an in-memory workflow database, an in-memory catalog
source, seeded locations and users per role, and auth helpers.
"""

from dataclasses import dataclass

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from countflow import create_app
from countflow.catalog import (
    CatalogClient,
    CatalogFilter,
    CatalogFilterResolver,
    LocationInventoryFetcher,
    catalog_metadata,
    catalog_products,
    location_inventory,
)
from countflow.extensions import db
from countflow.models import CountItem, Location, User
from countflow.services import assignment_service, count_item_service, request_service, session_service


CATALOG_PRODUCTS = [
    {"code": "A100", "description": "Hex bolt M8", "division_code": "D1", "division_name": "Hardware",
     "category_code": "C10", "category_name": "Fasteners", "group_code": "G100", "group_name": "Bolts"},
    {"code": "A101", "description": "Hex nut M8", "division_code": "D1", "division_name": "Hardware",
     "category_code": "C10", "category_name": "Fasteners", "group_code": "G101", "group_name": "Nuts"},
    {"code": "B200", "description": "Wall paint 4L", "division_code": "D2", "division_name": "Paint",
     "category_code": "C20", "category_name": "Interior", "group_code": "G200", "group_name": "Emulsion"},
    {"code": "B201", "description": "Primer 1L", "division_code": "D2", "division_name": "Paint",
     "category_code": "C20", "category_name": "Interior", "group_code": "G200", "group_name": "Emulsion"},
]

# location_code is the inventory source's code: "T01" locally, "01" there
LOCATION_INVENTORY = [
    {"location_code": "01", "item_code": "A100", "system_inventory": 50, "unit_cost_cents": 250,
     "division_code": "D1", "category_code": "C10", "group_code": "G100", "unit_measure_code": "EA"},
    {"location_code": "01", "item_code": "A101", "system_inventory": 10, "unit_cost_cents": 40,
     "division_code": "D1", "category_code": "C10", "group_code": "G101", "unit_measure_code": "EA"},
    {"location_code": "01", "item_code": "B200", "system_inventory": 5, "unit_cost_cents": 1999,
     "division_code": "D2", "category_code": "C20", "group_code": "G200", "unit_measure_code": "EA"},
    {"location_code": "01", "item_code": "B201", "system_inventory": 8, "unit_cost_cents": 650,
     "division_code": "D2", "category_code": "C20", "group_code": "G200", "unit_measure_code": "EA"},
    {"location_code": "02", "item_code": "A100", "system_inventory": 20, "unit_cost_cents": 250,
     "division_code": "D1", "category_code": "C10", "group_code": "G100", "unit_measure_code": "EA"},
]


def make_catalog_engine(url: str = "sqlite://"):
    """Catalog engine seeded with CATALOG_PRODUCTS and LOCATION_INVENTORY."""
    if url == "sqlite://":
        engine = create_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False})
    catalog_metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(insert(catalog_products), CATALOG_PRODUCTS)
        conn.execute(insert(location_inventory), LOCATION_INVENTORY)
    return engine


@pytest.fixture
def catalog_engine():
    engine = make_catalog_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def catalog_client(catalog_engine):
    return CatalogClient(engine=catalog_engine)


@pytest.fixture
def app(catalog_client):
    """Create application for testing."""
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "AUDIT_SAMPLING_SEED": "1234",
        },
        catalog_client=catalog_client,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Database session for the test app."""
    return db.session


@dataclass
class Seed:
    t01: int
    t02: int
    admin: int
    manager: int
    manager_t02: int
    counter: int
    counter2: int
    counter_t02: int
    coordinator: int
    auditor: int
    auditor2: int
    approver: int
    approver2: int


def _add_user(username: str, role: str, location_id=None) -> int:
    user = User(username=username, full_name=username.title(), role=role, location_id=location_id, is_active=True)
    db.session.add(user)
    db.session.flush()
    return user.id


@pytest.fixture
def seed(app) -> Seed:
    """Two locations and one or two users per role."""
    t01 = Location(name="Main Store", code="T01")
    t02 = Location(name="North Warehouse", code="T02")
    db.session.add_all([t01, t02])
    db.session.flush()

    seeded = Seed(
        t01=t01.id,
        t02=t02.id,
        admin=_add_user("admin", "admin"),
        manager=_add_user("manager", "manager", t01.id),
        manager_t02=_add_user("manager_north", "manager", t02.id),
        counter=_add_user("u1", "user", t01.id),
        counter2=_add_user("u2", "user", t01.id),
        counter_t02=_add_user("u3", "user", t02.id),
        coordinator=_add_user("coordinator", "inventory_coordinator"),
        auditor=_add_user("auditor", "inventory_auditor"),
        auditor2=_add_user("auditor2", "inventory_auditor"),
        approver=_add_user("approver", "adjustment_approver"),
        approver2=_add_user("approver2", "adjustment_approver"),
    )
    db.session.commit()
    return seeded


def auth_headers(user_id: int) -> dict:
    """Issue a session token for a user and return Authorization headers."""
    _session, token = session_service.create_session(user_id)
    return {"Authorization": f"Bearer {token}"}


def create_request(catalog_client, user_id: int, location_ids: list, codes=None, divisions=None, **kwargs):
    """Create a draft request through the service layer."""
    catalog_filter = CatalogFilter.from_lists(specific_codes=codes, divisions=divisions)
    return request_service.create_request(
        user_id=user_id,
        request_type=kwargs.pop("request_type", "manual" if codes else "division"),
        location_ids=location_ids,
        catalog_filter=catalog_filter,
        resolver=CatalogFilterResolver(catalog_client),
        fetcher=LocationInventoryFetcher(catalog_client),
        **kwargs,
    )


def create_sent_request(catalog_client, seed: Seed, codes=("A100", "A101"), location_ids=None):
    """Draft request created by the coordinator and sent; returns the request id."""
    req = create_request(catalog_client, seed.coordinator, location_ids or [seed.t01], codes=list(codes))
    request_service.send_request(user_id=seed.coordinator, request_id=req.id)
    return req.id


def count_and_approve(catalog_client, seed: Seed, counts: dict) -> tuple[int, dict]:
    """
    Sent request at T01 whose items are assigned, counted with `counts`
    ({item_code: physical_count}), submitted and approved.

    Returns (request_id, {item_code: item_id}).
    """
    request_id = create_sent_request(catalog_client, seed, codes=sorted(counts))
    rows = db.session.query(CountItem).filter_by(request_id=request_id).all()
    ids = {row.item_code: row.id for row in rows}

    assignment_service.assign_items(
        user_id=seed.manager,
        request_id=request_id,
        location_id=seed.t01,
        mode="manual",
        item_ids=list(ids.values()),
        assign_to=seed.counter,
    )
    for code, physical_count in counts.items():
        count_item_service.record_count(user_id=seed.counter, item_id=ids[code], physical_count=physical_count)
    count_item_service.submit_batch(user_id=seed.counter, item_ids=list(ids.values()))
    for item_id in ids.values():
        count_item_service.approve_item(user_id=seed.manager, item_id=item_id)
    return request_id, ids
