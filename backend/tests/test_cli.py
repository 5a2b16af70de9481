# Overview: Pytest coverage for the flask CLI command groups.

from countflow.extensions import db
from countflow.models import Location, User
from countflow.services import session_service


def test_system_init_is_idempotent(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "PASS Created location: Main Location" in result.output
    assert "PASS Created user: admin" in result.output

    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "Using existing location" in result.output
    assert "already exists" in result.output

    assert db.session.query(Location).count() == 1
    assert db.session.query(User).filter_by(role="admin").count() == 1


def test_create_location(app, seed):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["locations", "create", "--name", "South Depot", "--code", "T03"])
    assert result.exit_code == 0
    assert db.session.query(Location).filter_by(code="T03").one().name == "South Depot"

    result = runner.invoke(args=["locations", "create", "--name", "Again", "--code", "T03"])
    assert result.exit_code == 1
    assert "FAIL" in result.output

    result = runner.invoke(args=["locations", "list"])
    assert "South Depot" in result.output


def test_create_user(app, seed):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["users", "create", "--username", "ana", "--role", "manager"])
    assert result.exit_code == 1
    assert "needs --location-id" in result.output

    result = runner.invoke(
        args=["users", "create", "--username", "ana", "--role", "manager", "--location-id", str(seed.t02)]
    )
    assert result.exit_code == 0
    assert db.session.query(User).filter_by(username="ana").one().location_id == seed.t02

    result = runner.invoke(args=["users", "create", "--username", "ana", "--role", "user",
                                 "--location-id", str(seed.t01)])
    assert result.exit_code == 1

    result = runner.invoke(args=["users", "list", "--location-id", str(seed.t02)])
    assert "ana" in result.output
    assert "manager_north" in result.output


def test_issue_token(app, seed):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["users", "issue-token", "--username", "u1"])
    assert result.exit_code == 0
    token = result.output.strip().splitlines()[-1]
    context = session_service.validate_session(token)
    assert context is not None
    assert context.user.id == seed.counter

    result = runner.invoke(args=["users", "issue-token", "--username", "nobody"])
    assert result.exit_code == 1


def test_perms_list_for_role(app):
    result = app.test_cli_runner().invoke(args=["perms", "list", "--role", "adjustment_approver"])
    assert result.exit_code == 0
    assert "APPROVE_ADJUSTMENTS" in result.output
    assert "RECORD_COUNTS" not in result.output


def test_catalog_ping(app):
    result = app.test_cli_runner().invoke(args=["catalog", "ping"])
    assert result.exit_code == 0
    assert "PASS Catalog source reachable" in result.output
