# Overview: Flask CLI command groups for bootstrap, identity and catalog checks.

# backend/countflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--location-code T01 --location-name "Main Location"]
#   Idempotent bootstrap: creates tables, a default location and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Locations:
# - python -m flask locations list
# - python -m flask locations create --name "North Warehouse" --code T02
#
# Users and tokens (password login is not part of this service):
# - python -m flask users list [--location-id 1]
# - python -m flask users create --username ana --role user --location-id 1
# - python -m flask users issue-token --username ana
#   Prints a bearer token for the Authorization header. Shown once.
#
# Permissions:
# - python -m flask perms list [--role manager]
#
# Catalog source:
# - python -m flask catalog ping
#   Check that CATALOG_DATABASE_URL is reachable.

import click
from flask import current_app
from flask.cli import with_appcontext

from .catalog import EXTENSION_KEY, CatalogUnavailableError
from .errors import InventoryWorkflowError
from .extensions import db
from .models import Location, User
from .permissions import (
    ALL_ROLES,
    DEFAULT_ROLE_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_USER,
)
from .services import session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--location-code', default='T01', help='Default location code')
@click.option('--location-name', default='Main Location', help='Default location name')
@click.option('--admin-username', default='admin', help='Admin username')
@with_appcontext
def init_system(location_code, location_name, admin_username):
    """
    Create tables, a default location and an admin user.

    Safe to re-run: existing rows are reused.
    """
    click.echo("START Initializing countflow...")

    db.create_all()
    click.echo("PASS Tables ready")

    location = db.session.query(Location).filter_by(code=location_code).first()
    if not location:
        location = Location(name=location_name, code=location_code, is_active=True)
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id}, Code: {location.code})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")

    admin = db.session.query(User).filter_by(username=admin_username).first()
    if admin:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        admin = User(username=admin_username, full_name="Administrator", role=ROLE_ADMIN, is_active=True)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created user: {admin.username} with role '{ROLE_ADMIN}' (ID: {admin.id})")

    click.echo("DONE countflow initialized. Issue a token with 'python -m flask users issue-token'.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('locations')
def locations_group():
    """Counting location management."""


@locations_group.command('list')
@with_appcontext
def list_locations():
    locations = db.session.query(Location).order_by(Location.id).all()
    if not locations:
        click.echo("No locations found.")
        return
    for location in locations:
        status = "active" if location.is_active else "inactive"
        click.echo(f"{location.id:>4}  {location.code or '-':<8} {location.name} ({status})")


@locations_group.command('create')
@click.option('--name', required=True, help='Location name')
@click.option('--code', required=True, help='Catalog location code, e.g. T02')
@with_appcontext
def create_location(name, code):
    if db.session.query(Location).filter_by(code=code).first():
        click.echo(f"FAIL Location code '{code}' already exists")
        raise SystemExit(1)
    location = Location(name=name, code=code, is_active=True)
    db.session.add(location)
    db.session.commit()
    click.echo(f"PASS Created location: {location.name} (ID: {location.id}, Code: {location.code})")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--role', type=click.Choice(list(ALL_ROLES)), prompt=True, help='Role')
@click.option('--location-id', type=int, default=None, help='Location (required for manager and user)')
@click.option('--full-name', default=None, help='Display name')
@click.option('--email', default=None, help='Email address')
@with_appcontext
def create_user_cli(username, role, location_id, full_name, email):
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        raise SystemExit(1)
    if location_id is not None and not db.session.get(Location, location_id):
        click.echo(f"FAIL Location {location_id} not found")
        raise SystemExit(1)
    if role in (ROLE_MANAGER, ROLE_USER) and location_id is None:
        click.echo(f"FAIL Role '{role}' needs --location-id")
        raise SystemExit(1)

    user = User(
        username=username,
        role=role,
        location_id=location_id,
        full_name=full_name,
        email=email,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.username} with role '{role}' (ID: {user.id})")


@users_group.command('list')
@click.option('--location-id', type=int, help='Filter by location ID')
@with_appcontext
def list_users(location_id):
    query = db.session.query(User)
    if location_id is not None:
        query = query.filter(User.location_id == location_id)
    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        location = user.location_id if user.location_id is not None else "-"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<22} location={location} ({status})")


@users_group.command('issue-token')
@click.option('--username', required=True, help='Username')
@with_appcontext
def issue_token(username):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        raise SystemExit(1)
    try:
        session, token = session_service.create_session(user.id)
    except InventoryWorkflowError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Token for {user.username} (expires {session.expires_at.isoformat()}):")
    click.echo(token)


@click.group('perms')
def perms_group():
    """Permission inspection."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(list(ALL_ROLES)), help='Only permissions granted to this role')
@with_appcontext
def list_perms(role):
    granted = set(DEFAULT_ROLE_PERMISSIONS.get(role, [])) if role else None
    for code, name, _description, category in PERMISSION_DEFINITIONS:
        if granted is not None and code not in granted:
            continue
        click.echo(f"{category:<12} {code:<32} {name}")


@click.group('catalog')
def catalog_group():
    """Catalog source checks."""


@catalog_group.command('ping')
@with_appcontext
def catalog_ping():
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        click.echo("WARN  CATALOG_DATABASE_URL is not set")
        raise SystemExit(1)
    try:
        client.ping()
    except CatalogUnavailableError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo("PASS Catalog source reachable")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(catalog_group)
