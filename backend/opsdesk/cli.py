# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/opsdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants with branch and user counts.
# - python -m flask tenants create --name "Acme" --slug acme
#   Create a tenant together with its main branch.
#
# User bootstrap:
# - python -m flask users create-superadmin --email root@opsdesk.local --password "secret123"
#   Create (or promote) a platform superadmin without the HTTP init token.
#
# Permission inspection:
# - python -m flask perms show user@acme.com [--tenant-id 2]
#   Print the resolved permissions for a user and which rule produced them.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Profile, User
from .permissions.roles import SUPERADMIN
from .services import auth_service, permission_service, tenant_service
from .validation import ConflictError, MIN_PROVISIONING_PASSWORD_LENGTH


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    permission_service.clear_permission_cache()
    click.echo("PASS Database reset complete. Run 'python -m flask users create-superadmin' to bootstrap.")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = tenant_service.list_tenants()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<28} {'Slug':<20} {'Status':<10} {'Branches':<9} {'Users'}")
    click.echo("="*80)

    for tenant in tenants:
        branch_count = db.session.query(Branch).filter_by(tenant_id=tenant.id).count()
        user_count = db.session.query(Profile).filter_by(tenant_id=tenant.id).count()
        status = tenant.status if tenant.is_active else f"{tenant.status}*"

        click.echo(f"{tenant.id:<5} {tenant.name:<28} {tenant.slug:<20} {status:<10} {branch_count:<9} {user_count}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--slug', required=True, help='URL-safe identifier ([a-z0-9-]+)')
@click.option('--status', default='trial', type=click.Choice(['trial', 'active', 'suspended', 'cancelled']))
@with_appcontext
def create_tenant(name, slug, status):
    """Create a tenant with its main branch."""
    try:
        tenant = tenant_service.create_tenant(name=name, slug=slug, status=status)
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    main_branch = tenant_service.get_main_branch(tenant.id)
    click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id}, slug: {tenant.slug})")
    click.echo(f"     Main branch: {main_branch.name} (ID: {main_branch.id})")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create-superadmin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default='Super Admin', help='Display name')
@with_appcontext
def create_superadmin(email, password, full_name):
    """Create (or promote) a platform superadmin."""
    if len(password) < MIN_PROVISIONING_PASSWORD_LENGTH:
        click.echo(f"FAIL Password must be at least {MIN_PROVISIONING_PASSWORD_LENGTH} characters")
        raise SystemExit(1)

    email = email.strip().lower()
    user = db.session.query(User).filter_by(email=email).first()
    if user is None:
        user = auth_service.create_identity(email, password)
        click.echo(f"PASS Created identity {email} (ID: {user.id})")
    else:
        auth_service.set_password(user, password)
        click.echo(f"PASS Updated password for existing identity {email}")

    if user.profile is None:
        auth_service.upsert_profile(
            user.id,
            tenant_id=None,
            email=email,
            full_name=full_name,
            selected_branch_id=None,
        )

    auth_service.assign_role(user.id, SUPERADMIN, None)
    permission_service.clear_permission_cache()
    click.echo(f"PASS {email} is a superadmin")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('show')
@click.argument('email')
@click.option('--tenant-id', type=int, default=None, help='Tenant to resolve for (defaults to the profile tenant)')
@with_appcontext
def show_permissions(email, tenant_id):
    """Show the resolved permissions for a user."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User {email} not found")
        raise SystemExit(1)

    if tenant_id is None and user.profile is not None:
        tenant_id = user.profile.tenant_id

    roles = sorted(permission_service.get_user_roles(user.id, tenant_id))
    director = permission_service.is_director(user.id, tenant_id)
    permissions = permission_service.resolve_permissions(user.id, tenant_id, director=director, use_cache=False)

    click.echo(f"\nUser: {user.email} (ID: {user.id})  Tenant: {tenant_id or '-'}")
    click.echo(f"Roles: {', '.join(roles) or '-'}  Director: {'Yes' if director else 'No'}")
    click.echo(f"Source: {permissions.source}  Dashboard: {permissions.dashboard_type or '-'}")
    click.echo("-"*40)
    for flag, value in permissions.to_dict().items():
        if flag == "dashboard_type":
            continue
        click.echo(f"{flag:<28} {'yes' if value else 'no'}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
