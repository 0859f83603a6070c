# Overview: Operator commands (flask system|users|maintenance ...).

# backend/marketplace/cli.py
# Run from backend/ with FLASK_APP=wsgi.py:
#
#   flask system init-db                 create missing tables
#   flask system reset-db --yes          drop + recreate everything (dev only)
#   flask users create-admin             bootstrap an admin (prompts for missing options)
#   flask users list
#   flask maintenance cleanup-sessions   purge expired refresh sessions
#   flask maintenance cleanup-auth-events --retention-days 7
#
# Schema migrations go through Flask-Migrate: flask db upgrade

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import MarketplaceError
from .extensions import db
from .models import User
from .services import auth_service
from .services import session_service
from .services import rate_limit_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
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

    click.echo("Dropping all tables...")
    db.drop_all()

    click.echo("Recreating schema...")
    db.create_all()

    click.echo("PASS Database reset. Next: flask users create-admin")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(name, email, password):
    """Create an admin account."""
    try:
        user = auth_service.register_user(name, email, password, role="admin")
    except MarketplaceError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Admin created: id={user.id} email={user.email}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and status."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role':<8} {'Status'}")
    click.echo("="*90)

    for user in users:
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {user.role:<8} {user.status}")

    click.echo("="*90 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired refresh sessions."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired refresh sessions.")


@maintenance_group.command('cleanup-auth-events')
@click.option('--retention-days', type=int, default=7, show_default=True)
@with_appcontext
def cleanup_auth_events_cli(retention_days):
    """
    Cleanup old rate-limit events.

    Only events inside the largest rate-limit window matter, so a short
    retention is safe.
    """
    deleted = rate_limit_service.cleanup_auth_events(timedelta(days=retention_days))
    click.echo(f"Deleted {deleted} auth events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
