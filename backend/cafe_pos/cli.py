# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/cafe_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-password "..."] [--tables 10]
#   Idempotent: creates tables, the admin user and the dining tables.
#
# Users:
# - python -m flask users create --username ana --name "Ana" --password "..." --role cashier [--pin 1234]
# - python -m flask users list
#
# Shifts:
# - python -m flask shifts list [--status open] [--limit 20]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import CafeTable, Shift, User
from .models.auth import ROLES
from .models.shifts import SHIFT_STATUSES
from .services.auth_service import PasswordValidationError, UserError, create_user


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--admin-password', default='Admin12345', help='Password for the bootstrap admin')
@click.option('--tables', 'table_count', default=10, type=int, help='Dining tables to create')
@with_appcontext
def init_system(admin_password, table_count):
    """Create the schema, the admin account and the dining tables."""
    db.create_all()

    if not db.session.query(User).filter_by(username='admin').first():
        try:
            create_user('admin', admin_password, 'Administrator', role='admin')
        except PasswordValidationError as e:
            raise click.ClickException(str(e))
        click.echo("Created user admin")
    else:
        click.echo("User admin already exists")

    existing = db.session.query(CafeTable).count()
    for number in range(existing + 1, table_count + 1):
        db.session.add(CafeTable(name=f"Mesa {number}", status="free"))
    db.session.commit()
    click.echo(f"Tables: {max(existing, table_count)}")


@click.group('users')
def users_group():
    """Staff account commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), default='waiter', show_default=True)
@click.option('--pin', default=None, help='Optional 4-6 digit PIN for register login')
@with_appcontext
def create_user_cli(username, name, password, role, pin):
    try:
        user = create_user(username, password, name, role=role, pin=pin)
    except (PasswordValidationError, UserError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Created user {user.username} (id={user.id}, role={user.role})")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    for user in db.session.query(User).order_by(User.id).all():
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--status', type=click.Choice(SHIFT_STATUSES), default=None)
@click.option('--limit', default=20, type=int, show_default=True)
@with_appcontext
def list_shifts_cli(status, limit):
    query = db.session.query(Shift)
    if status:
        query = query.filter_by(status=status)
    shifts = query.order_by(Shift.created_at.desc()).limit(limit).all()
    if not shifts:
        click.echo("No shifts")
        return
    for shift in shifts:
        click.echo(
            f"{shift.id}  {shift.status:<20} {shift.opened_by_name or '-':<16} "
            f"initial={shift.initial_cash} diff={shift.cash_difference}"
        )


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(shifts_group)
