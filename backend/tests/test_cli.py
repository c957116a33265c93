"""CLI bootstrap and inspection commands."""

from cafe_pos.extensions import db
from cafe_pos.models import CafeTable, User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=['system', 'init', '--tables', '3'])
    assert first.exit_code == 0, first.output
    assert 'Created user admin' in first.output

    second = runner.invoke(args=['system', 'init', '--tables', '3'])
    assert second.exit_code == 0, second.output
    assert 'already exists' in second.output

    assert db.session.query(CafeTable).count() == 3
    assert db.session.query(User).filter_by(username='admin', role='admin').count() == 1


def test_create_user_rejects_weak_password(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['users', 'create', '--username', 'x', '--name', 'X',
                                 '--password', 'short', '--role', 'waiter'])
    assert result.exit_code != 0
    assert 'at least 8 characters' in result.output


def test_users_and_shifts_listing(app, waiter, open_shift):
    runner = app.test_cli_runner()

    users = runner.invoke(args=['users', 'list'])
    assert 'beto' in users.output

    shifts = runner.invoke(args=['shifts', 'list', '--status', 'open'])
    assert 'shift-open' in shifts.output
