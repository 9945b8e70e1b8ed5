# tests/conftest.py
"""
Shared fixtures: an app built from TestConfig (in-memory SQLite, scheduler
off), a fresh schema per test and small factories for accounts and ledger
history.

Run:
    pytest -v
"""
import itertools
from decimal import Decimal

import pytest
from flask import g

from app import create_app
from config import TestConfig
from extensions import db
from models import Account, AccountStatus, Role
from commission.accounts import create_account
from commission.ledger import post_entry

from helpers import DEFAULT_PASSWORD


# =============================================================================
# APPLICATION / DATABASE
# =============================================================================

@pytest.fixture
def app():
    app = create_app(TestConfig)

    # The pushed context below is reused by every test-client request, so
    # drop Flask-Login's cached user after each one.
    @app.teardown_request
    def _forget_login_user(exc):
        g.pop("_login_user", None)

    ctx = app.app_context()
    ctx.push()
    db.create_all()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def file_app(tmp_path):
    """
    App on a file-backed SQLite database, so threads get their own
    connections. No context is pushed; callers open one per thread.
    """
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.db'}"

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_account(app):
    """
    make_account(name, referrer=None, plan=None, role="user")
    A plan marks the account active, as if its activation had been approved.
    """
    counter = itertools.count(1)

    def _make(name="user", referrer=None, plan=None, role=Role.USER.value):
        n = next(counter)
        account = create_account(
            name=name,
            email=f"{name.lower()}{n}@example.com",
            password=DEFAULT_PASSWORD,
            referral_code=referrer.referral_code if referrer else None,
            role=role,
        )
        if plan:
            account.plan = plan
            account.status = AccountStatus.ACTIVE.value
            db.session.commit()
        return account

    return _make


@pytest.fixture
def post(app):
    """post(account, kind, amount, at=None) - append a committed ledger entry."""
    def _post(account, kind, amount, at=None):
        account = db.session.get(Account, account.id)
        entry = post_entry(account, kind, Decimal(str(amount)), created_at=at)
        db.session.commit()
        return entry

    return _post


@pytest.fixture
def admin(make_account):
    return make_account("admin", role=Role.ADMIN.value)

