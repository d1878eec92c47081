"""Shared fixtures: a fresh SQLite database per test, seeded with default settings."""

from decimal import Decimal
from typing import Optional

import pytest

from ledger.accounts import AccountService
from ledger.database import build_engine, build_session_factory, create_tables, session_scope
from ledger.models import EntryKind, Identity, RegisterRequest, UserRole
from ledger.service import AccountLedger
from ledger.settings_store import SettingsStore


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def notify(self, recipient, kind, params):
        if self.fail:
            raise RuntimeError("SMTP relay unavailable")
        self.sent.append((recipient, kind, params))


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    factory = build_session_factory(engine)
    create_tables(factory)
    with session_scope(factory) as session:
        SettingsStore(session).initialize_defaults()
    yield factory
    engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def admin(session_factory) -> Identity:
    account = AccountService(session_factory).ensure_admin("admin@referzone.pk", "admin123", "Platform Admin")
    return Identity(id=account.id, email=account.email, role=UserRole.ADMIN)


@pytest.fixture
def make_user(session_factory):
    """Register a user and return (identity, account)."""
    accounts = AccountService(session_factory)
    counter = {"n": 0}

    def _make(name: str = "User", referred_by: Optional[str] = None):
        counter["n"] += 1
        account = accounts.register(RegisterRequest(
            full_name=name,
            email=f"user{counter['n']}@referzone.pk",
            password="secret123",
            confirm_password="secret123",
            phone="03001234567",
            referred_by=referred_by,
        ))
        return Identity(id=account.id, email=account.email, role=account.role), account

    return _make


@pytest.fixture
def fund(session_factory):
    """Give a user an opening balance through the ledger, with its history entry."""

    def _fund(user_id, amount: str):
        with session_scope(session_factory) as session:
            AccountLedger(session).credit(user_id, Decimal(amount), EntryKind.DEPOSIT, "Opening balance")

    return _fund


@pytest.fixture
def balance_of(session_factory):
    def _balance(user_id) -> Decimal:
        with session_scope(session_factory) as session:
            return AccountLedger(session).current_balance(user_id)

    return _balance
