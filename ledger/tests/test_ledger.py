"""
Unit Tests for the Account Ledger

Tests cover:
1. Credit with history append
2. Debit holds and the no-negative-balance rule
3. Settling and releasing holds
4. Amount validation
5. Rollback of the whole unit on failure
"""

import pytest
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger.database import session_scope
from ledger.errors import AccountNotFoundError, InsufficientBalanceError, InvalidAmountError
from ledger.models import EntryKind
from ledger.service import AccountLedger, validate_amount
from ledger.tables import LedgerEntry


MISSING_ID = UUID("00000000-0000-0000-0000-000000000000")


def history(session_factory, user_id):
    with session_scope(session_factory) as session:
        return list(session.execute(
            select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        ).scalars())


class TestCredit:
    """Tests for crediting balances."""

    def test_credit_increases_balance_and_appends_entry(self, session_factory, make_user, balance_of):
        """Test that a credit moves the balance and writes exactly one history entry."""
        user, _ = make_user("Ali Raza")

        with session_scope(session_factory) as session:
            entry = AccountLedger(session).credit(
                user.id, Decimal("250.50"), EntryKind.COMMISSION, "Referral commission from Sara"
            )

        assert entry.kind == EntryKind.COMMISSION
        assert entry.amount == Decimal("250.50")
        assert entry.user_id == user.id
        assert balance_of(user.id) == Decimal("250.50")

        entries = history(session_factory, user.id)
        assert len(entries) == 1
        assert entries[0].description == "Referral commission from Sara"

    def test_credits_accumulate(self, session_factory, make_user, balance_of):
        """Test that repeated credits add up without drift."""
        user, _ = make_user()

        with session_scope(session_factory) as session:
            ledger = AccountLedger(session)
            for _ in range(10):
                ledger.credit(user.id, Decimal("0.10"), EntryKind.COMMISSION, "Dime")

        assert balance_of(user.id) == Decimal("1.00")

    def test_credit_unknown_user_fails(self, session_factory):
        """Test that crediting a missing account raises AccountNotFoundError."""
        with pytest.raises(AccountNotFoundError):
            with session_scope(session_factory) as session:
                AccountLedger(session).credit(MISSING_ID, Decimal("10.00"), EntryKind.DEPOSIT, "Nobody")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00"), Decimal("1.005"), Decimal("NaN")])
    def test_credit_rejects_invalid_amounts(self, session_factory, make_user, balance_of, amount):
        """Test that non-positive, over-precise and non-finite amounts are refused."""
        user, _ = make_user()

        with pytest.raises(InvalidAmountError):
            with session_scope(session_factory) as session:
                AccountLedger(session).credit(user.id, amount, EntryKind.DEPOSIT, "Bad amount")

        assert balance_of(user.id) == Decimal("0.00")
        assert history(session_factory, user.id) == []


class TestDebit:
    """Tests for debits (withdrawal holds)."""

    def test_debit_reduces_balance_without_history(self, session_factory, make_user, fund, balance_of):
        """Test that a debit lowers the balance but writes no history entry."""
        user, _ = make_user()
        fund(user.id, "500.00")

        with session_scope(session_factory) as session:
            new_balance = AccountLedger(session).debit(user.id, Decimal("200.00"))

        assert new_balance == Decimal("300.00")
        assert balance_of(user.id) == Decimal("300.00")
        assert len(history(session_factory, user.id)) == 1  # only the opening credit

    def test_debit_to_exactly_zero_is_allowed(self, session_factory, make_user, fund, balance_of):
        """Test that the full balance can be held."""
        user, _ = make_user()
        fund(user.id, "100.00")

        with session_scope(session_factory) as session:
            AccountLedger(session).debit(user.id, Decimal("100.00"))

        assert balance_of(user.id) == Decimal("0.00")

    def test_debit_beyond_balance_fails(self, session_factory, make_user, fund, balance_of):
        """Test that an overdraft raises and is never clamped."""
        user, _ = make_user()
        fund(user.id, "150.00")

        with pytest.raises(InsufficientBalanceError):
            with session_scope(session_factory) as session:
                AccountLedger(session).debit(user.id, Decimal("150.01"))

        assert balance_of(user.id) == Decimal("150.00")

    def test_debit_unknown_user_fails(self, session_factory):
        """Test that debiting a missing account raises AccountNotFoundError."""
        with pytest.raises(AccountNotFoundError):
            with session_scope(session_factory) as session:
                AccountLedger(session).debit(MISSING_ID, Decimal("1.00"))


class TestHolds:
    """Tests for settling and releasing withdrawal holds."""

    def test_settle_hold_records_withdrawal_only(self, session_factory, make_user, fund, balance_of):
        """Test that settling a hold writes a withdrawal entry and leaves the balance alone."""
        user, _ = make_user()
        fund(user.id, "500.00")

        with session_scope(session_factory) as session:
            ledger = AccountLedger(session)
            ledger.debit(user.id, Decimal("200.00"))
            entry = ledger.settle_hold(user.id, Decimal("200.00"), "Withdrawal approved to easypaisa - 0300")

        assert entry.kind == EntryKind.WITHDRAWAL
        assert balance_of(user.id) == Decimal("300.00")

    def test_release_hold_restores_balance_without_history(self, session_factory, make_user, fund, balance_of):
        """Test that releasing a hold gives the funds back and writes nothing to history."""
        user, _ = make_user()
        fund(user.id, "500.00")

        with session_scope(session_factory) as session:
            AccountLedger(session).debit(user.id, Decimal("200.00"))
        with session_scope(session_factory) as session:
            AccountLedger(session).release_hold(user.id, Decimal("200.00"))

        assert balance_of(user.id) == Decimal("500.00")
        kinds = [e.kind for e in history(session_factory, user.id)]
        assert kinds == [EntryKind.DEPOSIT]


class TestAtomicity:
    """Tests that a failing unit leaves nothing behind."""

    def test_failure_after_credit_rolls_back_credit(self, session_factory, make_user, balance_of):
        """Test that an error later in the same scope undoes an earlier credit and its entry."""
        user, _ = make_user()

        with pytest.raises(InsufficientBalanceError):
            with session_scope(session_factory) as session:
                ledger = AccountLedger(session)
                ledger.credit(user.id, Decimal("100.00"), EntryKind.DEPOSIT, "Will be rolled back")
                ledger.debit(user.id, Decimal("500.00"))

        assert balance_of(user.id) == Decimal("0.00")
        assert history(session_factory, user.id) == []

    def test_current_balance_unknown_user(self, session_factory):
        """Test that reading a missing account's balance raises."""
        with pytest.raises(AccountNotFoundError):
            with session_scope(session_factory) as session:
                AccountLedger(session).current_balance(MISSING_ID)


class TestValidateAmount:
    """Tests for the amount guard."""

    def test_accepts_whole_and_two_place_amounts(self):
        assert validate_amount(Decimal("1000")) == Decimal("1000.00")
        assert validate_amount(Decimal("0.01")) == Decimal("0.01")

    def test_rejects_non_decimal(self):
        with pytest.raises(InvalidAmountError):
            validate_amount(100.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
