"""
Account ledger.

Owns user balances and the append-only transaction history. Every method
works inside the caller's session and never commits: the caller's
``session_scope()`` decides whether the balance change, its history entry
and any request status change persist together.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import AccountNotFoundError, InsufficientBalanceError, InvalidAmountError
from .models import EntryKind, TransactionEntry
from .tables import LedgerEntry, User

CENT = Decimal("0.01")


def validate_amount(amount: Decimal) -> Decimal:
    """Positive, finite, at most two fractional digits."""
    if not isinstance(amount, Decimal):
        raise InvalidAmountError(f"Amount must be a Decimal, got {type(amount).__name__}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")
    if amount != amount.quantize(CENT):
        raise InvalidAmountError(f"Amount {amount} has more than two decimal places")
    return amount.quantize(CENT)


class AccountLedger:
    def __init__(self, session: Session):
        self.session = session

    def credit(
        self,
        user_id: UUID,
        amount: Decimal,
        kind: EntryKind,
        description: str,
        reference_id: Optional[UUID] = None,
    ) -> TransactionEntry:
        amount = validate_amount(amount)
        user = self._lock_user(user_id)

        balance_before = user.balance
        user.balance = balance_before + amount
        entry = self._append(user.id, kind, amount, description, reference_id)

        logger.info(
            f"Credited {amount} ({kind.value}) to user {user.id}: "
            f"{balance_before} -> {user.balance}"
        )
        return entry

    def debit(self, user_id: UUID, amount: Decimal) -> Decimal:
        """Remove funds without a history entry. Returns the new balance."""
        amount = validate_amount(amount)
        user = self._lock_user(user_id)

        if user.balance < amount:
            logger.warning(
                f"Insufficient balance for user {user.id}: "
                f"available {user.balance}, requested {amount}"
            )
            raise InsufficientBalanceError(
                f"Insufficient balance: available {user.balance}, requested {amount}"
            )

        balance_before = user.balance
        user.balance = balance_before - amount
        self.session.flush()

        logger.info(f"Debited {amount} from user {user.id}: {balance_before} -> {user.balance}")
        return user.balance

    def settle_hold(
        self,
        user_id: UUID,
        amount: Decimal,
        description: str,
        reference_id: Optional[UUID] = None,
    ) -> TransactionEntry:
        """Record a withdrawal whose funds were already held by ``debit``."""
        amount = validate_amount(amount)
        user = self._lock_user(user_id)
        return self._append(user.id, EntryKind.WITHDRAWAL, amount, description, reference_id)

    def release_hold(self, user_id: UUID, amount: Decimal) -> Decimal:
        """Give back funds held by ``debit``. Holds are not in the history, so neither is this."""
        amount = validate_amount(amount)
        user = self._lock_user(user_id)

        balance_before = user.balance
        user.balance = balance_before + amount
        self.session.flush()

        logger.info(f"Released hold of {amount} for user {user.id}: {balance_before} -> {user.balance}")
        return user.balance

    def current_balance(self, user_id: UUID) -> Decimal:
        balance = self.session.execute(
            select(User.balance).where(User.id == user_id)
        ).scalar_one_or_none()
        if balance is None:
            raise AccountNotFoundError(f"User {user_id} not found")
        return balance

    def _lock_user(self, user_id: UUID) -> User:
        # populate_existing: an earlier unlocked read of this user in the
        # same session must not shadow the locked row's balance.
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = self.session.execute(stmt).scalar_one_or_none()
        if user is None:
            logger.error(f"Ledger operation on missing user {user_id}")
            raise AccountNotFoundError(f"User {user_id} not found")
        return user

    def _append(
        self,
        user_id: UUID,
        kind: EntryKind,
        amount: Decimal,
        description: str,
        reference_id: Optional[UUID],
    ) -> TransactionEntry:
        entry = LedgerEntry(
            user_id=user_id,
            kind=kind,
            amount=amount,
            description=description,
            reference_id=reference_id,
        )
        self.session.add(entry)
        self.session.flush()
        return TransactionEntry.model_validate(entry)
