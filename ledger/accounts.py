"""
User accounts: registration, profile and per-user history.

Registration records the inviting user's referral code on the new account as
a plain string. The code is validated here and resolved again by the
referral cascade at commission time.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .auth import hash_password
from .database import session_scope
from .errors import AccountNotFoundError, DuplicateEmailError, InvalidReferralCodeError
from .models import (
    BalanceView,
    DepositRequest,
    EntryKind,
    ReferralSummary,
    ReferredUser,
    RegisterRequest,
    TransactionEntry,
    UserAccount,
    UserRole,
    WithdrawalRequest,
)
from .service import CENT
from .tables import Deposit, LedgerEntry, User, Withdrawal


def generate_referral_code() -> str:
    return f"REF{uuid4().hex[:8].upper()}"


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


class AccountService:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def register(self, request: RegisterRequest) -> UserAccount:
        email = str(request.email).strip().lower()
        referred_by = (request.referred_by or "").strip() or None

        with session_scope(self.session_factory) as session:
            if self._find_by_email(session, email) is not None:
                raise DuplicateEmailError("Email already registered")

            if referred_by is not None:
                referrer = session.execute(
                    select(User.id).where(User.referral_code == referred_by)
                ).scalar_one_or_none()
                if referrer is None:
                    raise InvalidReferralCodeError("Invalid referral code")

            user = User(
                full_name=request.full_name.strip(),
                email=email,
                password_hash=hash_password(request.password),
                phone=request.phone.strip(),
                role=UserRole.USER,
                referral_code=self._unique_referral_code(session),
                referred_by=referred_by,
            )
            session.add(user)
            session.flush()

            logger.info(f"Registered user {user.id} ({email}), referred by {referred_by or 'nobody'}")
            return UserAccount.model_validate(user)

    def ensure_admin(self, email: str, password: str, full_name: str) -> UserAccount:
        email = email.strip().lower()
        with session_scope(self.session_factory) as session:
            existing = self._find_by_email(session, email)
            if existing is not None:
                return UserAccount.model_validate(existing)

            admin = User(
                full_name=full_name,
                email=email,
                password_hash=hash_password(password),
                role=UserRole.ADMIN,
                referral_code=self._unique_referral_code(session),
            )
            session.add(admin)
            session.flush()

            logger.info(f"Default admin user created: {email}")
            return UserAccount.model_validate(admin)

    def get_user(self, user_id: UUID) -> UserAccount:
        with session_scope(self.session_factory) as session:
            return UserAccount.model_validate(self._get(session, user_id))

    def get_balance(self, user_id: UUID) -> BalanceView:
        with session_scope(self.session_factory) as session:
            user = self._get(session, user_id)
            return BalanceView(user_id=user.id, balance=user.balance)

    def transactions(self, user_id: UUID, limit: int = 20) -> list[TransactionEntry]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.created_at.desc())
                .limit(limit)
            ).scalars()
            return [TransactionEntry.model_validate(row) for row in rows]

    def deposits(self, user_id: UUID) -> list[DepositRequest]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(Deposit).where(Deposit.user_id == user_id).order_by(Deposit.created_at.desc())
            ).scalars()
            return [DepositRequest.model_validate(row) for row in rows]

    def withdrawals(self, user_id: UUID) -> list[WithdrawalRequest]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(Withdrawal).where(Withdrawal.user_id == user_id).order_by(Withdrawal.created_at.desc())
            ).scalars()
            return [WithdrawalRequest.model_validate(row) for row in rows]

    def referral_summary(self, user_id: UUID) -> ReferralSummary:
        with session_scope(self.session_factory) as session:
            user = self._get(session, user_id)

            referred = []
            if user.referral_code:
                referred = list(session.execute(
                    select(User)
                    .where(User.referred_by == user.referral_code)
                    .order_by(User.created_at.desc())
                ).scalars())

            earnings = session.execute(
                select(func.sum(LedgerEntry.amount)).where(
                    LedgerEntry.user_id == user.id,
                    LedgerEntry.kind == EntryKind.COMMISSION,
                )
            ).scalar()

            return ReferralSummary(
                referral_code=user.referral_code,
                total_referrals=len(referred),
                total_earnings=to_money(earnings),
                referrals=[ReferredUser.model_validate(u) for u in referred],
            )

    def _get(self, session: Session, user_id: UUID) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise AccountNotFoundError(f"User {user_id} not found")
        return user

    def _find_by_email(self, session: Session, email: str) -> Optional[User]:
        return session.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def _unique_referral_code(self, session: Session) -> str:
        while True:
            code = generate_referral_code()
            taken = session.execute(
                select(User.id).where(User.referral_code == code)
            ).scalar_one_or_none()
            if taken is None:
                return code
