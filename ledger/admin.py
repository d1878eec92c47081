"""Administrative queries and settings. Every method requires an admin actor."""

from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import joinedload, sessionmaker

from .accounts import to_money
from .auth import require_admin
from .database import session_scope
from .errors import AccountNotFoundError
from .models import (
    EntryKind,
    Identity,
    LedgerConfig,
    PendingDeposit,
    PendingWithdrawal,
    PlatformStats,
    RequestStatus,
    SettingsUpdate,
    UserAccount,
    UserRole,
)
from .settings_store import SettingsStore
from .tables import Deposit, LedgerEntry, User, Withdrawal


class AdminService:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def pending_deposits(self, actor: Identity) -> list[PendingDeposit]:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(Deposit)
                .options(joinedload(Deposit.user))
                .where(Deposit.status == RequestStatus.PENDING)
                .order_by(Deposit.created_at.desc())
            ).scalars()
            return [PendingDeposit.model_validate(row) for row in rows]

    def pending_withdrawals(self, actor: Identity) -> list[PendingWithdrawal]:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(Withdrawal)
                .options(joinedload(Withdrawal.user))
                .where(Withdrawal.status == RequestStatus.PENDING)
                .order_by(Withdrawal.created_at.desc())
            ).scalars()
            return [PendingWithdrawal.model_validate(row) for row in rows]

    def list_users(self, actor: Identity) -> list[UserAccount]:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(User).where(User.role == UserRole.USER).order_by(User.created_at.desc())
            ).scalars()
            return [UserAccount.model_validate(row) for row in rows]

    def set_user_active(self, actor: Identity, user_id: UUID, is_active: bool) -> UserAccount:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            user = session.get(User, user_id)
            if user is None:
                raise AccountNotFoundError(f"User {user_id} not found")
            user.is_active = is_active
            session.flush()
            logger.info(f"User {user_id} {'activated' if is_active else 'deactivated'} by admin {actor.id}")
            return UserAccount.model_validate(user)

    def stats(self, actor: Identity) -> PlatformStats:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            total_users = session.execute(
                select(func.count()).select_from(User).where(User.role == UserRole.USER)
            ).scalar() or 0
            active_users = session.execute(
                select(func.count()).select_from(User).where(User.role == UserRole.USER, User.is_active.is_(True))
            ).scalar() or 0

            # History is the only source for aggregate totals.
            sums = dict(session.execute(
                select(LedgerEntry.kind, func.sum(LedgerEntry.amount)).group_by(LedgerEntry.kind)
            ).all())
            config = SettingsStore(session).snapshot()

            return PlatformStats(
                total_users=total_users,
                active_users=active_users,
                total_deposits=to_money(sums.get(EntryKind.DEPOSIT)),
                total_withdrawals=to_money(sums.get(EntryKind.WITHDRAWAL)),
                total_commissions=to_money(sums.get(EntryKind.COMMISSION)),
                commission_rate=config.commission_rate,
            )

    def get_settings(self, actor: Identity) -> LedgerConfig:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            return SettingsStore(session).snapshot()

    def update_settings(self, actor: Identity, update: SettingsUpdate) -> LedgerConfig:
        require_admin(actor)
        with session_scope(self.session_factory) as session:
            store = SettingsStore(session)
            for key, value in update.model_dump(exclude_none=True).items():
                store.set(key, str(value))
            logger.info(f"Settings updated by admin {actor.id}: {update.model_dump(exclude_none=True)}")
            return store.snapshot()
