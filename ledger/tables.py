import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from .database import Base
from .models import EntryKind, PayoutMethod, RequestStatus, UserRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    # Store the lower-case values ("pending"), not the member names.
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# A pending request has no processed_at; a decided one always has it.
_PROCESSED_AT_MATCHES_STATUS = (
    "(status = 'pending' AND processed_at IS NULL) OR "
    "(status <> 'pending' AND processed_at IS NOT NULL)"
)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    phone = Column(String(20), nullable=False, default="")
    role = Column(_enum(UserRole, "user_role"), nullable=False, default=UserRole.USER)
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    referral_code = Column(String(20), unique=True, index=True, nullable=True)
    referred_by = Column(String(20), index=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Deposit(Base):
    __tablename__ = "deposits"
    __table_args__ = (
        CheckConstraint(_PROCESSED_AT_MATCHES_STATUS, name="ck_deposits_processed_at"),
        CheckConstraint("amount > 0", name="ck_deposits_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    transaction_id = Column(String(255), nullable=False)
    proof_path = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    status = Column(_enum(RequestStatus, "request_status"), nullable=False, default=RequestStatus.PENDING, index=True)
    admin_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")


class Withdrawal(Base):
    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint(_PROCESSED_AT_MATCHES_STATUS, name="ck_withdrawals_processed_at"),
        CheckConstraint("amount > 0", name="ck_withdrawals_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(_enum(PayoutMethod, "withdrawal_method"), nullable=False)
    account_number = Column(String(20), nullable=False)
    account_name = Column(String(255), nullable=False)
    status = Column(_enum(RequestStatus, "request_status"), nullable=False, default=RequestStatus.PENDING, index=True)
    admin_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")


class LedgerEntry(Base):
    """Append-only transaction history. Never updated or deleted."""

    __tablename__ = "transactions"
    __table_args__ = (
        # One deposit/withdrawal/commission entry per originating request.
        UniqueConstraint("kind", "reference_id", name="uq_transactions_kind_reference"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(_enum(EntryKind, "transaction_kind"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False)
    reference_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
