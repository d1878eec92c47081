from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field, ConfigDict, model_validator


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class EntryKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    COMMISSION = "commission"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PayoutMethod(str, Enum):
    EASYPAISA = "easypaisa"
    JAZZCASH = "jazzcash"


class RegisterRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str
    phone: str = Field(default="", max_length=20)
    referred_by: Optional[str] = Field(default=None, description="Referral code of the inviting user")

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class DepositSubmission(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    transaction_id: str = Field(..., min_length=1, max_length=255, description="Payment reference supplied by the user")
    proof_path: Optional[str] = Field(default=None, description="Reference returned by the blob store")
    note: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "1000.00",
            "transaction_id": "EP-20240117-88213",
            "note": "Sent from my Easypaisa wallet",
        }
    })


class WithdrawalSubmission(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: PayoutMethod
    account_number: str = Field(..., min_length=1, max_length=20)
    account_name: str = Field(..., min_length=1, max_length=255)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": "250.00",
            "method": "jazzcash",
            "account_number": "03001234567",
            "account_name": "Ayesha Khan",
        }
    })


class DecisionRequest(BaseModel):
    admin_note: Optional[str] = None


class SettingsUpdate(BaseModel):
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, decimal_places=2)
    min_withdrawal: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    deposit_amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)


class UserStatusUpdate(BaseModel):
    is_active: bool


class Identity(BaseModel):
    id: UUID
    email: str
    role: UserRole

    model_config = ConfigDict(frozen=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class LedgerConfig(BaseModel):
    """Settings snapshot taken inside the deciding transaction."""

    commission_rate: Decimal
    min_withdrawal: Decimal
    deposit_amount: Decimal

    model_config = ConfigDict(frozen=True)


class UserAccount(BaseModel):
    id: UUID
    full_name: str
    email: str
    phone: str = ""
    role: UserRole
    balance: Decimal
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DepositRequest(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    transaction_id: str
    proof_path: Optional[str] = None
    note: Optional[str] = None
    status: RequestStatus
    admin_note: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRequest(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal
    method: PayoutMethod
    account_number: str
    account_name: str
    status: RequestStatus
    admin_note: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PendingDeposit(DepositRequest):
    user: UserAccount


class PendingWithdrawal(WithdrawalRequest):
    user: UserAccount


class TransactionEntry(BaseModel):
    id: UUID
    user_id: UUID
    kind: EntryKind
    amount: Decimal
    description: str
    reference_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DepositDecision(BaseModel):
    deposit: DepositRequest
    ledger_entry: Optional[TransactionEntry] = None
    commission_entry: Optional[TransactionEntry] = None
    message: str


class WithdrawalDecision(BaseModel):
    withdrawal: WithdrawalRequest
    ledger_entry: Optional[TransactionEntry] = None
    message: str


class BalanceView(BaseModel):
    user_id: UUID
    balance: Decimal


class AuthResponse(BaseModel):
    user: UserAccount
    token: str
    token_type: str = "bearer"


class ReferredUser(BaseModel):
    full_name: str
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReferralSummary(BaseModel):
    referral_code: Optional[str] = None
    total_referrals: int
    total_earnings: Decimal
    referrals: list[ReferredUser]


class PlatformStats(BaseModel):
    total_users: int
    active_users: int
    total_deposits: Decimal
    total_withdrawals: Decimal
    total_commissions: Decimal
    commission_rate: Decimal
