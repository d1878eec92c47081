from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from sqlalchemy.orm import sessionmaker

from .accounts import AccountService
from .admin import AdminService
from .auth import CredentialVerifier
from .config import Settings, get_settings
from .database import create_tables, get_session_factory, session_scope
from .errors import (
    AccountBlockedError,
    AlreadyProcessedError,
    InvalidCredentialsError,
    LedgerServiceError,
    NotFoundError,
    PermissionDeniedError,
)
from .log_config import setup_logging
from .models import (
    AuthResponse,
    BalanceView,
    DecisionRequest,
    DepositDecision,
    DepositRequest,
    DepositSubmission,
    Identity,
    LedgerConfig,
    LoginRequest,
    PendingDeposit,
    PendingWithdrawal,
    PlatformStats,
    ReferralSummary,
    RegisterRequest,
    SettingsUpdate,
    TransactionEntry,
    UserAccount,
    UserStatusUpdate,
    WithdrawalDecision,
    WithdrawalRequest,
    WithdrawalSubmission,
)
from .notify import EmailNotifier, Notifier
from .settings_store import SettingsStore
from .workflow import ApprovalWorkflow


@dataclass
class Services:
    workflow: ApprovalWorkflow
    accounts: AccountService
    admin: AdminService
    verifier: CredentialVerifier


def bootstrap(session_factory: sessionmaker, settings: Settings) -> None:
    """Create tables, default settings and, when configured, the default admin."""
    create_tables(session_factory)
    with session_scope(session_factory) as session:
        SettingsStore(session).initialize_defaults()
    if settings.admin_email and settings.admin_password:
        AccountService(session_factory).ensure_admin(
            settings.admin_email, settings.admin_password, settings.admin_name
        )


def _http_error(e: LedgerServiceError) -> HTTPException:
    if isinstance(e, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, AlreadyProcessedError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, InvalidCredentialsError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(e, (PermissionDeniedError, AccountBlockedError)):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(e))


bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    services: Services = Depends(get_services),
) -> Identity:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    try:
        return services.verifier.resolve(credentials.credentials)
    except LedgerServiceError as e:
        raise _http_error(e)


def current_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity


router = APIRouter()


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "referral-ledger"}


# Auth

@router.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
def register(request: RegisterRequest, services: Services = Depends(get_services)) -> AuthResponse:
    try:
        user = services.accounts.register(request)
    except LedgerServiceError as e:
        raise _http_error(e)
    identity = Identity(id=user.id, email=user.email, role=user.role)
    return AuthResponse(user=user, token=services.verifier.issue_token(identity))


@router.post("/auth/login", response_model=AuthResponse, tags=["Auth"])
def login(request: LoginRequest, services: Services = Depends(get_services)) -> AuthResponse:
    try:
        identity = services.verifier.verify(str(request.email), request.password)
        user = services.accounts.get_user(identity.id)
    except LedgerServiceError as e:
        raise _http_error(e)
    return AuthResponse(user=user, token=services.verifier.issue_token(identity))


# Current user

@router.get("/users/me", response_model=UserAccount, tags=["Users"])
def get_profile(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> UserAccount:
    try:
        return services.accounts.get_user(identity.id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/users/me/balance", response_model=BalanceView, tags=["Users"])
def get_balance(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> BalanceView:
    try:
        return services.accounts.get_balance(identity.id)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/users/me/transactions", response_model=list[TransactionEntry], tags=["Users"])
def get_transactions(
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> list[TransactionEntry]:
    return services.accounts.transactions(identity.id, limit=limit)


@router.get("/users/me/referrals", response_model=ReferralSummary, tags=["Users"])
def get_referrals(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> ReferralSummary:
    try:
        return services.accounts.referral_summary(identity.id)
    except LedgerServiceError as e:
        raise _http_error(e)


# Deposits

@router.post("/deposits", response_model=DepositRequest, status_code=status.HTTP_201_CREATED, tags=["Deposits"])
def submit_deposit(
    submission: DepositSubmission,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> DepositRequest:
    try:
        return services.workflow.submit_deposit(identity, submission)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/deposits", response_model=list[DepositRequest], tags=["Deposits"])
def list_deposits(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> list[DepositRequest]:
    return services.accounts.deposits(identity.id)


# Withdrawals

@router.post("/withdrawals", response_model=WithdrawalRequest, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
def submit_withdrawal(
    submission: WithdrawalSubmission,
    identity: Identity = Depends(current_identity),
    services: Services = Depends(get_services),
) -> WithdrawalRequest:
    try:
        return services.workflow.submit_withdrawal(identity, submission)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/withdrawals", response_model=list[WithdrawalRequest], tags=["Withdrawals"])
def list_withdrawals(
    identity: Identity = Depends(current_identity), services: Services = Depends(get_services)
) -> list[WithdrawalRequest]:
    return services.accounts.withdrawals(identity.id)


# Admin

@router.get("/admin/stats", response_model=PlatformStats, tags=["Admin"])
def admin_stats(
    admin: Identity = Depends(current_admin), services: Services = Depends(get_services)
) -> PlatformStats:
    return services.admin.stats(admin)


@router.get("/admin/deposits/pending", response_model=list[PendingDeposit], tags=["Admin"])
def pending_deposits(
    admin: Identity = Depends(current_admin), services: Services = Depends(get_services)
) -> list[PendingDeposit]:
    return services.admin.pending_deposits(admin)


@router.post("/admin/deposits/{deposit_id}/approve", response_model=DepositDecision, tags=["Admin"])
def approve_deposit(
    deposit_id: UUID,
    background_tasks: BackgroundTasks,
    decision: Optional[DecisionRequest] = None,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> DepositDecision:
    note = decision.admin_note if decision else None
    try:
        return services.workflow.approve_deposit(admin, deposit_id, note, defer=background_tasks.add_task)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/admin/deposits/{deposit_id}/reject", response_model=DepositDecision, tags=["Admin"])
def reject_deposit(
    deposit_id: UUID,
    decision: Optional[DecisionRequest] = None,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> DepositDecision:
    note = decision.admin_note if decision else None
    try:
        return services.workflow.reject_deposit(admin, deposit_id, note)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/admin/withdrawals/pending", response_model=list[PendingWithdrawal], tags=["Admin"])
def pending_withdrawals(
    admin: Identity = Depends(current_admin), services: Services = Depends(get_services)
) -> list[PendingWithdrawal]:
    return services.admin.pending_withdrawals(admin)


@router.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalDecision, tags=["Admin"])
def approve_withdrawal(
    withdrawal_id: UUID,
    background_tasks: BackgroundTasks,
    decision: Optional[DecisionRequest] = None,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> WithdrawalDecision:
    note = decision.admin_note if decision else None
    try:
        return services.workflow.approve_withdrawal(
            admin, withdrawal_id, note, defer=background_tasks.add_task
        )
    except LedgerServiceError as e:
        raise _http_error(e)


@router.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalDecision, tags=["Admin"])
def reject_withdrawal(
    withdrawal_id: UUID,
    decision: Optional[DecisionRequest] = None,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> WithdrawalDecision:
    note = decision.admin_note if decision else None
    try:
        return services.workflow.reject_withdrawal(admin, withdrawal_id, note)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/admin/users", response_model=list[UserAccount], tags=["Admin"])
def list_users(
    admin: Identity = Depends(current_admin), services: Services = Depends(get_services)
) -> list[UserAccount]:
    return services.admin.list_users(admin)


@router.post("/admin/users/{user_id}/status", response_model=UserAccount, tags=["Admin"])
def set_user_status(
    user_id: UUID,
    update: UserStatusUpdate,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> UserAccount:
    try:
        return services.admin.set_user_active(admin, user_id, update.is_active)
    except LedgerServiceError as e:
        raise _http_error(e)


@router.get("/admin/settings", response_model=LedgerConfig, tags=["Admin"])
def get_ledger_settings(
    admin: Identity = Depends(current_admin), services: Services = Depends(get_services)
) -> LedgerConfig:
    return services.admin.get_settings(admin)


@router.put("/admin/settings", response_model=LedgerConfig, tags=["Admin"])
def update_ledger_settings(
    update: SettingsUpdate,
    admin: Identity = Depends(current_admin),
    services: Services = Depends(get_services),
) -> LedgerConfig:
    try:
        return services.admin.update_settings(admin, update)
    except LedgerServiceError as e:
        raise _http_error(e)


def create_app(
    session_factory: Optional[sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        factory = session_factory or get_session_factory()
        bootstrap(factory, settings)
        app.state.services = Services(
            workflow=ApprovalWorkflow(factory, notifier if notifier is not None else EmailNotifier(settings)),
            accounts=AccountService(factory),
            admin=AdminService(factory),
            verifier=CredentialVerifier(factory, settings),
        )
        logger.info("Referral ledger API started")
        yield

    app = FastAPI(
        title="Referral Ledger API",
        description="Deposits, withdrawals and referral commissions with an append-only transaction history",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
