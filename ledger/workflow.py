"""
Approval workflow for deposit and withdrawal requests.

Both request types share one state machine:

    pending -> approved | rejected

Terminal states are final; deciding a request twice raises
``AlreadyProcessedError``. Each operation is a single ``session_scope()``:
the request row is locked, the status transition and every ledger mutation
it implies are flushed, and the whole unit commits or rolls back together.
Notifications are dispatched only after the commit, either inline or through
the caller's ``defer`` hook (e.g. FastAPI ``BackgroundTasks.add_task``).

Deposits touch the ledger on approval only. Withdrawals hold the funds at
submission (``AccountLedger.debit``); approval records the history entry
and rejection releases the hold.
"""

from typing import Callable, Optional, Union
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .auth import require_admin
from .database import session_scope
from .errors import (
    AccountBlockedError,
    AccountNotFoundError,
    AlreadyProcessedError,
    BelowMinimumError,
    InvalidDepositAmountError,
    ReasonRequiredError,
    RequestNotFoundError,
)
from .models import (
    DepositDecision,
    DepositRequest,
    DepositSubmission,
    EntryKind,
    Identity,
    RequestStatus,
    WithdrawalDecision,
    WithdrawalRequest,
    WithdrawalSubmission,
)
from .notify import Notification, NotificationKind, Notifier, dispatch_notifications
from .referral import ReferralCascade
from .service import AccountLedger
from .settings_store import SettingsStore
from .tables import Deposit, User, Withdrawal, utcnow


def _require_reason(admin_note: Optional[str]) -> str:
    note = (admin_note or "").strip()
    if not note:
        raise ReasonRequiredError("Admin note is required for rejection")
    return note


def _clean_note(note: Optional[str]) -> Optional[str]:
    note = (note or "").strip()
    return note or None


def _load_active_owner(session: Session, user_id: UUID) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AccountNotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise AccountBlockedError("Account is deactivated")
    return user


def _lock_pending(
    session: Session,
    model: type[Union[Deposit, Withdrawal]],
    request_id: UUID,
) -> Union[Deposit, Withdrawal]:
    label = model.__name__
    stmt = select(model).where(model.id == request_id).with_for_update()
    request = session.execute(stmt).scalar_one_or_none()
    if request is None:
        raise RequestNotFoundError(f"{label} {request_id} not found")
    if request.status != RequestStatus.PENDING:
        logger.warning(f"{label} {request_id} was already {request.status.value}")
        raise AlreadyProcessedError(f"{label} {request_id} has already been {request.status.value}")
    return request


def _close(request: Union[Deposit, Withdrawal], status: RequestStatus, admin_note: Optional[str]) -> None:
    request.status = status
    request.admin_note = admin_note
    request.processed_at = utcnow()


Defer = Callable[..., None]


class ApprovalWorkflow:
    def __init__(self, session_factory: Optional[sessionmaker] = None, notifier: Optional[Notifier] = None):
        self.session_factory = session_factory
        self.notifier = notifier

    # Deposits

    def submit_deposit(self, actor: Identity, submission: DepositSubmission) -> DepositRequest:
        with session_scope(self.session_factory) as session:
            config = SettingsStore(session).snapshot()
            if submission.amount != config.deposit_amount:
                raise InvalidDepositAmountError(
                    f"Deposit amount must be exactly PKR {config.deposit_amount}"
                )

            owner = _load_active_owner(session, actor.id)
            deposit = Deposit(
                user_id=owner.id,
                amount=submission.amount,
                transaction_id=submission.transaction_id.strip(),
                proof_path=submission.proof_path,
                note=_clean_note(submission.note),
            )
            session.add(deposit)
            session.flush()

            logger.info(f"Deposit {deposit.id} of {deposit.amount} submitted by user {owner.id}")
            return DepositRequest.model_validate(deposit)

    def approve_deposit(
        self,
        actor: Identity,
        deposit_id: UUID,
        admin_note: Optional[str] = None,
        defer: Optional[Defer] = None,
    ) -> DepositDecision:
        require_admin(actor)
        notifications = []

        with session_scope(self.session_factory) as session:
            deposit = _lock_pending(session, Deposit, deposit_id)
            config = SettingsStore(session).snapshot()
            ledger = AccountLedger(session)

            _close(deposit, RequestStatus.APPROVED, _clean_note(admin_note))
            entry = ledger.credit(
                deposit.user_id,
                deposit.amount,
                EntryKind.DEPOSIT,
                f"Deposit approved - Transaction ID: {deposit.transaction_id}",
                reference_id=deposit.id,
            )

            depositor = session.get(User, deposit.user_id)
            payout = ReferralCascade(session, ledger).apply(depositor, deposit.id, deposit.amount, config)

            decision = DepositDecision(
                deposit=DepositRequest.model_validate(deposit),
                ledger_entry=entry,
                commission_entry=payout.entry if payout else None,
                message="Deposit approved successfully",
            )

            notifications.append(Notification(
                recipient=depositor.email,
                kind=NotificationKind.DEPOSIT_APPROVED,
                params={"user_name": depositor.full_name, "amount": str(deposit.amount)},
            ))
            if payout:
                notifications.append(Notification(
                    recipient=payout.referrer_email,
                    kind=NotificationKind.REFERRAL_COMMISSION,
                    params={
                        "user_name": payout.referrer_name,
                        "amount": str(payout.amount),
                        "referred_user_name": payout.depositor_name,
                    },
                ))

        logger.info(f"Deposit {deposit_id} approved by admin {actor.id}")
        self._dispatch(notifications, defer)
        return decision

    def reject_deposit(self, actor: Identity, deposit_id: UUID, admin_note: Optional[str]) -> DepositDecision:
        require_admin(actor)
        note = _require_reason(admin_note)

        with session_scope(self.session_factory) as session:
            deposit = _lock_pending(session, Deposit, deposit_id)
            _close(deposit, RequestStatus.REJECTED, note)
            session.flush()
            decision = DepositDecision(
                deposit=DepositRequest.model_validate(deposit),
                message="Deposit rejected successfully",
            )

        logger.info(f"Deposit {deposit_id} rejected by admin {actor.id}: {note}")
        return decision

    # Withdrawals

    def submit_withdrawal(self, actor: Identity, submission: WithdrawalSubmission) -> WithdrawalRequest:
        with session_scope(self.session_factory) as session:
            config = SettingsStore(session).snapshot()
            if submission.amount < config.min_withdrawal:
                raise BelowMinimumError(f"Minimum withdrawal amount is PKR {config.min_withdrawal}")

            owner = _load_active_owner(session, actor.id)
            # The hold and the request are created in the same transaction.
            AccountLedger(session).debit(owner.id, submission.amount)

            withdrawal = Withdrawal(
                user_id=owner.id,
                amount=submission.amount,
                method=submission.method,
                account_number=submission.account_number.strip(),
                account_name=submission.account_name.strip(),
            )
            session.add(withdrawal)
            session.flush()

            logger.info(
                f"Withdrawal {withdrawal.id} of {withdrawal.amount} via {withdrawal.method.value} "
                f"submitted by user {owner.id}, funds held"
            )
            return WithdrawalRequest.model_validate(withdrawal)

    def approve_withdrawal(
        self,
        actor: Identity,
        withdrawal_id: UUID,
        admin_note: Optional[str] = None,
        defer: Optional[Defer] = None,
    ) -> WithdrawalDecision:
        require_admin(actor)

        with session_scope(self.session_factory) as session:
            withdrawal = _lock_pending(session, Withdrawal, withdrawal_id)
            _close(withdrawal, RequestStatus.APPROVED, _clean_note(admin_note))

            entry = AccountLedger(session).settle_hold(
                withdrawal.user_id,
                withdrawal.amount,
                f"Withdrawal approved to {withdrawal.method.value} - {withdrawal.account_number}",
                reference_id=withdrawal.id,
            )
            owner = session.get(User, withdrawal.user_id)

            decision = WithdrawalDecision(
                withdrawal=WithdrawalRequest.model_validate(withdrawal),
                ledger_entry=entry,
                message="Withdrawal approved successfully",
            )
            notification = Notification(
                recipient=owner.email,
                kind=NotificationKind.WITHDRAWAL_APPROVED,
                params={
                    "user_name": owner.full_name,
                    "amount": str(withdrawal.amount),
                    "method": withdrawal.method.value,
                },
            )

        logger.info(f"Withdrawal {withdrawal_id} approved by admin {actor.id}")
        self._dispatch([notification], defer)
        return decision

    def reject_withdrawal(
        self, actor: Identity, withdrawal_id: UUID, admin_note: Optional[str]
    ) -> WithdrawalDecision:
        require_admin(actor)
        note = _require_reason(admin_note)

        with session_scope(self.session_factory) as session:
            withdrawal = _lock_pending(session, Withdrawal, withdrawal_id)
            _close(withdrawal, RequestStatus.REJECTED, note)
            AccountLedger(session).release_hold(withdrawal.user_id, withdrawal.amount)

            decision = WithdrawalDecision(
                withdrawal=WithdrawalRequest.model_validate(withdrawal),
                message="Withdrawal rejected successfully",
            )

        logger.info(f"Withdrawal {withdrawal_id} rejected by admin {actor.id}, hold released: {note}")
        return decision

    def _dispatch(self, notifications: list[Notification], defer: Optional[Defer]) -> None:
        if defer is None:
            dispatch_notifications(self.notifier, notifications)
        else:
            defer(dispatch_notifications, self.notifier, notifications)
