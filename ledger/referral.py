"""
Referral cascade.

When a referred user's deposit is approved, the user whose referral code
they registered with earns ``amount * commission_rate / 100``. The referrer
is resolved by code at cascade time; the link is a plain string on the
depositor, not an ownership relation.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import EntryKind, LedgerConfig, TransactionEntry
from .service import CENT, AccountLedger
from .tables import User


def calculate_commission(amount: Decimal, rate_percent: Decimal) -> Decimal:
    return (amount * rate_percent / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CommissionPayout:
    """What was paid, kept for the notification sent after commit."""

    referrer_id: UUID
    referrer_email: str
    referrer_name: str
    depositor_name: str
    amount: Decimal
    entry: TransactionEntry


class ReferralCascade:
    def __init__(self, session: Session, ledger: AccountLedger):
        self.session = session
        self.ledger = ledger

    def apply(
        self,
        depositor: User,
        deposit_id: UUID,
        amount: Decimal,
        config: LedgerConfig,
    ) -> Optional[CommissionPayout]:
        code = (depositor.referred_by or "").strip()
        if not code:
            return None

        referrer = self.session.execute(
            select(User).where(User.referral_code == code)
        ).scalar_one_or_none()
        if referrer is None:
            logger.info(f"Referral code {code} of user {depositor.id} does not resolve, no commission")
            return None
        if referrer.id == depositor.id:
            logger.warning(f"User {depositor.id} refers to their own code {code}, no commission")
            return None

        commission = calculate_commission(amount, config.commission_rate)
        if commission <= 0:
            logger.info(
                f"Commission for deposit {deposit_id} rounds to {commission} "
                f"at rate {config.commission_rate}%, skipped"
            )
            return None

        entry = self.ledger.credit(
            referrer.id,
            commission,
            EntryKind.COMMISSION,
            f"Referral commission from {depositor.full_name}",
            reference_id=deposit_id,
        )
        logger.info(
            f"Commission {commission} ({config.commission_rate}%) for deposit {deposit_id} "
            f"credited to referrer {referrer.id}"
        )
        return CommissionPayout(
            referrer_id=referrer.id,
            referrer_email=referrer.email,
            referrer_name=referrer.full_name,
            depositor_name=depositor.full_name,
            amount=commission,
            entry=entry,
        )
