"""
Settings store.

Key/value configuration consumed read-only by the ledger: the referral
commission rate (percent), the minimum withdrawal and the fixed deposit
amount. Values are stored as strings and parsed into a ``LedgerConfig``
snapshot inside the transaction that uses them, so a rate change only
affects decisions taken after it commits.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import InvalidSettingError
from .models import LedgerConfig
from .tables import Setting

COMMISSION_RATE = "commission_rate"
MIN_WITHDRAWAL = "min_withdrawal"
DEPOSIT_AMOUNT = "deposit_amount"

DEFAULT_SETTINGS = {
    COMMISSION_RATE: "15",
    MIN_WITHDRAWAL: "100",
    DEPOSIT_AMOUNT: "1000",
}

# Percent, inclusive.
MAX_COMMISSION_RATE = Decimal("100")


def _parse_amount(key: str, value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise InvalidSettingError(f"Setting {key} must be a decimal number, got {value!r}")
    if not amount.is_finite() or amount < 0:
        raise InvalidSettingError(f"Setting {key} must be a non-negative number, got {value!r}")
    if key == COMMISSION_RATE and amount > MAX_COMMISSION_RATE:
        raise InvalidSettingError(f"Setting {key} must be at most {MAX_COMMISSION_RATE}, got {value!r}")
    if key == DEPOSIT_AMOUNT and amount == 0:
        raise InvalidSettingError(f"Setting {key} must be greater than zero")
    return amount


class SettingsStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, key: str) -> Optional[str]:
        setting = self.session.get(Setting, key)
        return setting.value if setting else None

    def set(self, key: str, value: str) -> None:
        if key not in DEFAULT_SETTINGS:
            raise InvalidSettingError(f"Unknown setting {key!r}")
        value = str(value).strip()
        _parse_amount(key, value)

        setting = self.session.get(Setting, key)
        if setting is None:
            self.session.add(Setting(key=key, value=value))
        else:
            setting.value = value
            setting.updated_at = datetime.now(timezone.utc)
        self.session.flush()
        logger.info(f"Setting {key} set to {value}")

    def initialize_defaults(self) -> None:
        for key, value in DEFAULT_SETTINGS.items():
            if self.get(key) is None:
                self.session.add(Setting(key=key, value=value))
                logger.info(f"Setting {key} initialized to default {value}")
        self.session.flush()

    def snapshot(self) -> LedgerConfig:
        values = {}
        for key, default in DEFAULT_SETTINGS.items():
            raw = self.get(key)
            if raw is None:
                values[key] = Decimal(default)
                continue
            try:
                values[key] = _parse_amount(key, raw)
            except InvalidSettingError:
                logger.warning(f"Stored setting {key}={raw!r} is not a valid amount, using default {default}")
                values[key] = Decimal(default)
        return LedgerConfig(**values)
