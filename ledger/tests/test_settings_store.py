import pytest
from decimal import Decimal

from ledger.admin import AdminService
from ledger.database import session_scope
from ledger.errors import InvalidSettingError, PermissionDeniedError
from ledger.models import SettingsUpdate
from ledger.settings_store import COMMISSION_RATE, DEPOSIT_AMOUNT, MIN_WITHDRAWAL, SettingsStore
from ledger.tables import Setting


class TestSettingsStore:
    """Tests for the key/value settings store."""

    def test_defaults_are_seeded(self, session_factory):
        with session_scope(session_factory) as session:
            store = SettingsStore(session)
            assert store.get(COMMISSION_RATE) == "15"
            assert store.get(MIN_WITHDRAWAL) == "100"
            assert store.get(DEPOSIT_AMOUNT) == "1000"

    def test_initialize_defaults_keeps_existing_values(self, session_factory):
        """Test that re-seeding never overwrites an admin's change."""
        with session_scope(session_factory) as session:
            SettingsStore(session).set(COMMISSION_RATE, "12.5")
        with session_scope(session_factory) as session:
            SettingsStore(session).initialize_defaults()
        with session_scope(session_factory) as session:
            assert SettingsStore(session).get(COMMISSION_RATE) == "12.5"

    def test_snapshot_parses_decimals(self, session_factory):
        with session_scope(session_factory) as session:
            config = SettingsStore(session).snapshot()

        assert config.commission_rate == Decimal("15")
        assert config.min_withdrawal == Decimal("100")
        assert config.deposit_amount == Decimal("1000")

    def test_unknown_key_is_refused(self, session_factory):
        with pytest.raises(InvalidSettingError):
            with session_scope(session_factory) as session:
                SettingsStore(session).set("bonus_rate", "5")

    @pytest.mark.parametrize("value", ["abc", "-1", "Infinity", ""])
    def test_invalid_values_are_refused(self, session_factory, value):
        with pytest.raises(InvalidSettingError):
            with session_scope(session_factory) as session:
                SettingsStore(session).set(MIN_WITHDRAWAL, value)

        with session_scope(session_factory) as session:
            assert SettingsStore(session).get(MIN_WITHDRAWAL) == "100"

    @pytest.mark.parametrize("key, value", [
        (COMMISSION_RATE, "100.01"),
        (COMMISSION_RATE, "250"),
        (DEPOSIT_AMOUNT, "0"),
        (DEPOSIT_AMOUNT, "0.00"),
    ])
    def test_per_key_limits_are_enforced(self, session_factory, key, value):
        """Test that the store itself refuses rates above 100 and a zero deposit amount."""
        with pytest.raises(InvalidSettingError):
            with session_scope(session_factory) as session:
                SettingsStore(session).set(key, value)

    def test_boundary_values_are_accepted(self, session_factory):
        with session_scope(session_factory) as session:
            store = SettingsStore(session)
            store.set(COMMISSION_RATE, "100")
            store.set(MIN_WITHDRAWAL, "0")

        with session_scope(session_factory) as session:
            config = SettingsStore(session).snapshot()
        assert config.commission_rate == Decimal("100")
        assert config.min_withdrawal == Decimal("0")

    def test_out_of_range_stored_value_falls_back_to_default(self, session_factory):
        with session_scope(session_factory) as session:
            session.get(Setting, DEPOSIT_AMOUNT).value = "0"

        with session_scope(session_factory) as session:
            assert SettingsStore(session).snapshot().deposit_amount == Decimal("1000")

    def test_corrupt_stored_value_falls_back_to_default(self, session_factory):
        """Test that an unparseable stored value reads as its default instead of failing."""
        with session_scope(session_factory) as session:
            session.get(Setting, COMMISSION_RATE).value = "fifteen"

        with session_scope(session_factory) as session:
            config = SettingsStore(session).snapshot()

        assert config.commission_rate == Decimal("15")

    def test_missing_row_reads_as_default(self, session_factory):
        with session_scope(session_factory) as session:
            session.delete(session.get(Setting, DEPOSIT_AMOUNT))

        with session_scope(session_factory) as session:
            assert SettingsStore(session).snapshot().deposit_amount == Decimal("1000")


class TestAdminSettings:
    """Tests for settings changes through the admin service."""

    def test_partial_update(self, session_factory, admin):
        config = AdminService(session_factory).update_settings(
            admin, SettingsUpdate(commission_rate=Decimal("10"))
        )

        assert config.commission_rate == Decimal("10")
        assert config.min_withdrawal == Decimal("100")

    def test_non_admin_cannot_update(self, session_factory, make_user):
        user, _ = make_user()

        with pytest.raises(PermissionDeniedError):
            AdminService(session_factory).update_settings(user, SettingsUpdate(commission_rate=Decimal("50")))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
