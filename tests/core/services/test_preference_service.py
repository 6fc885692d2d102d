"""Tests for PreferenceService."""

import pytest

from core.models import NotificationPreferences, NotificationType
from core.services.preference_service import PreferenceService


@pytest.fixture
def preferences(fake_db):
    def stored(params):
        rows = [row for row in fake_db.rows("user_notification_preferences") if row["user_id"] == params[0]]
        return rows[-1:]

    fake_db.on("FROM user_notification_preferences", stored)
    return PreferenceService(fake_db)


class TestPreferences:

    def test_defaults_without_row(self, preferences, test_user_id):
        prefs = preferences.get(test_user_id)

        assert prefs == NotificationPreferences()
        assert preferences.is_enabled(test_user_id, NotificationType.INVOICE_PAID)

    def test_update_then_get(self, preferences, fake_db, test_user_id):
        preferences.update(test_user_id, NotificationPreferences(
            types={NotificationType.PAYMENT_RECEIPT: False},
        ))

        assert fake_db.rows("user_notification_preferences")[0]["types"] == {"payment_receipt": False}
        assert not preferences.is_enabled(test_user_id, NotificationType.PAYMENT_RECEIPT)
        assert preferences.is_enabled(test_user_id, NotificationType.INVOICE_CREATED)

    def test_global_switch(self, preferences, test_user_id):
        preferences.update(test_user_id, NotificationPreferences(email_notifications_enabled=False))

        assert not preferences.is_enabled(test_user_id, NotificationType.INVOICE_CREATED)

    def test_unknown_stored_types_are_ignored(self, preferences, fake_db, test_user_id):
        fake_db.insert("user_notification_preferences", {
            "user_id": test_user_id,
            "email_notifications_enabled": True,
            "types": {"weekly_digest": False, "invoice_paid": False},
        })

        prefs = preferences.get(test_user_id)

        assert prefs.types == {NotificationType.INVOICE_PAID: False}

    def test_preferences_are_per_owner(self, preferences, test_user_id, test_user_b_id):
        preferences.update(test_user_id, NotificationPreferences(email_notifications_enabled=False))

        assert preferences.is_enabled(test_user_b_id, NotificationType.INVOICE_CREATED)
