"""Per-owner email notification preferences."""

import logging
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.models import NotificationPreferences, NotificationType
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_KNOWN_TYPES = {t.value for t in NotificationType}


class PreferenceService:
    """
    Reads and stores NotificationPreferences.

    An owner without a stored row gets the defaults (everything enabled).
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get(self, user_id: UUID) -> NotificationPreferences:
        row = self.postgres.execute_single(
            """
            SELECT email_notifications_enabled, types
            FROM user_notification_preferences
            WHERE user_id = %s
            """,
            (user_id,)
        )
        if row is None:
            return NotificationPreferences()

        types = row.get("types") or {}
        return NotificationPreferences(
            email_notifications_enabled=row["email_notifications_enabled"],
            types={NotificationType(k): v for k, v in types.items() if k in _KNOWN_TYPES},
        )

    def update(self, user_id: UUID, preferences: NotificationPreferences) -> NotificationPreferences:
        """Insert or replace an owner's preferences."""
        types = {t.value: enabled for t, enabled in preferences.types.items()}
        self.postgres.execute_returning(
            """
            INSERT INTO user_notification_preferences (user_id, email_notifications_enabled, types, updated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id)
            DO UPDATE SET
                email_notifications_enabled = EXCLUDED.email_notifications_enabled,
                types = EXCLUDED.types,
                updated_at = EXCLUDED.updated_at
            RETURNING user_id
            """,
            (user_id, preferences.email_notifications_enabled, Json(types), now_utc())
        )
        logger.info(f"Notification preferences updated for user {user_id}")
        return preferences

    def is_enabled(self, user_id: UUID, notification_type: NotificationType) -> bool:
        return self.get(user_id).is_enabled(notification_type)
