"""Per-owner email notification preferences."""

from enum import Enum

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Emails the system can send on an owner's behalf."""

    INVOICE_CREATED = "invoice_created"
    INVOICE_PAID = "invoice_paid"
    PAYMENT_RECEIPT = "payment_receipt"
    RECURRING_INVOICE_GENERATED = "recurring_invoice_generated"


class NotificationPreferences(BaseModel):
    """
    Global switch plus a per-type map.

    Types missing from the map are enabled.
    """

    email_notifications_enabled: bool = True
    types: dict[NotificationType, bool] = Field(default_factory=dict)

    def is_enabled(self, notification_type: NotificationType) -> bool:
        if not self.email_notifications_enabled:
            return False
        return self.types.get(notification_type, True)
