"""Billing configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class BillingConfig(BaseModel):
    """
    Billing configuration.

    Windows and cooldowns are in days, cache lifetimes in hours. Limits bound
    how much work a single page load may do on behalf of the current user.
    """

    # Currency
    default_currency: str = Field(
        default="USD",
        description="Currency used when neither the invoice nor the client specifies one",
        min_length=3,
        max_length=3,
    )
    rate_cache_ttl_hours: int = Field(
        default=24,
        description="How long a resolved exchange rate stays in Valkey",
        ge=1,
        le=168,
    )
    rate_fallback_to_parity: bool = Field(
        default=True,
        description="Use a 1.0 rate when no rate can be resolved instead of raising",
    )

    # Invoices
    default_tax_rate: Decimal = Field(
        default=Decimal("0.10"),
        description="Tax rate applied when a client has no rate of its own",
        ge=0,
        le=1,
    )
    invoice_due_days: int = Field(
        default=30,
        description="Days between issue date and due date when no due date is given",
        ge=0,
        le=365,
    )
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix for generated invoice numbers",
        min_length=1,
        max_length=10,
    )
    reconcile_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        description="Stored totals differing from recomputed ones by more than this are corrected",
        ge=0,
    )

    # Recurring invoices
    recurring_due_days: int = Field(
        default=30,
        description="Payment terms for invoices generated from recurring templates",
        ge=0,
        le=365,
    )

    # Reminders
    due_soon_days: int = Field(
        default=7,
        description="Send a due-soon reminder when the due date is this close",
        ge=1,
        le=60,
    )
    due_soon_cooldown_days: int = Field(
        default=7,
        description="Minimum gap between two due-soon reminders for one invoice",
        ge=1,
    )
    overdue_reminder_cooldown_days: int = Field(
        default=7,
        description="Minimum gap between two overdue reminders for one invoice",
        ge=1,
    )
    follow_up_after_days: int = Field(
        default=30,
        description="Invoices overdue for longer than this get follow-up reminders",
        ge=1,
    )
    follow_up_cooldown_days: int = Field(
        default=14,
        description="Minimum gap between two follow-up reminders for one invoice",
        ge=1,
    )

    # Sweeps
    sweep_chunk_size: int = Field(
        default=100,
        description="Candidate rows read per query during batch sweeps",
        ge=1,
        le=5000,
    )
    page_load_overdue_limit: int = Field(
        default=10,
        description="Max invoices marked overdue during one page load",
        ge=0,
    )
    page_load_reminder_limit: int = Field(
        default=5,
        description="Max due-soon reminders logged during one page load",
        ge=0,
    )
    page_load_recurring_limit: int = Field(
        default=3,
        description="Max recurring invoices generated during one page load",
        ge=0,
    )

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()
