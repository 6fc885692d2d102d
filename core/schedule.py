"""
Recurring schedule arithmetic.

Periods are whole calendar months. When the target month is shorter than
the anchor's day-of-month, the date clamps to the target month's last day.
The next period is always counted from the last run, so a clamp carries
forward: Jan 31 -> Feb 28 -> Mar 28.
"""

import calendar
from datetime import date

from core.models.recurring_invoice import RecurringFrequency, RecurringStatus


def add_months(anchor: date, months: int) -> date:
    """Add calendar months to a date, clamping to the end of the target month."""
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor.day, last_day))


def calculate_next_run(frequency: RecurringFrequency | str, anchor: date) -> date:
    """
    Next run date one frequency period after anchor.

    Args:
        frequency: monthly, quarterly or yearly
        anchor: Last run date, or start date if the template never ran

    Returns:
        The clamped date one period later
    """
    return add_months(anchor, RecurringFrequency(frequency).months)


def should_generate(status: RecurringStatus | str, next_run_date: date, today: date) -> bool:
    """A template generates when it is active and its next run is today or earlier."""
    return RecurringStatus(status) == RecurringStatus.ACTIVE and next_run_date <= today
