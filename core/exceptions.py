"""
Domain errors for billing operations.

Validation failures subclass ValueError so callers that already catch
ValueError (for "not found" and friends) keep working.
"""


class InvalidTransitionError(ValueError):
    """Invoice or recurring template cannot move from its current status to the requested one."""

    def __init__(self, entity: str, entity_id, current, target):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            f"{entity} {entity_id} cannot transition from "
            f"{getattr(current, 'value', current)} to {getattr(target, 'value', target)}"
        )


class InvoiceNotEditableError(ValueError):
    """Invoice content can only change while it is a draft."""

    def __init__(self, invoice_id, status):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(
            f"Invoice {invoice_id} is {getattr(status, 'value', status)} and can no longer be edited"
        )


class PaymentExceedsBalanceError(ValueError):
    """Payment amount is larger than what is still owed on the invoice."""

    def __init__(self, invoice_id, amount, remaining):
        self.invoice_id = invoice_id
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Payment of {amount} exceeds remaining balance {remaining} on invoice {invoice_id}"
        )


class RateUnavailableError(Exception):
    """No exchange rate could be resolved from cache, storage or the provider."""

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"No exchange rate available for {from_currency} -> {to_currency}")
