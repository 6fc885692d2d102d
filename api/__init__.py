"""HTTP integration for the billing web app."""

from api.middleware import AutomationMiddleware

__all__ = ["AutomationMiddleware"]
