"""Request-scoped middleware for the billing web app."""

import logging
from uuid import UUID

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from utils.user_context import peek_current_user_id

logger = logging.getLogger(__name__)


class AutomationMiddleware(BaseHTTPMiddleware):
    """
    Runs the bounded page-load sweep for the signed-in owner on GET requests.

    The owner comes from request.state.user_id (set by the auth layer) or
    the current user context. The sweep result is left on
    request.state.automation for the page to show; a failing sweep is
    logged and the request carries on.
    """

    def __init__(self, app, automation, exclude_prefixes: tuple[str, ...] = ("/static", "/health")):
        super().__init__(app)
        self.automation = automation
        self.exclude_prefixes = exclude_prefixes

    def _user_id(self, request: Request) -> UUID | None:
        user_id = getattr(request.state, "user_id", None)
        if user_id is None:
            return peek_current_user_id()
        return user_id if isinstance(user_id, UUID) else UUID(str(user_id))

    async def dispatch(self, request: Request, call_next):
        request.state.automation = None

        if request.method == "GET" and not request.url.path.startswith(self.exclude_prefixes):
            user_id = self._user_id(request)
            if user_id is not None:
                try:
                    request.state.automation = await run_in_threadpool(
                        self.automation.run_on_page_load, user_id
                    )
                except Exception:
                    logger.exception(f"Page-load automation failed for user {user_id}")

        return await call_next(request)
