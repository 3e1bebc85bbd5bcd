"""
Request time budgets.

Inbound alert webhooks get their own, usually shorter, budget: when it runs
out the router answers 503 with ``Retry-After`` so the alerting engine
redelivers, and the dedup key makes that redelivery harmless. Every other
HTTP route answers 504. Live WebSocket traffic and health checks carry no
budget.
"""

import asyncio

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

_UNBOUNDED_PREFIXES = ("/health", "/ws/")
_WEBHOOK_PREFIX = "/webhook"


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Bound each request by its route's budget.

    Args:
        timeout_seconds: Budget for management and history routes.
        webhook_timeout_seconds: Budget for ``/webhook`` routes; defaults to
            ``timeout_seconds``.
        retry_after_seconds: ``Retry-After`` sent with a timed-out webhook.
    """

    def __init__(
        self,
        app,
        timeout_seconds: float = 30.0,
        webhook_timeout_seconds: float | None = None,
        retry_after_seconds: int = 5,
    ):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.webhook_timeout_seconds = webhook_timeout_seconds or timeout_seconds
        self.retry_after_seconds = retry_after_seconds

    def budget_for(self, request: Request) -> float | None:
        """Seconds allowed for ``request``; None when it is not bounded."""
        path = request.url.path
        if request.headers.get("upgrade", "").lower() == "websocket" or path.startswith(
            _UNBOUNDED_PREFIXES
        ):
            return None
        if path.startswith(_WEBHOOK_PREFIX):
            return self.webhook_timeout_seconds
        return self.timeout_seconds

    async def dispatch(self, request: Request, call_next):
        budget = self.budget_for(request)
        if budget is None:
            return await call_next(request)

        try:
            async with asyncio.timeout(budget):
                return await call_next(request)
        except TimeoutError:
            is_webhook = request.url.path.startswith(_WEBHOOK_PREFIX)
            logger.warning(
                "Request exceeded its budget",
                path=request.url.path,
                method=request.method,
                budget_seconds=budget,
                webhook=is_webhook,
            )
            body = {
                "detail": f"Request not completed within {budget:g}s",
                "error_type": "timeout",
                "timeout_seconds": budget,
            }
            if is_webhook:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content=body,
                    headers={"Retry-After": str(self.retry_after_seconds)},
                )
            return JSONResponse(status_code=status.HTTP_504_GATEWAY_TIMEOUT, content=body)
