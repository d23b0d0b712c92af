"""
HTTP client for the post-checkout flow: poll subscription status with the
caller's bearer token and fall back to manual activation.
"""

import logging
from typing import Optional

import httpx

from services.reconciliation_poller import PollResult, ReconciliationPoller
from services.subscription_ledger import SubscriptionStatus
from utils.errors import (
    ForbiddenError,
    InternalFailureError,
    RateLimitedError,
    ServiceError,
    UnauthorizedError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: UserNotFoundError,
    429: RateLimitedError,
    500: InternalFailureError,
}


class SubscriptionClient:
    """
    Thin async client over /api/subscription.

    Pass an existing httpx.AsyncClient (e.g. one bound to an ASGI app) or a
    base_url to have one created.
    """

    def __init__(self, token: str, base_url: Optional[str] = None,
                 http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        if http_client is None and not base_url:
            raise ValueError("Either base_url or http_client is required")
        self.token = token
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http.aclose()

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None
        error_cls = _ERRORS_BY_STATUS.get(response.status_code, ServiceError)
        raise error_cls(detail or f"Request failed with status {response.status_code}")

    async def get_status(self) -> SubscriptionStatus:
        response = await self.http.get("/api/subscription/status", headers=self._headers)
        self._raise_for_status(response)
        return SubscriptionStatus(**response.json()["data"])

    async def manual_activate(self) -> SubscriptionStatus:
        response = await self.http.post("/api/subscription/manual-activate", headers=self._headers)
        self._raise_for_status(response)
        return SubscriptionStatus(**response.json()["data"])

    async def reconcile_after_checkout(self, interval_seconds: Optional[float] = None,
                                       max_attempts: Optional[int] = None,
                                       fallback_to_manual: bool = True) -> PollResult:
        """
        Poll until the subscription shows up; if it never does and
        fallback_to_manual is set, request manual activation once.
        """
        poller = ReconciliationPoller(
            self.get_status,
            interval_seconds=interval_seconds,
            max_attempts=max_attempts,
            on_exhausted=self.manual_activate if fallback_to_manual else None,
        )
        result = await poller.run()
        logger.info(f"Post-checkout reconciliation finished: {result.outcome.value} after {result.attempts} attempts")
        return result
