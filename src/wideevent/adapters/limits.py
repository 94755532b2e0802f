"""HTTP client for the external account-limits service."""

import logging
import math
from typing import Any
from urllib.parse import quote

import httpx

from wideevent.core.errors import DependencyError
from wideevent.core.models import AccountLimits

logger = logging.getLogger(__name__)


def parse_limits(document: Any) -> AccountLimits:
    """Read ``{"limits": {"eventsPerMonth": n}}``; anything else means no limit set."""
    if not isinstance(document, dict):
        return AccountLimits()
    limits = document.get("limits")
    if not isinstance(limits, dict):
        return AccountLimits()
    value = limits.get("eventsPerMonth")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return AccountLimits()
    if not math.isfinite(value):
        return AccountLimits()
    return AccountLimits(events_per_month=int(value))


class HttpAccountLimits:
    """AccountLimitsPort implementation over ``GET {base_url}/users/{account_id}``.

    Args:
        base_url: Service base URL.
        secret: Server key sent in the ``Authorization`` header.
        timeout: Request timeout in seconds.
        client: Optional preconfigured client (tests inject a mock transport).
    """

    def __init__(
        self,
        base_url: str,
        secret: str | None = None,
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._headers = {"Authorization": f"Bearer {secret}"} if secret else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_limits(self, account_id: str) -> AccountLimits:
        """Fetch the account's limits. Unknown accounts get no explicit limit.

        Raises:
            DependencyError: On transport failure, non-2xx status or bad JSON.
        """
        path = f"/users/{quote(account_id, safe='')}"
        try:
            response = await self._client.get(path, headers=self._headers)
        except httpx.HTTPError as exc:
            raise DependencyError(f"Limits service unreachable: {exc}") from exc
        if response.status_code == 404:
            logger.debug("Account %s unknown to limits service", account_id)
            return AccountLimits()
        if not response.is_success:
            raise DependencyError(f"Limits service returned {response.status_code}")
        try:
            document = response.json()
        except ValueError as exc:
            raise DependencyError("Limits service returned invalid JSON") from exc
        return parse_limits(document)
