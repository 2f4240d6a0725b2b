"""View invalidation webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from typing import List
from ledger_import.config import settings
from ledger_import.infrastructure.observability.metrics import (
    view_invalidation_latency_histogram,
    view_invalidation_failure_counter,
)

# Screens whose cached data depends on imported entries
EXPENSE_VIEWS = ["/expenses", "/dashboard", "/faturas", "/settings/accounts"]
INCOME_VIEWS = ["/income"]


def stale_views_for(imported_expenses: int, imported_income: int) -> List[str]:
    """Views a finished import made stale"""
    views: List[str] = []
    if imported_expenses or imported_income:
        views.extend(EXPENSE_VIEWS)
    if imported_income:
        views.extend(INCOME_VIEWS)
    return views


class ViewInvalidationClient:
    """Tells downstream caches which views are stale after an import"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.view_invalidation_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def send_stale_views(self, user_id: str, views: List[str]) -> None:
        """
        Post the stale view list, retrying on failure.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on 5xx errors and network failures
        - Logs a warning after max_retries and returns
        """
        if not views:
            return

        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with view_invalidation_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json={"event": "VIEWS_STALE", "user_id": user_id, "views": views},
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    view_invalidation_failure_counter.inc()

                    if attempt >= self.max_retries:
                        logging.warning(
                            f"View invalidation gave up after {attempt} attempts: {e}",
                            extra={"user_id": user_id},
                        )
                        return

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
