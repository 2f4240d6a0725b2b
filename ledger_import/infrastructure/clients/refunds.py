"""Refund matcher HTTP client: links credit rows to the purchases they refund"""

import httpx
from typing import Dict, List
from ledger_import.domain.models import IncomeRow, RefundMatch
from ledger_import.domain.exceptions import RefundMatcherError
from ledger_import.config import settings


class RefundMatcherClient:
    """Client for the external refund matching service"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.refund_matcher_url
        self.timeout = timeout or settings.http_timeout_seconds

    async def match_refunds(
        self,
        user_id: str,
        account_id: int,
        rows: List[IncomeRow],
    ) -> Dict[int, RefundMatch]:
        """
        Ask the matcher which purchases the income rows refund.

        Returns:
            Mapping of row_index -> RefundMatch; rows without a candidate are absent

        Raises:
            RefundMatcherError: On timeout, HTTP errors, or invalid response
        """
        if not rows:
            return {}

        payload = {
            "user_id": user_id,
            "account_id": account_id,
            "rows": [
                {
                    "row_index": item.row.row_index,
                    "description": item.row.description,
                    "amount_cents": item.row.amount_cents,
                    "date": item.row.date.isoformat(),
                }
                for item in rows
            ],
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(f"{self.base_url}/refunds/match", json=payload)
                response.raise_for_status()
                data = response.json()

                matches = [
                    RefundMatch(
                        row_index=int(match["row_index"]),
                        matched_purchase_id=int(match["matched_purchase_id"]),
                        match_confidence=match["match_confidence"],
                    )
                    for match in data.get("matches", [])
                    if match.get("matched_purchase_id") is not None
                ]
                return {match.row_index: match for match in matches}

            except httpx.TimeoutException as e:
                raise RefundMatcherError(f"Refund matcher timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise RefundMatcherError(f"Refund matcher error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise RefundMatcherError(f"Refund matcher unreachable: {e}") from e
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise RefundMatcherError(f"Invalid refund match data: {e}") from e
