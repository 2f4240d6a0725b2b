"""POST /v1/imports - reconcile a parsed bank/credit-card statement into the ledger"""

import time
import logging
from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Request
from sqlalchemy.orm import Session

from ledger_import.api.v1.schemas import ImportRequestSchema, ImportResponse
from ledger_import.api.dependencies import get_refund_matcher, get_request_id, get_view_invalidation_client
from ledger_import.infrastructure.database.session import get_db
from ledger_import.infrastructure.clients.refunds import RefundMatcherClient
from ledger_import.infrastructure.clients.invalidation import ViewInvalidationClient
from ledger_import.importer import import_statement
from ledger_import.domain.exceptions import (
    AccountNotFoundError,
    CategoryNotFoundError,
    ImportCommitError,
    ImportValidationError,
)
from ledger_import.infrastructure.observability.metrics import record_import, record_import_failure
from ledger_import.infrastructure.observability.logging import log_import

router = APIRouter()


@router.post("/imports", response_model=ImportResponse)
async def create_import(
    request_body: ImportRequestSchema,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    refund_matcher: RefundMatcherClient = Depends(get_refund_matcher),
    view_invalidation: ViewInvalidationClient = Depends(get_view_invalidation_client),
):
    """
    Import statement rows for one account.

    The caller has already parsed the file and checked the user's import quota.
    The batch is either fully applied or not at all; re-submitting the same
    rows is safe (rows with known external ids are skipped).
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = await import_statement(db, request_body.to_domain(), refund_matcher)

    except (AccountNotFoundError, CategoryNotFoundError) as e:
        record_import_failure(rejected=True)
        logging.warning(f"Import rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=404, detail=str(e))

    except ImportValidationError as e:
        record_import_failure(rejected=True)
        logging.warning(f"Import rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    except ImportCommitError as e:
        record_import_failure(rejected=False)
        logging.error(f"Import failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=str(e))

    if result.stale_views:
        background_tasks.add_task(
            view_invalidation.send_stale_views,
            request_body.user_id,
            result.stale_views,
        )

    duration_ms = (time.time() - start_time) * 1000
    record_import(result.imported_expenses, result.imported_income, result.skipped_duplicates)
    log_import(
        request_id,
        request_body.user_id,
        request_body.account_id,
        result.imported_expenses,
        result.imported_income,
        result.skipped_duplicates,
        duration_ms,
    )

    return ImportResponse(
        imported_expenses=result.imported_expenses,
        imported_income=result.imported_income,
        skipped_duplicates=result.skipped_duplicates,
        affected_months=result.affected_months,
        stale_views=result.stale_views,
    )
