"""
Scheduled balance jobs, triggered by an external scheduler through the
internal endpoints below.

Jobs:
  - refresh-overdue: daily, recomputes overdue amounts and flags overdue invoices
  - reconcile-balances: nightly, compares party balances with their obligations

Each company is processed in its own transaction so one failing company does
not hold back the others.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from docflow.config import settings
from docflow.database import TransactionRunner, get_transaction_runner
from docflow.errors import DocflowError
from docflow.gateway import TenantGateway
from docflow.services import reconciliation_service
from docflow.tenancy import TenantContext

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """
    Verify the request comes from the scheduler or another internal service.
    Validates the X-Internal-Secret header against INTERNAL_JOB_SECRET.
    """
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


async def _for_each_company(run: TransactionRunner, job_name: str, job) -> dict:
    contexts = await run(reconciliation_service.company_contexts)
    results, failures = {}, {}
    for ctx in contexts:
        async def work(session: AsyncSession, ctx: TenantContext = ctx):
            return await job(TenantGateway(session, ctx))

        try:
            results[str(ctx.company_id)] = await run(work)
        except DocflowError as exc:
            logger.error(
                f"{job_name}_company_failed",
                tenant_id=str(ctx.tenant_id),
                company_id=str(ctx.company_id),
                error=exc.message,
            )
            failures[str(ctx.company_id)] = exc.to_dict()
    return {"companies": len(contexts), "results": results, "failures": failures}


@router.post("/refresh-overdue")
async def refresh_overdue(
    as_of: Optional[date] = Query(None),
    run: TransactionRunner = Depends(get_transaction_runner),
    _auth: None = Depends(_require_internal_auth),
):
    """Daily: recompute party overdue amounts and mark past-due invoices OVERDUE."""

    async def job(gw: TenantGateway):
        return await reconciliation_service.refresh_overdue_balances(gw, as_of)

    summary = await _for_each_company(run, "overdue_refresh", job)
    logger.info("overdue_refresh_job_complete", companies=summary["companies"], failed=len(summary["failures"]))
    return summary


@router.post("/reconcile-balances")
async def reconcile_balances(
    repair: bool = Query(False),
    run: TransactionRunner = Depends(get_transaction_runner),
    _auth: None = Depends(_require_internal_auth),
):
    """Nightly: report (and optionally repair) parties whose outstanding balance drifted."""

    async def job(gw: TenantGateway):
        report = await reconciliation_service.reconcile_balances(gw, repair=repair)
        return {
            "checked": report.checked,
            "repaired": report.repaired,
            "mismatches": [
                {
                    "party_id": m.party_id,
                    "code": m.code,
                    "recorded": str(m.recorded),
                    "computed": str(m.computed),
                    "difference": str(m.difference),
                }
                for m in report.mismatches
            ],
        }

    summary = await _for_each_company(run, "balance_reconciliation", job)
    logger.info("balance_reconciliation_job_complete", companies=summary["companies"], failed=len(summary["failures"]))
    return summary
