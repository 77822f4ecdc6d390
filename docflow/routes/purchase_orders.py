from fastapi import APIRouter, Depends

from docflow.database import TransactionRunner, get_transaction_runner
from docflow.middleware.tenant import get_tenant_context
from docflow.schemas.document import QuantityStatusResponse
from docflow.services.quantity_ledger import get_effective_quantity_status
from docflow.tenancy import TenantContext

router = APIRouter()


@router.get("/{po_id}/quantity-status", response_model=QuantityStatusResponse)
async def quantity_status(
    po_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    run: TransactionRunner = Depends(get_transaction_runner),
):
    """Ordered, received and invoiced quantities per line, with what is still invoiceable."""
    result = await run(get_effective_quantity_status, ctx, po_id)
    return QuantityStatusResponse.model_validate(result)
