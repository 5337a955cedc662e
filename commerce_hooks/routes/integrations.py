"""
Tenant integration endpoints: Nuby property sync and payment pull-verification.
"""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.integrations.payment_gateways import GatewayError, create_payment_gateway
from commerce_hooks.middleware.rate_limit import limiter
from commerce_hooks.models.database import get_db
from commerce_hooks.models.entities import PaymentGatewayConfig, User
from commerce_hooks.models.schemas import IntegrationStatusResponse, NubySyncRequest, SyncResultResponse
from commerce_hooks.services.auth_service import require_organization
from commerce_hooks.services.nuby_sync import get_last_sync_status, sync_nuby_properties
from commerce_hooks.services.webhook_service import log_webhook, reconcile_payment_event

router = APIRouter(prefix="/api", tags=["integrations"])


# ── Nuby ─────────────────────────────────────────────────
@router.post("/integrations/nuby/sync", response_model=SyncResultResponse)
@limiter.limit("5/minute")
async def nuby_sync(
    request: Request,
    req: NubySyncRequest,
    user: User = Depends(require_organization),
    db: AsyncSession = Depends(get_db),
):
    result = await sync_nuby_properties(db, user.organization_id, req.sync_type)
    return SyncResultResponse(**result.__dict__)


@router.get("/integrations/nuby/status", response_model=IntegrationStatusResponse)
async def nuby_status(user: User = Depends(require_organization), db: AsyncSession = Depends(get_db)):
    return await get_last_sync_status(db, user.organization_id)


# ── Payments ─────────────────────────────────────────────
@router.post("/payments/{provider}/verify/{reference}")
async def verify_payment(
    provider: Literal["epayco", "wompi"],
    reference: str,
    user: User = Depends(require_organization),
    db: AsyncSession = Depends(get_db),
):
    """Pull a transaction from the gateway and reconcile it as if its webhook had arrived."""
    result = await db.execute(
        select(PaymentGatewayConfig)
        .where(PaymentGatewayConfig.organization_id == user.organization_id)
        .where(PaymentGatewayConfig.provider == provider)
        .limit(1)
    )
    config = result.scalar_one_or_none()
    if config is None:
        raise HTTPException(status_code=400, detail="Payment gateway not configured")

    try:
        gateway = create_payment_gateway(config)
        details = await gateway.get_transaction_by_reference(reference)
    except GatewayError as exc:
        logger.warning(f"[Payments] Verification of {reference} via {provider} failed: {exc}")
        raise HTTPException(status_code=exc.status_code if exc.status_code == 404 else 502, detail=str(exc))

    outcome = await reconcile_payment_event(db, user.organization_id, details.to_event(provider))
    log_webhook(
        db, user.organization_id, provider, "duplicate" if outcome.duplicate else "success",
        details.raw, {"transactionId": outcome.transaction_id, "orderId": outcome.order_id, "source": "verify"},
        event_type="payment.verified",
    )
    return {
        "transaction_id": outcome.transaction_id,
        "order_id": outcome.order_id,
        "status": outcome.status,
        "duplicate": outcome.duplicate,
        "created": outcome.created,
    }
