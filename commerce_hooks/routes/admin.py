"""
Admin endpoints: webhook audit log.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.models.database import get_db
from commerce_hooks.models.entities import User, WebhookLog
from commerce_hooks.models.schemas import WebhookLogResponse
from commerce_hooks.services.auth_service import require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/webhook-logs", response_model=list[WebhookLogResponse])
async def list_webhook_logs(
    provider: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(WebhookLog).order_by(WebhookLog.created_at.desc()).limit(limit)
    if provider:
        query = query.where(WebhookLog.provider == provider)
    if status:
        query = query.where(WebhookLog.status == status)

    result = await db.execute(query)
    return result.scalars().all()
