"""
ePayco and Wompi payment confirmation webhooks.
"""

import json
import time
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.models.database import get_db
from commerce_hooks.models.entities import Organization, PaymentGatewayConfig
from commerce_hooks.models.schemas import EpaycoWebhookPayload, WompiWebhookPayload
from commerce_hooks.services.encryption_service import decrypt_optional
from commerce_hooks.services.payment_service import (
    PaymentEvent,
    map_epayco_response_code,
    map_wompi_status,
    pesos_to_cents,
    validate_epayco_signature,
    validate_wompi_signature,
)
from commerce_hooks.services.webhook_service import log_webhook, reconcile_payment_event

router = APIRouter(prefix="/api/webhooks/payments", tags=["payment-webhooks"])


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": detail})


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def _load_org_and_config(db: AsyncSession, slug: str, provider: str):
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    org = result.scalar_one_or_none()
    if org is None:
        return None, None

    result = await db.execute(
        select(PaymentGatewayConfig)
        .where(PaymentGatewayConfig.organization_id == org.id)
        .where(PaymentGatewayConfig.provider == provider)
        .limit(1)
    )
    return org, result.scalar_one_or_none()


async def _read_epayco_payload(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {key: str(value) for key, value in form.items()}
    return await request.json()


async def _process(
    db: AsyncSession,
    provider: str,
    org: Organization,
    event: PaymentEvent,
    payload: dict,
    start: float,
) -> JSONResponse:
    outcome = await reconcile_payment_event(db, org.id, event)

    if outcome.duplicate:
        log_webhook(db, org.id, provider, "duplicate", payload, {
            "message": "Duplicate webhook, no action taken",
            "transactionId": outcome.transaction_id,
        })
        return JSONResponse({"received": True, "duplicate": True})

    response = {
        "transactionId": outcome.transaction_id,
        "orderId": outcome.order_id,
        "status": outcome.status,
        "processingTime": _elapsed_ms(start),
    }
    if outcome.created:
        response["note"] = "New transaction created from webhook"
    log_webhook(db, org.id, provider, "success", payload, response)
    return JSONResponse({"received": True})


async def _fail(db: AsyncSession, provider: str, label: str, exc: Exception, start: float) -> JSONResponse:
    logger.exception(f"[{label} Webhook] Error: {exc}")
    await db.rollback()
    log_webhook(db, None, provider, "error", None, {
        "error": str(exc) or type(exc).__name__,
        "processingTime": _elapsed_ms(start),
    })
    return _error(500, "Internal server error")


@router.post("/epayco")
async def epayco_webhook(request: Request, org: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    start = time.perf_counter()
    try:
        if not org:
            log_webhook(db, None, "epayco", "error", None, {"error": "Missing org parameter"})
            return _error(400, "Missing org parameter")

        try:
            raw = await _read_epayco_payload(request)
            payload = EpaycoWebhookPayload.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            logger.warning(f"[ePayco Webhook] Unreadable payload: {exc}")
            log_webhook(db, None, "epayco", "error", None, {"error": "Invalid payload"})
            return _error(400, "Invalid payload")

        organization, config = await _load_org_and_config(db, org, "epayco")
        if organization is None:
            log_webhook(db, None, "epayco", "error", raw, {"error": "Organization not found"})
            return _error(404, "Organization not found")
        if config is None:
            log_webhook(db, organization.id, "epayco", "error", raw, {"error": "Payment gateway not configured"})
            return _error(400, "Payment gateway not configured")

        customer_id = decrypt_optional(config.integrity_secret_encrypted)
        p_key = decrypt_optional(config.encryption_key_encrypted)
        if not validate_epayco_signature(payload.model_dump(), customer_id, p_key):
            logger.error("[ePayco Webhook] Invalid signature")
            log_webhook(db, organization.id, "epayco", "error", raw, {"error": "Invalid signature"})
            return _error(401, "Invalid signature")

        event = PaymentEvent(
            provider="epayco",
            transaction_id=payload.x_ref_payco,
            reference=payload.x_id_invoice or payload.x_extra1 or "",
            status=map_epayco_response_code(payload.x_cod_response),
            amount_cents=pesos_to_cents(payload.x_amount),
            currency=payload.x_currency_code,
            payment_method=payload.x_franchise.lower() or "card",
            raw=raw,
        )
        return await _process(db, "epayco", organization, event, raw, start)
    except Exception as exc:
        return await _fail(db, "epayco", "ePayco", exc, start)


@router.post("/wompi")
async def wompi_webhook(request: Request, org: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    start = time.perf_counter()
    try:
        if not org:
            log_webhook(db, None, "wompi", "error", None, {"error": "Missing org parameter"})
            return _error(400, "Missing org parameter")

        try:
            raw = json.loads(await request.body())
            payload = WompiWebhookPayload.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            logger.warning(f"[Wompi Webhook] Unreadable payload: {exc}")
            log_webhook(db, None, "wompi", "error", None, {"error": "Invalid payload"})
            return _error(400, "Invalid payload")

        organization, config = await _load_org_and_config(db, org, "wompi")
        if organization is None:
            log_webhook(db, None, "wompi", "error", raw, {"error": "Organization not found"})
            return _error(404, "Organization not found")
        if config is None:
            log_webhook(db, organization.id, "wompi", "error", raw, {"error": "Payment gateway not configured"})
            return _error(400, "Payment gateway not configured")

        # Tenants without an integrity secret are accepted unsigned
        if config.integrity_secret_encrypted:
            integrity_secret = decrypt_optional(config.integrity_secret_encrypted)
            if not validate_wompi_signature(raw, integrity_secret):
                logger.error("[Wompi Webhook] Invalid signature")
                log_webhook(db, organization.id, "wompi", "error", raw, {"error": "Invalid signature"})
                return _error(401, "Invalid signature")

        tx = payload.data.transaction
        event = PaymentEvent(
            provider="wompi",
            transaction_id=tx.id,
            reference=tx.reference,
            status=map_wompi_status(tx.status),
            amount_cents=tx.amount_in_cents,
            currency=tx.currency,
            payment_method=(tx.payment_method_type or "").lower() or None,
            raw=raw.get("data", {}),
        )
        return await _process(db, "wompi", organization, event, raw, start)
    except Exception as exc:
        return await _fail(db, "wompi", "Wompi", exc, start)
