"""
WhatsApp webhooks: Evolution API events and Meta Cloud API notifications.
"""

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.integrations.whatsapp import get_evolution_config, get_meta_config
from commerce_hooks.models.database import get_db
from commerce_hooks.models.entities import WhatsAppInstance
from commerce_hooks.models.schemas import EvolutionIncomingMessage, EvolutionWebhookEnvelope
from commerce_hooks.services.conversation_service import (
    extract_connection_state,
    handle_inbound_message,
    normalize_jid,
    update_connection_state,
)
from commerce_hooks.services.message_parser import evolution_text, meta_text
from commerce_hooks.services.payment_service import verify_evolution_signature, verify_meta_signature
from commerce_hooks.services.webhook_service import log_webhook

router = APIRouter(prefix="/api/webhooks", tags=["whatsapp-webhooks"])

SIGNATURE_HEADER = "x-hub-signature-256"


# ── Evolution API ────────────────────────────────────────
@router.get("/whatsapp")
async def evolution_health():
    return {"status": "ok", "service": "whatsapp-webhook"}


@router.post("/whatsapp")
async def evolution_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        raw_body = await request.body()
        try:
            body = json.loads(raw_body)
            envelope = EvolutionWebhookEnvelope.model_validate(body)
        except (ValueError, ValidationError):
            return JSONResponse(status_code=400, content={"error": "Invalid payload"})

        if not envelope.event or not envelope.instance:
            return JSONResponse(status_code=400, content={"error": "Invalid payload"})

        config = await get_evolution_config(db)
        secret = (config or {}).get("webhookSecret")
        if secret and not verify_evolution_signature(raw_body, request.headers.get(SIGNATURE_HEADER), secret):
            logger.error("[WhatsApp Webhook] Invalid signature")
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

        event = envelope.event
        instance_name = envelope.instance
        data = envelope.data if isinstance(envelope.data, dict) and envelope.data else body
        logger.info(f"[WhatsApp Webhook] Event: {event}, Instance: {instance_name}")

        result = await db.execute(
            select(WhatsAppInstance).where(WhatsAppInstance.instance_name == instance_name)
        )
        instance = result.scalar_one_or_none()
        if instance is None:
            logger.error(f"[WhatsApp Webhook] Instance not found: {instance_name}")
            # 200 so Evolution does not retry
            return {"received": True, "warning": "Instance not found"}

        if event == "messages.upsert":
            await _handle_evolution_message(db, instance, data)
        elif event == "connection.update":
            state = extract_connection_state(data)
            if state is None:
                logger.error("[WhatsApp Webhook] Could not extract state from connection update")
            else:
                await update_connection_state(db, instance, state)
        elif event == "qrcode.updated":
            logger.info(f"[WhatsApp Webhook] QR updated for {instance_name}")
        else:
            logger.info(f"[WhatsApp Webhook] Unhandled event: {event}")

        return {"received": True}
    except Exception as exc:
        logger.exception(f"[WhatsApp Webhook] Error: {exc}")
        await db.rollback()
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def _handle_evolution_message(db: AsyncSession, instance: WhatsAppInstance, data: dict) -> None:
    try:
        message = EvolutionIncomingMessage.model_validate(data)
    except ValidationError as exc:
        logger.error(f"[WhatsApp Webhook] Invalid message format: {exc}")
        return

    if message.key.fromMe:
        return

    text = evolution_text(message)
    if not text:
        logger.info("[WhatsApp Webhook] Message without text, skipping")
        return

    phone_number = normalize_jid(message.key.remoteJid)
    await handle_inbound_message(
        db,
        instance.organization_id,
        phone_number,
        text,
        message.pushName,
        {
            "whatsapp_message_id": message.key.id,
            "phone_number": phone_number,
            "push_name": message.pushName,
            "provider": "evolution",
        },
    )


# ── Meta Cloud API ───────────────────────────────────────
@router.get("/whatsapp-meta")
async def meta_verify(request: Request, db: AsyncSession = Depends(get_db)):
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge")

    logger.info(f"[Meta Webhook] Verification request mode={mode}")

    if mode != "subscribe" or not token or not challenge:
        return PlainTextResponse("Missing parameters", status_code=400)

    config = await get_meta_config(db)
    if config is None:
        logger.error("[Meta Webhook] Meta WhatsApp config not found in system_settings")
        return PlainTextResponse("Not configured", status_code=500)

    if token != config["verify_token"]:
        logger.error("[Meta Webhook] Invalid verify token")
        return PlainTextResponse("Invalid verify token", status_code=403)

    logger.info("[Meta Webhook] Verification successful")
    return PlainTextResponse(challenge)


@router.post("/whatsapp-meta")
async def meta_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    # Meta retries anything that is not a fast 200, so errors are only logged
    try:
        raw_body = await request.body()

        config = await get_meta_config(db)
        if config is None:
            logger.error("[Meta Webhook] Meta WhatsApp config not found")
            return {"received": True}

        signature = request.headers.get(SIGNATURE_HEADER)
        if signature:
            if not verify_meta_signature(raw_body, signature, config["app_secret"]):
                logger.error("[Meta Webhook] Invalid signature")
                return JSONResponse(status_code=401, content={"error": "Invalid signature"})
        else:
            logger.warning("[Meta Webhook] No signature header received")

        body = json.loads(raw_body)

        if body.get("object") == "whatsapp_business_account":
            await _handle_meta_whatsapp(db, body)
        else:
            logger.info(f"[Meta Webhook] Ignoring unknown object type: {body.get('object')}")

        return {"received": True}
    except Exception as exc:
        logger.exception(f"[Meta Webhook] Unhandled error: {exc}")
        await db.rollback()
        return {"received": True}


async def _handle_meta_whatsapp(db: AsyncSession, body: dict) -> None:
    for entry in body.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue

            value = change.get("value") or {}
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id")

            audit = log_webhook(
                db, None, "whatsapp-meta", "processing", body,
                event_type="messages", instance_name=phone_number_id,
            )

            result = await db.execute(
                select(WhatsAppInstance)
                .where(WhatsAppInstance.meta_phone_number_id == phone_number_id)
                .where(WhatsAppInstance.provider == "meta")
                .limit(1)
            )
            instance = result.scalar_one_or_none()
            if instance is None:
                logger.error(f"[Meta Webhook] No instance found for phone_number_id {phone_number_id}")
                _finish_audit(audit, "warning", "Instance not found")
                continue

            if audit is not None:
                audit.organization_id = instance.organization_id

            status, error_message = "success", None
            try:
                contact_name = ((value.get("contacts") or [{}])[0].get("profile") or {}).get("name")
                for message in value.get("messages") or []:
                    await _handle_meta_message(db, instance.organization_id, message, contact_name)

                _log_statuses(value.get("statuses") or [])

                errors = value.get("errors") or []
                if errors:
                    for error in errors:
                        logger.error(
                            f"[Meta Webhook] Error from Meta {error.get('code')}: "
                            f"{error.get('title')} {error.get('message', '')}"
                        )
                    status = "warning"
                    error_message = ", ".join(f"{e.get('code')}: {e.get('title')}" for e in errors)
            except Exception as exc:
                logger.error(f"[Meta Webhook] Processing error: {exc}")
                status, error_message = "error", str(exc)

            _finish_audit(audit, status, error_message)


def _finish_audit(audit, status: str, error_message=None) -> None:
    if audit is not None:
        audit.status = status
        audit.error_message = error_message


def _log_statuses(statuses: list) -> None:
    for status in statuses:
        logger.debug(
            f"[Meta Webhook] Message status {status.get('id')} -> {status.get('status')} "
            f"(recipient {status.get('recipient_id')})"
        )
        if status.get("status") == "failed":
            for error in status.get("errors") or []:
                logger.error(
                    f"[Meta Webhook] Message delivery failed {error.get('code')}: {error.get('title')}"
                )


async def _handle_meta_message(db: AsyncSession, organization_id: str, message: dict, contact_name) -> None:
    text = meta_text(message)
    if text is None:
        logger.debug(f"[Meta Webhook] Reaction received on {message.get('id')}")
        return
    if not text:
        logger.debug("[Meta Webhook] Message without extractable text, skipping")
        return

    phone_number = message.get("from", "")
    await handle_inbound_message(
        db,
        organization_id,
        phone_number,
        text,
        contact_name,
        {
            "whatsapp_message_id": message.get("id"),
            "phone_number": phone_number,
            "push_name": contact_name,
            "message_type": message.get("type"),
            "provider": "meta",
        },
    )
