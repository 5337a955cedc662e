"""
Inbound WhatsApp conversation handling shared by the Evolution and Meta webhooks.
"""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commerce_hooks.config import settings
from commerce_hooks.models.entities import (
    Chat,
    Customer,
    Message,
    Organization,
    Subscription,
    WhatsAppInstance,
)
from commerce_hooks.services.agent_service import process_incoming_message
from commerce_hooks.services.notification_service import send_new_conversation_notification

DEFAULT_LIMIT_NO_SUBSCRIPTION = 1000
DEFAULT_LIMIT_FREE_PLAN = 10
UNLIMITED = -1

CONNECTION_STATES = {
    "open": "connected",
    "close": "disconnected",
    "closed": "disconnected",
    "connecting": "connecting",
}


def normalize_jid(remote_jid: str) -> str:
    return remote_jid.replace("@s.whatsapp.net", "")


def map_connection_state(state: str) -> str:
    return CONNECTION_STATES.get(state.lower(), "disconnected")


def extract_connection_state(data: dict) -> Optional[str]:
    """Evolution v2 reports the state under several keys depending on version."""
    if isinstance(data.get("state"), str):
        return data["state"]
    if isinstance(data.get("status"), str):
        return data["status"]
    connection = data.get("connection")
    if isinstance(connection, dict) and isinstance(connection.get("state"), str):
        return connection["state"]
    return None


async def update_connection_state(db: AsyncSession, instance: WhatsAppInstance, state: str) -> str:
    new_status = map_connection_state(state)
    now = datetime.utcnow()
    instance.status = new_status
    instance.connected_at = now if new_status == "connected" else None
    instance.updated_at = now
    await db.flush()
    logger.info(f"[WhatsApp Webhook] Instance {instance.instance_name} -> {new_status}")
    return new_status


async def find_or_create_customer(
    db: AsyncSession, organization_id: str, phone_number: str, push_name: Optional[str] = None
) -> Customer:
    result = await db.execute(
        select(Customer)
        .where(Customer.organization_id == organization_id)
        .where(Customer.phone == phone_number)
        .limit(1)
    )
    customer = result.scalar_one_or_none()

    if customer is not None:
        if push_name and not customer.full_name:
            customer.full_name = push_name
            await db.flush()
        return customer

    customer = Customer(
        organization_id=organization_id,
        phone=phone_number,
        full_name=push_name or f"WhatsApp {phone_number[-4:]}",
        source="whatsapp",
    )
    db.add(customer)
    await db.flush()
    return customer


async def check_conversation_limit(db: AsyncSession, organization_id: str) -> bool:
    org = await db.get(Organization, organization_id)
    if org is None:
        logger.error(f"[WhatsApp Webhook] Organization {organization_id} not found")
        return False

    result = await db.execute(
        select(Subscription)
        .options(selectinload(Subscription.plan))
        .where(Subscription.organization_id == organization_id)
        .where(Subscription.status == "active")
        .limit(1)
    )
    subscription = result.scalar_one_or_none()

    if subscription is not None and subscription.plan is not None:
        limit = subscription.plan.max_whatsapp_conversations or DEFAULT_LIMIT_FREE_PLAN
    else:
        limit = DEFAULT_LIMIT_NO_SUBSCRIPTION

    if limit == UNLIMITED:
        return True

    used = org.whatsapp_conversations_used or 0
    logger.debug(f"[WhatsApp Webhook] Conversation limit: used={used}, limit={limit}")
    return used < limit


async def increment_conversation_count(db: AsyncSession, organization_id: str) -> None:
    await db.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(whatsapp_conversations_used=Organization.whatsapp_conversations_used + 1)
        .execution_options(synchronize_session="fetch")
    )


async def find_or_create_chat(
    db: AsyncSession, organization_id: str, customer_id: str, phone_number: str
) -> tuple[Chat, bool]:
    """Reuse the customer's latest WhatsApp chat inside the reuse window. Returns (chat, created)."""
    now = datetime.utcnow()
    window_start = now - timedelta(hours=settings.CHAT_REUSE_WINDOW_HOURS)

    result = await db.execute(
        select(Chat)
        .where(Chat.organization_id == organization_id)
        .where(Chat.customer_id == customer_id)
        .where(Chat.channel == "whatsapp")
        .where(Chat.updated_at >= window_start)
        .order_by(Chat.updated_at.desc())
        .limit(1)
    )
    chat = result.scalar_one_or_none()

    if chat is not None:
        chat.updated_at = now
        await db.flush()
        return chat, False

    chat = Chat(
        organization_id=organization_id,
        customer_id=customer_id,
        channel="whatsapp",
        whatsapp_chat_id=phone_number,
        phone_number=phone_number,
        status="active",
    )
    db.add(chat)
    await db.flush()
    await increment_conversation_count(db, organization_id)
    return chat, True


async def handle_inbound_message(
    db: AsyncSession,
    organization_id: str,
    phone_number: str,
    text: str,
    push_name: Optional[str],
    metadata: dict,
) -> Optional[dict]:
    """
    Store an inbound customer message and hand it to the chat agent.

    Returns the agent result, or None when the organization is over its
    conversation limit.
    """
    logger.info(f"[WhatsApp Webhook] Message from {phone_number}: {text[:50]}")

    customer = await find_or_create_customer(db, organization_id, phone_number, push_name)

    if not await check_conversation_limit(db, organization_id):
        logger.warning(f"[WhatsApp Webhook] Organization {organization_id} reached conversation limit")
        return None

    chat, created = await find_or_create_chat(db, organization_id, customer.id, phone_number)
    if created:
        await send_new_conversation_notification(
            db, organization_id, customer.full_name or "Cliente", phone=phone_number
        )

    db.add(Message(chat_id=chat.id, role="user", content=text, meta=metadata))
    await db.flush()

    result = await process_incoming_message(db, chat.id, text, metadata)
    if result["success"]:
        logger.info(f"[WhatsApp Webhook] AI response sent for chat {chat.id}")
    else:
        logger.error(f"[WhatsApp Webhook] AI processing failed for chat {chat.id}: {result.get('error')}")
    return result
