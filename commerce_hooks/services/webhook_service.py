"""
Payment webhook reconciliation and webhook audit logging.

A provider event is matched to a stored transaction first by the provider
transaction id, then by our own reference; only when both miss is a new
transaction created. Re-delivery of an event whose status is already stored
is a no-op.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commerce_hooks.models.entities import Order, OrderItem, StoreTransaction, WebhookLog
from commerce_hooks.services.notification_service import SaleSummary, send_sale_notification
from commerce_hooks.services.payment_service import (
    APPROVED,
    PaymentEvent,
    order_payment_status,
    order_status,
)


@dataclass
class ReconcileOutcome:
    transaction_id: str
    order_id: Optional[str]
    status: str
    duplicate: bool = False
    created: bool = False


def log_webhook(
    db: AsyncSession,
    organization_id: Optional[str],
    provider: str,
    status: str,
    payload,
    response: Optional[dict] = None,
    event_type: str = "payment.updated",
    instance_name: Optional[str] = None,
    error_message: Optional[str] = None,
) -> Optional[WebhookLog]:
    """Queue an audit row on the session. Never raises."""
    try:
        entry = WebhookLog(
            organization_id=organization_id,
            provider=provider,
            event_type=event_type,
            status=status,
            instance_name=instance_name,
            payload=payload,
            response=response,
            error_message=error_message,
        )
        db.add(entry)
        return entry
    except Exception as exc:
        logger.error(f"[Webhook Log] Error logging {provider} webhook: {exc}")
        return None


async def _find_transaction(db: AsyncSession, organization_id: str, *criteria) -> Optional[StoreTransaction]:
    result = await db.execute(
        select(StoreTransaction)
        .where(StoreTransaction.organization_id == organization_id, *criteria)
        .limit(1)
    )
    return result.scalar_one_or_none()


def _apply_event(tx: StoreTransaction, event: PaymentEvent, now: datetime) -> None:
    tx.status = event.status
    tx.provider_response = event.raw
    tx.completed_at = now if event.status == APPROVED else None
    tx.updated_at = now


async def reconcile_payment_event(
    db: AsyncSession, organization_id: str, event: PaymentEvent
) -> ReconcileOutcome:
    now = datetime.utcnow()

    existing = None
    if event.transaction_id:
        existing = await _find_transaction(
            db, organization_id, StoreTransaction.provider_transaction_id == event.transaction_id
        )

    if existing is not None:
        if existing.status == event.status:
            logger.info(
                f"[{event.provider} Webhook] Duplicate webhook for transaction "
                f"{event.transaction_id}, status already {event.status}"
            )
            return ReconcileOutcome(existing.id, existing.order_id, event.status, duplicate=True)

        _apply_event(existing, event, now)
        await db.flush()
        if existing.order_id:
            await apply_order_update(db, existing.order_id, event.status, organization_id)
        return ReconcileOutcome(existing.id, existing.order_id, event.status)

    by_reference = None
    if event.reference:
        by_reference = await _find_transaction(
            db, organization_id, StoreTransaction.provider_reference == event.reference
        )

    if by_reference is not None:
        _apply_event(by_reference, event, now)
        by_reference.provider_transaction_id = event.transaction_id
        await db.flush()
        if by_reference.order_id:
            await apply_order_update(db, by_reference.order_id, event.status, organization_id)
        return ReconcileOutcome(by_reference.id, by_reference.order_id, event.status)

    tx = StoreTransaction(
        organization_id=organization_id,
        amount=event.amount_cents,
        currency=event.currency,
        status=event.status,
        provider=event.provider,
        provider_transaction_id=event.transaction_id,
        provider_reference=event.reference,
        provider_response=event.raw,
        payment_method=event.payment_method,
        completed_at=now if event.status == APPROVED else None,
    )
    db.add(tx)
    await db.flush()
    logger.info(f"[{event.provider} Webhook] New transaction {tx.id} created from webhook")
    return ReconcileOutcome(tx.id, None, event.status, created=True)


async def apply_order_update(db: AsyncSession, order_id: str, status: str, organization_id: str) -> None:
    order = await db.get(Order, order_id)
    if order is None:
        logger.warning(f"[Payments] Order {order_id} linked to transaction not found")
        return

    now = datetime.utcnow()
    order.payment_status = order_payment_status(status)
    new_status = order_status(status)
    if new_status:
        order.status = new_status
    if status == APPROVED:
        order.confirmed_at = now
    order.updated_at = now
    await db.flush()

    if status == APPROVED:
        await notify_sale(db, order_id, organization_id)


async def notify_sale(db: AsyncSession, order_id: str, organization_id: str) -> bool:
    """Best-effort sale notification; failures never reach the webhook response."""
    try:
        result = await db.execute(
            select(Order)
            .options(
                selectinload(Order.customer),
                selectinload(Order.items).selectinload(OrderItem.product),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            return False

        sale = SaleSummary(
            id=order.order_number or order.id,
            total=order.total or 0,
            customer_name=(order.customer.full_name if order.customer else None) or "Cliente",
            items=[
                ((item.product.name if item.product else None) or "Producto", item.quantity)
                for item in order.items
            ],
        )
        sent = await send_sale_notification(db, organization_id, sale)
        if sent:
            logger.info(f"[Payments] Sale notification sent for order {sale.id}")
        return sent
    except Exception as exc:
        logger.error(f"[Payments] Error sending sale notification: {exc}")
        return False
