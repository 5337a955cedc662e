"""
Owner notifications over the store owner's personal WhatsApp instance.

Every sender is best-effort: it returns False when the notification is
disabled or when delivery fails, and never raises.
"""

from dataclasses import dataclass, field
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.integrations.whatsapp import find_connected_instance, send_whatsapp_message


@dataclass
class SaleSummary:
    id: str
    total: float
    customer_name: str
    items: list = field(default_factory=list)  # [(name, quantity)]


def format_cop(amount: float) -> str:
    """es-CO grouping: ``1234567.5`` -> ``1.234.567,5``."""
    whole, _, decimals = f"{amount:,.2f}".partition(".")
    text = whole.replace(",", ".")
    decimals = decimals.rstrip("0")
    return f"{text},{decimals}" if decimals else text


def build_sale_message(sale: SaleSummary) -> str:
    items_list = "\n".join(f"• {quantity}x {name}" for name, quantity in sale.items)
    return (
        "🎉 *Nueva Venta!*\n\n"
        f"*Cliente:* {sale.customer_name}\n"
        f"*Total:* ${format_cop(sale.total)}\n\n"
        "*Productos:*\n"
        f"{items_list}\n\n"
        f"*Orden:* #{sale.id[:8]}\n\n"
        "¡Felicitaciones por tu venta! 🚀"
    )


def build_low_stock_message(name: str, stock: int, sku: Optional[str] = None) -> str:
    sku_line = f"*SKU:* {sku}\n" if sku else ""
    return (
        "⚠️ *Alerta de Stock Bajo*\n\n"
        f"*Producto:* {name}\n"
        f"{sku_line}*Stock actual:* {stock} unidades\n\n"
        "Te recomendamos reabastecer pronto para no perder ventas."
    )


def build_new_conversation_message(name: str, phone: Optional[str] = None, email: Optional[str] = None) -> str:
    contact = phone or email or "Sin contacto"
    return (
        "💬 *Nueva Conversación*\n\n"
        f"*Cliente:* {name}\n"
        f"*Contacto:* {contact}\n\n"
        "Un nuevo cliente está chateando con tu agente IA."
    )


async def _notify(db: AsyncSession, organization_id: str, flag: str, message: str) -> bool:
    instance = await find_connected_instance(db, organization_id, "personal")
    if instance is None or not instance.notifications_enabled or not getattr(instance, flag):
        logger.info(f"[WhatsApp Notifications] {flag} disabled for org {organization_id}")
        return False

    if not instance.phone_number:
        logger.error("[WhatsApp Notifications] No phone number for personal instance")
        return False

    await send_whatsapp_message(db, organization_id, instance.phone_number, message, instance_type="personal")
    logger.info(f"[WhatsApp Notifications] Notification sent to {instance.phone_number}")
    return True


async def send_sale_notification(db: AsyncSession, organization_id: str, sale: SaleSummary) -> bool:
    try:
        return await _notify(db, organization_id, "notify_on_sale", build_sale_message(sale))
    except Exception as exc:
        logger.error(f"[WhatsApp Notifications] Error sending sale notification: {exc}")
        return False


async def send_low_stock_notification(
    db: AsyncSession, organization_id: str, name: str, stock: int, sku: Optional[str] = None
) -> bool:
    try:
        return await _notify(db, organization_id, "notify_on_low_stock", build_low_stock_message(name, stock, sku))
    except Exception as exc:
        logger.error(f"[WhatsApp Notifications] Error sending low stock notification: {exc}")
        return False


async def send_new_conversation_notification(
    db: AsyncSession,
    organization_id: str,
    name: str,
    phone: Optional[str] = None,
    email: Optional[str] = None,
) -> bool:
    try:
        return await _notify(
            db,
            organization_id,
            "notify_on_new_conversation",
            build_new_conversation_message(name, phone, email),
        )
    except Exception as exc:
        logger.error(f"[WhatsApp Notifications] Error sending new conversation notification: {exc}")
        return False
