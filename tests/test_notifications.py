from commerce_hooks.models.entities import WhatsAppInstance
from commerce_hooks.services import notification_service
from commerce_hooks.services.notification_service import (
    SaleSummary,
    build_low_stock_message,
    build_new_conversation_message,
    build_sale_message,
    format_cop,
    send_low_stock_notification,
    send_new_conversation_notification,
    send_sale_notification,
)


def test_format_cop():
    assert format_cop(1500000) == "1.500.000"
    assert format_cop(1234567.5) == "1.234.567,5"
    assert format_cop(0) == "0"


def test_sale_message():
    sale = SaleSummary(
        id="6f1c2a9e-aaaa-bbbb",
        total=125000,
        customer_name="Ana",
        items=[("Camisa", 2), ("Gorra", 1)],
    )
    text = build_sale_message(sale)

    assert text.startswith("🎉 *Nueva Venta!*")
    assert "*Cliente:* Ana" in text
    assert "*Total:* $125.000" in text
    assert "• 2x Camisa\n• 1x Gorra" in text
    assert "#6f1c2a9e" in text
    assert "-aaaa" not in text


def test_low_stock_and_new_conversation_messages():
    assert "*SKU:* SKU-1" in build_low_stock_message("Camisa", 2, "SKU-1")
    assert "SKU" not in build_low_stock_message("Camisa", 2)
    assert "*Contacto:* Sin contacto" in build_new_conversation_message("Ana")
    assert "*Contacto:* ana@mail.test" in build_new_conversation_message("Ana", email="ana@mail.test")


async def _personal(db, org, **flags):
    instance = WhatsAppInstance(
        organization_id=org.id,
        instance_name="acme-owner",
        instance_type="personal",
        status="connected",
        phone_number="573001234567",
        **flags,
    )
    db.add(instance)
    await db.flush()
    return instance


async def test_disabled_notifications_are_not_sent(db, org, monkeypatch):
    sent = []

    async def fake_send(*args, **kwargs):
        sent.append(args)

    monkeypatch.setattr(notification_service, "send_whatsapp_message", fake_send)
    await _personal(db, org, notifications_enabled=False)

    assert not await send_sale_notification(db, org.id, SaleSummary("o1", 10, "Ana"))
    assert sent == []


async def test_per_kind_flag_is_respected(db, org, monkeypatch):
    sent = []

    async def fake_send(db_, organization_id, to, text, instance_type="corporate"):
        sent.append((to, text, instance_type))

    monkeypatch.setattr(notification_service, "send_whatsapp_message", fake_send)
    await _personal(db, org, notifications_enabled=True, notify_on_new_conversation=False)

    assert not await send_new_conversation_notification(db, org.id, "Ana", phone="5730099")
    assert await send_low_stock_notification(db, org.id, "Camisa", 1)
    assert sent == [("573001234567", build_low_stock_message("Camisa", 1), "personal")]


async def test_delivery_errors_are_swallowed(db, org, monkeypatch):
    async def failing_send(*args, **kwargs):
        raise RuntimeError("provider down")

    monkeypatch.setattr(notification_service, "send_whatsapp_message", failing_send)
    await _personal(db, org, notifications_enabled=True)

    assert await send_sale_notification(db, org.id, SaleSummary("o1", 10, "Ana")) is False
