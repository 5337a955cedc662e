"""
Turn WhatsApp message payloads into the plain text handed to the agent.
"""

from typing import Optional

from commerce_hooks.models.schemas import EvolutionIncomingMessage

BUTTON_INTENTS = {
    "checkout": "Quiero pagar",
    "continue_shopping": "Quiero seguir comprando",
    "confirm_checkout": "Confirmar mis datos de envío",
    "modify_cart": "Quiero modificar mi carrito",
    "more_options": "Quiero ver más opciones",
}


def evolution_text(message: EvolutionIncomingMessage) -> str:
    content = message.message
    if content is None:
        return ""
    if content.conversation:
        return content.conversation
    if content.extendedTextMessage:
        return content.extendedTextMessage.text
    return ""


def _interactive_text(interactive: dict) -> str:
    kind = interactive.get("type")
    if kind == "button_reply":
        reply = interactive.get("button_reply") or {}
        button_id = reply.get("id", "")
        if button_id.startswith("add_"):
            return f"Quiero agregar al carrito el producto con ID: {button_id[len('add_'):]}"
        return BUTTON_INTENTS.get(button_id, reply.get("title", ""))
    if kind == "list_reply":
        reply = interactive.get("list_reply") or {}
        list_id = reply.get("id", "")
        title = reply.get("title", "")
        if list_id.startswith("product_"):
            return f"Quiero ver el producto: {title} (ID: {list_id[len('product_'):]})"
        return title
    return ""


def meta_text(message: dict) -> Optional[str]:
    """
    Text for a Cloud API message. Returns None for messages that should be
    skipped entirely (reactions) and "" when nothing could be extracted.
    """
    kind = message.get("type")

    if kind == "text":
        return (message.get("text") or {}).get("body", "")
    if kind == "image":
        return (message.get("image") or {}).get("caption") or "[Imagen recibida]"
    if kind == "video":
        return (message.get("video") or {}).get("caption") or "[Video recibido]"
    if kind == "audio":
        return "[Audio recibido]"
    if kind == "document":
        document = message.get("document") or {}
        return document.get("caption") or f"[Documento: {document.get('filename') or 'archivo'}]"
    if kind == "location":
        location = message.get("location") or {}
        place = " ".join(part for part in (location.get("name"), location.get("address")) if part)
        return f"[Ubicación: {place}]"
    if kind == "sticker":
        return "[Sticker recibido]"
    if kind == "interactive":
        return _interactive_text(message.get("interactive") or {})
    if kind == "button":
        return (message.get("button") or {}).get("text", "")
    if kind == "reaction":
        return None
    return f"[{kind} no soportado]"
