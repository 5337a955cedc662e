"""
Chat agent hand-off: answers inbound customer messages with an OpenAI model
and sends the reply back over WhatsApp.
"""

from typing import Dict, List, Optional

import openai
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.config import settings
from commerce_hooks.integrations.whatsapp import send_whatsapp_message
from commerce_hooks.models.entities import Chat, Message

HISTORY_LIMIT = 20

client = None


# ── Key validation ────────────────────────────────────────
def _is_real_api_key(key: str) -> bool:
    """Return True only if the key looks like a genuine OpenAI API key."""
    if not key:
        return False
    if "your" in key.lower():
        return False
    if not key.startswith("sk-"):
        return False
    if len(key) < 30:
        return False
    return True


def _get_client():
    global client
    if client is None:
        if not _is_real_api_key(settings.OPENAI_API_KEY):
            return None
        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return client


SYSTEM_PROMPT = """Eres el asistente de ventas de una tienda en línea que atiende por WhatsApp.
- Responde en el idioma del cliente, de forma breve y amable
- Ayuda a encontrar productos, resolver dudas de pedidos y pagos
- Si no sabes algo, dilo y ofrece conectar con una persona del equipo
- Nunca inventes precios, existencias ni estados de pedidos

Mantén las respuestas en menos de 3 frases salvo que se necesite detalle."""


async def generate_reply(messages: List[Dict[str, str]]) -> Optional[str]:
    """Return the model's reply, or None when the agent is not configured."""
    ai_client = _get_client()
    if ai_client is None:
        return None

    full_messages = [{"role": "system", "content": SYSTEM_PROMPT}] + messages[-HISTORY_LIMIT:]
    response = await ai_client.chat.completions.create(
        model=settings.OPENAI_MODEL, messages=full_messages, temperature=0.7, max_tokens=500,
    )
    return response.choices[0].message.content.strip()


async def _history(db: AsyncSession, chat_id: str) -> List[Dict[str, str]]:
    result = await db.execute(
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc())
        .limit(HISTORY_LIMIT)
    )
    rows = list(reversed(result.scalars().all()))
    return [{"role": m.role, "content": m.content} for m in rows]


async def process_incoming_message(
    db: AsyncSession, chat_id: str, content: str, metadata: Optional[dict] = None
) -> dict:
    """
    Generate a reply for the latest message of ``chat_id`` and deliver it.

    The inbound message must already be stored. Never raises; failures are
    reported as ``{"success": False, "error": ...}``.
    """
    try:
        # Savepoint: a failed write here must not leave the webhook's session unusable
        async with db.begin_nested():
            chat = await db.get(Chat, chat_id)
            if chat is None:
                return {"success": False, "error": "Chat not found"}

            history = await _history(db, chat_id)
            if not history or history[-1]["content"] != content:
                history.append({"role": "user", "content": content})

            reply = await generate_reply(history)
            if reply is None:
                logger.info(f"[Agent] Agent not configured, chat {chat_id} left unanswered")
                return {"success": False, "error": "Agent not configured"}

            db.add(Message(chat_id=chat_id, role="assistant", content=reply, meta={"source": "agent"}))
            await db.flush()

        phone_number = chat.phone_number or chat.whatsapp_chat_id
        if chat.channel == "whatsapp" and phone_number:
            await send_whatsapp_message(db, chat.organization_id, phone_number, reply)

        return {"success": True, "response": reply}
    except Exception as exc:
        logger.error(f"[Agent] Error processing message for chat {chat_id}: {exc}")
        return {"success": False, "error": str(exc)}
