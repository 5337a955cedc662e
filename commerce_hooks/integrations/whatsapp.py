"""
WhatsApp delivery through Evolution API or Meta Cloud API.

The organization's instance decides the provider; callers only pass the
recipient and the text. Sends are single-shot, there is no retry.
"""

from typing import Optional

import httpx
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commerce_hooks.config import settings
from commerce_hooks.models.entities import SystemSetting, WhatsAppInstance

EVOLUTION_SETTINGS_KEY = "evolution_api_config"
META_SETTINGS_KEY = "meta_whatsapp_config"


class WhatsAppSendError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if body.get("message"):
            return str(body["message"])
    return default


class EvolutionClient:
    def __init__(self, base_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json", "apikey": self.api_key},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def send_text_message(self, instance_name: str, number: str, text: str) -> dict:
        async with self._client() as client:
            response = await client.post(
                f"/message/sendText/{instance_name}",
                json={"number": number, "text": text},
            )
        if response.is_error:
            message = _error_message(response, "Failed to send message")
            raise WhatsAppSendError(f"Evolution API error: {message}", response.status_code)
        return response.json()

    async def get_connection_state(self, instance_name: str) -> str:
        async with self._client() as client:
            response = await client.get(f"/instance/connectionState/{instance_name}")
        if response.is_error:
            message = _error_message(response, "Failed to get connection state")
            raise WhatsAppSendError(f"Evolution API error: {message}", response.status_code)
        data = response.json()
        instance = data.get("instance") or data
        return instance.get("state", "close")


class MetaCloudClient:
    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.META_GRAPH_API_URL).rstrip("/")
        self._transport = transport

    async def send_text_message(
        self,
        phone_number_id: str,
        token: str,
        to: str,
        text: str,
        preview_url: bool = False,
    ) -> dict:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": preview_url, "body": text},
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            response = await client.post(f"/{phone_number_id}/messages", json=payload)

        if response.is_error:
            message = _error_message(response, "Failed to send message")
            raise WhatsAppSendError(f"Meta Cloud API error: {message}", response.status_code)
        return response.json()


# ── System settings ──────────────────────────────────────
async def get_system_setting(db: AsyncSession, key: str) -> Optional[dict]:
    result = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
    row = result.scalar_one_or_none()
    return row.value if row and row.value else None


async def get_evolution_config(db: AsyncSession) -> Optional[dict]:
    config = await get_system_setting(db, EVOLUTION_SETTINGS_KEY)
    if not config or not config.get("url") or not config.get("apiKey"):
        return None
    return config


async def get_meta_config(db: AsyncSession) -> Optional[dict]:
    config = await get_system_setting(db, META_SETTINGS_KEY)
    if not config:
        return None
    if not config.get("app_id") or not config.get("app_secret") or not config.get("verify_token"):
        return None
    return config


async def find_connected_instance(
    db: AsyncSession, organization_id: str, instance_type: str = "corporate"
) -> Optional[WhatsAppInstance]:
    result = await db.execute(
        select(WhatsAppInstance)
        .where(WhatsAppInstance.organization_id == organization_id)
        .where(WhatsAppInstance.instance_type == instance_type)
        .where(WhatsAppInstance.status == "connected")
        .limit(1)
    )
    return result.scalar_one_or_none()


async def send_whatsapp_message(
    db: AsyncSession,
    organization_id: str,
    to: str,
    text: str,
    instance_type: str = "corporate",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Send a text through the org's connected instance. Returns the provider message id."""
    instance = await find_connected_instance(db, organization_id, instance_type)
    if instance is None:
        raise WhatsAppSendError(f"No connected {instance_type} WhatsApp instance for org {organization_id}")

    if instance.provider == "meta":
        if not instance.meta_phone_number_id or not instance.meta_access_token:
            raise WhatsAppSendError("Meta Cloud API credentials not configured for this instance")
        response = await MetaCloudClient(transport=transport).send_text_message(
            instance.meta_phone_number_id, instance.meta_access_token, to, text
        )
        messages = response.get("messages") or [{}]
        message_id = messages[0].get("id")
    else:
        config = await get_evolution_config(db)
        if config is None:
            raise WhatsAppSendError("Evolution API not configured")
        client = EvolutionClient(config["url"], config["apiKey"], transport=transport)
        response = await client.send_text_message(instance.instance_name, to, text)
        message_id = (response.get("key") or {}).get("id")

    logger.info(f"[WhatsApp Provider] {instance.provider} message sent to {to} id={message_id}")
    return message_id
