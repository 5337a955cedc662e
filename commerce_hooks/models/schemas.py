"""
Pydantic request / response schemas for the API and the vendor webhooks.
"""

import math

from pydantic import BaseModel, Field, field_validator
from typing import Any, Optional, List, Literal, Union
from datetime import datetime


# ── Auth ─────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    is_admin: bool


class UserResponse(BaseModel):
    id: str
    email: str
    organization_id: Optional[str] = None
    is_admin: bool
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ── ePayco ───────────────────────────────────────────────
def js_string(value):
    """Render a JSON scalar the way ePayco signs it (``50000.0`` -> ``"50000"``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, int):
        return str(value)
    return value


class EpaycoWebhookPayload(BaseModel):
    """Confirmation sent by ePayco, either form-encoded or JSON."""

    x_ref_payco: str = ""
    x_id_invoice: str = ""
    x_transaction_id: str = ""
    x_amount: str = "0"
    x_currency_code: str = ""
    x_cod_response: str = ""
    x_response: str = ""
    x_franchise: str = ""
    x_signature: str = ""
    x_test_request: str = ""
    x_extra1: Optional[str] = None
    x_extra2: Optional[str] = None
    x_extra3: Optional[str] = None

    class Config:
        extra = "allow"

    @field_validator("*", mode="before")
    @classmethod
    def _numbers_as_signed(cls, value):
        return js_string(value)


# ── Wompi ────────────────────────────────────────────────
class WompiTransaction(BaseModel):
    id: str
    reference: str = ""
    status: str = "PENDING"
    amount_in_cents: int = 0
    currency: str = "COP"
    payment_method_type: Optional[str] = None
    created_at: Optional[str] = None
    finalized_at: Optional[str] = None

    class Config:
        extra = "allow"


class WompiEventData(BaseModel):
    transaction: WompiTransaction

    class Config:
        extra = "allow"


class WompiSignature(BaseModel):
    checksum: str = ""
    properties: List[str] = []


class WompiWebhookPayload(BaseModel):
    event: str = ""
    data: WompiEventData
    signature: WompiSignature = WompiSignature()
    timestamp: Union[int, str] = 0

    class Config:
        extra = "allow"


# ── Evolution API (WhatsApp) ─────────────────────────────
class EvolutionWebhookEnvelope(BaseModel):
    event: Optional[str] = None
    instance: Optional[str] = None
    data: Any = None

    class Config:
        extra = "allow"


class EvolutionMessageKey(BaseModel):
    remoteJid: str
    fromMe: bool
    id: str


class EvolutionExtendedText(BaseModel):
    text: str


class EvolutionMessageContent(BaseModel):
    conversation: Optional[str] = None
    extendedTextMessage: Optional[EvolutionExtendedText] = None


class EvolutionIncomingMessage(BaseModel):
    key: EvolutionMessageKey
    pushName: Optional[str] = None
    message: Optional[EvolutionMessageContent] = None
    messageType: Optional[str] = None
    messageTimestamp: Optional[Union[int, str]] = None


# ── Nuby sync ────────────────────────────────────────────
class NubySyncRequest(BaseModel):
    sync_type: Literal["full", "incremental"] = "incremental"


class SyncResultResponse(BaseModel):
    success: bool
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_failed: int = 0
    errors: List[str] = Field(default_factory=list)


class IntegrationStatusResponse(BaseModel):
    status: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    last_log: Optional[dict] = None


# ── Admin ────────────────────────────────────────────────
class WebhookLogResponse(BaseModel):
    id: str
    organization_id: Optional[str] = None
    provider: str
    event_type: str
    status: str
    instance_name: Optional[str] = None
    payload: Optional[Union[dict, list]] = None
    response: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
