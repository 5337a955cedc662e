"""
Read-side clients for the ePayco and Wompi REST APIs.

Used to pull a transaction's current state when a webhook never arrived.
"""

import base64
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

import httpx
from loguru import logger

from commerce_hooks.config import settings
from commerce_hooks.models.entities import PaymentGatewayConfig
from commerce_hooks.services.encryption_service import decrypt_optional
from commerce_hooks.services.payment_service import (
    APPROVED,
    PaymentEvent,
    map_epayco_state,
    map_wompi_status,
    pesos_to_cents,
)

EPAYCO_API_URL = "https://apify.epayco.co"

WOMPI_API_URL = {
    "sandbox": "https://sandbox.wompi.co/v1",
    "production": "https://production.wompi.co/v1",
}


class GatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@contextmanager
def _vendor_errors(label: str):
    """Turn transport failures and unreadable vendor bodies into a 502 GatewayError."""
    try:
        yield
    except GatewayError:
        raise
    except httpx.HTTPError as exc:
        raise GatewayError(f"{label} request failed: {exc}", 502) from exc
    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
        raise GatewayError(f"{label} returned an unexpected response", 502) from exc


@dataclass
class TransactionDetails:
    id: str
    reference: str
    amount: int  # cents
    currency: str
    status: str
    payment_method: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    raw: dict = field(default_factory=dict)

    def to_event(self, provider: str) -> PaymentEvent:
        return PaymentEvent(
            provider=provider,
            transaction_id=self.id,
            reference=self.reference,
            status=self.status,
            amount_cents=self.amount,
            currency=self.currency,
            payment_method=(self.payment_method or "").lower() or None,
            raw=self.raw,
        )


class EpaycoGateway:
    provider = "epayco"

    def __init__(
        self,
        public_key: str,
        private_key: str,
        is_test_mode: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.public_key = public_key
        self.private_key = private_key
        self.is_test_mode = is_test_mode
        self.base_url = EPAYCO_API_URL
        self._transport = transport

    def _client(self, headers: Optional[dict] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def get_auth_token(self) -> str:
        credentials = base64.b64encode(f"{self.public_key}:{self.private_key}".encode()).decode()
        async with self._client({"Authorization": f"Basic {credentials}"}) as client:
            response = await client.post("/login")
        if response.is_error:
            raise GatewayError("ePayco authentication failed", response.status_code)
        token = response.json().get("token")
        if not token:
            raise GatewayError("ePayco authentication returned no token")
        return token

    async def _get_detail(self, params: dict) -> TransactionDetails:
        token = await self.get_auth_token()
        async with self._client({"Authorization": f"Bearer {token}"}) as client:
            response = await client.get("/transaction/detail", params=params)
        if response.is_error:
            raise GatewayError("Error fetching ePayco transaction", response.status_code)

        data = response.json()
        tx = data.get("data")
        if data.get("success") is False or not tx:
            raise GatewayError("ePayco transaction not found", 404)

        status = map_epayco_state(tx.get("estado", ""))
        return TransactionDetails(
            id=str(tx.get("ref_payco", "")),
            reference=str(tx.get("factura", "")),
            amount=pesos_to_cents(tx.get("valor")),
            currency=tx.get("moneda", "COP"),
            status=status,
            payment_method=tx.get("metodo"),
            created_at=tx.get("fecha"),
            completed_at=tx.get("fecha") if status == APPROVED else None,
            raw=data,
        )

    async def get_transaction(self, transaction_id: str) -> TransactionDetails:
        with _vendor_errors("ePayco"):
            return await self._get_detail({"ref_payco": transaction_id})

    async def get_transaction_by_reference(self, reference: str) -> TransactionDetails:
        with _vendor_errors("ePayco"):
            return await self._get_detail({"factura": reference})

    async def test_connection(self) -> bool:
        try:
            await self.get_auth_token()
            return True
        except (GatewayError, httpx.HTTPError) as exc:
            logger.warning(f"[ePayco] Connection test failed: {exc}")
            return False


class WompiGateway:
    provider = "wompi"

    def __init__(
        self,
        public_key: str,
        private_key: str,
        is_test_mode: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.public_key = public_key
        self.private_key = private_key
        self.base_url = WOMPI_API_URL["sandbox" if is_test_mode else "production"]
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.private_key}"},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def _details(self, tx: dict, raw: dict) -> TransactionDetails:
        return TransactionDetails(
            id=str(tx.get("id", "")),
            reference=str(tx.get("reference", "")),
            amount=int(tx.get("amount_in_cents") or 0),
            currency=tx.get("currency", "COP"),
            status=map_wompi_status(tx.get("status", "")),
            payment_method=tx.get("payment_method_type"),
            created_at=tx.get("created_at"),
            completed_at=tx.get("finalized_at"),
            raw=raw,
        )

    async def get_transaction(self, transaction_id: str) -> TransactionDetails:
        with _vendor_errors("Wompi"):
            async with self._client() as client:
                response = await client.get(f"/transactions/{transaction_id}")
            if response.is_error:
                raise GatewayError("Error fetching Wompi transaction", response.status_code)
            data = response.json()
            return self._details(data["data"], data)

    async def get_transaction_by_reference(self, reference: str) -> TransactionDetails:
        with _vendor_errors("Wompi"):
            async with self._client() as client:
                response = await client.get("/transactions", params={"reference": reference})
            if response.is_error:
                raise GatewayError("Error fetching Wompi transaction", response.status_code)
            data = response.json()
            if not data.get("data"):
                raise GatewayError("Wompi transaction not found", 404)
            return self._details(data["data"][0], data)

    async def test_connection(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/merchants/{self.public_key}")
            return response.is_success
        except httpx.HTTPError as exc:
            logger.warning(f"[Wompi] Connection test failed: {exc}")
            return False


def create_payment_gateway(config: PaymentGatewayConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
    private_key = decrypt_optional(config.private_key_encrypted)
    if config.provider == "wompi":
        return WompiGateway(config.public_key or "", private_key, config.is_test_mode, transport=transport)
    if config.provider == "epayco":
        return EpaycoGateway(config.public_key or "", private_key, config.is_test_mode, transport=transport)
    raise GatewayError(f"Unsupported payment provider: {config.provider}")
