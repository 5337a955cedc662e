"""
Payment status mapping and webhook signature validation for ePayco and Wompi.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

PENDING = "pending"
APPROVED = "approved"
DECLINED = "declined"
VOIDED = "voided"
ERROR = "error"

TRANSACTION_STATUSES = (PENDING, APPROVED, DECLINED, VOIDED, ERROR)

# ePayco x_cod_response: 1 accepted, 2 rejected, 3 pending, 4 failed, 6 reversed
EPAYCO_RESPONSE_CODES = {
    "1": APPROVED,
    "2": DECLINED,
    "3": PENDING,
    "4": ERROR,
    "6": VOIDED,
}

EPAYCO_API_STATES = {
    "Aceptada": APPROVED,
    "Rechazada": DECLINED,
    "Pendiente": PENDING,
    "Fallida": ERROR,
    "Reversada": VOIDED,
}

WOMPI_STATES = {
    "APPROVED": APPROVED,
    "DECLINED": DECLINED,
    "VOIDED": VOIDED,
    "ERROR": ERROR,
    "PENDING": PENDING,
}

ORDER_PAYMENT_STATUS = {
    APPROVED: "paid",
    DECLINED: "failed",
    VOIDED: "refunded",
}

ORDER_STATUS = {
    APPROVED: "confirmed",
    DECLINED: "cancelled",
}


@dataclass
class PaymentEvent:
    """Provider-neutral view of a payment webhook."""

    provider: str
    transaction_id: str
    reference: str
    status: str
    amount_cents: int
    currency: str
    payment_method: Optional[str]
    raw: dict = field(default_factory=dict)


def map_epayco_response_code(code) -> str:
    return EPAYCO_RESPONSE_CODES.get(str(code).strip(), PENDING)


def map_epayco_state(state: str) -> str:
    return EPAYCO_API_STATES.get(state, PENDING)


def map_wompi_status(status: str) -> str:
    return WOMPI_STATES.get(status, PENDING)


def order_payment_status(status: str) -> str:
    return ORDER_PAYMENT_STATUS.get(status, "pending")


def order_status(status: str) -> Optional[str]:
    """Order status implied by a transaction status, or None to leave it alone."""
    return ORDER_STATUS.get(status)


def pesos_to_cents(amount) -> int:
    try:
        return round(float(amount) * 100)
    except (TypeError, ValueError):
        return 0


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _mask(value: str) -> str:
    return f"{value[:4]}***" if value else ""


# ── ePayco ───────────────────────────────────────────────
def epayco_signature(
    customer_id: str,
    p_key: str,
    ref_payco: str,
    transaction_id: str,
    amount: str,
    currency_code: str,
) -> str:
    return _sha256_hex(
        "".join([customer_id, p_key, ref_payco, transaction_id, amount, currency_code])
    )


def validate_epayco_signature(payload: dict, customer_id: str, p_key: str) -> bool:
    """
    SHA256(p_cust_id_cliente + p_key + x_ref_payco + x_transaction_id + x_amount + x_currency_code)
    must match x_signature.
    """
    if not customer_id or not p_key:
        logger.error("[ePayco Webhook] Missing P_CUST_ID_CLIENTE or P_KEY")
        return False

    expected = epayco_signature(
        customer_id,
        p_key,
        str(payload.get("x_ref_payco", "")),
        str(payload.get("x_transaction_id", "")),
        str(payload.get("x_amount", "")),
        str(payload.get("x_currency_code", "")),
    )
    received = str(payload.get("x_signature", ""))
    is_valid = hmac.compare_digest(expected, received)

    logger.debug(
        f"[ePayco Webhook] Signature check customer={_mask(customer_id)} "
        f"ref={payload.get('x_ref_payco')} valid={is_valid}"
    )
    return is_valid


# ── Wompi ────────────────────────────────────────────────
def _resolve_path(data: dict, path: str):
    value = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def wompi_checksum(data: dict, properties: list[str], timestamp, integrity_secret: str) -> str:
    values = []
    for prop in properties:
        value = _resolve_path(data, prop)
        if value is not None:
            values.append(_stringify(value))
    values.append(str(timestamp))
    values.append(integrity_secret)
    return _sha256_hex("".join(values))


def validate_wompi_signature(payload: dict, integrity_secret: str) -> bool:
    """Recompute the event checksum from signature.properties, timestamp and the integrity secret."""
    if not integrity_secret:
        return False

    signature = payload.get("signature") or {}
    properties = signature.get("properties")
    data = payload.get("data")
    if not properties or not data:
        return False

    expected = wompi_checksum(data, properties, payload.get("timestamp"), integrity_secret)
    return hmac.compare_digest(expected, str(signature.get("checksum", "")))


# ── Meta / Evolution (HMAC-SHA256 over raw body) ─────────
def hub_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_meta_signature(body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check an ``X-Hub-Signature-256: sha256=<hex>`` header."""
    if not signature or not app_secret:
        return False
    return hmac.compare_digest(signature.encode("utf-8"), hub_signature(body, app_secret).encode("utf-8"))


def verify_evolution_signature(body: bytes, signature: Optional[str], webhook_secret: str) -> bool:
    return verify_meta_signature(body, signature, webhook_secret)
