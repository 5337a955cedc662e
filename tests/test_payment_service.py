import hashlib

import pytest

from commerce_hooks.services.payment_service import (
    epayco_signature,
    hub_signature,
    map_epayco_response_code,
    map_epayco_state,
    map_wompi_status,
    order_payment_status,
    order_status,
    pesos_to_cents,
    validate_epayco_signature,
    validate_wompi_signature,
    verify_meta_signature,
    wompi_checksum,
)


@pytest.mark.parametrize(
    "code, expected",
    [("1", "approved"), ("2", "declined"), ("3", "pending"), ("4", "error"), ("6", "voided"), ("9", "pending"), (1, "approved")],
)
def test_epayco_response_codes(code, expected):
    assert map_epayco_response_code(code) == expected


def test_epayco_api_states_and_wompi_statuses():
    assert map_epayco_state("Aceptada") == "approved"
    assert map_epayco_state("Reversada") == "voided"
    assert map_epayco_state("Desconocida") == "pending"
    assert map_wompi_status("APPROVED") == "approved"
    assert map_wompi_status("VOIDED") == "voided"
    assert map_wompi_status("SOMETHING") == "pending"


def test_order_effects():
    assert order_payment_status("approved") == "paid"
    assert order_payment_status("declined") == "failed"
    assert order_payment_status("voided") == "refunded"
    assert order_payment_status("error") == "pending"
    assert order_status("approved") == "confirmed"
    assert order_status("declined") == "cancelled"
    assert order_status("pending") is None


def test_pesos_to_cents():
    assert pesos_to_cents("15000.50") == 1500050
    assert pesos_to_cents(20000) == 2000000
    assert pesos_to_cents("n/a") == 0


def test_epayco_signature_is_sha256_of_concatenation():
    expected = hashlib.sha256(b"cust" + b"key" + b"ref" + b"tx" + b"100" + b"COP").hexdigest()
    assert epayco_signature("cust", "key", "ref", "tx", "100", "COP") == expected


def test_validate_epayco_signature():
    payload = {
        "x_ref_payco": "9001",
        "x_transaction_id": "T-1",
        "x_amount": "50000",
        "x_currency_code": "COP",
    }
    payload["x_signature"] = epayco_signature("cust", "key", "9001", "T-1", "50000", "COP")

    assert validate_epayco_signature(payload, "cust", "key")
    assert not validate_epayco_signature(payload, "cust", "other-key")
    assert not validate_epayco_signature(payload, "", "key")


def test_wompi_checksum_reads_nested_properties():
    data = {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 4990000}}
    props = ["transaction.id", "transaction.status", "transaction.amount_in_cents"]
    expected = hashlib.sha256(b"tx-1APPROVED49900001700000000secret").hexdigest()
    assert wompi_checksum(data, props, 1700000000, "secret") == expected


def test_validate_wompi_signature():
    data = {"transaction": {"id": "tx-1", "status": "APPROVED", "amount_in_cents": 100}}
    props = ["transaction.id", "transaction.status"]
    payload = {
        "data": data,
        "timestamp": 1700000000,
        "signature": {"properties": props, "checksum": wompi_checksum(data, props, 1700000000, "secret")},
    }

    assert validate_wompi_signature(payload, "secret")
    assert not validate_wompi_signature(payload, "wrong")
    assert not validate_wompi_signature(payload, "")
    assert not validate_wompi_signature({"data": data}, "secret")


def test_meta_signature():
    body = b'{"object":"whatsapp_business_account"}'
    header = hub_signature(body, "app-secret")

    assert header.startswith("sha256=")
    assert verify_meta_signature(body, header, "app-secret")
    assert not verify_meta_signature(body + b" ", header, "app-secret")
    assert not verify_meta_signature(body, None, "app-secret")
