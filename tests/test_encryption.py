import pytest

from commerce_hooks.services import encryption_service
from commerce_hooks.services.encryption_service import (
    CredentialError,
    decrypt,
    decrypt_optional,
    encrypt,
    is_encrypted,
)


def test_encrypt_produces_hex_triplet_that_decrypts():
    token = encrypt("nuby-api-token")
    iv, tag, cipher = token.split(":")
    assert len(iv) == 32
    assert len(tag) == 32
    assert is_encrypted(token)
    assert decrypt(token) == "nuby-api-token"


def test_encrypt_uses_fresh_iv():
    assert encrypt("same") != encrypt("same")


def test_tampered_ciphertext_is_rejected():
    iv, tag, cipher = encrypt("secret").split(":")
    flipped = "0" if cipher[0] != "0" else "1"
    with pytest.raises(CredentialError):
        decrypt(f"{iv}:{tag}:{flipped}{cipher[1:]}")


@pytest.mark.parametrize("value", ["plain-text", "a:b", "zz:zz:zz"])
def test_malformed_values_raise(value):
    with pytest.raises(CredentialError):
        decrypt(value)


def test_decrypt_optional_handles_empty():
    assert decrypt_optional(None) == ""
    assert decrypt_optional("") == ""


def test_is_encrypted_rejects_plain_values():
    assert not is_encrypted("sk-live-123")
    assert not is_encrypted("abc:def")


def test_missing_key_raises(monkeypatch):
    monkeypatch.setattr(encryption_service.settings, "ENCRYPTION_KEY", "")
    with pytest.raises(CredentialError):
        encrypt("anything")
