"""
Tests for payload and configuration encryption.
"""

import base64

import pytest

from healthlink.errors import IntegrityError, ValidationError
from healthlink.security.encryption import (
    CONNECTOR_PAYLOAD_CONTEXT,
    STORED_CONFIG_CONTEXT,
    EncryptedBlob,
    EncryptionService,
)

from conftest import MASTER_SECRET


@pytest.fixture
def service():
    return EncryptionService(MASTER_SECRET, CONNECTOR_PAYLOAD_CONTEXT)


class TestRoundTrip:
    """Values survive encrypt/decrypt unchanged."""

    @pytest.mark.parametrize("value", [
        {"patientData": {"mrn": "MRN-001", "diagnosis": "J45.909"}},
        ["a", 1, 2.5, True, None],
        "مرحبا",
        0,
    ])
    def test_round_trip(self, service, value):
        assert service.decrypt(service.encrypt(value)) == value

    def test_decrypts_wire_dict(self, service):
        wire = service.encrypt({"phi": "x"}).to_wire()
        assert set(wire) == {"ciphertext", "iv", "authTag", "algorithmId"}
        assert service.decrypt(wire) == {"phi": "x"}

    def test_repeated_encryption_differs(self, service):
        first = service.encrypt({"mrn": "123"})
        second = service.encrypt({"mrn": "123"})
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext


class TestFailClosed:
    """Integrity problems are rejected, never returned as data."""

    def test_tampered_tag(self, service):
        blob = service.encrypt({"mrn": "123"})
        tag = bytearray(base64.b64decode(blob.auth_tag))
        tag[0] ^= 0xFF
        tampered = blob.model_copy(update={"auth_tag": base64.b64encode(bytes(tag)).decode()})

        with pytest.raises(IntegrityError):
            service.decrypt(tampered)

    def test_wrong_iv_length(self, service):
        blob = service.encrypt("value")
        short_iv = blob.model_copy(update={"iv": base64.b64encode(b"\x00" * 8).decode()})

        with pytest.raises(IntegrityError, match="IV length"):
            service.decrypt(short_iv)

    def test_other_context_cannot_decrypt(self, service):
        blob = service.encrypt({"config": True})
        other = EncryptionService(MASTER_SECRET, STORED_CONFIG_CONTEXT)

        with pytest.raises(IntegrityError):
            other.decrypt(blob)

    def test_unknown_algorithm(self, service):
        wire = service.encrypt("value").to_wire()
        wire["algorithmId"] = "des-cbc"

        with pytest.raises(IntegrityError, match="Unsupported algorithm"):
            service.decrypt(wire)

    def test_malformed_blob(self, service):
        with pytest.raises(IntegrityError):
            service.decrypt({"ciphertext": "abc"})

    def test_invalid_base64(self, service):
        wire = service.encrypt("value").to_wire()
        wire["ciphertext"] = "not base64!!"

        with pytest.raises(IntegrityError):
            service.decrypt(wire)


class TestConstruction:

    def test_empty_secret_rejected(self):
        with pytest.raises(ValidationError):
            EncryptionService("", CONNECTOR_PAYLOAD_CONTEXT)

    def test_unserializable_value_rejected(self, service):
        with pytest.raises(ValidationError):
            service.encrypt({"when": object()})

    def test_looks_like(self, service):
        assert EncryptedBlob.looks_like(service.encrypt(1).to_wire())
        assert not EncryptedBlob.looks_like({"mrn": "123"})
        assert not EncryptedBlob.looks_like("ciphertext")
