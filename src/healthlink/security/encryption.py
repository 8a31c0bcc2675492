"""
Payload and Configuration Encryption

AES-256-GCM authenticated encryption for structured values:
- Key derived once from the master secret with HKDF-SHA256
- Component-specific context label (salt, HKDF info and associated data)
- Fresh random 96-bit nonce per encryption
- Fails closed on any integrity problem
"""

import base64
import binascii
import json
import os
from typing import Any

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from healthlink.errors import IntegrityError, ValidationError

logger = structlog.get_logger(__name__)


ALGORITHM_ID = "aes-256-gcm"
NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

# Distinct contexts so one derived key never decrypts the other's data
CONNECTOR_PAYLOAD_CONTEXT = "healthlink-connector-payload"
STORED_CONFIG_CONTEXT = "healthlink-connector-config"


class EncryptedBlob(BaseModel):
    """Persisted/transmitted form of an encrypted value."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ciphertext: str
    iv: str
    auth_tag: str = Field(alias="authTag")
    algorithm_id: str = Field(default=ALGORITHM_ID, alias="algorithmId")

    def to_wire(self) -> dict[str, str]:
        """Dump with camelCase keys, as sent to remote systems and stored."""
        return self.model_dump(by_alias=True)

    @classmethod
    def looks_like(cls, value: Any) -> bool:
        """Whether a mapping has the shape of a serialized blob."""
        return (
            isinstance(value, dict)
            and "ciphertext" in value
            and "iv" in value
            and ("authTag" in value or "auth_tag" in value)
        )


class EncryptionService:
    """
    AES-256-GCM encryption bound to one context label.

    Example:
        service = EncryptionService(master_secret, CONNECTOR_PAYLOAD_CONTEXT)
        blob = service.encrypt({"mrn": "123"})
        value = service.decrypt(blob)
    """

    def __init__(self, master_secret: str, context: str):
        if not master_secret:
            raise ValidationError("Encryption requires a non-empty master secret")
        if not context:
            raise ValidationError("Encryption requires a context label")

        self.context = context
        self._aad = context.encode("utf-8")
        self._aesgcm = AESGCM(self._derive_key(master_secret.encode("utf-8")))

    def _derive_key(self, secret: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=self._aad,
            info=self._aad,
        )
        return hkdf.derive(secret)

    def encrypt(self, value: Any) -> EncryptedBlob:
        """Encrypt any JSON-serializable value."""
        try:
            plaintext = json.dumps(value, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Value is not serializable for encryption: {type(e).__name__}") from e

        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aesgcm.encrypt(nonce, plaintext, self._aad)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

        return EncryptedBlob(
            ciphertext=_b64(ciphertext),
            iv=_b64(nonce),
            auth_tag=_b64(tag),
            algorithm_id=ALGORITHM_ID,
        )

    def decrypt(self, blob: EncryptedBlob | dict) -> Any:
        """
        Decrypt a blob back into the original value.

        Raises:
            IntegrityError: Tag mismatch, wrong context, bad nonce length,
                unknown algorithm or malformed encoding.
        """
        if isinstance(blob, dict):
            try:
                blob = EncryptedBlob.model_validate(blob)
            except PydanticValidationError as e:
                raise IntegrityError("Malformed encrypted blob") from e

        if blob.algorithm_id != ALGORITHM_ID:
            raise IntegrityError(f"Unsupported algorithm: {blob.algorithm_id}")

        try:
            nonce = _unb64(blob.iv)
            ciphertext = _unb64(blob.ciphertext)
            tag = _unb64(blob.auth_tag)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError("Encrypted blob is not valid base64") from e

        if len(nonce) != NONCE_BYTES:
            raise IntegrityError(f"Invalid IV length: expected {NONCE_BYTES} bytes, got {len(nonce)}")
        if len(tag) != TAG_BYTES:
            raise IntegrityError(f"Invalid auth tag length: expected {TAG_BYTES} bytes, got {len(tag)}")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, self._aad)
        except InvalidTag as e:
            logger.warning("Decryption rejected", context=self.context, reason="auth_tag_mismatch")
            raise IntegrityError("Authentication tag verification failed") from e

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IntegrityError("Decrypted payload is not valid JSON") from e


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)
