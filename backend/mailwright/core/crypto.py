from __future__ import annotations

import base64
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


_AES_GCM_NONCE_BYTES = 12
_ALGORITHM = "AES-256-GCM"


class SecretCryptoError(RuntimeError):
    def __init__(self, message: str, *, reason_code: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code


def encrypt_secret(value: str, *, master_key_b64: str) -> str:
    """Envelope-encrypt a secret: a random data key seals the value and the master key seals the data key."""
    dek = os.urandom(32)
    payload_iv, payload_ciphertext = _aes256_gcm_encrypt(value.encode("utf-8"), dek)

    master_key = load_master_key(master_key_b64)
    dek_iv, encrypted_dek = _aes256_gcm_encrypt(dek, master_key)

    blob = {
        "alg": _ALGORITHM,
        "ciphertext_b64": _b64e(payload_ciphertext),
        "payload_iv_b64": _b64e(payload_iv),
        "encrypted_dek_b64": _b64e(encrypted_dek),
        "dek_iv_b64": _b64e(dek_iv),
    }
    return json.dumps(blob, separators=(",", ":"), sort_keys=True)


def decrypt_secret(blob: str, *, master_key_b64: str) -> str:
    try:
        payload = json.loads(blob)
    except ValueError as exc:
        raise SecretCryptoError("Stored secret is not decryptable.", reason_code="invalid_secret_payload") from exc
    if not isinstance(payload, dict):
        raise SecretCryptoError("Stored secret must be a JSON object.", reason_code="invalid_secret_payload")
    if payload.get("alg") != _ALGORITHM:
        raise SecretCryptoError(
            f"Unsupported secret algorithm '{payload.get('alg')}'.",
            reason_code="invalid_secret_payload",
        )
    try:
        encrypted_dek = _b64d(str(payload["encrypted_dek_b64"]))
        dek_iv = _b64d(str(payload["dek_iv_b64"]))
        payload_iv = _b64d(str(payload["payload_iv_b64"]))
        ciphertext = _b64d(str(payload["ciphertext_b64"]))
    except (KeyError, ValueError) as exc:
        raise SecretCryptoError("Stored secret is not decryptable.", reason_code="invalid_secret_payload") from exc

    master_key = load_master_key(master_key_b64)
    try:
        dek = _aes256_gcm_decrypt(encrypted_dek, master_key, dek_iv)
        plaintext = _aes256_gcm_decrypt(ciphertext, dek, payload_iv)
    except (InvalidTag, ValueError) as exc:
        raise SecretCryptoError("Stored secret is not decryptable.", reason_code="invalid_secret_payload") from exc
    return plaintext.decode("utf-8")


def load_master_key(raw: str) -> bytes:
    raw = raw.strip()
    if not raw:
        raise SecretCryptoError(
            "PLATFORM_MASTER_KEY is required for secret encryption.",
            reason_code="master_key_missing",
        )
    try:
        key = base64.b64decode(raw, validate=True)
    except ValueError as exc:
        raise SecretCryptoError("PLATFORM_MASTER_KEY must be valid base64.", reason_code="master_key_invalid") from exc
    if len(key) != 32:
        raise SecretCryptoError(
            "PLATFORM_MASTER_KEY must decode to 32 bytes for AES-256.",
            reason_code="master_key_invalid",
        )
    return key


def _b64e(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64d(raw: str) -> bytes:
    return base64.b64decode(raw.encode("ascii"))


def _aes256_gcm_encrypt(plaintext: bytes, key: bytes) -> tuple[bytes, bytes]:
    nonce = os.urandom(_AES_GCM_NONCE_BYTES)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return nonce, ciphertext


def _aes256_gcm_decrypt(ciphertext: bytes, key: bytes, nonce: bytes) -> bytes:
    return AESGCM(key).decrypt(nonce, ciphertext, None)
