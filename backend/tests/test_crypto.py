import json

import pytest

from conftest import MASTER_KEY_B64
from mailwright.core.crypto import SecretCryptoError, decrypt_secret, encrypt_secret, load_master_key


def test_encrypt_secret_hides_plaintext() -> None:
    blob = encrypt_secret("AIza-test-key", master_key_b64=MASTER_KEY_B64)

    assert "AIza-test-key" not in blob
    assert json.loads(blob)["alg"] == "AES-256-GCM"
    assert decrypt_secret(blob, master_key_b64=MASTER_KEY_B64) == "AIza-test-key"


def test_decrypt_secret_rejects_wrong_master_key() -> None:
    blob = encrypt_secret("AIza-test-key", master_key_b64=MASTER_KEY_B64)
    other_key = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="

    with pytest.raises(SecretCryptoError) as exc_info:
        decrypt_secret(blob, master_key_b64=other_key)
    assert exc_info.value.reason_code == "invalid_secret_payload"


@pytest.mark.parametrize("blob", ["plain-text", "[]", json.dumps({"alg": "ROT13"}), json.dumps({"alg": "AES-256-GCM"})])
def test_decrypt_secret_rejects_malformed_payloads(blob: str) -> None:
    with pytest.raises(SecretCryptoError):
        decrypt_secret(blob, master_key_b64=MASTER_KEY_B64)


@pytest.mark.parametrize(
    ("raw", "reason_code"),
    [("", "master_key_missing"), ("not base64!", "master_key_invalid"), ("c2hvcnQ=", "master_key_invalid")],
)
def test_load_master_key_validation(raw: str, reason_code: str) -> None:
    with pytest.raises(SecretCryptoError) as exc_info:
        load_master_key(raw)
    assert exc_info.value.reason_code == reason_code
