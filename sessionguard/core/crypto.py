from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from sessionguard.core.errors import InvalidTokenError
from sessionguard.core.sessions.models import HeartbeatClaims

TOKEN_VERSION = "v1"
TOKEN_AAD = b"sessionguard.heartbeat_token.v1"
NONCE_BYTES = 12


def key_id_from_secret(secret: str) -> str:
    h = hashlib.sha256(str(secret).encode("utf-8")).hexdigest()
    return h[:16]


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def _b64d(s: str) -> bytes:
    padded = s + "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _derive(secret: str, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=info).derive(str(secret).encode("utf-8"))


def derive_keys(secret: str) -> tuple[bytes, bytes]:
    """
    Returns (encryption_key, nonce_key), both 32 bytes, derived from the
    shared secret with HKDF-SHA256.
    """
    if not secret:
        raise ValueError("Shared key must not be empty.")
    return _derive(secret, b"sessionguard.enc"), _derive(secret, b"sessionguard.nonce")


def aesgcm_encrypt_deterministic(secret: str, plaintext: bytes, aad: bytes = TOKEN_AAD) -> bytes:
    """
    AES-256-GCM with a synthetic nonce (HMAC of the plaintext). Identical
    input gives identical output; distinct plaintexts get distinct nonces.
    """
    enc_key, nonce_key = derive_keys(secret)
    nonce = hmac.new(nonce_key, aad + b"\x00" + plaintext, hashlib.sha256).digest()[:NONCE_BYTES]
    ct = AESGCM(enc_key).encrypt(nonce, plaintext, aad or None)
    return nonce + ct


def aesgcm_decrypt(secret: str, blob: bytes, aad: bytes = TOKEN_AAD) -> bytes:
    if len(blob) <= NONCE_BYTES:
        raise ValueError("Encrypted blob too short.")
    enc_key, _ = derive_keys(secret)
    nonce, ct = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
    return AESGCM(enc_key).decrypt(nonce, ct, aad or None)


def encrypt_json(payload: Dict[str, Any], secret: str) -> str:
    pt = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return f"{TOKEN_VERSION}.{_b64e(aesgcm_encrypt_deterministic(secret, pt))}"


def decrypt_json(token: str, secret: str) -> Dict[str, Any]:
    if not isinstance(token, str) or "." not in token:
        raise ValueError("Malformed token.")
    version, body = token.split(".", 1)
    if version != TOKEN_VERSION:
        raise ValueError("Unsupported token version.")
    obj = json.loads(aesgcm_decrypt(secret, _b64d(body)).decode("utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("Token payload must be an object.")
    return obj


def encode_token(claims: HeartbeatClaims, secret: str) -> str:
    return encrypt_json(claims.to_payload(), secret)


def decode_token(token: Any, secret: str) -> HeartbeatClaims:
    try:
        payload = decrypt_json(token, secret)
        return HeartbeatClaims.from_payload(payload)
    except (InvalidTag, ValueError, TypeError, binascii.Error, UnicodeDecodeError) as e:
        # json.JSONDecodeError is a ValueError
        raise InvalidTokenError(reason=type(e).__name__) from e
