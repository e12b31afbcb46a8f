from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json

from auth.errors import MalformedInputError, VerificationError


def derive_key(*secrets: str) -> str:
    """Derive a stable signing key from the provider client secrets."""
    material = ":".join(secrets)
    return hashlib.sha256(f"entrabridge:{material}".encode()).hexdigest()


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(value: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as error:
        raise MalformedInputError("Invalid token encoding.") from error


def encode(payload: dict, key: str) -> str:
    data = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    return f"{_b64encode(data)}.{_b64encode(sig)}"


def decode(token: str, key: str) -> dict:
    data_b64, separator, sig_b64 = token.partition(".")
    if not separator or not data_b64 or not sig_b64:
        raise MalformedInputError("Invalid token format.")
    data = _b64decode(data_b64)
    expected_sig = hmac.new(key.encode(), data, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, _b64decode(sig_b64)):
        raise VerificationError("Token signature verification failed.")

    try:
        payload = json.loads(data)
    except ValueError as error:
        raise MalformedInputError("Token payload is not valid JSON.") from error
    if not isinstance(payload, dict):
        raise MalformedInputError("Token payload must be a JSON object.")
    return payload
