from __future__ import annotations

import base64
import binascii
import re

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_der_public_key

from auth.errors import KeyNotFoundError, UpstreamError
from auth.key_cache import KeyCache
from auth.models import VerificationKey
from entrabridge.constants import GITHUB_COPILOT_KEYS_URL, LOGGER

logger = LOGGER.getChild("signature")

_PEM_BEGIN = re.compile(r"-*BEGIN.*KEY-*")
_PEM_END = re.compile(r"-*END.*KEY-*")
_WHITESPACE = re.compile(r"\s")


def strip_pem_armor(key: str) -> str:
    stripped = _PEM_BEGIN.sub("", key)
    stripped = _PEM_END.sub("", stripped)
    return _WHITESPACE.sub("", stripped)


def find_key(entries: list, key_id: str) -> str:
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if entry.get("key_identifier") == key_id and isinstance(entry.get("key"), str):
            return strip_pem_armor(entry["key"])
    raise KeyNotFoundError(key_id)


def load_public_key(key: VerificationKey) -> ec.EllipticCurvePublicKey:
    public_key = load_der_public_key(key.key_material)
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise ValueError(f"Key {key.key_id} is not an EC public key.")
    return public_key


async def fetch_public_key(
    key_id: str,
    *,
    github_token: str | None = None,
    url: str = GITHUB_COPILOT_KEYS_URL,
    client: httpx.AsyncClient | None = None,
) -> VerificationKey:
    own_client = client is None
    http_client = client or httpx.AsyncClient()
    headers = {"Accept": "application/json"}
    if github_token:
        headers["Authorization"] = f"Bearer {github_token}"

    try:
        response = await http_client.get(url, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise UpstreamError(
            f"Public key request failed with status {error.response.status_code}.",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamError(f"Public key request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        payload = response.json()
    except ValueError as error:
        raise UpstreamError("Public key response is not valid JSON.") from error

    entries = payload.get("public_keys") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        raise UpstreamError("No public keys found.")

    encoded = find_key(entries, key_id)
    try:
        material = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as error:
        raise UpstreamError(f"Public key {key_id} is not valid base64.") from error
    return VerificationKey(key_id=key_id, key_material=material)


class SignatureVerifier:
    def __init__(
        self,
        *,
        keys_url: str = GITHUB_COPILOT_KEYS_URL,
        client: httpx.AsyncClient | None = None,
        fetch_key_fn=None,
    ) -> None:
        self.keys_url = keys_url
        self._client = client
        self._fetch_key_fn = fetch_key_fn or self._fetch_key
        self.keys: KeyCache[str, VerificationKey] = KeyCache(
            self._fetch_key_fn,
            permanent_errors=(KeyNotFoundError,),
        )

    async def _fetch_key(self, key_id: str, *, github_token: str | None = None) -> VerificationKey:
        return await fetch_public_key(
            key_id,
            github_token=github_token,
            url=self.keys_url,
            client=self._client,
        )

    async def verify(
        self,
        payload: bytes | str | None,
        key_id: str | None,
        signature: str | None,
        *,
        github_token: str | None = None,
    ) -> bool:
        if not payload or (isinstance(payload, str) and not payload.strip()):
            logger.warning("Payload is missing or empty.")
            return False
        if not key_id or not key_id.strip():
            logger.warning("Key id is missing or empty.")
            return False
        if not signature or not signature.strip():
            logger.warning("Signature is missing or empty.")
            return False

        payload_bytes = payload.encode("utf-8") if isinstance(payload, str) else payload

        try:
            key = await self.keys.get(key_id, github_token=github_token)
        except KeyNotFoundError:
            logger.warning("Public key %s not found", key_id)
            return False
        except UpstreamError as error:
            logger.error("Could not fetch public key %s: %s", key_id, error)
            return False

        try:
            decoded_signature = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Signature is not valid base64.")
            return False

        try:
            public_key = load_public_key(key)
        except (ValueError, UnsupportedAlgorithm) as error:
            logger.error("Public key %s could not be loaded: %s", key_id, error)
            return False

        try:
            public_key.verify(decoded_signature, payload_bytes, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            logger.warning("Signature verification failed for key %s", key_id)
            return False

        logger.debug("Signature verified for key %s", key_id)
        return True
