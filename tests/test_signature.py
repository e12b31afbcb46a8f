import base64
import logging

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from auth.errors import KeyNotFoundError, UpstreamError
from auth.models import VerificationKey
from auth.signature import (
    SignatureVerifier,
    fetch_public_key,
    find_key,
    strip_pem_armor,
)
from entrabridge.constants import GITHUB_COPILOT_KEYS_URL
from tests.oauth_helpers import public_key_pem, sign_payload

PAYLOAD = b'{"messages":[{"role":"user","content":"hello"}]}'


class KeyFetcher:
    def __init__(self, keys: dict[str, str]) -> None:
        self.keys = keys
        self.calls: list[tuple[str, str | None]] = []

    async def __call__(self, key_id: str, *, github_token: str | None = None) -> VerificationKey:
        self.calls.append((key_id, github_token))
        if key_id not in self.keys:
            raise KeyNotFoundError(key_id)
        material = base64.b64decode(strip_pem_armor(self.keys[key_id]))
        return VerificationKey(key_id=key_id, key_material=material)


def _flip_bit(data: bytes, index: int) -> bytes:
    mutated = bytearray(data)
    mutated[index] ^= 0x01
    return bytes(mutated)


def test_strip_pem_armor_removes_headers_and_whitespace(ec_private_key) -> None:
    pem = public_key_pem(ec_private_key)

    stripped = strip_pem_armor(pem)

    assert "BEGIN" not in stripped
    assert "END" not in stripped
    assert "\n" not in stripped
    base64.b64decode(stripped, validate=True)


def test_find_key_raises_for_unknown_identifier() -> None:
    entries = [{"key_identifier": "known", "key": "abc"}]

    with pytest.raises(KeyNotFoundError):
        find_key(entries, "unknown")


@pytest.mark.asyncio
async def test_valid_signature_verifies(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)

    assert await verifier.verify(PAYLOAD, "key-1", sign_payload(ec_private_key, PAYLOAD)) is True


@pytest.mark.asyncio
async def test_string_payload_is_verified_as_utf8(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)
    signature = sign_payload(ec_private_key, PAYLOAD)

    assert await verifier.verify(PAYLOAD.decode("utf-8"), "key-1", signature) is True


@pytest.mark.asyncio
async def test_mutated_payload_fails(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)
    signature = sign_payload(ec_private_key, PAYLOAD)

    for index in (0, len(PAYLOAD) // 2, len(PAYLOAD) - 1):
        assert await verifier.verify(_flip_bit(PAYLOAD, index), "key-1", signature) is False


@pytest.mark.asyncio
async def test_mutated_signature_fails(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)
    raw_signature = base64.b64decode(sign_payload(ec_private_key, PAYLOAD))

    for index in (0, len(raw_signature) // 2, len(raw_signature) - 1):
        mutated = base64.b64encode(_flip_bit(raw_signature, index)).decode("ascii")
        assert await verifier.verify(PAYLOAD, "key-1", mutated) is False


@pytest.mark.asyncio
async def test_signature_from_other_key_fails(ec_private_key) -> None:
    other_key = ec.generate_private_key(ec.SECP256R1())
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)

    assert await verifier.verify(PAYLOAD, "key-1", sign_payload(other_key, PAYLOAD)) is False


@pytest.mark.asyncio
async def test_known_key_is_fetched_once(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)
    signature = sign_payload(ec_private_key, PAYLOAD)

    assert await verifier.verify(PAYLOAD, "key-1", signature) is True
    assert await verifier.verify(PAYLOAD, "key-1", signature) is True

    assert fetcher.calls == [("key-1", None)]


@pytest.mark.asyncio
async def test_unknown_key_fails_closed_and_is_not_refetched(ec_private_key, caplog) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)
    signature = sign_payload(ec_private_key, PAYLOAD)

    with caplog.at_level(logging.WARNING):
        assert await verifier.verify(PAYLOAD, "unknown", signature) is False
        assert await verifier.verify(PAYLOAD, "unknown", signature) is False

    assert fetcher.calls == [("unknown", None)]
    assert "Public key unknown not found" in caplog.text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "key_id", "signature"),
    [
        (b"", "key-1", "c2ln"),
        (None, "key-1", "c2ln"),
        ("   ", "key-1", "c2ln"),
        (PAYLOAD, "", "c2ln"),
        (PAYLOAD, None, "c2ln"),
        (PAYLOAD, "key-1", ""),
        (PAYLOAD, "key-1", None),
    ],
)
async def test_missing_inputs_fail_without_fetching(payload, key_id, signature) -> None:
    fetcher = KeyFetcher({})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)

    assert await verifier.verify(payload, key_id, signature) is False
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_signature_that_is_not_base64_fails(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)

    assert await verifier.verify(PAYLOAD, "key-1", "not base64!!") is False


@pytest.mark.asyncio
async def test_github_token_is_passed_to_fetch(ec_private_key) -> None:
    fetcher = KeyFetcher({"key-1": public_key_pem(ec_private_key)})
    verifier = SignatureVerifier(fetch_key_fn=fetcher)

    await verifier.verify(PAYLOAD, "key-1", sign_payload(ec_private_key, PAYLOAD), github_token="gh")

    assert fetcher.calls == [("key-1", "gh")]


@pytest.mark.asyncio
async def test_fetch_public_key_parses_listing(httpx_mock, ec_private_key) -> None:
    httpx_mock.add_response(
        url=GITHUB_COPILOT_KEYS_URL,
        method="GET",
        json={
            "public_keys": [
                {"key_identifier": "other", "key": "ignored", "is_current": False},
                {
                    "key_identifier": "key-1",
                    "key": public_key_pem(ec_private_key),
                    "is_current": True,
                },
            ]
        },
    )

    key = await fetch_public_key("key-1", github_token="gh-token")

    assert key.key_id == "key-1"
    assert key.key_material
    request = httpx_mock.get_requests()[0]
    assert request.headers["Authorization"] == "Bearer gh-token"


@pytest.mark.asyncio
async def test_fetch_public_key_without_token_sends_no_authorization(
    httpx_mock, ec_private_key
) -> None:
    httpx_mock.add_response(
        url=GITHUB_COPILOT_KEYS_URL,
        method="GET",
        json={"public_keys": [{"key_identifier": "key-1", "key": public_key_pem(ec_private_key)}]},
    )

    await fetch_public_key("key-1")

    assert "Authorization" not in httpx_mock.get_requests()[0].headers


@pytest.mark.asyncio
async def test_fetch_public_key_missing_listing(httpx_mock) -> None:
    httpx_mock.add_response(url=GITHUB_COPILOT_KEYS_URL, method="GET", json={"keys": []})

    with pytest.raises(UpstreamError, match="No public keys found"):
        await fetch_public_key("key-1")


@pytest.mark.asyncio
async def test_fetch_public_key_error_status(httpx_mock) -> None:
    httpx_mock.add_response(url=GITHUB_COPILOT_KEYS_URL, method="GET", status_code=503)

    with pytest.raises(UpstreamError, match="status 503"):
        await fetch_public_key("key-1")


@pytest.mark.asyncio
async def test_upstream_failure_fails_closed(httpx_mock, ec_private_key) -> None:
    httpx_mock.add_response(url=GITHUB_COPILOT_KEYS_URL, method="GET", status_code=500)
    verifier = SignatureVerifier()

    assert await verifier.verify(PAYLOAD, "key-1", sign_payload(ec_private_key, PAYLOAD)) is False
