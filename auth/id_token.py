from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import jwt
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWKError, PyJWKSetError

from auth.errors import KeyNotFoundError, MalformedInputError, UpstreamError, VerificationError
from auth.key_cache import KeyCache
from entrabridge.constants import LOGGER

logger = LOGGER.getChild("id_token")

REQUIRED_CLAIMS = ["exp", "iss", "aud", "sub"]


@dataclass(frozen=True)
class ValidatedClaims:
    subject: str
    claims: dict = field(default_factory=dict)


async def _get_json(http_client: httpx.AsyncClient, url: str, what: str) -> dict:
    try:
        response = await http_client.get(url, headers={"Accept": "application/json"})
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise UpstreamError(
            f"{what} request failed with status {error.response.status_code}.",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamError(f"{what} request failed: {error}") from error

    try:
        payload = response.json()
    except ValueError as error:
        raise UpstreamError(f"{what} response is not valid JSON.") from error
    if not isinstance(payload, dict):
        raise UpstreamError(f"{what} response must be a JSON object.")
    return payload


async def fetch_jwks(issuer: str, *, client: httpx.AsyncClient | None = None) -> PyJWKSet:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        configuration = await _get_json(
            http_client,
            f"{issuer.rstrip('/')}/.well-known/openid-configuration",
            "OpenID configuration",
        )
        jwks_uri = configuration.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise UpstreamError("JWKS URI not found.")
        key_set = await _get_json(http_client, jwks_uri, "JWKS")
    finally:
        if own_client:
            await http_client.aclose()

    try:
        jwks = PyJWKSet.from_dict(key_set)
    except (PyJWKSetError, PyJWKError) as error:
        raise UpstreamError(f"JWKS for {issuer} has no usable keys: {error}") from error

    logger.info("Loaded %s signing keys for issuer %s", len(jwks.keys), issuer)
    return jwks


def find_signing_key(jwks: PyJWKSet, kid: str) -> PyJWK:
    for key in jwks.keys:
        if key.key_id == kid:
            return key
    raise KeyNotFoundError(kid, "JWKS")


class IdTokenValidator:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        fetch_jwks_fn=None,
        leeway: float = 0,
    ) -> None:
        self._client = client
        self.leeway = leeway
        self.jwks: KeyCache[str, PyJWKSet] = KeyCache(fetch_jwks_fn or self._fetch_jwks)

    async def _fetch_jwks(self, issuer: str) -> PyJWKSet:
        return await fetch_jwks(issuer, client=self._client)

    async def validate(self, token: str | None, *, audience: str, issuer: str) -> ValidatedClaims:
        if not token or not token.strip():
            raise MalformedInputError("id_token is missing.")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as error:
            raise MalformedInputError("Invalid id_token format.") from error

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedInputError("Missing 'kid' in id_token.")

        jwks = await self.jwks.get(issuer)
        signing_key = find_signing_key(jwks, kid)

        try:
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=[signing_key.algorithm_name],
                audience=audience,
                issuer=issuer,
                leeway=self.leeway,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as error:
            raise VerificationError("id_token has expired.") from error
        except jwt.InvalidTokenError as error:
            raise VerificationError(f"id_token validation failed: {error}") from error

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise VerificationError("id_token has no subject.")
        return ValidatedClaims(subject=subject, claims=claims)
