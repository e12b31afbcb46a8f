from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field

import httpx

from auth.errors import MalformedInputError, UpstreamError
from auth.models import OAuth2TokenRecord
from entrabridge.constants import DEFAULT_GITHUB_API_URL

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


def build_github_authorization_url(
    authorize_url: str,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


def build_entra_authorization_url(
    authorize_url: str,
    *,
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    nonce: str,
) -> str:
    query = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "response_mode": "query",
        "scope": " ".join(scopes),
        "state": state,
        "nonce": nonce,
    }
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


def parse_token_response(response: httpx.Response) -> OAuth2TokenRecord:
    media_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if media_type == JSON_CONTENT_TYPE:
        try:
            payload = response.json()
        except ValueError as error:
            raise UpstreamError("Token response is not valid JSON.") from error
        if not isinstance(payload, dict):
            raise UpstreamError("Token response must be a JSON object.")
    elif media_type == FORM_CONTENT_TYPE:
        payload = dict(urllib.parse.parse_qsl(response.text, keep_blank_values=True))
    else:
        raise UpstreamError(f"Unsupported token response content type: {media_type or 'none'}")

    if payload.get("error"):
        raise UpstreamError(f"Token request was rejected: {payload['error']}")

    try:
        return OAuth2TokenRecord.from_payload(payload)
    except MalformedInputError as error:
        raise UpstreamError(str(error)) from error


async def exchange_code(
    token_url: str,
    *,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    client: httpx.AsyncClient | None = None,
) -> OAuth2TokenRecord:
    own_client = client is None
    http_client = client or httpx.AsyncClient()
    payload = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "redirect_uri": redirect_uri,
    }

    try:
        response = await http_client.post(
            token_url,
            data=payload,
            headers={"Accept": JSON_CONTENT_TYPE},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise UpstreamError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamError(f"Token request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    return parse_token_response(response)


async def fetch_github_user_id(
    access_token: str,
    *,
    api_url: str = DEFAULT_GITHUB_API_URL,
    client: httpx.AsyncClient | None = None,
) -> str:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.get(
            f"{api_url.rstrip('/')}/user",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
            },
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise UpstreamError(
            f"GitHub user request failed with status {error.response.status_code}.",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamError(f"GitHub user request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        payload = response.json()
    except ValueError as error:
        raise UpstreamError("GitHub user response is not valid JSON.") from error

    user_id = payload.get("id") if isinstance(payload, dict) else None
    if isinstance(user_id, bool) or not isinstance(user_id, (int, str)) or not str(user_id):
        raise UpstreamError("Failed to retrieve user ID.")
    return str(user_id)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str
    callback_path: str
    scopes: list[str] = field(default_factory=list)
