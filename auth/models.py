from __future__ import annotations

import hmac
import json
import secrets
import time
from dataclasses import asdict, dataclass, field

from auth import signed_token
from auth.errors import MalformedInputError

# Nonces are hex, so the first separator in a state value always ends the nonce.
STATE_SEPARATOR = "_"
SIGNATURE_ALGORITHM = "SHA256withECDSA"


def generate_nonce() -> str:
    return secrets.token_hex(16)


@dataclass(frozen=True)
class AuthorizationState:
    nonce: str
    created_at: float = field(default_factory=time.time)
    correlation_id: str | None = None

    @classmethod
    def mint(cls, correlation_id: str | None = None) -> "AuthorizationState":
        return cls(nonce=generate_nonce(), correlation_id=correlation_id)

    def encode(self) -> str:
        if self.correlation_id is None:
            return self.nonce
        return f"{self.nonce}{STATE_SEPARATOR}{self.correlation_id}"

    @classmethod
    def decode(cls, value: str | None, *, correlated: bool = False) -> "AuthorizationState":
        if value is None or not value.strip():
            raise MalformedInputError("State is missing.")

        if not correlated:
            return cls(nonce=value)

        nonce, separator, correlation_id = value.partition(STATE_SEPARATOR)
        if not separator or not nonce.strip() or not correlation_id.strip():
            raise MalformedInputError("State does not carry a correlation id.")
        return cls(nonce=nonce, correlation_id=correlation_id)

    def seal(self, key: str) -> str:
        payload = {"n": self.nonce, "t": self.created_at}
        if self.correlation_id is not None:
            payload["c"] = self.correlation_id
        return signed_token.encode(payload, key)

    @classmethod
    def unseal(cls, value: str | None, key: str) -> "AuthorizationState":
        if value is None or not value.strip():
            raise MalformedInputError("State cookie is missing.")

        payload = signed_token.decode(value, key)
        nonce = payload.get("n")
        created_at = payload.get("t")
        correlation_id = payload.get("c")
        if not isinstance(nonce, str) or not nonce.strip():
            raise MalformedInputError("State cookie has no nonce.")
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            raise MalformedInputError("State cookie has no creation time.")
        if correlation_id is not None and not isinstance(correlation_id, str):
            raise MalformedInputError("State cookie correlation id must be a string.")
        return cls(nonce=nonce, created_at=float(created_at), correlation_id=correlation_id)

    def is_expired(self, ttl_seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return self.created_at + ttl_seconds < current

    def matches(self, other: "AuthorizationState") -> bool:
        """Compare nonce and correlation id in constant time; creation time is ignored."""
        if not self.nonce.strip() or not other.nonce.strip():
            return False
        if (self.correlation_id is None) != (other.correlation_id is None):
            return False
        same_nonce = hmac.compare_digest(self.nonce.encode("utf-8"), other.nonce.encode("utf-8"))
        same_correlation = hmac.compare_digest(
            (self.correlation_id or "").encode("utf-8"),
            (other.correlation_id or "").encode("utf-8"),
        )
        return same_nonce and same_correlation


@dataclass
class OAuth2TokenRecord:
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str | None = None
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return self.expires_at < current

    def remaining_seconds(self, now: float | None = None) -> int:
        current = time.time() if now is None else now
        return max(0, int(self.expires_at - current))

    @classmethod
    def from_payload(cls, payload: dict, *, issued_at: float | None = None) -> "OAuth2TokenRecord":
        access_token = payload.get("access_token")
        token_type = payload.get("token_type") or "bearer"
        expires_in = payload.get("expires_in", 0)
        refresh_token = payload.get("refresh_token") or None

        if not isinstance(access_token, str) or not access_token:
            raise MalformedInputError("Token response missing access_token.")
        if not isinstance(token_type, str):
            raise MalformedInputError("Token response token_type must be a string.")
        if isinstance(expires_in, bool):
            raise MalformedInputError("Token response expires_in must be an integer.")
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            raise MalformedInputError("Token response expires_in must be an integer.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise MalformedInputError("Token response refresh_token must be a string.")

        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_in=expires_in,
            refresh_token=refresh_token,
            issued_at=time.time() if issued_at is None else issued_at,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "OAuth2TokenRecord":
        try:
            payload = json.loads(raw)
        except ValueError as error:
            raise MalformedInputError("Stored token record is not valid JSON.") from error
        if not isinstance(payload, dict):
            raise MalformedInputError("Stored token record must be a JSON object.")

        issued_at = payload.get("issued_at")
        if not isinstance(issued_at, (int, float)) or isinstance(issued_at, bool):
            raise MalformedInputError("Stored token record missing issued_at.")
        return cls.from_payload(payload, issued_at=float(issued_at))


@dataclass(frozen=True)
class VerificationKey:
    key_id: str
    key_material: bytes
    algorithm: str = SIGNATURE_ALGORITHM
