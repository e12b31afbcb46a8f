from __future__ import annotations

import time
from abc import ABC, abstractmethod

from auth.errors import CredentialNotFoundError, ExpiredCredentialError, MalformedInputError
from auth.models import OAuth2TokenRecord
from entrabridge.constants import LOGGER

logger = LOGGER.getChild("token_store")


class KeyValueBackend(ABC):
    name = "backend"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class MemoryBackend(KeyValueBackend):
    name = "memory"

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value


class RedisBackend(KeyValueBackend):
    name = "redis"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        import redis.asyncio as redis

        return cls(
            redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        )

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(key, value)

    async def aclose(self) -> None:
        await self._redis.aclose()


class TokenStore:
    def __init__(self, backend: KeyValueBackend | None = None) -> None:
        self.backend = backend or MemoryBackend()

    async def put(self, user_id: str, record: OAuth2TokenRecord) -> None:
        await self.backend.set(user_id, record.to_json())
        logger.debug("Stored token for user %s", user_id)

    async def fetch(self, user_id: str, *, now: float | None = None) -> OAuth2TokenRecord:
        raw = await self.backend.get(user_id)
        if raw is None:
            raise CredentialNotFoundError(f"No token stored for user {user_id}.")

        try:
            record = OAuth2TokenRecord.from_json(raw)
        except MalformedInputError as error:
            logger.error("Stored token for user %s is unreadable: %s", user_id, error)
            raise CredentialNotFoundError(f"No usable token stored for user {user_id}.") from error

        if record.is_expired(time.time() if now is None else now):
            raise ExpiredCredentialError(f"Token for user {user_id} has expired.")
        return record

    async def get(self, user_id: str) -> OAuth2TokenRecord | None:
        try:
            return await self.fetch(user_id)
        except CredentialNotFoundError:
            logger.info("Token not found for user %s", user_id)
        except ExpiredCredentialError:
            logger.info("Token expired for user %s", user_id)
        return None

    async def aclose(self) -> None:
        await self.backend.aclose()
