from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.errors import BridgeError, ReauthorizationRequired
from auth.id_token import IdTokenValidator
from auth.token_store import TokenStore
from entrabridge.constants import ISSUED_TOKEN_TYPE, LOGGER

logger = LOGGER.getChild("token_endpoint")


class TokenEndpoint:
    def __init__(
        self,
        *,
        validator: IdTokenValidator,
        token_store: TokenStore,
        audience: str,
        issuer: str,
        path: str = "/token",
    ) -> None:
        self.validator = validator
        self.token_store = token_store
        self.audience = audience
        self.issuer = issuer
        self.path = path

    def routes(self) -> list[Route]:
        return [Route(self.path, self._handle_token, methods=["POST"], name="token")]

    async def _handle_token(self, request: Request) -> Response:
        # The chat surface treats 4xx here as fatal, so every failure answers 200.
        form = await request.form()
        subject_token = form.get("subject_token")
        if not isinstance(subject_token, str) or not subject_token.strip():
            logger.warning("Token request without subject_token.")
            return self._reauthorize()

        try:
            claims = await self.validator.validate(
                subject_token,
                audience=self.audience,
                issuer=self.issuer,
            )
        except BridgeError as error:
            logger.warning("Rejected subject_token: %s", error)
            return self._reauthorize()

        user_id = claims.subject
        try:
            record = await self.token_store.fetch(user_id)
        except ReauthorizationRequired as error:
            logger.warning("Re-authorization required for user %s: %s", user_id, error)
            return self._reauthorize()
        except Exception as error:
            logger.error("Token store lookup failed for user %s: %s", user_id, error)
            return self._reauthorize()

        return JSONResponse(
            {
                "access_token": record.access_token,
                "token_type": "Bearer",
                "issued_token_type": ISSUED_TOKEN_TYPE,
                "expires_in": record.remaining_seconds(),
            }
        )

    def _reauthorize(self) -> Response:
        return JSONResponse({"error": "invalid_request"}, status_code=200)
