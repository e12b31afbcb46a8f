from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from auth import oauth2, signed_token
from auth.errors import BridgeError, MalformedInputError, StateMismatchError, VerificationError
from auth.models import AuthorizationState
from auth.oauth2 import ProviderConfig
from auth.token_store import TokenStore
from auth.urls import join_public_url
from entrabridge.constants import LOGGER, STATE_COOKIE_ENTRA, STATE_COOKIE_GITHUB

logger = LOGGER.getChild("redirect_chain")

AUTHORIZED_MESSAGE = "Authorized and mapped accounts. You can now return to your Copilot Chat."


class RedirectChain:
    """Chains the GitHub and Entra ID authorization-code flows.

    ``/preauth`` sends the browser to GitHub. The GitHub callback exchanges
    the code, resolves the GitHub user id and sends the browser on to Entra ID
    with ``state=<nonce>_<github user id>``. The Entra ID callback exchanges
    its code and stores the Entra token under the GitHub user id.

    Each hop is bound to the browser by an HttpOnly cookie scoped to that
    hop's callback path. The cookie holds the issued state (nonce, GitHub
    user id, creation time) signed with a key derived from both client
    secrets. A hop is accepted only when the cookie verifies, is younger than
    ``state_ttl_seconds`` and carries exactly the nonce and user id found in
    ``state``.
    """

    def __init__(
        self,
        *,
        public_url: str,
        github: ProviderConfig,
        entra: ProviderConfig,
        token_store: TokenStore,
        state_ttl_seconds: int = 600,
        exchange_code_fn=oauth2.exchange_code,
        fetch_user_id_fn=oauth2.fetch_github_user_id,
    ) -> None:
        self.public_url = public_url.rstrip("/")
        self.github = github
        self.entra = entra
        self.token_store = token_store
        self.state_ttl_seconds = state_ttl_seconds
        self._exchange_code_fn = exchange_code_fn
        self._fetch_user_id_fn = fetch_user_id_fn
        self.cookie_key = signed_token.derive_key(github.client_secret, entra.client_secret)

    def redirect_uri(self, provider: ProviderConfig) -> str:
        return join_public_url(self.public_url, provider.callback_path)

    def routes(self) -> list[Route]:
        return [
            Route("/preauth", self._handle_preauth, methods=["GET"], name="preauth"),
            Route(
                self.github.callback_path,
                self._handle_github_callback,
                methods=["GET"],
                name="postauth_github",
            ),
            Route(
                self.entra.callback_path,
                self._handle_entra_callback,
                methods=["GET"],
                name="postauth_entra",
            ),
        ]

    # -- handlers --------------------------------------------------------------

    async def _handle_preauth(self, request: Request) -> Response:
        del request
        state = AuthorizationState.mint()
        auth_url = oauth2.build_github_authorization_url(
            self.github.authorize_url,
            client_id=self.github.client_id,
            redirect_uri=self.redirect_uri(self.github),
            state=state.encode(),
        )

        logger.debug("Redirecting to %s authorization URL", self.github.name)
        response = RedirectResponse(url=auth_url, status_code=302)
        self._set_state_cookie(response, STATE_COOKIE_GITHUB, state, self.github)
        return response

    async def _handle_github_callback(self, request: Request) -> Response:
        try:
            code, state = self._accept_hop(request, STATE_COOKIE_GITHUB, correlated=False)
        except BridgeError as error:
            logger.warning("Rejected %s callback: %s", self.github.name, error)
            return self._error("invalid_request")

        try:
            token = await self._exchange_code_fn(
                self.github.token_url,
                client_id=self.github.client_id,
                client_secret=self.github.client_secret,
                code=code,
                redirect_uri=self.redirect_uri(self.github),
            )
            user_id = await self._fetch_user_id_fn(token.access_token)
        except Exception as error:
            logger.error(
                "Failed to exchange %s authorization code for access token: %s",
                self.github.name,
                error,
            )
            return self._error("invalid_token")

        logger.debug("Resolved %s user id %s", self.github.name, user_id)
        next_state = AuthorizationState.mint(correlation_id=str(user_id))
        auth_url = oauth2.build_entra_authorization_url(
            self.entra.authorize_url,
            client_id=self.entra.client_id,
            redirect_uri=self.redirect_uri(self.entra),
            scopes=self.entra.scopes,
            state=next_state.encode(),
            nonce=next_state.nonce,
        )

        logger.debug("Redirecting to %s authorization URL", self.entra.name)
        response = RedirectResponse(url=auth_url, status_code=302)
        self._clear_state_cookie(response, STATE_COOKIE_GITHUB, self.github)
        self._set_state_cookie(response, STATE_COOKIE_ENTRA, next_state, self.entra)
        return response

    async def _handle_entra_callback(self, request: Request) -> Response:
        try:
            code, state = self._accept_hop(request, STATE_COOKIE_ENTRA, correlated=True)
        except BridgeError as error:
            logger.warning("Rejected %s callback: %s", self.entra.name, error)
            return self._error("invalid_request")

        try:
            token = await self._exchange_code_fn(
                self.entra.token_url,
                client_id=self.entra.client_id,
                client_secret=self.entra.client_secret,
                code=code,
                redirect_uri=self.redirect_uri(self.entra),
            )
            await self.token_store.put(state.correlation_id, token)
        except Exception as error:
            logger.error(
                "Failed to exchange %s authorization code for access token: %s",
                self.entra.name,
                error,
            )
            return self._error("invalid_request")

        logger.info(
            "Mapped %s user %s to an %s token",
            self.github.name,
            state.correlation_id,
            self.entra.name,
        )
        response = PlainTextResponse(AUTHORIZED_MESSAGE, status_code=202)
        self._clear_state_cookie(response, STATE_COOKIE_ENTRA, self.entra)
        return response

    # -- helpers ---------------------------------------------------------------

    def _accept_hop(
        self,
        request: Request,
        cookie_name: str,
        *,
        correlated: bool,
    ) -> tuple[str, AuthorizationState]:
        if request.query_params.get("error"):
            raise MalformedInputError(
                f"Provider returned error {request.query_params.get('error')!r}."
            )

        state = AuthorizationState.decode(request.query_params.get("state"), correlated=correlated)
        cookie_value = request.cookies.get(cookie_name)
        if not cookie_value or not cookie_value.strip():
            raise MalformedInputError(f"Cookie {cookie_name} is missing.")
        issued = AuthorizationState.unseal(cookie_value, self.cookie_key)
        if issued.is_expired(self.state_ttl_seconds):
            raise VerificationError("State has expired.")
        if not issued.matches(state):
            raise StateMismatchError("State value mismatch.")

        code = request.query_params.get("code")
        if not code or not code.strip():
            raise MalformedInputError("Code is missing.")
        return code, issued

    def _set_state_cookie(
        self,
        response: Response,
        cookie_name: str,
        state: AuthorizationState,
        provider: ProviderConfig,
    ) -> None:
        response.set_cookie(
            cookie_name,
            state.seal(self.cookie_key),
            max_age=self.state_ttl_seconds,
            path=provider.callback_path,
            secure=True,
            httponly=True,
            samesite="lax",
        )

    def _clear_state_cookie(
        self,
        response: Response,
        cookie_name: str,
        provider: ProviderConfig,
    ) -> None:
        response.delete_cookie(
            cookie_name,
            path=provider.callback_path,
            secure=True,
            httponly=True,
            samesite="lax",
        )

    def _error(self, code: str, status_code: int = 400) -> Response:
        return JSONResponse({"error": code}, status_code=status_code)
