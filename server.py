from __future__ import annotations

import contextlib
import functools

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth import oauth2
from auth.id_token import IdTokenValidator
from auth.oauth2 import ProviderConfig
from auth.redirect_chain import RedirectChain
from auth.signature import SignatureVerifier
from auth.token_endpoint import TokenEndpoint
from auth.token_store import MemoryBackend, RedisBackend, TokenStore
from entrabridge.constants import APP_VERSION, LOGGER
from entrabridge.env import (
    Settings,
    get_bind_address,
    load_env,
    load_settings,
    setup_logging,
    validate_env,
)
from entrabridge.completions import request_completion
from entrabridge.http import RequestLoggingMiddleware, build_http_client
from entrabridge.webhook import CopilotWebhook, acknowledge_agent


def build_token_store(settings: Settings) -> TokenStore:
    if settings.token_cache_url:
        return TokenStore(RedisBackend.from_url(settings.token_cache_url))
    LOGGER.warning("TOKEN_CACHE_URL is not set; tokens are kept in process memory only.")
    return TokenStore(MemoryBackend())


def build_providers(settings: Settings) -> tuple[ProviderConfig, ProviderConfig]:
    github = ProviderConfig(
        name="GitHub",
        authorize_url=settings.github_authorize_url,
        token_url=settings.github_token_url,
        client_id=settings.github_client_id,
        client_secret=settings.github_client_secret,
        callback_path=settings.github_callback_path,
    )
    entra = ProviderConfig(
        name="Entra ID",
        authorize_url=settings.entra_authorize_url,
        token_url=settings.entra_token_url,
        client_id=settings.entra_client_id,
        client_secret=settings.entra_client_secret,
        callback_path=settings.entra_callback_path,
        scopes=list(settings.entra_scopes),
    )
    return github, entra


def health_route(token_store: TokenStore) -> Route:
    async def health(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "token_store": token_store.backend.name,
            }
        )

    return Route("/health", health, methods=["GET"], name="health")


def create_app(
    settings: Settings | None = None,
    *,
    token_store: TokenStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    agent_fn=acknowledge_agent,
) -> Starlette:
    if settings is None:
        load_env()
        validate_env()
        settings = load_settings()
        setup_logging(settings.debug)

    http_client = http_client or build_http_client(timeout=settings.http_timeout)
    token_store = token_store or build_token_store(settings)
    github, entra = build_providers(settings)

    redirect_chain = RedirectChain(
        public_url=settings.public_url,
        github=github,
        entra=entra,
        token_store=token_store,
        exchange_code_fn=functools.partial(oauth2.exchange_code, client=http_client),
        fetch_user_id_fn=functools.partial(
            oauth2.fetch_github_user_id,
            api_url=settings.github_api_url,
            client=http_client,
        ),
    )
    token_endpoint = TokenEndpoint(
        validator=IdTokenValidator(client=http_client),
        token_store=token_store,
        audience=settings.github_client_id,
        issuer=settings.github_issuer,
    )
    webhook = CopilotWebhook(
        verifier=SignatureVerifier(client=http_client),
        public_url=settings.public_url,
        agent_fn=agent_fn,
        completion_fn=functools.partial(request_completion, client=http_client),
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        del app
        try:
            yield
        finally:
            await http_client.aclose()
            await token_store.aclose()

    routes = [
        *redirect_chain.routes(),
        *token_endpoint.routes(),
        *webhook.routes(),
        health_route(token_store),
    ]
    middleware = [Middleware(RequestLoggingMiddleware)] if settings.debug else []
    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.settings = settings
    app.state.redirect_chain = redirect_chain
    app.state.token_endpoint = token_endpoint
    app.state.webhook = webhook
    app.state.token_store = token_store
    return app


def main() -> None:
    app = create_app()
    host, port = get_bind_address()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
