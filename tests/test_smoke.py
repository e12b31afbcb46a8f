from starlette.testclient import TestClient

import server
from auth.token_store import TokenStore
from tests.oauth_helpers import make_settings

EXPECTED_SERVER_EXPORTS = (
    "build_token_store",
    "build_providers",
    "health_route",
    "create_app",
    "main",
)


def test_server_export_surface() -> None:
    missing = [name for name in EXPECTED_SERVER_EXPORTS if not hasattr(server, name)]
    assert missing == []


def test_app_mounts_every_route() -> None:
    app = server.create_app(make_settings(), token_store=TokenStore())

    paths = {route.path for route in app.routes}

    assert paths == {
        "/preauth",
        "/postauth-github",
        "/postauth-entra",
        "/token",
        "/copilot",
        "/health",
    }


def test_app_honours_custom_callback_paths() -> None:
    settings = make_settings(
        github_callback_path="/callback/github",
        entra_callback_path="/callback/entra",
    )
    app = server.create_app(settings, token_store=TokenStore())

    paths = {route.path for route in app.routes}

    assert "/callback/github" in paths
    assert "/callback/entra" in paths


def test_preauth_redirect_uses_public_url() -> None:
    app = server.create_app(make_settings(), token_store=TokenStore())

    with TestClient(app, base_url="https://testserver") as client:
        response = client.get("/preauth", follow_redirects=False)

    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith("https://github.com/login/oauth/authorize?")
    assert "redirect_uri=https%3A%2F%2Fbridge.example.com%2Fpostauth-github" in location


def test_build_token_store_defaults_to_memory() -> None:
    store = server.build_token_store(make_settings(token_cache_url=""))

    assert store.backend.name == "memory"


def test_build_token_store_uses_redis_url() -> None:
    store = server.build_token_store(make_settings(token_cache_url="redis://localhost:6379/0"))

    assert store.backend.name == "redis"


def test_build_providers_derives_endpoints() -> None:
    github, entra = server.build_providers(make_settings())

    assert github.token_url == "https://github.com/login/oauth/access_token"
    assert entra.authorize_url == (
        "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/authorize"
    )
    assert entra.token_url == "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"
    assert entra.scopes == ["openid", "profile"]
