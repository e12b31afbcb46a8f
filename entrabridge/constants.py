from __future__ import annotations

import logging

LOGGER = logging.getLogger("entrabridge")
APP_VERSION = "0.1.0"

STATE_COOKIE_GITHUB = "oauth_state_github"
STATE_COOKIE_ENTRA = "oauth_state_entra"

GITHUB_KEY_ID_HEADER = "X-GitHub-Public-Key-Identifier"
GITHUB_SIGNATURE_HEADER = "X-GitHub-Public-Key-Signature"
GITHUB_TOKEN_HEADER = "X-GitHub-Token"
AZURE_DEVOPS_TOKEN_HEADER = "X-Azure-DevOps-Token"

GITHUB_COPILOT_KEYS_URL = "https://api.github.com/meta/public_keys/copilot_api"
DEFAULT_GITHUB_INSTANCE = "https://github.com/login/oauth"
DEFAULT_GITHUB_ISSUER = "https://github.com/login/oauth"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_ENTRA_INSTANCE = "https://login.microsoftonline.com/"
DEFAULT_ENTRA_SCOPES = (
    "openid profile email https://app.vssps.visualstudio.com/user_impersonation"
)

ISSUED_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:access_token"
USER_AGENT = f"entrabridge/{APP_VERSION}"
