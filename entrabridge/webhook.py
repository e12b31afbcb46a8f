from __future__ import annotations

import json

from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from auth.errors import UpstreamError
from auth.signature import SignatureVerifier
from auth.urls import is_https_url, join_public_url

from .completions import request_completion, simple_response_message
from .constants import (
    AZURE_DEVOPS_TOKEN_HEADER,
    GITHUB_KEY_ID_HEADER,
    GITHUB_SIGNATURE_HEADER,
    GITHUB_TOKEN_HEADER,
    LOGGER,
)

logger = LOGGER.getChild("webhook")

UNAUTHORIZED_MESSAGE = "You are not a valid sender. Request unauthorized."
PARSE_ERROR_MESSAGE = "Failed to parse your request. Please try again."
AGENT_ERROR_MESSAGE = "Sorry, something went wrong processing your request."
MISSING_ORGANIZATION_MESSAGE = "Please provide a Azure DevOps Organization URL."
ORGANIZATION_PROMPT = {
    "role": "system",
    "content": (
        "Did the user already give a Azure DevOps Organization URL? If no then answer "
        "with 'NO', otherwise answer with the URL e.g. 'https://dev.azure.com/org123'."
    ),
}


async def acknowledge_agent(
    payload: dict,
    *,
    github_token: str,
    azure_devops_token: str,
    organization_url: str,
) -> str:
    del payload, github_token, azure_devops_token
    return f"Your GitHub and Azure DevOps accounts are linked for {organization_url}."


class CopilotWebhook:
    """Signature-verified entry point for chat messages sent by GitHub.

    Verification failures answer 401. Everything after verification answers
    200 with a chat-formatted reply, so the chat surface shows the message
    instead of a transport error.
    """

    def __init__(
        self,
        *,
        verifier: SignatureVerifier,
        public_url: str,
        agent_fn=acknowledge_agent,
        completion_fn=request_completion,
        path: str = "/copilot",
    ) -> None:
        self.verifier = verifier
        self.public_url = public_url.rstrip("/")
        self.path = path
        self._agent_fn = agent_fn
        self._completion_fn = completion_fn

    def routes(self) -> list[Route]:
        return [Route(self.path, self._handle_message, methods=["POST"], name="copilot")]

    async def _handle_message(self, request: Request) -> Response:
        body = await request.body()
        github_token = request.headers.get(GITHUB_TOKEN_HEADER) or None

        verified = await self.verifier.verify(
            body,
            request.headers.get(GITHUB_KEY_ID_HEADER),
            request.headers.get(GITHUB_SIGNATURE_HEADER),
            github_token=github_token,
        )
        if not verified:
            logger.warning("Invalid GitHub request.")
            return self._reply(UNAUTHORIZED_MESSAGE, status_code=401)

        azure_devops_token = request.headers.get(AZURE_DEVOPS_TOKEN_HEADER, "").strip()
        if not azure_devops_token:
            logger.info("Azure DevOps token is missing; asking user to re-authenticate.")
            preauth_url = join_public_url(self.public_url, "/preauth")
            return self._reply(
                "Please reauthenticate the GitHub Copilot Extension to access Azure DevOps "
                f"by visiting {preauth_url}"
            )

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Failed to parse request body as JSON.")
            return self._reply(PARSE_ERROR_MESSAGE)
        if not isinstance(payload, dict):
            logger.warning("Request body is not a JSON object.")
            return self._reply(PARSE_ERROR_MESSAGE)

        try:
            organization_url = await self._organization_url(payload, github_token or "")
        except UpstreamError as error:
            logger.error("Organization URL lookup failed: %s", error)
            return self._reply(AGENT_ERROR_MESSAGE)
        if organization_url is None:
            return self._reply(MISSING_ORGANIZATION_MESSAGE)

        try:
            answer = await self._agent_fn(
                payload,
                github_token=github_token or "",
                azure_devops_token=azure_devops_token,
                organization_url=organization_url,
            )
        except Exception:
            logger.exception("Agent failed to process request.")
            return self._reply(AGENT_ERROR_MESSAGE)

        return self._reply(answer)

    async def _organization_url(self, payload: dict, github_token: str) -> str | None:
        messages = payload.get("messages")
        if not isinstance(messages, list):
            messages = []

        completion = await self._completion_fn(github_token, [*messages, ORGANIZATION_PROMPT])
        _, answer = completion.last_message()
        organization_url = answer.strip()
        if organization_url == "NO" or not is_https_url(organization_url):
            logger.info("User did not provide an Azure DevOps organization URL.")
            return None
        logger.debug("Using Azure DevOps organization %s", organization_url)
        return organization_url

    def _reply(self, message: str, status_code: int = 200) -> Response:
        return Response(
            simple_response_message(message),
            status_code=status_code,
            media_type="text/event-stream",
        )
