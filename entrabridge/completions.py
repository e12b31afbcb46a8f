from __future__ import annotations

import json
from dataclasses import dataclass, field

import httpx

from auth.errors import UpstreamError

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
JSON_CONTENT_TYPE = "application/json"
DONE_MARKER = "[DONE]"
COPILOT_COMPLETIONS_URL = "https://api.githubcopilot.com/chat/completions"
DEFAULT_COMPLETION_MODEL = "gpt-4o"


def simple_response_message(message: str) -> str:
    """Format a single assistant message the way the chat surface expects a streamed reply."""
    chunk = {
        "choices": [
            {
                "finish_reason": "stop",
                "delta": {"role": "assistant", "content": message},
            }
        ]
    }
    return f"data: {json.dumps(chunk, separators=(',', ':'))}\n\ndata: {DONE_MARKER}\n\n"


@dataclass(frozen=True)
class StreamedCompletion:
    chunks: list[dict] = field(default_factory=list)
    kind: str = "stream"

    def last_message(self) -> tuple[str, str]:
        role = "assistant"
        content: list[str] = []
        for chunk in self.chunks:
            choices = chunk.get("choices") or []
            if not choices or not isinstance(choices[0], dict):
                continue
            delta = choices[0].get("delta") or {}
            if isinstance(delta.get("role"), str):
                role = delta["role"]
            if isinstance(delta.get("content"), str):
                content.append(delta["content"])
        return role, "".join(content)


@dataclass(frozen=True)
class JsonCompletion:
    payload: dict = field(default_factory=dict)
    kind: str = "json"

    def last_message(self) -> tuple[str, str]:
        choices = self.payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return "assistant", ""
        message = choices[0].get("message") or {}
        role = message.get("role") if isinstance(message.get("role"), str) else "assistant"
        content = message.get("content") if isinstance(message.get("content"), str) else ""
        return role, content


CompletionResponse = StreamedCompletion | JsonCompletion


def _parse_event_stream(body: str) -> StreamedCompletion:
    chunks: list[dict] = []
    for line in body.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == DONE_MARKER:
            break
        if not data:
            continue
        try:
            chunk = json.loads(data)
        except ValueError as error:
            raise ValueError(f"Invalid event-stream chunk: {data[:80]}") from error
        if isinstance(chunk, dict):
            chunks.append(chunk)
    return StreamedCompletion(chunks=chunks)


def decode_completion_response(content_type: str | None, body: bytes | str) -> CompletionResponse:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    text = body.decode("utf-8") if isinstance(body, bytes) else body

    if media_type == EVENT_STREAM_CONTENT_TYPE:
        return _parse_event_stream(text)
    if media_type == JSON_CONTENT_TYPE:
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("Completion response must be a JSON object.")
        return JsonCompletion(payload=payload)
    raise ValueError(f"Unsupported completion content type: {media_type or 'none'}")


async def request_completion(
    github_token: str,
    messages: list[dict],
    *,
    model: str = DEFAULT_COMPLETION_MODEL,
    stream: bool = False,
    url: str = COPILOT_COMPLETIONS_URL,
    client: httpx.AsyncClient | None = None,
) -> CompletionResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            url,
            json={"model": model, "stream": stream, "messages": messages},
            headers={"Authorization": f"Bearer {github_token}"},
        )
        response.raise_for_status()
        body = await response.aread()
    except httpx.HTTPStatusError as error:
        raise UpstreamError(
            f"Completion request failed with status {error.response.status_code}.",
            status_code=error.response.status_code,
        ) from error
    except httpx.HTTPError as error:
        raise UpstreamError(f"Completion request failed: {error}") from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        return decode_completion_response(response.headers.get("content-type"), body)
    except ValueError as error:
        raise UpstreamError(str(error)) from error
