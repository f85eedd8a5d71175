"""Client for the token-streamed agent completion service."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

import httpx

from voteverse_worker.queue.errors import EmptyResponseError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_USER_AGENT = "voteverse-worker/1.0"
_DATA_PREFIX = "data:"
_DONE_MARKER = "[DONE]"


class CompletionClient:
    """Turns one prompt into one accumulated answer string."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    def complete(
        self,
        *,
        path: str,
        message: str,
        action_control: str,
        access_token: str,
    ) -> str:
        """POST the prompt and return the concatenated streamed text.

        Raises:
            TransportError: the request failed or the response status is not 2xx.
            EmptyResponseError: the stream closed with blank accumulated text.
        """

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "text/event-stream",
        }
        body = {"message": message, "actionControl": action_control}
        try:
            with self._client.stream("POST", path, json=body, headers=headers) as response:
                if not response.is_success:
                    response.read()
                    raise TransportError(
                        f"Completion service returned HTTP {response.status_code}: "
                        f"{response.text[:200]}",
                        status_code=response.status_code,
                    )
                text = accumulate_stream(response.iter_lines())
        except httpx.HTTPError as error:
            raise TransportError(f"Completion request failed: {error}") from error

        if not text.strip():
            raise EmptyResponseError("Completion service returned no text")
        return text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CompletionClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def accumulate_stream(lines: Iterable[str]) -> str:
    """Concatenate `choices[0].delta.content` from server-sent event lines.

    Lines without a data marker, the `[DONE]` sentinel, non-JSON payloads and
    payloads without a text delta are skipped.
    """

    parts: list[str] = []
    for raw_line in lines:
        line = raw_line.strip()
        if not line.startswith(_DATA_PREFIX):
            continue
        payload = line[len(_DATA_PREFIX) :].strip()
        if not payload or payload == _DONE_MARKER:
            continue
        delta = _extract_delta(payload)
        if delta is None:
            logger.debug("Skipping malformed stream line: %s", line[:120])
            continue
        parts.append(delta)
    return "".join(parts)


def _extract_delta(payload: str) -> str | None:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str):
        return None
    return content
