"""
Request/response signaling over a single HTTP endpoint.

``POST <url>`` with ``{"sdp": <offer token>}`` answers ``{"sdp": <answer
token>}``; ``DELETE <url>`` stops the stream.  There is no way to trickle
candidates later, so the offer is only sent once gathering has finished.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import TransportError
from .base import SignalingTransport

LOG = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or "request failed"


class HttpSignalingTransport(SignalingTransport):
    name = "http"
    handshake_delay = None

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def send_offer(self, session_id: str, token: str) -> Optional[str]:
        LOG.info("Posting offer for session %s to %s", session_id[:8], self.url)
        try:
            response = await self._client.post(
                self.url,
                json={"sdp": token},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"POST {self.url} failed: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"POST {self.url} returned HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(f"POST {self.url} returned a non-JSON body") from exc
        answer = body.get("sdp") if isinstance(body, dict) else None
        if not isinstance(answer, str) or not answer:
            raise TransportError(f"POST {self.url} response has no 'sdp' answer")
        return answer

    async def release(self, session_id: str) -> None:
        LOG.info("Releasing session %s via DELETE %s", session_id[:8], self.url)
        try:
            response = await self._client.delete(self.url)
        except httpx.HTTPError as exc:
            raise TransportError(f"DELETE {self.url} failed: {exc}") from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            LOG.debug("No stream to release on the server side.")
            return
        if not response.is_success:
            raise TransportError(
                f"DELETE {self.url} returned HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpSignalingTransport"]
