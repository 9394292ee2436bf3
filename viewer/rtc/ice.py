"""
ICE server resolution.

Servers are resolved in the same order the streaming server uses: the hosted
relay-credentials API, then an explicit server list, then a self-hosted TURN
block, and finally a handful of public STUN servers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..config import OpenRelayConfig, TurnConfig, ViewerConfig
from ..errors import SetupError

LOG = logging.getLogger(__name__)

IceServerDescriptor = Dict[str, Any]

DEFAULT_STUN_SERVERS: Sequence[str] = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
    "stun:stun3.l.google.com:19302",
    "stun:stun4.l.google.com:19302",
)


def normalise_descriptor(entry: Any) -> IceServerDescriptor:
    """
    Accept the loose shapes relay providers return and emit ``urls`` as a list.
    """

    if not isinstance(entry, dict) or "urls" not in entry:
        raise ValueError(f"ICE server descriptor without 'urls': {entry!r}")
    descriptor = dict(entry)
    urls = descriptor["urls"]
    descriptor["urls"] = [urls] if isinstance(urls, str) else list(urls)
    return descriptor


def turn_descriptors(turn: TurnConfig) -> List[IceServerDescriptor]:
    host = f"{turn.server}:{turn.port}"
    return [
        {"urls": [f"stun:{host}"]},
        {"urls": [f"turn:{host}"], "username": turn.username, "credential": turn.password},
    ]


def default_descriptors() -> List[IceServerDescriptor]:
    return [{"urls": [url]} for url in DEFAULT_STUN_SERVERS]


class RelayCredentialsClient:
    """
    Fetch short-lived TURN credentials from a hosted relay provider.

    ``GET https://<app>/api/v1/turn/credentials?apiKey=<key>`` answers with a
    JSON array of ICE server descriptors which is handed to the peer engine
    as-is (after ``urls`` normalisation).
    """

    def __init__(
        self,
        relay: OpenRelayConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.relay = relay
        self._client = client
        self._timeout = timeout

    async def fetch(self) -> List[IceServerDescriptor]:
        params = {"apiKey": self.relay.api_key}
        try:
            if self._client is not None:
                response = await self._client.get(self.relay.credentials_url, params=params)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
                    response = await client.get(self.relay.credentials_url, params=params)
        except httpx.HTTPError as exc:
            raise SetupError(f"relay credentials request failed: {exc}") from exc

        if not response.is_success:
            raise SetupError(f"relay credentials request returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise SetupError("relay credentials response is not JSON") from exc
        if not isinstance(body, list):
            raise SetupError("relay credentials response must be a JSON array")

        try:
            servers = [normalise_descriptor(entry) for entry in body]
        except ValueError as exc:
            raise SetupError(str(exc)) from exc
        LOG.info("Fetched %d relay servers from %s", len(servers), self.relay.app_name)
        return servers


class IceServerResolver:
    """
    Callable returning the ICE server list for a new session.
    """

    def __init__(self, config: ViewerConfig, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._relay = (
            RelayCredentialsClient(config.open_relay, client=client, timeout=config.request_timeout)
            if config.open_relay is not None
            else None
        )

    async def __call__(self) -> List[IceServerDescriptor]:
        if self._relay is not None:
            return await self._relay.fetch()
        if self.config.ice_servers:
            LOG.debug("Using %d configured ICE servers", len(self.config.ice_servers))
            return [server.to_dict() for server in self.config.ice_servers]
        if self.config.turn is not None:
            LOG.debug("Using TURN server %s:%s", self.config.turn.server, self.config.turn.port)
            return turn_descriptors(self.config.turn)
        LOG.debug("Using default public STUN servers")
        return default_descriptors()


__all__ = [
    "DEFAULT_STUN_SERVERS",
    "IceServerDescriptor",
    "IceServerResolver",
    "RelayCredentialsClient",
    "default_descriptors",
    "normalise_descriptor",
    "turn_descriptors",
]
