from typing import List, Optional

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse

from viewer.config import IceServerConfig, OpenRelayConfig, TurnConfig, ViewerConfig
from viewer.errors import SetupError
from viewer.rtc.ice import (
    DEFAULT_STUN_SERVERS,
    IceServerResolver,
    RelayCredentialsClient,
    normalise_descriptor,
)
from viewer.rtc.peer import build_configuration

RELAY = OpenRelayConfig(app_name="viewer.metered.live", api_key="k-123")


def _relay_app(body: object = None, status_code: int = 200) -> FastAPI:
    app = FastAPI()
    seen: List[Optional[str]] = []
    app.state.seen = seen

    @app.get("/api/v1/turn/credentials")
    async def credentials(apiKey: Optional[str] = Query(default=None)):
        seen.append(apiKey)
        if status_code != 200:
            raise HTTPException(status_code=status_code, detail="nope")
        if body is None:
            return PlainTextResponse("not json")
        return body

    return app


def _client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app))


@pytest.mark.asyncio
async def test_relay_credentials_fetch() -> None:
    app = _relay_app(
        [
            {"urls": "stun:relay.metered.ca:80"},
            {"urls": ["turn:relay.metered.ca:443"], "username": "u", "credential": "c"},
        ]
    )
    async with _client(app) as client:
        servers = await RelayCredentialsClient(RELAY, client=client).fetch()

    assert app.state.seen == ["k-123"]
    assert servers == [
        {"urls": ["stun:relay.metered.ca:80"]},
        {"urls": ["turn:relay.metered.ca:443"], "username": "u", "credential": "c"},
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, status_code",
    [
        ([], 401),
        (None, 200),
        ({"urls": "stun:x"}, 200),
        ([{"username": "u"}], 200),
    ],
)
async def test_relay_credentials_failures(body: object, status_code: int) -> None:
    async with _client(_relay_app(body, status_code)) as client:
        with pytest.raises(SetupError):
            await RelayCredentialsClient(RELAY, client=client).fetch()


@pytest.mark.asyncio
async def test_resolver_prefers_relay_over_everything() -> None:
    config = ViewerConfig(
        open_relay=RELAY,
        turn=TurnConfig(server="turn.local", port=3478, username="u", password="p"),
        ice_servers=(IceServerConfig(urls=("stun:explicit",)),),
    )
    async with _client(_relay_app([{"urls": "turn:relay"}])) as client:
        servers = await IceServerResolver(config, client=client)()

    assert servers == [{"urls": ["turn:relay"]}]


@pytest.mark.asyncio
async def test_resolver_order_without_relay() -> None:
    turn = TurnConfig(server="turn.local", port=3478, username="u", password="p")

    explicit = await IceServerResolver(
        ViewerConfig(turn=turn, ice_servers=(IceServerConfig(urls=("stun:explicit",)),))
    )()
    assert explicit == [{"urls": ["stun:explicit"]}]

    from_turn = await IceServerResolver(ViewerConfig(turn=turn))()
    assert from_turn == [
        {"urls": ["stun:turn.local:3478"]},
        {"urls": ["turn:turn.local:3478"], "username": "u", "credential": "p"},
    ]

    defaults = await IceServerResolver(ViewerConfig())()
    assert [server["urls"][0] for server in defaults] == list(DEFAULT_STUN_SERVERS)


def test_normalise_descriptor() -> None:
    assert normalise_descriptor({"urls": "stun:a"}) == {"urls": ["stun:a"]}
    assert normalise_descriptor({"urls": ("stun:a", "stun:b")})["urls"] == ["stun:a", "stun:b"]
    with pytest.raises(ValueError):
        normalise_descriptor({"username": "u"})


def test_build_configuration() -> None:
    configuration = build_configuration(
        [{"urls": ["turn:turn.local:3478"], "username": "u", "credential": "p"}]
    )

    assert configuration.iceServers[0].urls == ["turn:turn.local:3478"]
    assert configuration.iceServers[0].username == "u"
    with pytest.raises(SetupError):
        build_configuration([{"username": "u"}])
