"""
Viewer process entrypoint.

Resolves configuration, initialises logging, builds the orchestrator for the
configured signaling transport and keeps the session alive until the process
is interrupted or the requested duration elapses.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Optional

from .config import ConfigError, ViewerConfig, load_config
from .errors import SignalingError
from .rtc.ice import IceServerResolver
from .rtc.media import RecorderSink
from .rtc.peer import AiortcPeerEngine
from .session import LoggingObserver, SessionOrchestrator, SessionState
from .signaling import create_transport
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


def build_orchestrator(config: ViewerConfig) -> SessionOrchestrator:
    return SessionOrchestrator(
        AiortcPeerEngine(),
        create_transport(config),
        ice_servers=IceServerResolver(config),
        sink_factory=lambda: RecorderSink(config.record_to),
        observer=LoggingObserver(),
        buffer_early_candidates=config.buffer_early_candidates,
    )


async def serve(config: ViewerConfig, duration: float = 0.0) -> int:
    """
    Run one viewing session.

    Parameters
    ----------
    config:
        Resolved viewer configuration.
    duration:
        Seconds to keep the session open; ``0`` runs until interrupted.
    """

    orchestrator = build_orchestrator(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signame: str) -> None:
        LOG.info("Received %s, closing session...", signame)
        stop_event.set()

    for signame in ("SIGINT", "SIGTERM"):
        try:
            loop.add_signal_handler(getattr(signal, signame), _handle_signal, signame)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            LOG.debug("Signal handlers unavailable for %s", signame)

    LOG.info("Signaling over %s (%s)", config.signalling, config.stream_url if config.signalling == "http" else config.ws_url)
    try:
        try:
            await orchestrator.start()
        except SignalingError as exc:
            LOG.error("Unable to start session: %s", exc)
            return 1

        closed = asyncio.ensure_future(orchestrator.wait_for_state(SessionState.CLOSED))
        waiters = [asyncio.ensure_future(stop_event.wait()), closed]
        if duration > 0:
            waiters.append(asyncio.ensure_future(asyncio.sleep(duration)))
        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        return 0
    finally:
        await orchestrator.aclose()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WebRTC stream viewer")
    parser.add_argument("--config", "-c", default=None, help="YAML configuration file (defaults to $VIEWER_CONFIG)")
    parser.add_argument("--signalling", choices=("http", "websocket"), default=None, help="signaling transport")
    parser.add_argument("--server", default=None, help="signaling server host")
    parser.add_argument("--port", type=int, default=None, help="signaling server port")
    parser.add_argument("--record", default=None, help="record the remote stream to this file")
    parser.add_argument("--duration", type=float, default=0.0, help="seconds to stay connected; 0 runs until interrupted")
    parser.add_argument("--log-level", default=None, help="logging level (DEBUG, INFO, ...)")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config).with_overrides(
            signalling=args.signalling,
            server=args.server,
            port=args.port,
            record_to=args.record,
            log_level=args.log_level,
        )
    except ConfigError as exc:
        configure_logging()
        LOG.error("Invalid configuration: %s", exc)
        return 2

    configure_logging(config.log_level)
    try:
        return asyncio.run(serve(config, duration=args.duration))
    except KeyboardInterrupt:
        LOG.info("Viewer interrupted by user.")
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
