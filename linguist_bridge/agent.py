"""
Bridge process entrypoint.

Joins the configured meeting room as the translation bot, wires the Gemini
stages into a SessionOrchestrator and serves the control API on the same
event loop. Runs until SIGINT/SIGTERM or POST /control/terminate.
"""
import asyncio
import os
import signal
from functools import partial
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv

from logging_setup import get_logger, Component, setup_logging
from control_plane.server import create_app

from .config import BridgeConfig, get_config
from .gemini_http import GeminiRestClient
from .gemini_live import GeminiLiveChannel
from .livekit_bridge import LiveKitCallBridge
from .orchestrator import SessionOrchestrator
from .roster import load_roster
from .synthesis import SynthesisStage
from .translation import TranslationStage

# Load environment variables from .env_local / .env.local (local dev convenience).
# Never overrides variables already exported by the shell.
root = Path(__file__).parent.parent
for name in (".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

logger = get_logger(Component.BRIDGE)


def build_orchestrator(config: BridgeConfig, client: GeminiRestClient) -> SessionOrchestrator:
    channel_factory = partial(
        GeminiLiveChannel,
        api_key=config.gemini_api_key,
        model=config.gemini_live_model,
        sample_rate=config.capture_sample_rate,
    )
    return SessionOrchestrator(
        config,
        transport=LiveKitCallBridge(config),
        channel_factory=channel_factory,
        translation=TranslationStage(
            client,
            model=config.gemini_translation_model,
            timeout_seconds=config.translation_timeout_seconds,
        ),
        synthesis=SynthesisStage(
            client,
            model=config.gemini_tts_model,
            sample_rate=config.tts_sample_rate,
            timeout_seconds=config.synthesis_timeout_seconds,
        ),
        roster=load_roster(config.participants_file),
    )


async def run(config: Optional[BridgeConfig] = None) -> None:
    config = config or get_config()
    session_logger = logger.with_session(config.meeting_room)

    client = GeminiRestClient(api_key=config.gemini_api_key)
    orchestrator = build_orchestrator(config, client)

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(orchestrator),
            host=config.control_api_host,
            port=config.control_api_port,
            log_level="info",
        )
    )
    # signals are handled below so shutdown always goes through terminate()
    server.install_signal_handlers = lambda: None

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await orchestrator.start()
    server_task = asyncio.create_task(server.serve(), name="control-api")
    session_logger.info("Control API listening", host=config.control_api_host, port=config.control_api_port)

    try:
        while not stop.is_set() and not orchestrator.terminated and not server_task.done():
            try:
                await asyncio.wait_for(stop.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass
    finally:
        session_logger.info("Shutting down bridge")
        await orchestrator.terminate()
        server.should_exit = True
        await asyncio.gather(server_task, return_exceptions=True)
        await client.aclose()


def main() -> None:
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    try:
        config = get_config()
    except (KeyError, ValueError) as e:
        logger.critical("Invalid bridge configuration", error=str(e))
        raise SystemExit(2)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
