"""
Control server for a running bridge.

The app is built around one SessionOrchestrator and served by uvicorn inside
the bridge process, on the same event loop as the audio pipeline.
"""
from fastapi import FastAPI

from linguist_bridge.orchestrator import SessionOrchestrator
from logging_setup import get_logger, Component

from .control_api import router as control_router

logger = get_logger(Component.CONTROL_PLANE)


def create_app(orchestrator: SessionOrchestrator) -> FastAPI:
    app = FastAPI(title="Linguist Bridge Control API")
    app.state.orchestrator = orchestrator
    app.include_router(control_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok" if not orchestrator.terminated else "terminated",
            "component": "linguist_bridge",
            "session_id": orchestrator.session_id,
        }

    logger.debug("Control app created", session_id=orchestrator.session_id)
    return app
