import inspect
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from routes.analysis_route import router as analysis_router
from routes.item_route import router as item_router
from services.batch_orchestrator import BatchOrchestrator
from services.item_store import ItemStore
from services.openai.analysis_client import API_KEY_ENV, RemoteAnalysisClient, build_openai_client

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)


def _build_analysis_client() -> RemoteAnalysisClient:
    """Create the analysis client, with an OpenAI client when a key is configured."""
    if not os.getenv(API_KEY_ENV):
        # Calls will fail fast with a missing-credential error until a key is provided.
        LOGGER.warning("%s is not set; analysis requests will be rejected", API_KEY_ENV)
        return RemoteAnalysisClient()
    try:
        openai_client = build_openai_client()
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc
    return RemoteAnalysisClient(openai_client)


async def _close_client(client) -> None:
    """Close the OpenAI client if it exposes a close/aclose method."""
    aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
    if aclose is None:
        return
    try:
        if inspect.iscoroutinefunction(aclose):
            await aclose()
        else:
            result = aclose()
            if inspect.isawaitable(result):
                await result
    except Exception:
        # Shutdown errors must not mask more important issues.
        LOGGER.debug("Ignoring error while closing the OpenAI client", exc_info=True)


def create_app(analysis_client: Optional[RemoteAnalysisClient] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    `analysis_client` may be injected (tests); otherwise one is built from the
    environment during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize the analysis client, the in-memory item
        store and the batch orchestrator, and attach them to `app.state`.
        """
        client = analysis_client or _build_analysis_client()
        app.state.analysis_client = client
        app.state.orchestrator = BatchOrchestrator(client, ItemStore())
        try:
            yield
        finally:
            await app.state.orchestrator.shutdown()
            if client.client is not None:
                await _close_client(client.client)

    app = FastAPI(lifespan=lifespan, title="OCT Batch Analyzer")

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting orchestrator state and credential presence.
        """
        orchestrator = getattr(request.app.state, "orchestrator", None)
        return {
            "ok": True,
            "orchestrator_ready": orchestrator is not None,
            "credential_configured": bool(os.getenv(API_KEY_ENV)),
            "is_analyzing": bool(orchestrator and orchestrator.is_running),
        }

    # Register application routers
    app.include_router(item_router)
    app.include_router(analysis_router)

    return app


app = create_app()
