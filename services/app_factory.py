import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from routes import debug_router, search_router
from services.app_state import AppState
from services.error_handler import setup_error_handlers

logger = logging.getLogger(__name__)


def create_app(state: AppState) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    The state is injected so tests can run the app against fake HTTP
    transports and fresh caches.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("[STARTUP] Seller Watch Search starting...")
        logger.info(f"[STARTUP] Simulation mode: {state.simulation_mode}")
        logger.info(f"[STARTUP] Watch sources: {','.join(state.settings.enrichment.source_order)}")

        yield

        logger.info("[SHUTDOWN] Seller Watch Search shutting down...")
        logger.info(f"[SHUTDOWN] Total requests: {state.stats['total_requests']}")
        await state.close()

    app = FastAPI(
        title="Seller Watch Search",
        description="Multi-seller eBay listing search with watch-count enrichment",
        lifespan=lifespan,
    )
    # Set outside lifespan so TestClient without a context manager still sees it
    app.state.app_state = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handlers(app, debug=state.debug_mode)

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon():
        return Response(status_code=204)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            **state.get_status(),
        }

    app.include_router(search_router)
    app.include_router(debug_router)

    return app
