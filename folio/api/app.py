"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from folio.api.routes import router
from folio.datasource.source_manager import SourceManager
from folio.services.client import ProviderHttpClient
from folio.services.orchestrator import DataSourceOrchestrator, create_orchestrator
from folio.settings import Settings, global_settings


def create_app(
    settings: Settings | None = None,
    orchestrator: DataSourceOrchestrator | None = None,
    sources: SourceManager | None = None,
    client: ProviderHttpClient | None = None,
) -> FastAPI:
    """
    Build the app. Collaborators can be injected for tests; otherwise they
    are wired from settings and share one HTTP client.
    """
    settings = settings or global_settings
    client = client or ProviderHttpClient(default_timeout=settings.provider_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Folio data service...")
        yield
        logger.info("Shutting down Folio data service...")
        app.state.orchestrator.deduplicator.cancel_all()
        await client.close()

    app = FastAPI(title="Folio Data Service", debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator or create_orchestrator(settings)
    app.state.sources = sources or SourceManager(settings, client)
    app.include_router(router)
    return app
