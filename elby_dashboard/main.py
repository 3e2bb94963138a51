import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
import uvicorn

from elby_dashboard import __version__
from elby_dashboard.core.config import Settings, get_settings
from elby_dashboard.core.database import build_engine, build_session_factory, init_db
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.api.v1 import sdms
from elby_dashboard.tasks import TaskScheduler, build_jobs

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, run_scheduler: bool = True) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings.DATABASE_URL, settings.DATABASE_ECHO)
        session_factory = build_session_factory(engine)
        await init_db(engine)

        audit = SyncLogWriter(session_factory)
        client = None
        if settings.SDMS_API_URL:
            client = SDMSClient(settings.sdms_client_config(), audit=audit)
        else:
            logger.warning("SDMS_API_URL is not set; SDMS routes and sync jobs are disabled")

        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.audit = audit
        app.state.sdms_client = client

        scheduler = None
        scheduler_client = None
        if run_scheduler:
            if client is not None:
                scheduler_client = SDMSClient(
                    settings.sdms_client_config(), audit=audit, triggered_by="scheduled"
                )
            scheduler = TaskScheduler(build_jobs(settings, session_factory, scheduler_client, audit))
            app.state.scheduler = scheduler
            await scheduler.start()

        yield

        if scheduler is not None:
            await scheduler.stop()
        if scheduler_client is not None:
            await scheduler_client.close()
        if client is not None:
            await client.close()
        await engine.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="SDMS cache and engagement metrics for the Elby dashboard",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(sdms.router, prefix="/api/v1/sdms", tags=["sdms"])

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "status_code": exc.status_code}
        )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": __version__}

    return app


if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
    uvicorn.run(
        "elby_dashboard.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level="info" if not settings.DEBUG else "debug"
    )
