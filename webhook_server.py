"""
FastAPI server for the Deal Escrow Bot
Serves the deal API and runs the reconciliation scheduler for the life of the process
"""
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import Config
from database import create_tables
from jobs.scheduler import DealScheduler
from routes.deal_api import router as deal_router
from services.container import DealServices, build_services
from services.errors import DealNotFoundError

logger = logging.getLogger(__name__)


def create_app(services: Optional[DealServices] = None, start_scheduler: bool = True,
               init_database: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        services: Prebuilt service graph; built from Config at startup when omitted
        start_scheduler: Run the poll and expiry jobs in the lifespan
        init_database: Create missing tables on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if init_database:
            await create_tables()

        deal_services = services or build_services()
        app.state.deal_services = deal_services

        scheduler = None
        if start_scheduler:
            scheduler = DealScheduler(deal_services.poller, deal_services.registry, deal_services.settings)
            scheduler.start()
        logger.info("✅ Deal escrow server ready")

        yield

        # Shutdown
        if scheduler is not None:
            scheduler.shutdown()
        logger.info("🔄 Deal escrow server shutting down...")

    app = FastAPI(
        title="Deal Escrow Bot",
        description="Escrow deal orchestration between chat participants and on-chain contracts",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.deal_services = services
    app.include_router(deal_router)

    @app.exception_handler(DealNotFoundError)
    async def deal_not_found(request: Request, exc: DealNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc), "dealId": exc.deal_id})

    @app.get("/")
    async def root():
        return {"message": "Deal Escrow Bot is running", "environment": Config.ENVIRONMENT}

    return app
