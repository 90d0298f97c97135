from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.facilities import build_default_index
from services.hub import build_default_hub
from services.ingestion import build_default_ingestion
from services.routing import build_default_routing_client


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    build_default_hub()
    build_default_index()
    ingestion = build_default_ingestion()
    if ingestion is not None:
        ingestion.start()
    try:
        yield
    finally:
        if ingestion is not None:
            ingestion.stop()
        build_default_routing_client().close()
        build_default_ingestion.cache_clear()
        build_default_routing_client.cache_clear()
        build_default_hub.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Cold Chain Telemetry Bridge",
        description="Relays organ transport telemetry from field devices to live dashboards.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
