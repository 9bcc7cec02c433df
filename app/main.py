from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import router
from datastore.telemetry_store import build_default_store
from logging_config import configure_logging
from services.ingestion import build_default_ingestion
from services.procedures import build_default_procedures

SENSOR_CORS_HEADERS = ["Content-Type", "Authorization", "X-Client-Info", "Apikey"]


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # Seeds the default admin account before the first request.
    build_default_procedures()
    try:
        yield
    finally:
        build_default_procedures.cache_clear()
        build_default_ingestion.cache_clear()
        build_default_store.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Water Tank Telemetry",
        description="Sensor ingestion, reading history and accounts for the tank dashboard.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=SENSOR_CORS_HEADERS,
    )
    app.include_router(router)
    return app

app = create_app()
