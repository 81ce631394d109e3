# FastAPI entry point for the admin server; receives data synced from candidate devices
# assessment_sync/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from pathlib import Path

from assessment_sync.endpoints import (
    health as health_router,
    events as events_router,
    test_results as test_results_router,
    recordings as recordings_router,
    monitoring as monitoring_router,
)
from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger
from assessment_sync.utils.db import engine, create_tables

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info(f"{settings.app_name} starting up...")

    await create_tables(engine)

    Path(settings.recordings_dir).mkdir(parents=True, exist_ok=True)
    logger.info(f"Recordings will be stored under {Path(settings.recordings_dir).resolve()}")

    logger.info("Startup complete.")
    yield
    # On shutdown
    logger.info(f"{settings.app_name} shutting down...")
    await engine.dispose()

# --- FastAPI App Initialization ---
app = FastAPI(
    title=settings.app_name,
    description="Ingestion API for test results and recordings synced from candidate devices.",
    version=settings.app_version,
    lifespan=lifespan
)

# --- CORS Middleware ---
# Candidate devices connect from arbitrary addresses on the local network
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- API Routers ---
app.include_router(health_router.router, prefix="/api")
app.include_router(events_router.router, prefix="/api")
app.include_router(test_results_router.router, prefix="/api")
app.include_router(recordings_router.router, prefix="/api")
app.include_router(monitoring_router.router, prefix="/api")

# --- Root Endpoint ---
@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.app_name}"}
