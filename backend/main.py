"""
Vision History - FastAPI Application

Main entry point for the backend API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

import backend.models  # noqa: F401  registers every table on Base.metadata
from backend.core.config import settings
from backend.core.database import Base, engine, SessionLocal
from backend.routers import auth, sessions, vision
from backend.services.vision_history import VisionHistoryService
from backend.services.vision_storage import VisionStorageService

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):

    logger.info("Starting Vision History API...")

    if settings.AUTO_CREATE_TABLES:
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created (AUTO_CREATE_TABLES=True)")
        except Exception:
            logger.exception("Failed to create database tables")
    else:
        logger.info("Skipping table creation (AUTO_CREATE_TABLES=False)")

    app.state.vision_storage = VisionStorageService(SessionLocal)
    app.state.vision_history = VisionHistoryService(SessionLocal, max_limit=settings.HISTORY_MAX_LIMIT)

    logger.info("API Ready!")

    yield

    logger.info("Shutting down...")
    engine.dispose()


app = FastAPI(
    title="Vision History API",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(sessions.router)
app.include_router(vision.router)


@app.get("/", tags=["System"])
def root():
    return {
        "system": "Vision History",
        "version": API_VERSION,
        "status": "online",
        "history_max_limit": settings.HISTORY_MAX_LIMIT,
    }


@app.get("/health", tags=["System"])
def health_check():
    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception:
        logger.exception("Health check DB failed")
        db_status = "error"
    finally:
        if db:
            db.close()

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        workers=1,
    )
