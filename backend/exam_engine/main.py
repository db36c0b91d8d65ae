"""Exam Attempt Engine - FastAPI Application."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, select

from exam_engine.config import settings
from exam_engine.db import init_db
from exam_engine.db.database import async_session
from exam_engine.db.models import ExamDB
from exam_engine.routers import admin_router, attempts_router
from exam_engine.services.catalog import CatalogService
from exam_engine.sweeper import sweep_forever

logger = logging.getLogger(__name__)


async def seed_catalog():
    """Seed database with exams from JSON files if empty."""
    if os.getenv("SKIP_SEEDING", "").lower() == "true":
        logger.info("SKIP_SEEDING is set. Skipping database seed.")
        return

    async with async_session() as session:
        count = await session.scalar(select(func.count()).select_from(ExamDB))
        if count and count > 0:
            logger.info(f"Database already has {count} exams. Skipping seed.")
            return

        if not settings.catalog_dir.exists():
            logger.warning(f"Catalog directory not found: {settings.catalog_dir}")
            return

        logger.info("Seeding database with exams...")
        catalog = CatalogService(session)
        total_imported = 0
        for json_file in sorted(settings.catalog_dir.glob("*.json")):
            logger.info(f"Loading {json_file.name}...")
            total_imported += await catalog.load_exams_from_json(json_file)
        await session.commit()
        logger.info(f"Imported {total_imported} exams.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Ensure data directories exist
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.catalog_dir.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized.")

    await seed_catalog()

    sweeper = None
    if settings.run_sweeper:
        sweeper = asyncio.create_task(sweep_forever(async_session))

    logger.info("Startup complete.")
    yield

    logger.info("Shutting down...")
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title=settings.app_name,
    description="Timed exam attempts: start, answer, submit, score and rank",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(attempts_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
