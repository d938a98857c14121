"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from docbench.config import get_settings
from docbench.db.session import SessionLocal
from docbench.routers import assist, batches, documents, models

logger = logging.getLogger(__name__)


def _check_database() -> None:
    """Open one connection at process start so misconfiguration shows up early."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database check failed; continuing without startup check.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    _check_database()
    yield


settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(documents.router, tags=["documents"])
app.include_router(models.router, tags=["models"])
app.include_router(batches.router, tags=["batches"])
app.include_router(assist.router, tags=["assist"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
