# resi_hub/main.py
# Resi Hub - three-stage resi lifecycle + marketplace reconciliation
from __future__ import annotations
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .settings import settings
from .database import init_db, close_db, check_db_health
from resi_hub.routers.receipts import router as receipts_router
from resi_hub.routers.reconcile import router as reconcile_router
from resi_hub.routers.channels import router as channels_router
from resi_hub.routers.catalog import router as catalog_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from resi_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db(create_tables=(settings.DATABASE_URL or "").startswith("sqlite"))
    logger.info(f"Resi Hub started; stores={settings.STORES}")
    yield
    await close_db()
    logger.info("Resi Hub stopped")


# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Resi Hub API",
    version="1.0.0",
    description="Shipment receipt scanning, verification and marketplace reconciliation",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"outcome": "storage_unavailable", "message": "Database unavailable, retry shortly"},
    )


app.include_router(receipts_router)
app.include_router(reconcile_router)
app.include_router(channels_router)
app.include_router(catalog_router)


@app.get("/health")
async def health():
    db = await check_db_health()
    return {"ok": db.get("status") == "healthy", "stores": settings.STORES, **db}
