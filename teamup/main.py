"""
TeamUp — roster reconciliation API entry-point.

Run with:
    uvicorn teamup.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from teamup.config import settings
from teamup.database import Base, engine

# ── Import models so every table is registered on Base.metadata ──
from teamup import models  # noqa: F401

# ── Import routers ──
from teamup.routers import notifications, recruitment, teams
from teamup.services.errors import RosterError

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: create tables on startup ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    description="Student team formation — roster reconciliation for applications and join requests.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))


# ── Roster errors → JSON ──
@app.exception_handler(RosterError)
async def roster_error_handler(request: Request, exc: RosterError):
    logger.info(f"{request.method} {request.url.path} refused: {exc.code} ({exc.message})")
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


# ── Register API routers ──
app.include_router(teams.router)
app.include_router(recruitment.router)
app.include_router(notifications.router)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME}
