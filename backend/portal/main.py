# /backend/portal/main.py

from __future__ import annotations
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from portal import config
from portal.api.routers import appointments, conversations, dashboard, profiles, realtime, video
from portal.db import get_db, create_all
from portal.errors import PortalError, TransientFailure
from portal.realtime.kafka import start_kafka, stop_kafka
from portal.utils.logger import get_logger

log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.AUTO_CREATE_TABLES:
        await create_all()
    await start_kafka()
    try:
        yield
    finally:
        await stop_kafka()


app = FastAPI(
    title="Sathi Counseling Portal API",
    lifespan=lifespan,
)

# CORS first so every route, error responses included, carries the headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if isinstance(exc, TransientFailure):
        log.error("%s %s: %s", request.method, request.url.path, exc.message)
    else:
        log.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    # Denials stay generic; the other kinds are safe to explain
    detail = exc.public_detail if exc.status_code in (403, 503) else exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


@app.exception_handler(PoolTimeoutError)
async def pool_exhausted_handler(request: Request, exc: PoolTimeoutError):
    log.error("no database connection available for %s %s: %s", request.method, request.url.path, exc)
    failure = TransientFailure()
    return JSONResponse(status_code=failure.status_code, content={"detail": failure.public_detail})


@app.exception_handler(DBAPIError)
async def storage_error_handler(request: Request, exc: DBAPIError):
    # OperationalError covers lost connections, lock timeouts and the like
    if isinstance(exc, OperationalError) or exc.connection_invalidated:
        log.error("storage unavailable on %s %s", request.method, request.url.path, exc_info=exc)
        failure = TransientFailure()
        return JSONResponse(status_code=failure.status_code, content={"detail": failure.public_detail})
    log.error("unexpected storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Request failed"})


app.include_router(profiles.router)
app.include_router(conversations.router)
app.include_router(conversations.messages_router)
app.include_router(appointments.router)
app.include_router(video.router)
app.include_router(realtime.router)
app.include_router(dashboard.router)


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/db-health")
async def db_health(db: AsyncSession = Depends(get_db)):
    result = await db.execute(text("SELECT 1"))
    return {"db": "ok", "result": result.scalar_one()}
