# /backend/mindwell/main.py

from __future__ import annotations
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mindwell.config import CORS_ORIGINS, LOG_LEVEL
from mindwell.db import get_db
from mindwell.api.routers import auth, sessions, streaks, therapist, emergency, notification
from mindwell.kafka import start_kafka, stop_kafka
from mindwell.log_config import configure_logging, request_id_var

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 앱 시작 시
    configure_logging(LOG_LEVEL)
    await start_kafka()
    logger.info("MindWell API started")
    try:
        yield
    finally:
        # 앱 종료 시
        await stop_kafka()


app = FastAPI(
    title="MindWell API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(auth.router)
app.include_router(sessions.router)
app.include_router(streaks.router)
app.include_router(therapist.router)
app.include_router(emergency.router)
app.include_router(notification.router)


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/db-health")
async def db_health(db: AsyncSession = Depends(get_db)):
    result = await db.execute(text("SELECT 1"))
    return {"db": "ok", "result": result.scalar_one()}
