import asyncio
import os
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deskbot.config import settings
from deskbot.database import init_db
from deskbot.dependencies import get_dedup_cache, get_session_store, get_transport, get_worker
from deskbot.logging_config import get_logger, setup_logging
from deskbot.routers import admin, webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="deskbot",
    description="WhatsApp assistant for an accounting office",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)

_sweep_tasks: list[asyncio.Task] = []


def _background_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


async def _periodic(name: str, interval_seconds: float, job: Callable[[], None]) -> None:
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            job()
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error(f"{name} failed", extra={"context": {"error": str(exc)}})


def _sweep_sessions() -> None:
    get_session_store().sweep()


def _sweep_dedup() -> None:
    removed = get_dedup_cache().sweep()
    if removed:
        logger.info("Dedup entries expired", extra={"context": {"removed": removed}})


@app.on_event("startup")
async def startup() -> None:
    if settings.auto_create_tables:
        init_db()
    if not _background_enabled():
        return
    if settings.outbox_worker_enabled:
        get_worker().start()
    _sweep_tasks.append(
        asyncio.create_task(_periodic("Session sweep", settings.session_sweep_minutes * 60, _sweep_sessions))
    )
    _sweep_tasks.append(asyncio.create_task(_periodic("Dedup sweep", settings.dedup_ttl_seconds, _sweep_dedup)))


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_worker().stop()
    for task in _sweep_tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    _sweep_tasks.clear()
    await get_transport().aclose()


@app.get("/health")
async def health():
    return {"status": "ok"}
