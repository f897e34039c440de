import asyncio
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import SessionLocal
from app.logging_config import get_logger, setup_logging
from app.routers import agents, webhook, widget
from app.services.dedup_service import event_deduplicator
from app.services.inactivity_service import process_inactive_conversations

setup_logging(settings.log_level)

app = FastAPI(
    title="WhatsAgent API",
    description="Inbound WhatsApp orchestration for AI agents",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
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
app.include_router(agents.router)
app.include_router(widget.router)

inactivity_logger = get_logger("inactivity_worker")
_inactivity_worker_task: asyncio.Task | None = None


def _is_inactivity_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.inactivity_worker_enabled


def _run_inactivity_sweep() -> dict:
    db = SessionLocal()
    try:
        return process_inactive_conversations(db)
    finally:
        db.close()


async def _inactivity_worker_loop() -> None:
    interval_seconds = max(settings.inactivity_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            event_deduplicator.purge()
            results = await asyncio.to_thread(_run_inactivity_sweep)
            if results["sent"] or results["failed"]:
                inactivity_logger.info(
                    "Inactivity sweep processed",
                    extra={"context": {"sent": results["sent"], "failed": results["failed"]}},
                )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            inactivity_logger.error(
                "Inactivity worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_inactivity_worker() -> None:
    global _inactivity_worker_task
    if not _is_inactivity_worker_enabled():
        return
    if _inactivity_worker_task is None or _inactivity_worker_task.done():
        _inactivity_worker_task = asyncio.create_task(_inactivity_worker_loop())
        inactivity_logger.info("Inactivity worker started")


@app.on_event("shutdown")
async def stop_inactivity_worker() -> None:
    global _inactivity_worker_task
    if _inactivity_worker_task is None:
        return
    _inactivity_worker_task.cancel()
    try:
        await _inactivity_worker_task
    except asyncio.CancelledError:
        pass
    _inactivity_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}
