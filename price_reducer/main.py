import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from price_reducer.api.endpoints import health, reductions, sync
from price_reducer.db import engine
from price_reducer.exceptions import NeedsReconnect, StoreUnavailableError
from price_reducer.models import Base
from price_reducer.scheduler import create_scheduler
from price_reducer.settings import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="price-reducer")

app.include_router(reductions.router, prefix="/api/reductions", tags=["Reductions"])
app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])
app.include_router(health.router, prefix="/api/health", tags=["Health"])

_scheduler = None


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error(f"[API] Store unavailable during {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content={"success": False, **exc.to_dict()})


@app.exception_handler(NeedsReconnect)
async def needs_reconnect_handler(request: Request, exc: NeedsReconnect) -> JSONResponse:
    return JSONResponse(status_code=409, content={"success": False, **exc.to_dict()})


@app.on_event("startup")
def on_startup() -> None:
    global _scheduler
    # Alembic 을 기본으로 쓰되 로컬 개발용 자동 생성 지원
    if settings.db_auto_create_tables:
        Base.metadata.create_all(bind=engine)

    if settings.scheduler_enabled:
        _scheduler = create_scheduler(settings)
        _scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}
