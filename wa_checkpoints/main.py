import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wa_checkpoints.api.router import api
from wa_checkpoints.core.config import settings
from wa_checkpoints.core.logging import log_buffer, setup_logging
from wa_checkpoints.db.base import Base
from wa_checkpoints.db.session import AsyncSessionLocal, engine
from wa_checkpoints.services import conversations, locks
from wa_checkpoints.services.sweeper import create_scheduler
from wa_checkpoints.web.routes import web_router

# Import models so Base knows them
from wa_checkpoints.db import models  # noqa: F401

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables automatically; there is no migration tool
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        database = await conversations.check_database(db)
    if database["success"]:
        logger.info(f"Database connected: {database['timestamp']}")
    else:
        logger.error(f"Database error: {database['error']}")

    scheduler = None
    if settings.SWEEPER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info(f"Expiry sweeper scheduled every {settings.SWEEP_INTERVAL_MINUTES} min")

    logger.info(f"{settings.APP_NAME} started on port {settings.PORT}")
    logger.info("Evolution webhook: POST /webhook/evolution | N8N checkpoint: POST /webhook/checkpoint")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await locks.r.aclose()
        await engine.dispose()
        log_buffer.clear()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


app.include_router(api)
app.include_router(web_router)


def run():
    import uvicorn

    uvicorn.run("wa_checkpoints.main:app", host=settings.HOST, port=settings.PORT)
