import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.watchlist import router as watchlist_router
from api.trades import router as trades_router
from api.history import router as history_router
from api.blacklist import router as blacklist_router
from api.status import router as status_router
from api.analyze import router as analyze_router
from api.zscore import router as zscore_router
from core.config import get_settings
from core.exceptions import SpreadWatchError, StorageError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("spreadwatch")


@asynccontextmanager
async def lifespan(app: FastAPI):
    runner = None
    if settings.scheduler.autostart:
        from services import get_job_runner
        runner = get_job_runner()
        runner.start()
    yield
    if runner is not None and runner.is_running:
        runner.stop()


app = FastAPI(
    title="SpreadWatch API",
    version="2.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(watchlist_router, prefix="/api")
app.include_router(trades_router, prefix="/api")
app.include_router(history_router, prefix="/api")
app.include_router(blacklist_router, prefix="/api")
app.include_router(status_router, prefix="/api")
app.include_router(analyze_router, prefix="/api")
app.include_router(zscore_router, prefix="/api")


@app.exception_handler(SpreadWatchError)
async def spreadwatch_error_handler(request, exc: SpreadWatchError):
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    status = 503 if isinstance(exc, StorageError) else 500
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.get("/")
async def root():
    return {
        "name": "SpreadWatch API",
        "version": "2.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    from services.job_runner import current_job_runner

    runner = current_job_runner()
    return {
        "status": "healthy",
        "jobs": runner.stats() if runner is not None else None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
