import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.routers import think_mode
from app.services.session_tracking_service import session_tracking_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


async def cleanup_stale_sessions(interval: float):
    """Periodically drop streaming sessions whose client never finished them"""
    while True:
        await asyncio.sleep(interval)
        removed = session_tracking_service.cleanup_old_sessions()
        if removed:
            logger.info(f"Session cleanup removed {removed} stale sessions")


@asynccontextmanager
async def lifespan(app: FastAPI):
    cleanup_task = asyncio.create_task(
        cleanup_stale_sessions(get_settings().SESSION_CLEANUP_INTERVAL_SECONDS)
    )
    logger.info("Session cleanup task started")
    try:
        yield
    finally:
        cleanup_task.cancel()
        await asyncio.gather(cleanup_task, return_exceptions=True)
        logger.info("Session cleanup task stopped")


app = FastAPI(title="Think Mode Stream API", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = datetime.now()
    client = f"{request.client.host}:{request.client.port}" if request.client else "unknown"
    logger.info(f">>> {request.method} {request.url.path} from {client}")

    try:
        response = await call_next(request)
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"<<< {request.method} {request.url.path} - Status: {response.status_code} - Duration: {duration:.3f}s"
        )
        return response
    except Exception as e:
        duration = (datetime.now() - start_time).total_seconds()
        logger.error(
            f"!!! Request failed: {request.method} {request.url.path} - Duration: {duration:.3f}s - Error: {str(e)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500, content={"detail": f"Internal server error: {str(e)}"}
        )


# The web client reads X-Request-ID to stop a running Think Mode stream
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.get("/")
async def read_root():
    return {"message": "Think Mode Stream API", "status": "running"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "active_sessions": len(session_tracking_service.get_active_sessions()),
    }


app.include_router(think_mode.router)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
