import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import reconcile
from database import get_db
from errors import api_response, error_body, register_error_handlers
from logging_config import configure_logging, new_request_id, reset_request_id, set_request_id
from media import MediaHost
from routes import comments, likes, playlists, subscriptions, tweets, users, videos
from settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, settings.environment)

    client, db = database.connect(settings.database_url, settings.database_name)
    database.ensure_indexes(db)
    app.state.mongo_client = client
    app.state.db = db
    app.state.media = MediaHost.from_settings(settings)
    os.makedirs(settings.upload_dir, exist_ok=True)

    scheduler = None
    if settings.reconcile_interval_minutes > 0:
        scheduler = reconcile.start_scheduler(db, settings.reconcile_interval_minutes)

    logger.info("API started (environment=%s)", settings.environment)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        database.close(client)


app = FastAPI(title="videotube", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.middleware("http")
async def request_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or new_request_id()
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "%s %s -> %d (%.1f ms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra={"extra": {"user_id": getattr(request.state, "user_id", None)}},
        )
        return response
    finally:
        reset_request_id(token)


API_PREFIX = "/api/v1"

app.include_router(users.router, prefix=f"{API_PREFIX}/users", tags=["users"])
app.include_router(videos.router, prefix=f"{API_PREFIX}/videos", tags=["videos"])
app.include_router(comments.router, prefix=f"{API_PREFIX}/comments", tags=["comments"])
app.include_router(likes.router, prefix=f"{API_PREFIX}/likes", tags=["likes"])
app.include_router(subscriptions.router, prefix=f"{API_PREFIX}/subscriptions", tags=["subscriptions"])
app.include_router(tweets.router, prefix=f"{API_PREFIX}/tweets", tags=["tweets"])
app.include_router(playlists.router, prefix=f"{API_PREFIX}/playlist", tags=["playlists"])


# -------------------- Basic Routes --------------------
@app.get("/")
def read_root():
    return api_response({"service": "videotube"}, "Video platform backend is running")


@app.get("/healthcheck")
def healthcheck(db: Database = Depends(get_db)):
    try:
        db.command("ping")
    except PyMongoError as e:
        logger.error("Healthcheck ping failed: %s", e)
        return JSONResponse(status_code=503, content=error_body(503, "Database unavailable"))
    return api_response({"database": "connected"}, "OK")


if __name__ == "__main__":
    import uvicorn
    port = get_settings().port
    uvicorn.run(app, host="0.0.0.0", port=port)
