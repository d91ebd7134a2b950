from dotenv import load_dotenv

# Module-level settings below read the environment at import time.
load_dotenv()

import logging
import os
import time
from datetime import datetime, timezone
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from wedding_album.db import Base, SessionLocal, engine, ensure_sqlite_schema
from wedding_album.api import admin, auth, capture, media
from wedding_album.errors import AlbumError, PersistenceError
from wedding_album.logging_config import setup_logging
from wedding_album.models import admin as admin_models  # noqa: F401
from wedding_album.models import media as media_models  # noqa: F401
from wedding_album.services.auth import prune_revoked
from wedding_album.services.media_host import MediaHostConfig
from wedding_album.services.realtime import hub
from wedding_album.services.storage import STORAGE_ROOT, ensure_storage

setup_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()
ensure_storage()

CORS_ORIGINS = [origin.strip() for origin in os.getenv("ALBUM_CORS_ORIGINS", "*").split(",") if origin.strip()]

app = FastAPI(title="wedding-album")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {
        "ok": True,
        "service": "wedding-album",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "docs": "/docs",
    }


@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "media_host_configured": MediaHostConfig.from_env().is_complete,
        "realtime_clients": hub.client_count,
        "revision": hub.revision,
    }


@app.websocket("/ws/updates")
async def ws_updates(websocket: WebSocket):
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        await hub.disconnect(websocket)


@app.on_event("startup")
async def startup_events() -> None:
    db = SessionLocal()
    try:
        prune_revoked(db)
        db.commit()
    finally:
        db.close()
    if not MediaHostConfig.from_env().is_complete:
        logger.warning("Cloudinary is not configured; uploads will be refused until CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET are set")


@app.exception_handler(AlbumError)
async def album_error_handler(request: Request, exc: AlbumError):
    if isinstance(exc, PersistenceError):
        # The detailed cause is already logged; guests only get a generic failure.
        return JSONResponse({"detail": "Upload failed. Please try again."}, status_code=exc.status_code)
    return JSONResponse({"detail": str(exc), "code": exc.code}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse({"detail": "An internal server error occurred."}, status_code=500)


@app.middleware("http")
async def realtime_mutation_middleware(request: Request, call_next):
    response = await call_next(request)
    method = request.method.upper()
    path = request.url.path
    if response.status_code < 400 and method in {"POST", "DELETE"} and path.startswith("/media"):
        action = "deleted" if method == "DELETE" else "created"
        await hub.media_changed(action)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {process_time:.2f}ms")
    return response


app.include_router(media.router)
app.include_router(admin.router)
app.include_router(auth.router)
app.include_router(capture.router)

app.mount("/storage", StaticFiles(directory=STORAGE_ROOT), name="storage")
