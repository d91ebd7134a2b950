import logging

from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import func
from wedding_album.db import get_db
from wedding_album.models.media import MediaRecord
from wedding_album.schemas.media import MediaOut, MediaPageOut
from wedding_album.services.auth import Principal, require_admin
from wedding_album.services.gallery import to_media_out
from wedding_album.services.media_host import MediaFile, MediaHostClient
from wedding_album.services.storage import remove_blob
from wedding_album.services.uploader import UploadOrchestrator

router = APIRouter(prefix="/media", tags=["media"])
logger = logging.getLogger(__name__)


def get_media_host() -> MediaHostClient:
    return MediaHostClient()


def _normalized_kind(value: str | None) -> str | None:
    kind = (value or "").strip().lower()
    if kind in {"image", "photo"}:
        return "photo"
    if kind == "video":
        return "video"
    return None


@router.post("/upload", response_model=MediaOut, status_code=201)
async def upload_media(
    file: UploadFile = File(...),
    duration: int | None = Form(None),
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty files cannot be uploaded.")
    media_file = MediaFile(
        filename=(file.filename or "upload").strip() or "upload",
        content_type=file.content_type or "",
        data=content,
    )
    if duration is not None and duration <= 0:
        duration = None
    orchestrator = UploadOrchestrator(media_host, db)
    record = await orchestrator.submit(media_file, duration=duration)
    return to_media_out(record, media_host)


@router.get("", response_model=list[MediaOut])
def list_media(
    type: str | None = None,
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    query = db.query(MediaRecord)
    kind = _normalized_kind(type)
    if kind:
        query = query.filter(MediaRecord.media_type == kind)
    records = query.order_by(MediaRecord.uploaded_at.desc(), MediaRecord.id.desc()).all()
    return [to_media_out(record, media_host) for record in records]


@router.get("/page", response_model=MediaPageOut)
def list_media_page(
    offset: int = 0,
    limit: int = 100,
    q: str | None = None,
    type: str | None = None,
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    safe_offset = max(0, offset)
    safe_limit = max(1, min(limit, 500))

    query = db.query(MediaRecord)
    kind = _normalized_kind(type)
    if kind:
        query = query.filter(MediaRecord.media_type == kind)
    if q:
        keyword = f"%{q.strip().lower()}%"
        if keyword != "%%":
            query = query.filter(
                func.lower(MediaRecord.storage_path).like(keyword) | func.lower(MediaRecord.cloud_url).like(keyword)
            )

    total = query.count()
    items = (
        query.order_by(MediaRecord.uploaded_at.desc(), MediaRecord.id.desc())
        .offset(safe_offset)
        .limit(safe_limit)
        .all()
    )
    return {
        "items": [to_media_out(record, media_host) for record in items],
        "total": total,
        "offset": safe_offset,
        "limit": safe_limit,
    }


@router.get("/{media_id}", response_model=MediaOut)
def get_media(
    media_id: str,
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    record = db.get(MediaRecord, media_id)
    if not record:
        raise HTTPException(status_code=404, detail="Media not found")
    return to_media_out(record, media_host)


@router.delete("/{media_id}")
async def delete_media(
    media_id: str,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    record = db.get(MediaRecord, media_id)
    if not record:
        raise HTTPException(status_code=404, detail="Media not found")

    # Blob first; the row is the only handle to it.
    if record.is_legacy:
        blob_removed = remove_blob(record.storage_path)
    else:
        resource_type = "video" if record.media_type == "video" else "image"
        blob_removed = await media_host.destroy(record.storage_path, resource_type)

    db.delete(record)
    db.commit()
    logger.info("%s deleted media %s (blob removed: %s)", principal.email, media_id, blob_removed)
    return {"ok": True, "blob_removed": blob_removed}
