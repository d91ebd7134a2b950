from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session
from wedding_album.api.media import get_media_host
from wedding_album.db import get_db
from wedding_album.models.media import MediaRecord
from wedding_album.schemas.media import MediaSummaryOut
from wedding_album.services.auth import Principal, require_admin
from wedding_album.services.media_host import MediaHostClient

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/summary", response_model=MediaSummaryOut)
def summary(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    media_host: MediaHostClient = Depends(get_media_host),
):
    rows = (
        db.query(MediaRecord.media_type, func.count(MediaRecord.id), func.coalesce(func.sum(MediaRecord.file_size), 0))
        .group_by(MediaRecord.media_type)
        .all()
    )
    counts = {media_type: (count, int(size or 0)) for media_type, count, size in rows}
    photos = counts.get("photo", (0, 0))[0]
    videos = counts.get("video", (0, 0))[0]
    return {
        "total": photos + videos,
        "photos": photos,
        "videos": videos,
        "total_bytes": sum(size for _, size in counts.values()),
        "media_host_configured": media_host.is_configured(),
    }
