from wedding_album.models.media import MediaRecord
from wedding_album.schemas.media import MediaOut
from wedding_album.services.media_host import MediaHostClient
from wedding_album.services.storage import public_url

THUMBNAIL_SIZE = 400


def format_duration(seconds: int | None) -> str:
    if not seconds:
        return ""
    mins, secs = divmod(int(seconds), 60)
    return f"{mins}:{secs:02d}" if mins > 0 else f"{secs}s"


def media_url(record: MediaRecord) -> str:
    if record.cloud_url:
        return record.cloud_url
    return public_url(record.storage_path)


def thumbnail_url(record: MediaRecord, media_host: MediaHostClient) -> str:
    if record.is_legacy:
        return public_url(record.storage_path)
    options = {"width": THUMBNAIL_SIZE, "height": THUMBNAIL_SIZE, "quality": "auto", "format": "auto"}
    if record.media_type == "video":
        url = media_host.generate_video_url(record.storage_path, **options)
    else:
        url = media_host.generate_url(record.storage_path, crop="fill", **options)
    return url or record.cloud_url


def to_media_out(record: MediaRecord, media_host: MediaHostClient) -> MediaOut:
    out = MediaOut.model_validate(record)
    return out.model_copy(
        update={
            "url": media_url(record),
            "thumbnail_url": thumbnail_url(record, media_host),
            "duration_label": format_duration(record.duration),
        }
    )
