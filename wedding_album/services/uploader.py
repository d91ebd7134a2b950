import base64
import logging
import os
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wedding_album.errors import ConfigurationError, PersistenceError, UnsupportedMediaType, UploadInProgress
from wedding_album.models.media import MediaRecord
from wedding_album.services.media_host import MediaFile, MediaHostClient, UploadResult

logger = logging.getLogger(__name__)

MEDIA_FOLDER = (os.getenv("ALBUM_MEDIA_FOLDER", "wedding-photos") or "").strip() or None
ALLOWED_PREFIXES = ("image/", "video/")


class UploadPhase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def media_kind_for(content_type: str | None) -> str:
    return "video" if (content_type or "").lower().startswith("video/") else "photo"


def preview_data_url(file: MediaFile) -> str:
    encoded = base64.b64encode(file.data).decode("ascii")
    return f"data:{file.content_type};base64,{encoded}"


class UploadOrchestrator:
    """Validate, preview, upload and persist one guest submission at a time.

    The preview is kept separately from the outcome: a failure after the
    preview was committed still leaves it available to show the guest.
    """

    def __init__(self, media_host: MediaHostClient, db: Session, folder: str | None = MEDIA_FOLDER) -> None:
        self.media_host = media_host
        self.db = db
        self.folder = folder
        self.phase = UploadPhase.IDLE
        self.preview: str | None = None
        self.error: Exception | None = None
        self.record: MediaRecord | None = None

    async def submit(self, file: MediaFile, kind: str | None = None, duration: int | None = None) -> MediaRecord:
        if self.phase is UploadPhase.UPLOADING:
            raise UploadInProgress("An upload is already running.")

        content_type = (file.content_type or "").lower()
        if not content_type.startswith(ALLOWED_PREFIXES):
            raise UnsupportedMediaType(file.content_type)
        if not self.media_host.is_configured():
            raise ConfigurationError(
                "Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET."
            )

        kind = kind or media_kind_for(content_type)
        if kind != "video":
            duration = None

        self.preview = preview_data_url(file)
        self.phase = UploadPhase.UPLOADING
        self.error = None
        self.record = None
        try:
            result = await self.media_host.upload(file, folder=self.folder, tags=["wedding", kind])
            self.record = self._persist(result, kind, duration)
        except Exception as exc:
            self.phase = UploadPhase.FAILED
            self.error = exc
            raise
        self.phase = UploadPhase.SUCCEEDED
        return self.record

    def _persist(self, result: UploadResult, kind: str, duration: int | None) -> MediaRecord:
        if kind == "video" and duration is None and result.duration is not None:
            duration = int(round(result.duration))
        record = MediaRecord(
            storage_path=result.public_id,
            media_type=kind,
            duration=duration if kind == "video" else None,
            cloud_url=result.secure_url,
            file_size=result.bytes,
            width=result.width,
            height=result.height,
        )
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as exc:
            self.db.rollback()
            # No compensating delete: the remote asset stays orphaned and is only logged.
            logger.error("Saving metadata failed; orphaned Cloudinary asset %s", result.public_id, exc_info=True)
            raise PersistenceError("Could not save the upload. Please try again.") from exc
        logger.info("Stored %s %s (%s)", kind, record.id, result.public_id)
        return record
