"""Move legacy locally-stored media to Cloudinary.

    python -m wedding_album.migrate              # upload every legacy record
    python -m wedding_album.migrate --cleanup --yes   # then drop the local copies
"""
import argparse
import asyncio
import logging
import mimetypes
import os

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wedding_album.db import Base, SessionLocal, engine, ensure_sqlite_schema
from wedding_album.errors import TransportError
from wedding_album.logging_config import setup_logging
from wedding_album.models.media import MediaRecord
from wedding_album.services.media_host import MediaFile, MediaHostClient
from wedding_album.services.storage import MEDIA_DIR, read_blob, remove_blob
from wedding_album.services.uploader import MEDIA_FOLDER

logger = logging.getLogger("wedding_album.migrate")

PAUSE_BETWEEN_UPLOADS_SEC = 0.1


def _content_type(record: MediaRecord) -> str:
    guessed, _ = mimetypes.guess_type(record.storage_path)
    if guessed:
        return guessed
    return "video/webm" if record.media_type == "video" else "image/jpeg"


async def migrate(db: Session, media_host: MediaHostClient, pause: float = PAUSE_BETWEEN_UPLOADS_SEC) -> dict[str, int]:
    media_host.require_config()
    records = db.query(MediaRecord).filter(MediaRecord.cloud_url.is_(None)).order_by(MediaRecord.uploaded_at).all()
    if not records:
        logger.info("Nothing to migrate; every record is already on Cloudinary")
        return {"migrated": 0, "failed": 0}

    logger.info("Found %d legacy record(s) to migrate", len(records))
    migrated = failed = 0
    for index, record in enumerate(records, start=1):
        legacy_path = record.storage_path
        logger.info("Migrating %d/%d: %s", index, len(records), legacy_path)
        try:
            data = read_blob(legacy_path)
        except OSError as exc:
            logger.error("Could not read %s: %s", legacy_path, exc)
            failed += 1
            continue

        media_file = MediaFile(filename=os.path.basename(legacy_path), content_type=_content_type(record), data=data)
        try:
            result = await media_host.upload(
                media_file,
                folder=MEDIA_FOLDER,
                tags=["wedding", record.media_type, "migrated-from-local"],
            )
        except TransportError:
            logger.exception("Upload of %s failed", legacy_path)
            failed += 1
            continue

        try:
            record.cloud_url = result.secure_url
            record.file_size = result.bytes
            record.width = result.width
            record.height = result.height
            record.storage_path = result.public_id
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("Saving %s failed; orphaned Cloudinary asset %s", legacy_path, result.public_id, exc_info=True)
            failed += 1
            continue
        migrated += 1
        logger.info("Migrated %s -> %s", legacy_path, result.public_id)

        if pause:
            await asyncio.sleep(pause)

    logger.info("Migration finished: %d migrated, %d failed", migrated, failed)
    return {"migrated": migrated, "failed": failed}


def cleanup_local_storage() -> int:
    """Remove local blobs that no legacy record references any more."""
    if not os.path.isdir(MEDIA_DIR):
        return 0
    db = SessionLocal()
    try:
        referenced = {
            path
            for (path,) in db.query(MediaRecord.storage_path).filter(MediaRecord.cloud_url.is_(None)).all()
        }
    finally:
        db.close()

    removed = 0
    for name in sorted(os.listdir(MEDIA_DIR)):
        # Legacy files carry an extension; Cloudinary public ids never live here.
        if name in referenced or "." not in name:
            continue
        if remove_blob(name):
            removed += 1
    logger.info("Removed %d local file(s)", removed)
    return removed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate legacy local media to Cloudinary.")
    parser.add_argument("--cleanup", action="store_true", help="delete local files that were migrated")
    parser.add_argument("--yes", action="store_true", help="confirm --cleanup without prompting")
    args = parser.parse_args(argv)

    setup_logging()
    Base.metadata.create_all(bind=engine)
    ensure_sqlite_schema()

    if args.cleanup:
        if not args.yes:
            logger.error("Refusing to delete local files without --yes")
            return 2
        cleanup_local_storage()
        return 0

    db = SessionLocal()
    try:
        summary = asyncio.run(migrate(db, MediaHostClient()))
    finally:
        db.close()
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
