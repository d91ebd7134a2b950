import uuid
from datetime import datetime
from sqlalchemy import CheckConstraint, Column, String, Integer, BigInteger, DateTime
from wedding_album.db import Base

MEDIA_KINDS = ("photo", "video")


class MediaRecord(Base):
    __tablename__ = "media"
    __table_args__ = (
        CheckConstraint("length(trim(storage_path)) > 0", name="ck_media_storage_path"),
        CheckConstraint("media_type IN ('photo', 'video')", name="ck_media_type"),
        CheckConstraint("duration IS NULL OR media_type = 'video'", name="ck_media_duration_video_only"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Legacy local storage path, or the media host public id.
    storage_path = Column(String, nullable=False)
    media_type = Column(String(16), nullable=False, default="photo")
    duration = Column(Integer, nullable=True)
    cloud_url = Column(String, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_legacy(self) -> bool:
        return not self.cloud_url
