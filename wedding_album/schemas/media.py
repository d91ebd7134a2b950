from datetime import datetime
from pydantic import BaseModel


class MediaOut(BaseModel):
    id: str
    storage_path: str
    media_type: str
    duration: int | None = None
    cloud_url: str | None = None
    file_size: int | None = None
    width: int | None = None
    height: int | None = None
    uploaded_at: datetime
    url: str = ""
    thumbnail_url: str = ""
    duration_label: str = ""

    class Config:
        from_attributes = True


class MediaPageOut(BaseModel):
    items: list[MediaOut]
    total: int
    offset: int
    limit: int


class MediaSummaryOut(BaseModel):
    total: int
    photos: int
    videos: int
    total_bytes: int
    media_host_configured: bool
