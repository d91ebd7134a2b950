from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import text
import os

DATABASE_URL = os.getenv("ALBUM_DATABASE_URL", "sqlite:///./album.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_sqlite_schema():
    """
    Lightweight runtime schema patching for SQLite.

    Albums created before media-host delivery only have `storage_path`,
    `media_type` and `uploaded_at`. `Base.metadata.create_all()` won't add the
    newer columns, so they are added here without requiring Alembic.
    """
    if not DATABASE_URL.startswith("sqlite"):
        return

    with engine.begin() as conn:
        media_cols = conn.execute(text("PRAGMA table_info(media)")).fetchall()
        col_names = {row[1] for row in media_cols}  # (cid, name, type, notnull, dflt_value, pk)
        if not col_names:
            return
        if "media_type" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN media_type VARCHAR DEFAULT 'photo'"))
        if "duration" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN duration INTEGER"))
        if "cloud_url" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN cloud_url VARCHAR"))
        if "file_size" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN file_size BIGINT"))
        if "width" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN width INTEGER"))
        if "height" not in col_names:
            conn.execute(text("ALTER TABLE media ADD COLUMN height INTEGER"))

        conn.execute(
            text(
                "UPDATE media SET media_type='photo' "
                "WHERE media_type IS NULL OR trim(media_type)=''"
            )
        )
        # Durations only make sense for videos.
        conn.execute(
            text(
                "UPDATE media SET duration=NULL "
                "WHERE media_type <> 'video' OR (duration IS NOT NULL AND duration <= 0)"
            )
        )
