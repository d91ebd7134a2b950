import os
import time
import uuid

STORAGE_ROOT = os.getenv("ALBUM_STORAGE_DIR", "storage")
MEDIA_DIR = os.path.join(STORAGE_ROOT, "media")
PUBLIC_PREFIX = "/storage/media"


def ensure_storage() -> None:
    os.makedirs(MEDIA_DIR, exist_ok=True)


def _safe_relative(storage_path: str) -> str:
    normalized = (storage_path or "").replace("\\", "/").strip().lstrip("/")
    parts = [part for part in normalized.split("/") if part not in {"", ".", ".."}]
    if not parts:
        raise ValueError("Storage path is empty.")
    return "/".join(parts)


def blob_path(storage_path: str) -> str:
    return os.path.join(MEDIA_DIR, _safe_relative(storage_path))


def save_blob(content: bytes, filename: str) -> str:
    """Store raw bytes under a randomized name and return the storage path."""
    ensure_storage()
    if not content:
        raise ValueError("Empty files cannot be stored.")
    _, ext = os.path.splitext(os.path.basename(filename or "").lower())
    storage_path = f"{uuid.uuid4().hex[:12]}-{int(time.time() * 1000)}{ext}"
    with open(blob_path(storage_path), "wb") as f:
        f.write(content)
    return storage_path


def read_blob(storage_path: str) -> bytes:
    with open(blob_path(storage_path), "rb") as f:
        return f.read()


def remove_blob(storage_path: str) -> bool:
    path = blob_path(storage_path)
    if not os.path.exists(path):
        return False
    os.remove(path)
    return True


def public_url(storage_path: str) -> str:
    return f"{PUBLIC_PREFIX}/{_safe_relative(storage_path)}"
