"""Client for the Cloudinary upload API and its delivery URLs.

Uploads are unsigned (upload preset); deletion needs an API key and secret
because Cloudinary only accepts signed destroy calls.
"""
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Iterable

import httpx

from wedding_album.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "cloudinary.com"
UPLOAD_TIMEOUT_SEC = float(os.getenv("CLOUDINARY_UPLOAD_TIMEOUT_SEC", "120"))


@dataclass(frozen=True)
class MediaHostConfig:
    cloud_name: str
    upload_preset: str
    api_key: str | None = None
    api_secret: str | None = None
    host: str = DEFAULT_HOST

    @classmethod
    def from_env(cls) -> "MediaHostConfig":
        return cls(
            cloud_name=(os.getenv("CLOUDINARY_CLOUD_NAME", "") or "").strip(),
            upload_preset=(os.getenv("CLOUDINARY_UPLOAD_PRESET", "") or "").strip(),
            api_key=(os.getenv("CLOUDINARY_API_KEY", "") or "").strip() or None,
            api_secret=(os.getenv("CLOUDINARY_API_SECRET", "") or "").strip() or None,
            host=(os.getenv("CLOUDINARY_HOST", "") or "").strip() or DEFAULT_HOST,
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.cloud_name and self.upload_preset)


@dataclass(frozen=True)
class MediaFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    public_id: str
    secure_url: str
    resource_type: str
    bytes: int
    format: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    created_at: str | None = None

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "UploadResult":
        return cls(
            public_id=payload["public_id"],
            secure_url=payload["secure_url"],
            resource_type=payload.get("resource_type") or "image",
            bytes=int(payload.get("bytes") or 0),
            format=payload.get("format"),
            width=payload.get("width"),
            height=payload.get("height"),
            duration=payload.get("duration"),
            created_at=payload.get("created_at"),
        )


def resource_type_for(content_type: str | None) -> str:
    return "video" if (content_type or "").lower().startswith("video/") else "image"


def _transformations(
    width: int | None,
    height: int | None,
    crop: str | None,
    quality: str | int | None,
    format: str | None,
) -> str:
    segments: list[str] = []
    if width or height:
        dims = [f"w_{width}" if width else "", f"h_{height}" if height else "", f"c_{crop or 'fill'}"]
        segments.append(",".join(part for part in dims if part))
    if quality:
        segments.append(f"q_{quality}")
    if format:
        segments.append(f"f_{format}")
    return "/".join(segments)


class MediaHostClient:
    def __init__(
        self,
        config: MediaHostConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or MediaHostConfig.from_env()
        self._transport = transport

    def is_configured(self) -> bool:
        return self.config.is_complete

    def require_config(self) -> None:
        if not self.config.is_complete:
            raise ConfigurationError(
                "Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET."
            )

    def _api_url(self, resource_type: str, action: str) -> str:
        return f"https://api.{self.config.host}/v1_1/{self.config.cloud_name}/{resource_type}/{action}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=UPLOAD_TIMEOUT_SEC)

    async def upload(
        self,
        file: MediaFile,
        folder: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> UploadResult:
        self.require_config()

        form: dict[str, str] = {"upload_preset": self.config.upload_preset}
        if folder:
            form["folder"] = folder
        tag_list = [tag for tag in (tags or []) if tag]
        if tag_list:
            form["tags"] = ",".join(tag_list)
        form["timestamp"] = str(int(time.time() * 1000))

        resource_type = resource_type_for(file.content_type)
        url = self._api_url(resource_type, "upload")
        files = {"file": (file.filename or "upload", file.data, file.content_type or "application/octet-stream")}

        try:
            async with self._client() as client:
                response = await client.post(url, data=form, files=files)
        except httpx.RequestError as exc:
            logger.error("Cloudinary upload of %s did not complete: %s", file.filename, exc)
            raise TransportError(None, f"could not reach the media host ({exc.__class__.__name__})") from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.error("Cloudinary upload failed: %s %s", response.status_code, response.text)
            raise TransportError(response.status_code, response.text)

        result = UploadResult.from_response(response.json())
        logger.info("Uploaded %s (%d bytes) as %s", file.filename, result.bytes, result.public_id)
        return result

    def _signature(self, params: dict[str, str]) -> str:
        payload = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{payload}{self.config.api_secret}".encode("utf-8")).hexdigest()

    async def destroy(self, public_id: str, resource_type: str = "image") -> bool:
        if not (self.config.cloud_name and self.config.api_key and self.config.api_secret):
            logger.warning("Skipping remote delete of %s: CLOUDINARY_API_KEY/SECRET not set", public_id)
            return False

        params = {"public_id": public_id, "timestamp": str(int(time.time()))}
        form = dict(params, api_key=self.config.api_key, signature=self._signature(params))
        try:
            async with self._client() as client:
                response = await client.post(self._api_url(resource_type, "destroy"), data=form)
        except httpx.RequestError as exc:
            raise TransportError(None, f"could not reach the media host ({exc.__class__.__name__})") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TransportError(response.status_code, response.text)
        result = (response.json() or {}).get("result")
        if result != "ok":
            logger.warning("Cloudinary destroy of %s returned %r", public_id, result)
        return result == "ok"

    def generate_url(
        self,
        public_id: str,
        width: int | None = None,
        height: int | None = None,
        crop: str | None = None,
        quality: str | int | None = None,
        format: str | None = None,
    ) -> str:
        if not self.config.cloud_name:
            return ""
        base_url = f"https://res.{self.config.host}/{self.config.cloud_name}/image/upload"
        transformations = _transformations(width, height, crop, quality, format)
        if transformations:
            return f"{base_url}/{transformations}/{public_id}"
        return f"{base_url}/{public_id}"

    def generate_video_url(
        self,
        public_id: str,
        width: int | None = None,
        height: int | None = None,
        quality: str | int | None = None,
        format: str | None = None,
    ) -> str:
        if not self.config.cloud_name:
            return ""
        base_url = f"https://res.{self.config.host}/{self.config.cloud_name}/video/upload"
        transformations = _transformations(width, height, "fill", quality, format)
        if transformations:
            return f"{base_url}/{transformations}/{public_id}"
        return f"{base_url}/{public_id}"
