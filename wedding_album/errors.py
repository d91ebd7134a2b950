"""Error taxonomy shared by the upload and capture flows.

Every error is surfaced once to the caller; nothing in the core retries
automatically.
"""


class AlbumError(Exception):
    status_code = 500
    code = "album_error"


class ConfigurationError(AlbumError):
    """Media host credentials are missing."""

    status_code = 503
    code = "configuration_error"


class UnsupportedMediaType(AlbumError):
    status_code = 415
    code = "unsupported_media_type"

    def __init__(self, content_type: str | None):
        self.content_type = content_type
        super().__init__(f"Unsupported media type: {content_type or 'unknown'}. Only images and videos are accepted.")


class TransportError(AlbumError):
    """The media host answered with a non-success status or could not be reached."""

    status_code = 502
    code = "transport_error"

    def __init__(self, status_code: int | None, body: str):
        self.remote_status = status_code
        self.body = body
        if status_code is None:
            # Never reached the host (connection error, timeout).
            super().__init__(f"Upload failed: {body}")
        else:
            super().__init__(f"Upload failed: {status_code} - {body}")


class CameraUnavailable(AlbumError):
    status_code = 503
    code = "camera_unavailable"


class PersistenceError(AlbumError):
    """Metadata write failed after the remote upload succeeded."""

    status_code = 500
    code = "persistence_error"


class InvalidTransition(AlbumError):
    status_code = 409
    code = "invalid_transition"


class UploadInProgress(AlbumError):
    status_code = 409
    code = "upload_in_progress"
