import pytest

from wedding_album.errors import ConfigurationError, TransportError
from wedding_album.services.media_host import (
    MediaFile,
    MediaHostClient,
    MediaHostConfig,
    UploadResult,
    resource_type_for,
)


def _client(**overrides) -> MediaHostClient:
    config = MediaHostConfig(**{"cloud_name": "demo", "upload_preset": "wedding", **overrides})
    return MediaHostClient(config)


class TestDeliveryUrls:
    def test_full_transformation_order(self):
        url = _client().generate_url("album/pic", width=400, height=400, crop="fill", quality="auto", format="auto")
        assert url == "https://res.cloudinary.com/demo/image/upload/w_400,h_400,c_fill/q_auto/f_auto/album/pic"

    def test_generate_url_is_deterministic(self):
        client = _client()
        options = {"width": 400, "height": 400, "crop": "fill", "quality": "auto", "format": "auto"}
        assert client.generate_url("abc", **options) == client.generate_url("abc", **options)

    def test_no_options_omits_transformations(self):
        assert _client().generate_url("abc") == "https://res.cloudinary.com/demo/image/upload/abc"

    def test_crop_defaults_to_fill_when_dimensions_given(self):
        assert _client().generate_url("abc", width=200) == "https://res.cloudinary.com/demo/image/upload/w_200,c_fill/abc"

    def test_quality_without_dimensions(self):
        assert _client().generate_url("abc", quality=80) == "https://res.cloudinary.com/demo/image/upload/q_80/abc"

    def test_video_url_always_fills(self):
        url = _client().generate_video_url("clip", width=400, height=400, quality="auto", format="mp4")
        assert url == "https://res.cloudinary.com/demo/video/upload/w_400,h_400,c_fill/q_auto/f_mp4/clip"

    def test_missing_cloud_name_yields_empty_url(self):
        client = _client(cloud_name="")
        assert client.generate_url("abc", width=10) == ""
        assert client.generate_video_url("abc") == ""


class TestUpload:
    @pytest.mark.asyncio
    async def test_image_upload_posts_multipart_form(self, cloudinary):
        client = cloudinary.client()
        media = MediaFile(filename="cake.jpg", content_type="image/jpeg", data=b"\xff\xd8jpeg")

        result = await client.upload(media, folder="wedding-photos", tags=["wedding", "photo"])

        assert isinstance(result, UploadResult)
        assert result.public_id == "wedding-photos/asset-1"
        assert result.resource_type == "image"
        assert result.duration is None
        request = cloudinary.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.cloudinary.com/v1_1/demo/image/upload"
        body = request.content
        assert b'name="upload_preset"' in body and b"wedding" in body
        assert b'name="folder"' in body and b"wedding-photos" in body
        assert b"wedding,photo" in body
        assert b'name="timestamp"' in body
        assert b'filename="cake.jpg"' in body

    @pytest.mark.asyncio
    async def test_video_mime_uses_video_endpoint(self, cloudinary):
        media = MediaFile(filename="story.webm", content_type="video/webm", data=b"webm")
        result = await cloudinary.client().upload(media)

        assert cloudinary.requests[0].url.path == "/v1_1/demo/video/upload"
        assert result.resource_type == "video"
        assert result.duration == 12.4

    @pytest.mark.asyncio
    async def test_non_success_raises_transport_error(self, cloudinary):
        cloudinary.status_code = 500
        media = MediaFile(filename="a.png", content_type="image/png", data=b"png")

        with pytest.raises(TransportError) as exc_info:
            await cloudinary.client().upload(media)

        assert exc_info.value.remote_status == 500
        assert "500" in str(exc_info.value)
        assert "remote exploded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_config_fails_before_network(self, cloudinary):
        cloudinary.configured = False
        media = MediaFile(filename="a.png", content_type="image/png", data=b"png")

        with pytest.raises(ConfigurationError):
            await cloudinary.client().upload(media)
        assert cloudinary.requests == []


class TestDestroy:
    @pytest.mark.asyncio
    async def test_skipped_without_secret(self, cloudinary):
        assert await cloudinary.client().destroy("abc") is False
        assert cloudinary.requests == []

    @pytest.mark.asyncio
    async def test_signed_destroy(self, cloudinary):
        cloudinary.api_secret = "shh"
        assert await cloudinary.client().destroy("abc", "video") is True

        request = cloudinary.requests[0]
        assert request.url.path == "/v1_1/demo/video/destroy"
        assert b"signature=" in request.content
        assert b"api_key=key-123" in request.content


def test_resource_type_for():
    assert resource_type_for("video/mp4") == "video"
    assert resource_type_for("image/heic") == "image"
    assert resource_type_for(None) == "image"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("CLOUDINARY_CLOUD_NAME", " demo ")
    monkeypatch.setenv("CLOUDINARY_UPLOAD_PRESET", "wedding")
    monkeypatch.delenv("CLOUDINARY_API_KEY", raising=False)
    monkeypatch.delenv("CLOUDINARY_HOST", raising=False)

    config = MediaHostConfig.from_env()

    assert config.cloud_name == "demo"
    assert config.is_complete
    assert config.api_key is None
    assert config.host == "cloudinary.com"



@pytest.mark.asyncio
async def test_unreachable_host_raises_transport_error(cloudinary):
    cloudinary.unreachable = True
    media = MediaFile(filename="a.png", content_type="image/png", data=b"png")

    with pytest.raises(TransportError) as exc_info:
        await cloudinary.client().upload(media)

    assert exc_info.value.remote_status is None
    assert "ConnectError" in str(exc_info.value)


@pytest.mark.asyncio
async def test_unreachable_host_on_destroy(cloudinary):
    cloudinary.api_secret = "shh"
    cloudinary.unreachable = True

    with pytest.raises(TransportError):
        await cloudinary.client().destroy("abc")
