from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from open_superagent.tool.mcp_servers import media_mcp_server as media


@pytest.fixture(autouse=True)
def media_public_dir(monkeypatch, public_dir):
    monkeypatch.setattr(media, "PUBLIC_DIR", public_dir)
    return public_dir


@pytest.mark.asyncio
async def test_gemini_images_without_key(monkeypatch):
    monkeypatch.setattr(media, "GEMINI_API_KEY", "")
    result = await media.generate_gemini_images("a cat")
    assert result["success"] is False
    assert result["title"] == "API Key Error"
    assert result["toolName"] == "gemini-image-generation"


@pytest.mark.asyncio
async def test_gemini_images_are_saved_under_public_dir(monkeypatch, media_public_dir):
    monkeypatch.setattr(media, "GEMINI_API_KEY", "key")
    response = SimpleNamespace(generated_images=[SimpleNamespace(image=SimpleNamespace(image_bytes=b"png"))])
    client = MagicMock()
    client.aio.models.generate_images = AsyncMock(return_value=response)

    with patch.object(media.genai, "Client", return_value=client):
        result = await media.generate_gemini_images("a very long prompt about a cat sitting on a mat", number_of_images=9)

    assert result["success"] is True
    url = result["images"][0]["url"]
    assert url.startswith("/generated-images/img_")
    assert (media_public_dir / url.lstrip("/")).read_bytes() == b"png"
    assert result["title"].endswith("...")
    assert "![Generated Image 1]" in result["markdownImages"]
    config = client.aio.models.generate_images.await_args.kwargs["config"]
    assert config.number_of_images == 4


@pytest.mark.asyncio
async def test_veo2_validates_prompt_and_key(monkeypatch):
    assert (await media.generate_veo2_video(""))["status"] == "failed"
    monkeypatch.setattr(media, "FAL_KEY", "")
    result = await media.generate_veo2_video("waves")
    assert result["message"] == "API key is not set. Please configure the FAL_KEY."
    assert result["toolName"] == "veo2-video-generation"


@pytest.mark.asyncio
async def test_tts_validates_text_and_credentials(monkeypatch):
    assert (await media.synthesize_speech(""))["success"] is False
    assert (await media.synthesize_speech("x" * 5001))["success"] is False

    monkeypatch.setattr(media, "MINIMAX_API_KEY", "")
    result = await media.synthesize_speech("hello")
    assert "MINIMAX_API_KEY and MINIMAX_GROUP_ID" in result["error"]


def test_minimax_errors_are_explained():
    assert "top up" in media._explain_minimax_error("insufficient balance")
    assert media._explain_minimax_error("weird") == "weird"


class _Completed:
    def __init__(self, error=None):
        self.error = error


class _InProgress:
    logs = []


@pytest.fixture
def fal(monkeypatch):
    """fal_client replaced by a queue whose statuses come from the test."""
    fake = SimpleNamespace(
        Completed=_Completed,
        InProgress=_InProgress,
        submit_async=AsyncMock(return_value=SimpleNamespace(request_id="req-1")),
        status_async=AsyncMock(return_value=_Completed()),
        result_async=AsyncMock(return_value={"video": {"url": "https://cdn.example/v.mp4", "content_type": "video/mp4"}}),
        subscribe_async=AsyncMock(),
    )
    monkeypatch.setattr(media, "fal_client", fake)
    monkeypatch.setattr(media, "FAL_KEY", "key")
    monkeypatch.setattr(media, "POLLING_INTERVAL", 0.01)
    return fake


@pytest.mark.asyncio
async def test_veo2_polls_until_completed_and_saves_video(monkeypatch, fal, media_public_dir):
    fal.status_async.side_effect = [_InProgress(), _InProgress(), _Completed()]
    monkeypatch.setattr(media, "_download", AsyncMock(return_value=b"mp4"))

    result = await media.generate_veo2_video("waves at dusk", aspect_ratio="9:16", duration="8s")

    assert result["success"] is True
    assert result["status"] == "completed"
    assert result["progress"] == 100
    assert result["requestId"] == "req-1"
    url = result["videos"][0]["url"]
    assert url.startswith("/generated-videos/veo2_") and url.endswith(".mp4")
    assert (media_public_dir / url.lstrip("/")).read_bytes() == b"mp4"
    assert fal.status_async.await_count == 3
    assert fal.submit_async.await_args.kwargs["arguments"] == {
        "prompt": "waves at dusk", "aspect_ratio": "9:16", "duration": "8s",
    }


@pytest.mark.asyncio
async def test_veo2_reports_failed_job(fal):
    fal.status_async.return_value = _Completed(error="content policy")

    result = await media.generate_veo2_video("waves")

    assert result["success"] is False
    assert result["status"] == "failed"
    assert result["error"] == "content policy"
    fal.result_async.assert_not_awaited()


@pytest.mark.asyncio
async def test_veo2_download_failure_is_returned_not_raised(monkeypatch, fal):
    monkeypatch.setattr(media, "_download", AsyncMock(side_effect=media.httpx.ConnectError("cdn down")))

    result = await media.generate_veo2_video("waves")

    assert result["success"] is False
    assert result["status"] == "failed"
    assert "cdn down" in result["error"]
    assert result["requestId"] == "req-1"


@pytest.mark.asyncio
async def test_veo2_times_out(monkeypatch, fal):
    fal.status_async.return_value = _InProgress()
    monkeypatch.setattr(media, "MAX_POLLING_TIME", 0.05)

    result = await media.generate_veo2_video("waves")

    assert result["status"] == "timeout"
    assert result["success"] is False
    assert fal.status_async.await_count >= 1


def test_polling_progress_is_capped_below_completion():
    assert media.polling_progress(0) == 0
    assert media.polling_progress(media.MAX_POLLING_TIME / 2) == 50
    assert media.polling_progress(media.MAX_POLLING_TIME * 2) == 95


@pytest.mark.asyncio
async def test_imagen4_downloads_images_and_skips_broken_ones(monkeypatch, fal, media_public_dir):
    fal.subscribe_async.return_value = {
        "images": [{"url": "https://cdn.example/1.png"}, {"url": "https://cdn.example/2.png"}, {}],
        "seed": 42,
    }
    download = AsyncMock(side_effect=[b"one", media.httpx.ReadTimeout("slow")])
    monkeypatch.setattr(media, "_download", download)

    result = await media.generate_imagen4_images("a fox", num_images=10, seed=42)

    assert result["success"] is True
    assert len(result["images"]) == 1
    assert (media_public_dir / result["images"][0]["url"].lstrip("/")).read_bytes() == b"one"
    assert result["seed"] == 42
    arguments = fal.subscribe_async.await_args.kwargs["arguments"]
    assert arguments["num_images"] == 4
    assert arguments["seed"] == 42
    assert fal.subscribe_async.await_args.args[0] == media.IMAGEN4_MODEL_ID


@pytest.mark.asyncio
async def test_imagen4_api_error_is_reported(fal):
    fal.subscribe_async.side_effect = RuntimeError("rate limited")

    result = await media.generate_imagen4_images("a fox")

    assert result["success"] is False
    assert result["error"] == "API Error: rate limited"
    assert result["title"] == "Image Generation Error"
