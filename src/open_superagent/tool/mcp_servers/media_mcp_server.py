import asyncio
import math
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import fal_client
import httpx
from fastmcp import FastMCP
from google import genai
from google.genai import types

from open_superagent.tool.logger import bootstrap_logger

GEMINI_API_KEY = os.environ.get("GOOGLE_GENERATIVE_AI_API_KEY") or os.environ.get("GEMINI_API_KEY", "")
FAL_KEY = os.environ.get("FAL_KEY", "")
MINIMAX_API_KEY = os.environ.get("MINIMAX_API_KEY", "")
MINIMAX_GROUP_ID = os.environ.get("MINIMAX_GROUP_ID", "")
PUBLIC_DIR = Path(os.environ.get("PUBLIC_DIR", "./public")).resolve()

IMAGEN3_MODEL_ID = "imagen-3.0-generate-002"
IMAGEN4_MODEL_ID = "fal-ai/imagen4/preview"
VEO2_MODEL_ID = "fal-ai/veo2"

POLLING_INTERVAL = 20.0
MAX_POLLING_TIME = 600.0

MINIMAX_TTS_URL = "https://api.minimaxi.chat/v1/t2a_v2"

# Initialize FastMCP server
mcp = FastMCP("media-mcp-server")

logger = bootstrap_logger()


def _output_dir(kind: str) -> Path:
    d = PUBLIC_DIR / kind
    d.mkdir(parents=True, exist_ok=True)
    return d


def _title(text: str, limit: int = 30) -> str:
    text = text or ""
    return text[:limit] + ("..." if len(text) > limit else "")


def _markdown_images(urls) -> str:
    return "\n\n".join(f"![Generated Image {i + 1}]({url})" for i, url in enumerate(urls))


def _image_failure(prompt: str, tool_name: str, display: str, error: str, message: str, title: str) -> Dict[str, Any]:
    return {
        "images": [],
        "prompt": prompt or "",
        "success": False,
        "message": message,
        "autoOpenPreview": False,
        "error": error,
        "title": title,
        "toolName": tool_name,
        "toolDisplayName": display,
    }


async def _download(url: str, timeout: float = 120.0) -> bytes:
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
    response.raise_for_status()
    return response.content


# ----------------- Imagen 3 via google-genai -----------------

async def generate_gemini_images(
    prompt: str,
    number_of_images: int = 1,
    aspect_ratio: str = "1:1",
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
    person_generation: str = "ALLOW_ADULT",
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    tool_name, display = "gemini-image-generation", "Gemini Image Generation"
    if not GEMINI_API_KEY:
        return _image_failure(
            prompt, tool_name, display,
            error="GEMINI_API_KEY is not set.",
            message="API key is not set. Please configure the GEMINI_API_KEY.",
            title="API Key Error",
        )

    config_kwargs: Dict[str, Any] = {
        "number_of_images": max(1, min(int(number_of_images or 1), 4)),
    }
    if aspect_ratio:
        config_kwargs["aspect_ratio"] = aspect_ratio
    if negative_prompt:
        config_kwargs["negative_prompt"] = negative_prompt
    if isinstance(seed, int):
        config_kwargs["seed"] = seed
    if person_generation:
        config_kwargs["person_generation"] = person_generation

    logger.info(f"[gemini_image_generation] prompt='{_title(prompt, 50)}' count={config_kwargs['number_of_images']}")
    try:
        client = genai.Client(api_key=GEMINI_API_KEY)
        response = await client.aio.models.generate_images(
            model=IMAGEN3_MODEL_ID,
            prompt=prompt,
            config=types.GenerateImagesConfig(**config_kwargs),
        )
    except Exception as e:
        logger.error(f"Imagen 3 generation failed: {e}")
        error = f"API Error: {e}"
        return _image_failure(
            prompt, tool_name, display,
            error=error, message=f"Failed to generate images: {error}", title="Image Generation Error",
        )

    images_dir = _output_dir("generated-images")
    images = []
    for generated in response.generated_images or []:
        image = getattr(generated, "image", None)
        data = getattr(image, "image_bytes", None) if image is not None else None
        if not data:
            continue
        name = f"img_{uuid.uuid4()}.png"
        (images_dir / name).write_bytes(data)
        images.append({"url": f"/generated-images/{name}"})

    if not images:
        return _image_failure(
            prompt, tool_name, display,
            error="No images generated or image data missing in response.",
            message="No images were generated. Please try again with a different prompt.",
            title="Image Generation Error",
        )

    markdown = _markdown_images(img["url"] for img in images)
    return {
        "images": images,
        "prompt": prompt or "",
        "success": True,
        "message": f"Generated {len(images)} image(s).\n\n{markdown}",
        "autoOpenPreview": auto_open_preview,
        "title": _title(prompt),
        "toolName": tool_name,
        "toolDisplayName": display,
        "markdownImages": markdown,
    }


# ----------------- Imagen 4 via fal -----------------

async def generate_imagen4_images(
    prompt: str,
    negative_prompt: str = "",
    aspect_ratio: str = "1:1",
    num_images: int = 1,
    seed: Optional[int] = None,
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    tool_name, display = "imagen4-generation", "Imagen 4 Image Generation"
    if not FAL_KEY:
        return _image_failure(
            prompt, tool_name, display,
            error="FAL_KEY is not set.",
            message="API key is not set. Please configure the FAL_KEY environment variable.",
            title="API Key Error",
        )

    arguments: Dict[str, Any] = {
        "prompt": prompt,
        "negative_prompt": negative_prompt or "",
        "aspect_ratio": aspect_ratio,
        "num_images": max(1, min(int(num_images or 1), 4)),
    }
    if isinstance(seed, int):
        arguments["seed"] = seed

    def _on_queue_update(update):
        if isinstance(update, fal_client.InProgress):
            for log in update.logs or []:
                logger.debug(f"[imagen4] {log.get('message')}")

    try:
        result = await fal_client.subscribe_async(
            IMAGEN4_MODEL_ID,
            arguments=arguments,
            with_logs=True,
            on_queue_update=_on_queue_update,
        )
    except Exception as e:
        logger.error(f"Imagen 4 generation failed: {e}")
        error = f"API Error: {e}"
        return _image_failure(
            prompt, tool_name, display,
            error=error, message=f"Failed to generate images: {error}", title="Image Generation Error",
        )

    images_dir = _output_dir("generated-images")
    images = []
    for image_data in (result or {}).get("images") or []:
        url = image_data.get("url")
        if not url:
            continue
        name = f"img_{uuid.uuid4()}.png"
        try:
            (images_dir / name).write_bytes(await _download(url))
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Error saving Imagen 4 image: {e}")
            continue
        images.append({"url": f"/generated-images/{name}"})

    if not images:
        return _image_failure(
            prompt, tool_name, display,
            error="No images generated or image data missing in response.",
            message="No images were generated. Please try again with a different prompt.",
            title="Image Generation Error",
        )

    markdown = _markdown_images(img["url"] for img in images)
    output = {
        "images": images,
        "prompt": prompt or "",
        "success": True,
        "message": f"Generated {len(images)} image(s) with Imagen 4.\n\n{markdown}",
        "autoOpenPreview": auto_open_preview,
        "title": _title(prompt),
        "toolName": tool_name,
        "toolDisplayName": display,
        "markdownImages": markdown,
    }
    if (result or {}).get("seed") is not None:
        output["seed"] = result["seed"]
    return output


# ----------------- Veo 2 via fal queue -----------------

def _video_failure(error: str, message: str, status: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "videos": [],
        "requestId": request_id,
        "error": error,
        "success": False,
        "message": message,
        "status": status,
        "toolName": "veo2-video-generation",
        "toolDisplayName": "Veo2 Video Generation",
    }


def polling_progress(elapsed: float) -> float:
    """Estimated progress of a queued job, never above 95 until it completes."""
    return min(elapsed / MAX_POLLING_TIME * 100, 95)


async def generate_veo2_video(
    prompt: str,
    aspect_ratio: str = "16:9",
    duration: str = "5s",
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    if not prompt:
        return _video_failure(
            "A text prompt is required for video generation.",
            "A text prompt is required for video generation.",
            "failed",
        )
    if not FAL_KEY:
        return _video_failure(
            "FAL_KEY is not set in environment variables.",
            "API key is not set. Please configure the FAL_KEY.",
            "failed",
        )

    videos_dir = _output_dir("generated-videos")

    try:
        handle = await fal_client.submit_async(
            VEO2_MODEL_ID,
            arguments={"prompt": prompt, "aspect_ratio": aspect_ratio, "duration": duration},
        )
    except Exception as e:
        logger.error(f"Error during Veo2 video generation: {e}")
        return _video_failure(
            f"Error during Veo2 video generation: {e}",
            f"Failed to generate video: {e}",
            "failed",
        )

    request_id = handle.request_id
    logger.info(f"[veo2] submitted request {request_id}")
    loop = asyncio.get_running_loop()
    start = loop.time()

    while loop.time() - start < MAX_POLLING_TIME:
        try:
            status = await fal_client.status_async(VEO2_MODEL_ID, request_id, with_logs=True)
        except Exception as e:
            logger.error(f"[veo2] error during polling: {e}")
            await asyncio.sleep(POLLING_INTERVAL)
            continue

        if isinstance(status, fal_client.Completed):
            if getattr(status, "error", None):
                return _video_failure(
                    str(status.error),
                    f"Video generation failed: {status.error}",
                    "failed",
                    request_id,
                )

            try:
                result = await fal_client.result_async(VEO2_MODEL_ID, request_id)
            except Exception as e:
                return _video_failure(
                    f"Failed to get result: {e}", f"Video generation failed: {e}", "failed", request_id
                )

            video = (result or {}).get("video")
            if not video or not video.get("url"):
                return _video_failure(
                    "No video was generated.",
                    "No video was generated. Please try again with a different prompt.",
                    "failed",
                    request_id,
                )

            name = f"veo2_{uuid.uuid4()}.mp4"
            try:
                content = await _download(video["url"], timeout=300.0)
                (videos_dir / name).write_bytes(content)
            except (httpx.HTTPError, OSError) as e:
                logger.error(f"[veo2] failed to save video for {request_id}: {e}")
                return _video_failure(
                    f"Failed to download video: {e}", f"Video generation failed: {e}", "failed", request_id
                )
            local_url = f"/generated-videos/{name}"
            markdown = f"![Generated Video]({local_url})"

            return {
                "videos": [{
                    "url": local_url,
                    "content_type": video.get("content_type") or "video/mp4",
                    "file_name": video.get("file_name") or name,
                    "file_size": video.get("file_size") or len(content),
                }],
                "requestId": request_id,
                "success": True,
                "message": (
                    f"Video generated.\n\n{markdown}\n\n**Generated with Veo2**\n"
                    f"*Prompt: {prompt}*\n*Duration: {duration}, aspect ratio: {aspect_ratio}*"
                ),
                "status": "completed",
                "progress": 100,
                "markdownVideos": markdown,
                "autoOpenPreview": auto_open_preview,
                "title": _title(prompt),
                "toolName": "veo2-video-generation",
                "toolDisplayName": "Veo2 Video Generation",
            }

        progress = polling_progress(loop.time() - start)
        logger.info(f"[veo2] {type(status).__name__} ({progress:.0f}%)")
        await asyncio.sleep(POLLING_INTERVAL)

    return _video_failure(
        "Video generation timed out after 10 minutes.",
        "Video generation is taking longer than expected. Please check back later or try again.",
        "timeout",
        request_id,
    )


# ----------------- MiniMax TTS -----------------

def _explain_minimax_error(message: str) -> str:
    if "insufficient balance" in message:
        return "Insufficient API balance. Please top up your MiniMax account."
    if "text too long" in message:
        return "The text is too long. Please shorten it to 5,000 characters or fewer."
    if "rate limit" in message:
        return "Rate limit reached. Please wait a moment and try again."
    return message


async def synthesize_speech(
    text: str,
    voice_id: str = "Wise_Woman",
    model: str = "speech-02-hd",
    speed: float = 1.0,
    volume: float = 1.0,
    pitch: float = 0.0,
    emotion: str = "neutral",
    format: str = "mp3",
    stream: bool = False,
    language_boost: Optional[str] = None,
) -> Dict[str, Any]:
    if not text or len(text) > 5000:
        return {
            "success": False,
            "message": "Speech generation failed: text must be between 1 and 5,000 characters.",
            "error": "invalid text length",
        }
    if not MINIMAX_API_KEY or not MINIMAX_GROUP_ID:
        error = "MINIMAX_API_KEY and MINIMAX_GROUP_ID environment variables are required"
        return {"success": False, "message": f"Speech generation failed: {error}", "error": error}

    payload = {
        "model": model,
        "text": text,
        "stream": stream,
        "voice_setting": {
            "voice_id": voice_id,
            "speed": speed,
            "vol": volume,
            "pitch": pitch,
            "emotion": emotion,
        },
        "audio_setting": {
            "sample_rate": 32000,
            "bitrate": 128000,
            "format": format,
            "channel": 1,
        },
        "language_boost": language_boost or "auto",
        "output_format": "hex",
    }
    headers = {"Authorization": f"Bearer {MINIMAX_API_KEY}", "Content-Type": "application/json"}

    try:
        async with httpx.AsyncClient(timeout=120.0) as client:
            response = await client.post(
                MINIMAX_TTS_URL, params={"GroupId": MINIMAX_GROUP_ID}, json=payload, headers=headers
            )
        if response.status_code >= 400:
            raise RuntimeError(f"API request failed: {response.status_code} {response.text}")

        result = response.json()
        base_resp = result.get("base_resp") or {}
        if base_resp.get("status_code") != 0:
            raise RuntimeError(f"API Error: {base_resp.get('status_msg') or 'Unknown error'}")

        hex_audio = (result.get("data") or {}).get("audio")
        if not hex_audio:
            raise RuntimeError("No audio data received from API")
        audio_bytes = bytes.fromhex(hex_audio)
    except (RuntimeError, ValueError, httpx.HTTPError) as e:
        logger.error(f"[minimax_tts] {e}")
        message = str(e)
        return {
            "success": False,
            "message": f"Speech generation failed: {_explain_minimax_error(message)}",
            "error": message,
        }

    extension = format if format in ("mp3", "wav", "flac") else "mp3"
    filename = f"minimax_tts_{int(time.time() * 1000)}.{extension}"
    (_output_dir("generated-music") / filename).write_bytes(audio_bytes)
    audio_url = f"/generated-music/{filename}"

    extra = result.get("extra_info") or {}
    if extra.get("audio_length"):
        duration = round(extra["audio_length"] / 1000)
    else:
        duration = math.ceil(len(text) / (speed * 10))

    markdown = f"![{_title(text)} audio]({audio_url})"
    size_text = f"{round(extra['audio_size'] / 1024)}KB" if extra.get("audio_size") else "unknown"

    return {
        "success": True,
        "message": (
            f"Speech generated. File size: {size_text}\n\n{markdown}\n\n**Generated with MiniMax TTS**\n"
            f"*Text: {text}*\n*Voice: {voice_id}, model: {model}*"
        ),
        "audio_url": audio_url,
        "filename": filename,
        "duration": duration,
        "audio_size": extra.get("audio_size"),
        "word_count": extra.get("word_count"),
        "trace_id": result.get("trace_id"),
        "markdownAudio": markdown,
        "autoOpenPreview": True,
        "title": _title(text),
        "toolName": "minimax-tts",
        "toolDisplayName": "MiniMax TTS",
    }


# ----------------- tools -----------------

@mcp.tool()
async def gemini_image_generation(
    prompt: str,
    number_of_images: int = 1,
    aspect_ratio: str = "1:1",
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
    person_generation: Literal["DONT_ALLOW", "ALLOW_ADULT", "ALLOW_ALL"] = "ALLOW_ADULT",
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    """Generates images from a text prompt using Google Imagen 3. Returns URLs and markdown for the saved images.

    Args:
        prompt: The prompt for image generation.
        number_of_images: Number of images to generate (1-4).
        aspect_ratio: '1:1', '16:9', '9:16', '4:3' or '3:4'.
        negative_prompt: What the image should avoid.
        seed: Seed for deterministic generation (0-2147483647).
        person_generation: Controls generation of people.
        auto_open_preview: Whether the client should open the preview panel.
    """
    return await generate_gemini_images(
        prompt, number_of_images, aspect_ratio, negative_prompt, seed, person_generation, auto_open_preview
    )


@mcp.tool()
async def imagen4_generation(
    prompt: str,
    negative_prompt: str = "",
    aspect_ratio: Literal["1:1", "16:9", "9:16", "3:4", "4:3"] = "1:1",
    num_images: int = 1,
    seed: Optional[int] = None,
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    """Generates high-quality images with Google's Imagen 4 model (fine detail, natural lighting, rich texture).

    Args:
        prompt: The prompt for image generation.
        negative_prompt: Elements to avoid.
        aspect_ratio: Aspect ratio of the images.
        num_images: Number of images (1-4).
        seed: Seed for reproducible generation.
        auto_open_preview: Whether the client should open the preview panel.
    """
    return await generate_imagen4_images(prompt, negative_prompt, aspect_ratio, num_images, seed, auto_open_preview)


@mcp.tool()
async def veo2_video_generation(
    prompt: str,
    aspect_ratio: Literal["16:9", "9:16"] = "16:9",
    duration: Literal["5s", "6s", "7s", "8s"] = "5s",
    auto_open_preview: bool = True,
) -> Dict[str, Any]:
    """Generates a video with Google's Veo 2 model. Polls until the video is ready (up to 10 minutes).

    Args:
        prompt: Text describing the video.
        aspect_ratio: 16:9 or 9:16.
        duration: 5s, 6s, 7s or 8s.
        auto_open_preview: Whether the client should open the preview panel.
    """
    return await generate_veo2_video(prompt, aspect_ratio, duration, auto_open_preview)


@mcp.tool()
async def minimax_tts(
    text: str,
    voice_id: str = "Wise_Woman",
    model: Literal["speech-02-hd", "speech-02-turbo", "speech-01-hd", "speech-01-turbo"] = "speech-02-hd",
    speed: float = 1.0,
    volume: float = 1.0,
    pitch: float = 0.0,
    emotion: Literal["neutral", "happy", "sad", "angry", "fearful", "disgusted", "surprised"] = "neutral",
    format: Literal["mp3", "wav", "flac"] = "mp3",
    language_boost: Optional[str] = None,
) -> Dict[str, Any]:
    """Generates speech from text (up to 5,000 characters) with the MiniMax T2A API.

    Args:
        text: Text to synthesize.
        voice_id: Voice ID, e.g. Wise_Woman.
        model: TTS model.
        speed: 0.5-2.0.
        volume: 0.1-2.0.
        pitch: -1.0-1.0.
        emotion: Emotion of the voice.
        format: Audio format.
        language_boost: Language hint, e.g. Japanese, English or auto.
    """
    return await synthesize_speech(
        text, voice_id, model, speed, volume, pitch, emotion, format, False, language_boost
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Media MCP Server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="sse")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8938)
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
