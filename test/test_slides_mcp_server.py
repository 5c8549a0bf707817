import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastmcp import Client

from open_superagent.tool.mcp_servers import slides_mcp_server as slides

VALID_SLIDE = '<style>.s { color: red; }</style><section class="slide s"><h1>Cats</h1></section>'


def _llm(*replies):
    llm = MagicMock()
    llm.model_provider.return_value = "gemini"
    llm.config.model_name = "gemini-2.5-pro"
    llm.ainvoke = AsyncMock(side_effect=list(replies))
    return llm


def test_markup_validation_and_fence_stripping():
    assert slides.is_valid_slide_markup(VALID_SLIDE)
    assert not slides.is_valid_slide_markup("<section>no style</section>")
    assert slides._strip_fences(f"```html\n{VALID_SLIDE}\n```") == VALID_SLIDE


@pytest.mark.asyncio
async def test_generate_slide_returns_valid_markup():
    llm = _llm(SimpleNamespace(content=f"```html\n{VALID_SLIDE}\n```"))
    with patch.object(slides, "_slide_llm", return_value=llm):
        result = await slides.generate_slide("Cats", outline="Why cats", slide_index=2, total_slides=5, variant=2)

    assert result["htmlContent"] == VALID_SLIDE
    assert result["message"] == 'Successfully generated HTML and CSS for the slide focusing on "Why cats" (variant 2).'
    prompt = llm.ainvoke.await_args.args[0][1]["content"][0]["text"]
    assert "Slide number / total    : 2 / 5" in prompt


@pytest.mark.asyncio
async def test_generate_slide_retries_then_falls_back():
    bad = SimpleNamespace(content="Here is your slide!")
    llm = _llm(bad, bad, bad)
    with patch.object(slides, "_slide_llm", return_value=llm):
        result = await slides.generate_slide("Cats", outline="Intro")

    assert llm.ainvoke.await_count == slides.SLIDE_MAX_ATTEMPTS
    assert "fallback-slide" in result["htmlContent"]
    assert "<h1>Intro</h1>" in result["htmlContent"]


@pytest.mark.asyncio
async def test_generate_slide_reports_model_errors():
    llm = _llm(RuntimeError("down"), RuntimeError("down"), RuntimeError("down"))
    with patch.object(slides, "_slide_llm", return_value=llm):
        result = await slides.generate_slide("Cats")

    assert "error-slide" in result["htmlContent"]
    assert result["message"].endswith("Error generating slide content.")


@pytest.mark.asyncio
async def test_reference_image_goes_first():
    llm = _llm(SimpleNamespace(content=VALID_SLIDE))
    with patch.object(slides, "_slide_llm", return_value=llm):
        await slides.generate_slide("Cats", image_data_url="data:image/png;base64,AAA")

    content = llm.ainvoke.await_args.args[0][1]["content"]
    assert content[0]["type"] == "image_url"
    assert "Provided." in content[1]["text"]


def test_unknown_providers_use_default_slide_model():
    with patch.object(slides, "create_model") as create:
        slides._slide_llm("mistral", "large")
    create.assert_called_once_with(slides.DEFAULT_SLIDE_PROVIDER, slides.DEFAULT_SLIDE_MODEL)


def test_build_preview():
    assert slides.build_preview()["success"] is False

    single = slides.build_preview(html_content=VALID_SLIDE, title="Deck")
    assert single["htmlContent"] == VALID_SLIDE
    assert single["slidesArray"] is None

    many = slides.build_preview(slides_array=["a", "b"], start_slide=9)
    assert many["slideCount"] == 2
    assert many["startSlide"] == 1
    assert many["title"] == "Untitled presentation"
    assert many["message"].endswith("(2 slides)")


def test_append_to_file_stays_in_working_dir(tmp_path):
    assert slides.append_to_file("notes/plan.md", "line 1", root=tmp_path) == "Successfully appended content to notes/plan.md."
    slides.append_to_file("notes/plan.md", "line 2", root=tmp_path)
    assert (tmp_path / "notes" / "plan.md").read_text(encoding="utf-8") == "line 1\nline 2\n"

    with pytest.raises(PermissionError, match="Security violation"):
        slides.append_to_file("../escape.md", "x", root=tmp_path)


@pytest.mark.asyncio
async def test_file_append_tool_reports_escape_attempts(monkeypatch, tmp_path):
    monkeypatch.setattr(slides, "PUBLIC_DIR", tmp_path)
    async with Client(slides.mcp) as client:
        result = json.loads((await client.call_tool("file_append", {"file_path": "../../x", "content": "x"})).content[0].text)

    assert result["success"] is False
    assert "Security violation" in result["error"]
