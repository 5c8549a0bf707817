from unittest.mock import AsyncMock, patch

import pytest

from open_superagent.tool.mcp_servers import research_mcp_server as research
from open_superagent.tool.mcp_servers.research_mcp_server import (
    CitationSource,
    SynthesisSource,
    ValidationSource,
)


def test_citation_metadata_defaults():
    metadata = research.build_citation_metadata(
        CitationSource(url="https://www.example.com/post", title="Post", access_date="2024-05-01")
    )
    assert metadata == {
        "author": "Unknown Author",
        "publishDate": "n.d.",
        "accessDate": "2024-05-01",
        "publisher": "example.com",
        "sourceType": "webpage",
    }


@pytest.mark.asyncio
async def test_citations_fall_back_to_templates_when_reply_is_not_json():
    source = CitationSource(url="https://example.com", title="Cats", author="Doe", publish_date="2020", access_date="2024-01-01")
    with patch.object(research, "_generate_text", AsyncMock(return_value="I cannot do JSON")):
        result = await research.extract_citations([source], citation_style="all")

    entry = result["citations"][0]
    assert set(entry["citations"]) == {"APA", "MLA", "Chicago"}
    assert entry["inTextCitation"]["APA"] == "(Doe, 2020)"
    assert entry["citations"]["APA"].startswith("Doe. (2020). Cats.")
    assert set(result["bibliography"]) == {"APA", "MLA", "Chicago"}
    assert result["message"] == "Generated multiple format citations for 1 sources."


@pytest.mark.asyncio
async def test_citation_errors_are_recorded_per_source():
    source = CitationSource(url="https://example.com", title="Cats")
    with patch.object(research, "_generate_text", AsyncMock(side_effect=RuntimeError("down"))):
        result = await research.extract_citations([source])

    assert result["success"] is True
    assert result["citations"][0]["notes"] == ["Citation generation failed", "Manual formatting required"]
    assert result["bibliography"] == {}


@pytest.mark.asyncio
async def test_synthesis_uses_model_json_and_formats_output():
    reply = '```json\n{"executiveSummary": "Cats are popular.", "mainFindings": [{"finding": "Cats rule", "confidence": 0.9}], "insights": [{"insight": "Adopt"}]}\n```'
    sources = [SynthesisSource(title="A", content="x" * 5000)]
    generate = AsyncMock(return_value=reply)
    with patch.object(research, "_generate_text", generate):
        result = await research.synthesize_content(sources, "Why cats?", output_format="executive-summary")

    assert result["success"] is True
    assert result["synthesis"]["executiveSummary"] == "Cats are popular."
    assert result["structuredOutput"].startswith("# Executive Summary: Why cats?")
    assert "• Cats rule" in result["structuredOutput"]
    assert result["citations"] == ["Unknown. A. N/A"]
    prompt = generate.await_args.args[0]
    assert "x" * research.MAX_SOURCE_CONTENT_CHARS in prompt
    assert "x" * (research.MAX_SOURCE_CONTENT_CHARS + 1) not in prompt


@pytest.mark.asyncio
async def test_synthesis_falls_back_on_plain_text():
    with patch.object(research, "_generate_text", AsyncMock(return_value="just prose")):
        result = await research.synthesize_content([SynthesisSource(title="A", content="c")], "Q")

    assert result["synthesis"]["mainFindings"][0]["supportingSources"] == ["A"]
    assert result["structuredOutput"].startswith("{")


def test_domain_validation_tiers():
    assert research.domain_validation("https://mit.edu/paper")["credibilityLevel"] == "high"
    assert research.domain_validation("https://wikipedia.org/x")["overallScore"] == 5
    assert research.domain_validation("https://blog.example.com")["credibilityLevel"] == "low"


def test_summarize_validation():
    summary = research.summarize_validation([
        {"credibilityLevel": "high", "overallScore": 9, "concerns": []},
        {"credibilityLevel": "questionable", "overallScore": 1, "concerns": ["a", "b", "c"]},
    ])
    assert summary["highQualitySources"] == 1
    assert summary["lowQualitySources"] == 1
    assert summary["overallReliability"] == "Medium"
    assert summary["recommendedActions"] == ["Cross-verify information with multiple sources"]


@pytest.mark.asyncio
async def test_validate_sources_mixes_model_and_fallback_results():
    replies = AsyncMock(side_effect=['{"overallScore": 8, "credibilityLevel": "high", "concerns": []}', RuntimeError("x")])
    sources = [ValidationSource(url="https://a.gov", title="A"), ValidationSource(url="https://b.com", title="B")]
    with patch.object(research, "_generate_text", replies):
        result = await research.validate_sources(sources)

    assert result["validationResults"][0] == {"url": "https://a.gov", "overallScore": 8, "credibilityLevel": "high", "concerns": []}
    assert result["validationResults"][1]["credibilityLevel"] == "questionable"
    assert result["summary"]["overallReliability"] == "Low"
