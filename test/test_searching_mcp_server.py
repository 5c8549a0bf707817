import json

import httpx
import pytest
from fastmcp import Client

from open_superagent.tool.mcp_servers import searching_mcp_server as searching


_RealAsyncClient = httpx.AsyncClient


def _mock_http(monkeypatch, handler):
    def factory(*args, **kwargs):
        kwargs.pop("transport", None)
        return _RealAsyncClient(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(searching.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_web_search_requires_query_and_key(monkeypatch):
    monkeypatch.setattr(searching, "BRAVE_API_KEY", "")
    assert (await searching.brave_web_search("  "))["error"] == "Search query cannot be empty."
    result = await searching.brave_web_search("cats")
    assert result["success"] is False
    assert "BRAVE_API_KEY" in result["error"]


@pytest.mark.asyncio
async def test_web_search_maps_results(monkeypatch):
    monkeypatch.setattr(searching, "BRAVE_API_KEY", "key")
    seen = {}

    def handler(request: httpx.Request):
        seen["params"] = dict(request.url.params)
        seen["token"] = request.headers["X-Subscription-Token"]
        return httpx.Response(200, json={"web": {"results": [
            {"title": "Cats", "url": "https://cats.example", "description": "All about cats", "extra": 1},
        ]}})

    _mock_http(monkeypatch, handler)
    result = await searching.brave_web_search("cats", count=50)

    assert result == {"results": [{"title": "Cats", "url": "https://cats.example", "description": "All about cats"}]}
    assert seen["params"]["count"] == "20"
    assert seen["params"]["country"] == "jp"
    assert seen["token"] == "key"


@pytest.mark.asyncio
async def test_web_search_reports_http_errors(monkeypatch):
    monkeypatch.setattr(searching, "BRAVE_API_KEY", "key")
    _mock_http(monkeypatch, lambda request: httpx.Response(500))

    result = await searching.brave_web_search("cats")

    assert result == {"success": False, "error": "Brave Search API error: 500", "results": []}


@pytest.mark.asyncio
async def test_image_search_maps_properties(monkeypatch):
    monkeypatch.setattr(searching, "BRAVE_API_KEY", "key")
    _mock_http(monkeypatch, lambda request: httpx.Response(200, json={
        "query": {"original": "cats"},
        "results": [{
            "title": "Cat", "url": "https://page", "source": "page",
            "properties": {"url": "https://img/cat.jpg", "placeholder": "https://img/ph.jpg"},
            "thumbnail": {"src": "https://img/thumb.jpg"},
            "meta_url": {"hostname": "img", "favicon": "https://img/fav.ico"},
        }],
    }))

    result = await searching.brave_images("cats")

    assert result["success"] is True
    image = result["results"][0]
    assert image["imageUrl"] == "https://img/cat.jpg"
    assert image["thumbnailUrl"] == "https://img/thumb.jpg"
    assert result["message"] == 'Found 1 image results for "cats".'


def test_grok_sources_are_converted_to_snake_case():
    formatted = searching.format_grok_sources([
        {"type": "x", "xHandles": ["nasa"], "excludedWebsites": []},
        {"type": "web", "safeSearch": False},
    ])
    assert formatted == [{"type": "x", "x_handles": ["nasa"]}, {"type": "web", "safe_search": False}]
    assert searching.format_grok_sources([]) is None


@pytest.mark.asyncio
async def test_grok_search_returns_content_and_citations(monkeypatch):
    monkeypatch.setattr(searching, "XAI_API_KEY", "xai")
    captured = {}

    def handler(request: httpx.Request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "choices": [{"message": {"content": "news"}}],
            "citations": ["https://x.com/1"],
        })

    _mock_http(monkeypatch, handler)
    result = await searching.grok_search("latest news", max_search_results=99)

    assert result == {"content": "news", "citations": ["https://x.com/1"]}
    assert captured["body"]["search_parameters"]["max_search_results"] == 50
    assert captured["body"]["model"] == "grok-3-latest"


@pytest.mark.asyncio
async def test_github_issues(monkeypatch):
    monkeypatch.setattr(searching, "GITHUB_TOKEN", "")
    assert "GITHUB_TOKEN" in (await searching.list_github_issues("o", "r"))["error"]

    monkeypatch.setattr(searching, "GITHUB_TOKEN", "gh")
    _mock_http(monkeypatch, lambda request: httpx.Response(200, json=[
        {"number": 1, "title": "Bug", "html_url": "https://gh/1", "state": "open", "user": None,
         "created_at": "2024-01-01T00:00:00Z", "body": "broken"},
    ]))
    result = await searching.list_github_issues("o", "r")
    assert result["issues"][0]["user"] == "unknown"
    assert result["issues"][0]["url"] == "https://gh/1"


@pytest.mark.asyncio
async def test_tools_are_exposed_over_mcp():
    async with Client(searching.mcp) as client:
        names = {tool.name for tool in await client.list_tools()}
    assert {"web_search", "brave_image_search", "grok_x_search", "github_list_issues"} <= names
