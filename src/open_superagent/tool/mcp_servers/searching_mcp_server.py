import os
from typing import Any, Dict, List, Literal, Optional

import httpx
from fastmcp import FastMCP
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_incrementing

from open_superagent.tool.logger import bootstrap_logger

BRAVE_API_KEY = os.environ.get("BRAVE_API_KEY", "")
XAI_API_KEY = os.environ.get("XAI_API_KEY", "")
GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN", "")

BRAVE_WEB_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"
BRAVE_IMAGE_ENDPOINT = "https://api.search.brave.com/res/v1/images/search"
XAI_CHAT_ENDPOINT = "https://api.x.ai/v1/chat/completions"
GITHUB_API = "https://api.github.com"

DEFAULT_TIMEOUT = 30.0

# Initialize FastMCP server
mcp = FastMCP("searching-mcp-server")

logger = bootstrap_logger()


class BraveRateLimited(Exception):
    """Brave answered 429"""


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


@retry(
    retry=retry_if_exception_type(BraveRateLimited),
    wait=wait_incrementing(start=1.1, increment=1.1),
    stop=stop_after_attempt(3),
    reraise=True,
)
async def _brave_get(endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
    headers = {
        "Accept": "application/json",
        "Accept-Encoding": "gzip",
        "X-Subscription-Token": BRAVE_API_KEY,
    }
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
        response = await client.get(endpoint, params=params, headers=headers)
    if response.status_code == 429:
        logger.warning("Brave Search API rate limit hit, retrying")
        raise BraveRateLimited("Brave Search API rate limit exceeded after all retries")
    response.raise_for_status()
    return response.json()


async def brave_web_search(query: str, count: int = 10) -> Dict[str, Any]:
    query = (query or "").strip()
    if not query:
        return {"success": False, "error": "Search query cannot be empty.", "results": []}
    if not BRAVE_API_KEY:
        return {
            "success": False,
            "error": "BRAVE_API_KEY environment variable is not set. Please provide your Brave Search API key.",
            "results": [],
        }

    count = _clamp(count, 1, 20)
    params = {
        "q": query,
        "count": str(count),
        "country": "jp",
        "search_lang": "ja",
        "safesearch": "moderate",
    }
    try:
        data = await _brave_get(BRAVE_WEB_ENDPOINT, params)
    except BraveRateLimited as e:
        return {"success": False, "error": str(e), "results": []}
    except httpx.HTTPStatusError as e:
        return {"success": False, "error": f"Brave Search API error: {e.response.status_code}", "results": []}
    except httpx.TimeoutException:
        return {"success": False, "error": "Brave Search request timed out", "results": []}
    except httpx.RequestError as e:
        return {"success": False, "error": f"Request failed: {e}", "results": []}

    web_results = (data.get("web") or {}).get("results") or []
    results = [
        {"title": r.get("title", ""), "url": r.get("url", ""), "description": r.get("description")}
        for r in web_results[:count]
    ]
    logger.info(f"Brave web search '{query[:80]}' returned {len(results)} results")
    return {"results": results}


async def brave_images(
    query: str,
    count: int = 10,
    safesearch: str = "moderate",
    country: str = "jp",
    search_lang: str = "ja",
    spellcheck: bool = True,
) -> Dict[str, Any]:
    query = (query or "").strip()
    if not query:
        return {"success": False, "error": "Search query cannot be empty.", "results": []}
    if not BRAVE_API_KEY:
        return {
            "success": False,
            "error": "BRAVE_API_KEY environment variable is not set. Please provide your Brave Search API key.",
            "results": [],
        }

    count = _clamp(count, 1, 20)
    params = {
        "q": query,
        "count": str(count),
        "country": country,
        "search_lang": search_lang,
        "safesearch": safesearch,
        "spellcheck": "1" if spellcheck else "0",
    }
    try:
        data = await _brave_get(BRAVE_IMAGE_ENDPOINT, params)
    except BraveRateLimited as e:
        return {"success": False, "error": str(e), "results": []}
    except httpx.HTTPStatusError as e:
        return {"success": False, "error": f"Image search failed: Brave Search API error: {e.response.status_code}", "results": []}
    except httpx.RequestError as e:
        return {"success": False, "error": f"Image search failed: {e}", "results": []}

    results = []
    for r in (data.get("results") or [])[:count]:
        properties = r.get("properties") or {}
        meta_url = r.get("meta_url") or {}
        results.append({
            "title": r.get("title", ""),
            "url": r.get("url", ""),
            "source": r.get("source", ""),
            "imageUrl": properties.get("url"),
            "thumbnailUrl": (r.get("thumbnail") or {}).get("src"),
            "placeholderUrl": properties.get("placeholder"),
            "hostname": meta_url.get("hostname"),
            "favicon": meta_url.get("favicon"),
            "confidence": "high",
        })

    return {
        "success": True,
        "results": results,
        "query": data.get("query"),
        "message": f'Found {len(results)} image results for "{query}".',
    }


def format_grok_sources(sources: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    """camelCase source filters -> the snake_case keys xAI expects; empty lists are dropped."""
    if not sources:
        return None
    key_map = {
        "excludedWebsites": "excluded_websites",
        "xHandles": "x_handles",
        "links": "links",
        "country": "country",
        "safeSearch": "safe_search",
    }
    formatted = []
    for source in sources:
        item = {"type": source.get("type", "web")}
        for key, api_key in key_map.items():
            value = source.get(key, source.get(api_key))
            if value is None or (isinstance(value, list) and not value):
                continue
            item[api_key] = value
        formatted.append(item)
    return formatted


async def grok_search(
    query: str,
    mode: str = "auto",
    return_citations: bool = True,
    max_search_results: int = 20,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    sources: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    if not XAI_API_KEY:
        return {"success": False, "error": "XAI_API_KEY environment variable is not set. Please provide your X.ai API key."}

    search_parameters: Dict[str, Any] = {
        "mode": mode,
        "return_citations": return_citations,
        "max_search_results": _clamp(max_search_results, 1, 50),
    }
    if from_date:
        search_parameters["from_date"] = from_date
    if to_date:
        search_parameters["to_date"] = to_date
    formatted_sources = format_grok_sources(sources)
    if formatted_sources:
        search_parameters["sources"] = formatted_sources

    payload = {
        "messages": [{"role": "user", "content": query}],
        "search_parameters": search_parameters,
        "model": "grok-3-latest",
    }
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {XAI_API_KEY}"}

    try:
        async with httpx.AsyncClient(timeout=120.0) as client:
            response = await client.post(XAI_CHAT_ENDPOINT, json=payload, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        return {"success": False, "error": f"Grok X.ai API error: {e.response.status_code}"}
    except httpx.TimeoutException:
        return {"success": False, "error": "Grok X.ai request timed out"}
    except httpx.RequestError as e:
        return {"success": False, "error": f"Request failed: {e}"}

    data = response.json()
    message = ((data.get("choices") or [{}])[0]).get("message") or {}
    result: Dict[str, Any] = {"content": message.get("content") or ""}
    citations = message.get("citations") or data.get("citations") or []
    if citations:
        result["citations"] = citations
    return result


async def list_github_issues(owner: str, repo: str, state: str = "open", per_page: int = 30) -> Dict[str, Any]:
    if not GITHUB_TOKEN:
        return {
            "success": False,
            "error": "GITHUB_TOKEN environment variable is not set. Please provide your GitHub Personal Access Token.",
        }

    headers = {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {GITHUB_TOKEN}",
        "X-GitHub-Api-Version": "2022-11-28",
    }
    params = {"state": state, "per_page": _clamp(per_page, 1, 100)}
    try:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
            response = await client.get(f"{GITHUB_API}/repos/{owner}/{repo}/issues", params=params, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        return {"success": False, "error": f"Failed to list GitHub issues: {e.response.status_code} {e.response.reason_phrase}"}
    except httpx.RequestError as e:
        return {"success": False, "error": f"Failed to list GitHub issues: {e}"}

    issues = [
        {
            "number": issue.get("number"),
            "title": issue.get("title"),
            "url": issue.get("html_url"),
            "state": issue.get("state"),
            "user": (issue.get("user") or {}).get("login") or "unknown",
            "createdAt": issue.get("created_at"),
            "body": issue.get("body"),
        }
        for issue in response.json()
    ]
    return {"issues": issues}


@mcp.tool()
async def web_search(query: str, count: int = 10) -> Dict[str, Any]:
    """Search the web using Brave Search API and return the top organic results.

    Args:
        query: Search phrase to query Brave Search for.
        count: How many top results to return (1-20). Defaults to 10.

    Returns:
        {"results": [{"title", "url", "description"}]}
    """
    return await brave_web_search(query, count)


@mcp.tool()
async def brave_image_search(
    query: str,
    count: int = 10,
    safesearch: Literal["strict", "moderate", "off"] = "moderate",
    country: str = "jp",
    search_lang: str = "ja",
    spellcheck: bool = True,
) -> Dict[str, Any]:
    """Search images with Brave Search, suited to finding pictures for slides and presentations.

    Args:
        query: Image keywords; Japanese and English both work.
        count: Number of image results (1-20).
        safesearch: strict, moderate or off.
        country: Country code to search from (jp, us, uk, ...).
        search_lang: Search language (ja, en, fr, ...).
        spellcheck: Whether to enable spellcheck.
    """
    return await brave_images(query, count, safesearch, country, search_lang, spellcheck)


@mcp.tool()
async def grok_x_search(
    query: str,
    mode: Literal["auto", "on", "off"] = "auto",
    return_citations: bool = True,
    max_search_results: int = 20,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    sources: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Search for information using Grok's X.ai API with live data from web, X, news, and RSS sources.

    Args:
        query: The search query or question to ask Grok.
        mode: "auto" (model decides), "on" (force search), "off" (no search).
        return_citations: Whether to return citations/sources with results.
        max_search_results: Maximum number of search results to consider (1-50).
        from_date: Start date in ISO8601 format (YYYY-MM-DD).
        to_date: End date in ISO8601 format (YYYY-MM-DD).
        sources: Data sources, each {"type": "web"|"x"|"news"|"rss", "excludedWebsites", "xHandles", "links", "country", "safeSearch"}.
    """
    return await grok_search(query, mode, return_citations, max_search_results, from_date, to_date, sources)


@mcp.tool()
async def github_list_issues(
    owner: str,
    repo: str,
    state: Literal["open", "closed", "all"] = "open",
    per_page: int = 30,
) -> Dict[str, Any]:
    """Lists issues from a GitHub repository.

    Args:
        owner: The owner of the GitHub repository.
        repo: The name of the GitHub repository.
        state: 'open', 'closed', or 'all'.
        per_page: The number of results per page (max 100).
    """
    return await list_github_issues(owner, repo, state, per_page)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Searching MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="sse",
        help="Transport method: 'stdio' or 'sse' (default: sse)",
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host for SSE transport")
    parser.add_argument("--port", type=int, default=8936, help="Port for SSE transport (default: 8936)")
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
