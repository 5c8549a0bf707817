import asyncio
import base64
import json
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from browserbase import AsyncBrowserbase
from fastmcp import FastMCP
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from open_superagent.llm.chat_llm import ChatLLM, create_model
from open_superagent.tool.logger import bootstrap_logger

BROWSERBASE_API_KEY = os.environ.get("BROWSERBASE_API_KEY", "")
BROWSERBASE_PROJECT_ID = os.environ.get("BROWSERBASE_PROJECT_ID", "")
BROWSER_LLM_PROVIDER = os.environ.get("BROWSER_LLM_PROVIDER", "gemini")
BROWSER_LLM_MODEL = os.environ.get("BROWSER_LLM_MODEL", "gemini-2.5-flash")
BROWSER_LLM_API_KEY = (
    os.environ.get("BROWSER_LLM_API_KEY")
    or os.environ.get("GOOGLE_GENERATIVE_AI_API_KEY")
    or os.environ.get("GEMINI_API_KEY", "")
)
PUBLIC_DIR = Path(os.environ.get("PUBLIC_DIR", "./public")).resolve()

SESSION_TIMEOUT_SECONDS = 21600
MAX_METADATA_CHARS = 512
MAX_PAGE_TEXT_CHARS = 30_000
MAX_ELEMENTS = 300
MAX_DIRECT_UPLOAD_SIZE = 10 * 1024 * 1024

DOWNLOAD_SELECTORS = [
    "a[download]",
    'a[href*="download"]',
    "button[data-download]",
    ".download-btn",
    ".download-button",
    '[class*="download"]',
]
FILE_INPUT_SELECTORS = [
    'input[type="file"]',
    "[accept]",
    ".file-input",
    ".upload-input",
]

VIEWPORT_PRESETS = {
    # desktop
    "desktop-full-hd": {"width": 1920, "height": 1080, "description": "Standard Full HD"},
    "desktop-laptop": {"width": 1366, "height": 768, "description": "Widescreen Laptop"},
    "desktop-high-res": {"width": 1536, "height": 864, "description": "High-Resolution Laptop"},
    "desktop-small": {"width": 1280, "height": 720, "description": "Small Desktop Monitor"},
    "desktop-minimum": {"width": 1024, "height": 768, "description": "Minimum Supported"},
    # mobile
    "mobile-iphone-xr": {"width": 414, "height": 896, "description": "iPhone XR, iPhone 11"},
    "mobile-iphone-12": {"width": 390, "height": 844, "description": "iPhone 12, 13, 14"},
    "mobile-iphone-x": {"width": 375, "height": 812, "description": "iPhone X, XS"},
    "mobile-android": {"width": 360, "height": 800, "description": "Standard Android Phone"},
    "mobile-small": {"width": 320, "height": 568, "description": "iPhone SE, Small Devices"},
}

DEVTOOLS_FULLSCREEN_URL = "https://www.browserbase.com/devtools-fullscreen/inspector.html"
DEVTOOLS_COMPILED_URL = "https://www.browserbase.com/devtools-internal-compiled/index.html"

# Tags every visible interactive element with a numeric index and returns a short description of each.
INTERACTIVE_ELEMENTS_JS = """
(maxElements) => {
  document.querySelectorAll('[data-superagent-index]').forEach(el => el.removeAttribute('data-superagent-index'));
  const selector = 'a[href], button, input, select, textarea, summary, [role="button"], [role="link"], '
    + '[role="checkbox"], [role="tab"], [role="menuitem"], [role="option"], [onclick], [contenteditable="true"]';
  const items = [];
  for (const el of document.querySelectorAll(selector)) {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    if (rect.width === 0 || rect.height === 0 || style.visibility === 'hidden' || style.display === 'none') continue;
    const index = items.length;
    el.setAttribute('data-superagent-index', String(index));
    const text = (el.innerText || el.value || el.getAttribute('aria-label') || el.getAttribute('placeholder')
      || el.getAttribute('title') || el.getAttribute('name') || '').trim().replace(/\\s+/g, ' ');
    items.push({
      index,
      tag: el.tagName.toLowerCase(),
      type: el.getAttribute('type') || '',
      role: el.getAttribute('role') || '',
      text: text.slice(0, 120),
      href: el.getAttribute('href') || '',
    });
    if (items.length >= maxElements) break;
  }
  return items;
}
"""

ACT_SYSTEM_PROMPT = """You control a web browser. You receive a user instruction and a numbered list of the interactive elements on the current page.
Choose the single action that carries out the instruction and answer with a JSON object:
{"index": <element index, or -1 for page-level actions>, "method": "click" | "fill" | "press" | "select_option" | "hover" | "check" | "scroll", "argument": "<text to type, key to press, option to select, or 'up'/'down' for scroll>", "description": "<one sentence describing the action>"}
Answer with JSON only."""

OBSERVE_SYSTEM_PROMPT = """You inspect a web page for a user. You receive what the user is looking for and a numbered list of the interactive elements on the current page.
Return the elements that match, most relevant first, as a JSON object:
{"observations": [{"index": <element index>, "description": "<what the element is>", "method": "<suggested action: click, fill, select_option, ...>", "argument": "<suggested argument or empty>"}]}
Answer with JSON only."""

EXTRACT_SYSTEM_PROMPT = """You extract information from the text of a web page. Follow the user's instruction and answer with a JSON object of the form {"extraction": <extracted data>}.
If a JSON schema is provided, the extracted data must conform to it. If the information is not on the page, use null.
Answer with JSON only."""

# Initialize FastMCP server
mcp = FastMCP("browser-mcp-server")

logger = bootstrap_logger()


@dataclass
class BrowserInstance:
    """Playwright connection to one Browserbase session."""

    session_id: str
    playwright: Playwright
    browser: Browser
    page: Page

    async def close(self):
        try:
            await self.browser.close()
        except Exception as e:
            logger.debug(f"Error closing browser connection: {e}")
        await self.playwright.stop()


@dataclass
class SessionSettings:
    connect_url: Optional[str] = None
    solve_captchas: Optional[bool] = None
    captcha_image_selector: Optional[str] = None
    captcha_input_selector: Optional[str] = None
    proxies: Optional[bool] = None
    viewport: Optional[Dict[str, int]] = field(default=None)


browser_instances: Dict[str, BrowserInstance] = {}
session_settings: Dict[str, SessionSettings] = {}
_instances_lock = asyncio.Lock()


def _browserbase() -> AsyncBrowserbase:
    if not BROWSERBASE_API_KEY:
        raise RuntimeError("BROWSERBASE_API_KEY is not set.")
    return AsyncBrowserbase(api_key=BROWSERBASE_API_KEY)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def resolve_viewport(viewport: Union[str, Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    """Viewport preset name, custom {width, height} or 'auto' → applied viewport (None for auto)."""
    if viewport is None or viewport == "auto":
        return None
    if isinstance(viewport, str):
        preset = VIEWPORT_PRESETS.get(viewport)
        if preset is None:
            raise ValueError(f"Unknown viewport preset: {viewport}")
        return {"width": preset["width"], "height": preset["height"], "preset": viewport}

    width, height = viewport.get("width"), viewport.get("height")
    if not isinstance(width, (int, float)) or not 320 <= width <= 3840:
        raise ValueError("Viewport width must be between 320 and 3840")
    if not isinstance(height, (int, float)) or not 240 <= height <= 2160:
        raise ValueError("Viewport height must be between 240 and 2160")
    return {"width": int(width), "height": int(height)}


def validate_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    try:
        serialized = json.dumps(metadata, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid metadata: Must be JSON-serializable object. {e}")
    if len(serialized) > MAX_METADATA_CHARS:
        raise ValueError(
            f"Metadata too large: {len(serialized)} chars (max {MAX_METADATA_CHARS}). "
            "Consider using string values for better query support."
        )
    return metadata


def live_view_url(debugger_fullscreen_url: Optional[str], session_id: str) -> str:
    if debugger_fullscreen_url:
        return debugger_fullscreen_url.replace(DEVTOOLS_FULLSCREEN_URL, DEVTOOLS_COMPILED_URL)
    return f"https://www.browserbase.com/sessions/{session_id}"


def replay_url(session_id: str) -> str:
    return f"https://www.browserbase.com/sessions/{session_id}"


def build_session_query(query: Optional[str], status: Optional[str]) -> Optional[str]:
    """Metadata query with the status filter ANDed in."""
    if status:
        status_query = f"status:'{status}'"
        return f"{query} AND {status_query}" if query else status_query
    return query or None


async def create_session(
    project_id: Optional[str] = None,
    keep_alive: bool = True,
    timeout: int = SESSION_TIMEOUT_SECONDS,
    browser_settings: Optional[Dict[str, Any]] = None,
    proxies: Optional[bool] = None,
    viewport: Union[str, Dict[str, Any], None] = "auto",
    metadata: Optional[Dict[str, Any]] = None,
    context_id: Optional[str] = None,
    persist: bool = True,
) -> Dict[str, Any]:
    metadata = validate_metadata(metadata)
    applied_viewport = resolve_viewport(viewport)

    bb_settings: Dict[str, Any] = {}
    if browser_settings:
        bb_settings["solve_captchas"] = browser_settings.get("solveCaptchas", True)
        if browser_settings.get("captchaImageSelector"):
            bb_settings["captcha_image_selector"] = browser_settings["captchaImageSelector"]
        if browser_settings.get("captchaInputSelector"):
            bb_settings["captcha_input_selector"] = browser_settings["captchaInputSelector"]
    if applied_viewport:
        bb_settings["viewport"] = {"width": applied_viewport["width"], "height": applied_viewport["height"]}
    if context_id:
        bb_settings["context"] = {"id": context_id, "persist": persist}

    create_kwargs: Dict[str, Any] = {
        "project_id": project_id or BROWSERBASE_PROJECT_ID,
        "keep_alive": keep_alive,
        "timeout": timeout,
    }
    if bb_settings:
        create_kwargs["browser_settings"] = bb_settings
    if proxies is not None:
        create_kwargs["proxies"] = proxies
    if metadata:
        create_kwargs["user_metadata"] = metadata

    bb = _browserbase()
    session = await bb.sessions.create(**create_kwargs)
    session_id = session.id
    logger.info(f"[browser_session] created {session_id}")

    session_settings[session_id] = SessionSettings(
        connect_url=getattr(session, "connect_url", None),
        solve_captchas=(browser_settings or {}).get("solveCaptchas"),
        captcha_image_selector=(browser_settings or {}).get("captchaImageSelector"),
        captcha_input_selector=(browser_settings or {}).get("captchaInputSelector"),
        proxies=proxies,
        viewport=applied_viewport,
    )

    debug_info = await bb.sessions.debug(session_id)
    live_url = live_view_url(getattr(debug_info, "debugger_fullscreen_url", None), session_id)

    lines = [
        "Browser session created.",
        "",
        f"Session ID: {session_id}",
        "",
        f"Live view URL: {live_url}",
        "",
        "Open this URL to watch the browser in real time.",
    ]
    if applied_viewport:
        preset = f" ({applied_viewport['preset']})" if applied_viewport.get("preset") else ""
        lines.append(f"Viewport: {applied_viewport['width']}x{applied_viewport['height']}{preset}")
    if proxies:
        lines.append("Proxies: enabled")
    if (browser_settings or {}).get("solveCaptchas") is not False:
        lines.append("CAPTCHA solving: enabled")
    if metadata:
        lines.append(f"Metadata: {len(metadata)} keys")
    if context_id:
        lines.append(f"Context: {context_id}" + (" (changes persisted)" if persist else ""))

    return {
        "success": True,
        "sessionId": session_id,
        "liveViewUrl": live_url,
        "replayUrl": replay_url(session_id),
        "createdAt": _now_iso(),
        "viewport": applied_viewport,
        "metadata": metadata,
        "contextId": context_id,
        "message": "\n".join(lines),
    }


async def create_live_session(task: str) -> Dict[str, Any]:
    """Session for the live-view panel: keep-alive, 6 hour timeout, live view URL returned immediately."""
    bb = _browserbase()
    session = await bb.sessions.create(
        project_id=BROWSERBASE_PROJECT_ID,
        keep_alive=True,
        timeout=SESSION_TIMEOUT_SECONDS,
    )
    session_id = session.id
    session_settings[session_id] = SessionSettings(connect_url=getattr(session, "connect_url", None))

    debug_info = await bb.sessions.debug(session_id)
    live_url = live_view_url(getattr(debug_info, "debugger_fullscreen_url", None), session_id)
    logger.info(f"[browser_session] live session {session_id} for task '{task[:50]}'")
    return {
        "success": True,
        "sessionId": session_id,
        "sessionUrl": live_url,
        "liveViewUrl": live_url,
        "replayUrl": replay_url(session_id),
        "task": task,
        "timestamp": _now_iso(),
    }


async def _connect(session_id: str) -> BrowserInstance:
    settings = session_settings.get(session_id) or SessionSettings()
    connect_url = settings.connect_url
    if not connect_url:
        bb = _browserbase()
        session = await bb.sessions.retrieve(session_id)
        connect_url = getattr(session, "connect_url", None)
    if not connect_url:
        raise RuntimeError(f"No connect URL available for session {session_id}")

    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.connect_over_cdp(connect_url)
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        page = context.pages[0] if context.pages else await context.new_page()
    except Exception:
        await playwright.stop()
        raise
    logger.info(f"Connected to Browserbase session {session_id} over CDP")
    return BrowserInstance(session_id=session_id, playwright=playwright, browser=browser, page=page)


async def get_page(session_id: str, create: bool = False) -> Page:
    """Page of a connected session; connects on first use when create is set."""
    async with _instances_lock:
        instance = browser_instances.get(session_id)
        if instance is None:
            if not create:
                raise RuntimeError(
                    f"No active browser session found for sessionId: {session_id}. Please use browser_goto first."
                )
            instance = await _connect(session_id)
            browser_instances[session_id] = instance
        return instance.page


async def collect_elements(page: Page) -> List[Dict[str, Any]]:
    return await page.evaluate(INTERACTIVE_ELEMENTS_JS, MAX_ELEMENTS)


def format_elements(elements: List[Dict[str, Any]]) -> str:
    lines = []
    for el in elements:
        kind = el.get("tag", "")
        if el.get("type"):
            kind += f" type={el['type']}"
        if el.get("role"):
            kind += f" role={el['role']}"
        line = f"[{el['index']}] <{kind}> {el.get('text', '')}".rstrip()
        if el.get("href"):
            line += f" ({el['href']})"
        lines.append(line)
    return "\n".join(lines) if lines else "(no interactive elements)"


async def _aria_snapshot(page: Page) -> str:
    try:
        return await page.locator("body").aria_snapshot(timeout=10_000)
    except Exception as e:
        logger.debug(f"ARIA snapshot failed: {e}")
        return ""


async def _page_text(page: Page) -> str:
    text = await page.inner_text("body")
    return text[:MAX_PAGE_TEXT_CHARS]


def _page_llm() -> ChatLLM:
    return create_model(BROWSER_LLM_PROVIDER, BROWSER_LLM_MODEL, api_key=BROWSER_LLM_API_KEY, temperature=0.0)


async def perform_action(page: Page, action: Dict[str, Any], timeout_ms: int):
    method = action.get("method", "click")
    argument = action.get("argument") or ""
    index = action.get("index", -1)

    if method == "scroll" or index is None or int(index) < 0:
        if method == "press":
            await page.keyboard.press(argument or "Enter")
            return
        delta = -800 if str(argument).lower() == "up" else 800
        await page.mouse.wheel(0, delta)
        return

    locator = page.locator(f'[data-superagent-index="{int(index)}"]').first
    if method == "fill":
        await locator.fill(argument, timeout=timeout_ms)
    elif method == "press":
        await locator.press(argument or "Enter", timeout=timeout_ms)
    elif method == "select_option":
        await locator.select_option(argument, timeout=timeout_ms)
    elif method == "hover":
        await locator.hover(timeout=timeout_ms)
    elif method == "check":
        await locator.check(timeout=timeout_ms)
    else:
        await locator.click(timeout=timeout_ms)


async def _save_screenshot(data: bytes, extension: str, filename: Optional[str] = None) -> str:
    directory = PUBLIC_DIR / "browser-screenshots"
    directory.mkdir(parents=True, exist_ok=True)
    if filename:
        name = filename if "." in filename else f"{filename}.{extension}"
        name = Path(name).name
    else:
        name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.{extension}"
    (directory / name).write_bytes(data)
    return f"/browser-screenshots/{name}"


@mcp.tool()
async def browser_session(
    project_id: Optional[str] = None,
    keep_alive: bool = True,
    timeout: int = SESSION_TIMEOUT_SECONDS,
    browser_settings: Optional[Dict[str, Any]] = None,
    proxies: Optional[bool] = None,
    viewport: Union[str, Dict[str, int]] = "auto",
    metadata: Optional[Dict[str, Any]] = None,
    context_id: Optional[str] = None,
    persist: bool = True,
) -> Dict[str, Any]:
    """Create a new Browserbase session and return the live view URL immediately.

    Args:
        project_id: Browserbase project ID (defaults to the environment).
        keep_alive: Keep the session alive after operations.
        timeout: Session timeout in seconds (default 6 hours).
        browser_settings: CAPTCHA settings: solveCaptchas, captchaImageSelector, captchaInputSelector.
        proxies: Enable proxy usage.
        viewport: A preset name (desktop-full-hd, desktop-laptop, desktop-high-res, desktop-small, desktop-minimum,
            mobile-iphone-xr, mobile-iphone-12, mobile-iphone-x, mobile-android, mobile-small),
            a custom {"width": 320-3840, "height": 240-2160} or "auto".
        metadata: Custom metadata (max 512 chars when serialized).
        context_id: Browserbase context ID (from browser_context_create) whose cookies and login state the session reuses.
        persist: Save changes made during the session back into the context.
    """
    try:
        return await create_session(
            project_id, keep_alive, timeout, browser_settings, proxies, viewport, metadata, context_id, persist
        )
    except Exception as e:
        logger.error(f"Browser session creation error: {e}")
        return {"success": False, "message": f"Browser session creation failed: {e}", "error": str(e)}


@mcp.tool()
async def browser_goto(
    session_id: str,
    url: str,
    wait_until: Literal["commit", "domcontentloaded", "load", "networkidle"] = "commit",
    timeout: int = 60000,
) -> Dict[str, Any]:
    """Navigate to a URL in a Browserbase session and return the page's accessibility tree.

    Args:
        session_id: Browserbase session ID.
        url: URL to navigate to.
        wait_until: When to consider navigation succeeded.
        timeout: Navigation timeout in milliseconds.
    """
    try:
        page = await get_page(session_id, create=True)
        logger.info(f"[browser_goto] {url}")
        await page.goto(url, wait_until=wait_until, timeout=timeout)
        title = await page.title()
        return {
            "success": True,
            "url": page.url,
            "title": title,
            "message": f"Successfully navigated to {url}",
            "accessibilityTree": await _aria_snapshot(page),
        }
    except Exception as e:
        logger.error(f"Navigation error: {e}")
        return {
            "success": False,
            "url": url,
            "title": "",
            "message": f"Navigation failed: {e}",
            "accessibilityTree": "",
        }


@mcp.tool()
async def browser_act(session_id: str, instruction: str, timeout: int = 30000) -> Dict[str, Any]:
    """Perform an action on the page described in natural language (e.g. "click the login button")
    and return the updated accessibility tree and a screenshot URL.

    Args:
        session_id: Browserbase session ID.
        instruction: Natural language instruction for the action.
        timeout: Action timeout in milliseconds.
    """
    try:
        page = await get_page(session_id)
        elements = await collect_elements(page)
        action = await _page_llm().complete_json(
            ACT_SYSTEM_PROMPT,
            f"Instruction: {instruction}\n\nInteractive elements:\n{format_elements(elements)}",
        )
        logger.info(f"[browser_act] {instruction} -> {action}")
        await perform_action(page, action, timeout)
        await asyncio.sleep(1)

        screenshot_url = ""
        try:
            data = await page.screenshot(full_page=False, timeout=5000)
            screenshot_url = await _save_screenshot(data, "png")
        except PlaywrightTimeoutError as e:
            logger.warning(f"Screenshot capture failed: {e}")

        return {
            "success": True,
            "action": action.get("description") or instruction,
            "message": f"Successfully performed: {instruction}",
            "screenshot": screenshot_url,
            "accessibilityTree": await _aria_snapshot(page),
        }
    except Exception as e:
        logger.error(f"Action error: {e}")
        return {
            "success": False,
            "action": instruction,
            "message": f"Action failed: {e}",
            "accessibilityTree": "",
        }


@mcp.tool()
async def browser_extract(
    session_id: str, instruction: str, schema: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Extract data from the current page using AI, optionally following a JSON schema.

    Args:
        session_id: Browserbase session ID.
        instruction: What data to extract from the page.
        schema: Optional JSON schema for structured extraction.
    """
    try:
        page = await get_page(session_id)
        text = await _page_text(page)
        prompt = f"Instruction: {instruction}\n\nPage URL: {page.url}\n\nPage text:\n{text}"
        if schema:
            prompt += f"\n\nJSON schema:\n{json.dumps(schema, ensure_ascii=False)}"
        result = await _page_llm().complete_json(EXTRACT_SYSTEM_PROMPT, prompt)
        return {
            "success": True,
            "data": result.get("extraction", result),
            "message": f"Successfully extracted data: {instruction}",
        }
    except Exception as e:
        logger.error(f"Extraction error: {e}")
        return {"success": False, "data": None, "message": f"Extraction failed: {e}"}


@mcp.tool()
async def browser_observe(session_id: str, instruction: str) -> Dict[str, Any]:
    """Observe elements on the current page and get suggestions for possible actions.

    Args:
        session_id: Browserbase session ID.
        instruction: What to observe (e.g. "clickable buttons", "form fields", "search box").
    """
    try:
        page = await get_page(session_id)
        elements = await collect_elements(page)
        result = await _page_llm().complete_json(
            OBSERVE_SYSTEM_PROMPT,
            f"Looking for: {instruction}\n\nInteractive elements:\n{format_elements(elements)}",
        )
        suggestions = result.get("observations") or []
        observations = [s if isinstance(s, str) else json.dumps(s, ensure_ascii=False) for s in suggestions]
        return {
            "success": True,
            "observations": observations,
            "message": f"Found {len(observations)} possible actions for: {instruction}",
        }
    except Exception as e:
        logger.error(f"Observation error: {e}")
        return {"success": False, "observations": [], "message": f"Observation failed: {e}"}


@mcp.tool()
async def browser_wait(session_id: str, milliseconds: int) -> Dict[str, Any]:
    """Wait for a given time. Useful for page loads, animations or async operations.

    Args:
        session_id: Browserbase session ID.
        milliseconds: Time to wait in milliseconds.
    """
    start = time.monotonic()
    await asyncio.sleep(max(milliseconds, 0) / 1000)
    duration = int((time.monotonic() - start) * 1000)
    return {"success": True, "duration": duration, "message": f"Waited for {duration}ms"}


@mcp.tool()
async def browser_screenshot(
    session_id: str,
    full_page: bool = False,
    filename: Optional[str] = None,
    format: Literal["png", "jpeg", "webp"] = "png",
    quality: int = 90,
    use_cdp: bool = False,
    optimize_for_speed: bool = False,
) -> Dict[str, Any]:
    """Take a screenshot of the current page and save it under /browser-screenshots.

    Args:
        session_id: Browserbase session ID.
        full_page: Capture the full page.
        filename: Optional file name.
        format: png, jpeg or webp.
        quality: 1-100, JPEG/WebP only.
        use_cdp: Capture through the Chrome DevTools Protocol.
        optimize_for_speed: Cap quality at 50.
    """
    quality = max(1, min(quality, 100))
    actual_quality = min(quality, 50) if optimize_for_speed else quality
    try:
        page = await get_page(session_id)
        method = "Playwright"
        data: Optional[bytes] = None
        extension = "jpg" if format == "jpeg" else format

        if use_cdp and format in ("jpeg", "webp"):
            method = "CDP"
            try:
                cdp = await page.context.new_cdp_session(page)
                params: Dict[str, Any] = {"format": format, "quality": actual_quality}
                if full_page:
                    metrics = await cdp.send("Page.getLayoutMetrics")
                    size = metrics["contentSize"]
                    params["clip"] = {"x": 0, "y": 0, "width": size["width"], "height": size["height"], "scale": 1}
                captured = await cdp.send("Page.captureScreenshot", params)
                data = base64.b64decode(captured["data"])
                await cdp.detach()
            except Exception as e:
                logger.warning(f"CDP screenshot failed, falling back to Playwright: {e}")
                method = "Playwright (CDP fallback)"
                data = None

        if data is None:
            # playwright has no webp encoder
            shot_type = "jpeg" if format == "jpeg" else "png"
            options: Dict[str, Any] = {"full_page": full_page, "timeout": 10000, "type": shot_type}
            if shot_type == "jpeg":
                options["quality"] = actual_quality
            data = await page.screenshot(**options)
            extension = "jpg" if shot_type == "jpeg" else "png"

        screenshot_url = await _save_screenshot(data, extension, filename)
        viewport = page.viewport_size
        file_size = len(data)

        return {
            "success": True,
            "screenshotUrl": screenshot_url,
            "format": format,
            "quality": actual_quality if format != "png" else None,
            "fileSize": file_size,
            "dimensions": {"width": viewport["width"], "height": viewport["height"]} if viewport else None,
            "method": method,
            "message": (
                f"Screenshot captured: {screenshot_url}\nFormat: {format.upper()}"
                f"{f' (quality {actual_quality})' if format != 'png' else ''}\n"
                f"Size: {file_size / 1024:.1f}KB\nMethod: {method}"
            ),
        }
    except Exception as e:
        logger.error(f"Screenshot error: {e}")
        return {
            "success": False,
            "screenshotUrl": "",
            "format": format,
            "method": "Failed",
            "message": f"Screenshot failed: {e}",
        }


async def _first_element(page: Page, selectors: List[str]):
    for selector in selectors:
        try:
            element = await page.query_selector(selector)
        except PlaywrightError as e:
            logger.debug(f"Selector {selector} failed: {e}")
            continue
        if element is not None:
            return element
    return None


@mcp.tool()
async def browser_download(
    session_id: str,
    trigger_download: bool = True,
    download_selector: Optional[str] = None,
    wait_time: int = 5000,
) -> Dict[str, Any]:
    """Trigger a file download on the page and fetch the session's downloads (a ZIP) from Browserbase.

    Args:
        session_id: Browserbase session ID.
        trigger_download: Click a download link or button first.
        download_selector: CSS selector of the download element. Common download links are tried when omitted.
        wait_time: Time to wait for the download to finish, in milliseconds.
    """
    try:
        page = await get_page(session_id)
        if trigger_download:
            element = await _first_element(page, [download_selector] if download_selector else DOWNLOAD_SELECTORS)
            if element is not None:
                await element.click()
            elif download_selector:
                raise RuntimeError(f"Download element not found with selector: {download_selector}")
            else:
                logger.warning("No download trigger found, checking existing downloads")
            await asyncio.sleep(max(wait_time, 0) / 1000)

        bb = _browserbase()
        response = await bb.sessions.downloads.list(session_id)
        data = await response.read()
        if not data:
            return {
                "success": False,
                "message": (
                    "No downloaded files were found.\n\nHint: increase wait_time or check that the right "
                    "download link is clicked."
                ),
            }

        directory = PUBLIC_DIR / "browser-downloads"
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        name = f"download-{session_id[:8]}-{stamp}.zip"
        (directory / name).write_bytes(data)
        download_url = f"/browser-downloads/{name}"
        logger.info(f"[browser_download] saved {name} ({len(data)} bytes)")
        return {
            "success": True,
            "downloadUrl": download_url,
            "fileName": name,
            "fileSize": len(data),
            "message": f"Download saved: {name}\nSize: {len(data) / 1024:.1f}KB\nURL: {download_url}",
        }
    except Exception as e:
        logger.error(f"Download error: {e}")
        return {"success": False, "message": f"Download failed: {e}"}


@mcp.tool()
async def browser_upload(
    session_id: str,
    file_path: str,
    target_selector: Optional[str] = None,
    upload_method: Literal["direct", "api", "auto"] = "auto",
    max_direct_size: int = MAX_DIRECT_UPLOAD_SIZE,
) -> Dict[str, Any]:
    """Upload a local file to a web form, directly through the file input or through the Browserbase uploads API.

    Args:
        session_id: Browserbase session ID.
        file_path: Local path of the file to upload.
        target_selector: CSS selector of the file input. The first file input is used when omitted.
        upload_method: direct (set the file input), api (Browserbase session uploads) or auto (by size).
        max_direct_size: Largest file in bytes that auto uploads directly (default 10MB).
    """
    try:
        page = await get_page(session_id)
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found or inaccessible: {file_path}")
        file_size = path.stat().st_size
        method = upload_method
        if method == "auto":
            method = "direct" if file_size <= max_direct_size else "api"

        file_input = await _first_element(page, [target_selector] if target_selector else FILE_INPUT_SELECTORS)

        if method == "direct":
            if file_input is None:
                raise RuntimeError(
                    f"File input not found with selector: {target_selector}" if target_selector
                    else "No file input element found on the page"
                )
            await file_input.set_input_files(str(path))
            note = "The file is set on the form. Click the submit button if needed."
        else:
            bb = _browserbase()
            await bb.sessions.uploads.create(session_id, file=(path.name, path.read_bytes()))
            note = (
                "The file was uploaded to the Browserbase session."
                if file_input is not None
                else "The file was uploaded to the Browserbase session, but no file input was found on the page."
            )

        logger.info(f"[browser_upload] {path.name} via {method}")
        return {
            "success": True,
            "fileName": path.name,
            "fileSize": file_size,
            "method": method,
            "message": f"Upload complete: {path.name}\nSize: {file_size / 1024:.1f}KB\nMethod: {method}\n\n{note}",
        }
    except Exception as e:
        logger.error(f"Upload error: {e}")
        return {"success": False, "method": "Failed", "message": f"Upload failed: {e}"}


@mcp.tool()
async def browser_close(session_id: str) -> Dict[str, Any]:
    """Close the browser session and release its resources.

    Args:
        session_id: Browserbase session ID.
    """
    try:
        async with _instances_lock:
            instance = browser_instances.pop(session_id, None)
        if instance is not None:
            await instance.close()
        session_settings.pop(session_id, None)

        bb = _browserbase()
        await bb.sessions.update(
            session_id, project_id=BROWSERBASE_PROJECT_ID, status="REQUEST_RELEASE"
        )
        logger.info(f"[browser_close] {session_id}")
        return {"success": True, "message": f"Browser session {session_id} closed successfully"}
    except Exception as e:
        logger.error(f"Session close error: {e}")
        return {"success": False, "message": f"Failed to close session: {e}"}


@mcp.tool()
async def browser_session_query(
    query: Optional[str] = None,
    limit: int = 10,
    status: Optional[Literal["RUNNING", "COMPLETED", "ERROR", "TIMEOUT"]] = None,
) -> Dict[str, Any]:
    """Query and list Browserbase sessions with metadata filtering.

    Args:
        query: Metadata query, e.g. user_metadata['task']:'scraping'.
        limit: Maximum number of sessions to return.
        status: Filter by session status.
    """
    try:
        q = build_session_query(query, status)
        bb = _browserbase()
        response = await bb.sessions.list(q=q) if q else await bb.sessions.list()
        sessions = list(response)[: max(limit, 0)]

        formatted = []
        status_counts: Dict[str, int] = {}
        for session in sessions:
            created = getattr(session, "created_at", None)
            formatted.append({
                "id": session.id,
                "status": session.status,
                "createdAt": created.isoformat() if hasattr(created, "isoformat") else created,
                "projectId": getattr(session, "project_id", None),
                "metadata": getattr(session, "user_metadata", None),
            })
            status_counts[session.status] = status_counts.get(session.status, 0) + 1

        message = f"Session search results: {len(sessions)}"
        if query:
            message += f"\nMetadata query: {query}"
        if status:
            message += f"\nStatus filter: {status}"
        if status_counts:
            message += "\n\nBy status:"
            for name, count in status_counts.items():
                message += f"\n  {name}: {count}"

        return {"success": True, "sessions": formatted, "totalCount": len(sessions), "message": message}
    except Exception as e:
        logger.error(f"Session query error: {e}")
        message = f"Session query error: {e}"
        if "invalid query" in str(e):
            message += "\n\nHint: check the query syntax, e.g. user_metadata['task']:'scraping' AND status:'COMPLETED'"
        return {"success": False, "sessions": [], "totalCount": 0, "message": message}


@mcp.tool()
async def browser_context_create(project_id: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
    """Create a Browserbase context that persists cookies and browser data across sessions.

    Args:
        project_id: Browserbase project ID (defaults to the environment).
        name: Optional name for the context.
    """
    try:
        bb = _browserbase()
        context = await bb.contexts.create(project_id=project_id or BROWSERBASE_PROJECT_ID)
        message = f"Browser context created.\n\nContext ID: {context.id}"
        if name:
            message += f"\nName: {name}"
        message += "\n\nPass this ID as context_id to browser_session to share cookies and login state across sessions."
        return {
            "success": True,
            "contextId": context.id,
            "name": name,
            "createdAt": _now_iso(),
            "message": message,
        }
    except Exception as e:
        logger.error(f"Context creation error: {e}")
        return {"success": False, "message": f"Context creation failed: {e}", "error": str(e)}


async def close_all_sessions():
    async with _instances_lock:
        instances = list(browser_instances.values())
        browser_instances.clear()
    for instance in instances:
        await instance.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Browser MCP Server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="sse")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8939)
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
