import os
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastmcp import FastMCP
from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryError, stop_after_attempt

from open_superagent.llm.chat_llm import PROVIDER_BASE_URLS, ChatLLM, create_model
from open_superagent.tool.logger import bootstrap_logger

PUBLIC_DIR = Path(os.environ.get("PUBLIC_DIR", "./public")).resolve()
SLIDE_WORKDIR_NAME = "slidecreatorAgent"

DEFAULT_SLIDE_PROVIDER = "gemini"
DEFAULT_SLIDE_MODEL = "gemini-2.5-pro"
SLIDE_MAX_ATTEMPTS = 3

DEFAULT_PRIMARY_COLOR = "#0056B1"
DEFAULT_ACCENT_COLOR = "#FFB400"
DEFAULT_BG_COLOR = "#F5F7FA"
DEFAULT_FONT_FAMILY = "'Noto Sans JP', 'Hiragino Sans', sans-serif"

LAYOUT_TYPES = (
    "default", "image-left", "image-right", "full-graphic", "quote", "comparison", "timeline",
    "list", "title", "section-break", "data-visualization", "photo-with-caption",
)
DIAGRAM_TYPES = (
    "auto", "bar", "pie", "flow", "venn", "pyramid", "quadrant", "mind-map", "timeline",
    "comparison", "icons", "none",
)

SLIDE_SYSTEM_PROMPT = """You are a professional presentation designer specializing in Japanese business culture and creating high-quality slides for Japanese corporate environments.

CRITICAL CULTURAL AWARENESS:
- Understand Japanese business aesthetics: balance of ma (meaningful space) with comprehensive information
- Respect Japanese color psychology and cultural taboos
- Apply 80% modern + 20% traditional design philosophy
- Prioritize hierarchy, process visualization, and detailed information over Western minimalism

CRITICAL OUTPUT REQUIREMENTS:
1. Output MUST start with <style> tag
2. Output MUST include </style> tag
3. Output MUST then have <section class="slide ..."> tag
4. Output MUST end with </section> tag
5. NO other content, NO markdown, NO explanations, NO comments

Your output should be EXACTLY in this format:
<style>
/* CSS rules here */
</style>
<section class="slide ...">
<!-- HTML content here -->
</section>

NOTHING ELSE. NO TEXT BEFORE OR AFTER."""

# Initialize FastMCP server
mcp = FastMCP("slides-mcp-server")

logger = bootstrap_logger()


class ColorScheme(BaseModel):
    primary_color: Optional[str] = None
    accent_color: Optional[str] = None
    bg_color: Optional[str] = None


class SlideFormatError(ValueError):
    """The model reply is not a <style> block followed by a slide <section>."""


def build_slide_prompt(args: Dict[str, Any], has_image: bool) -> str:
    unique = args["uniqueClass"]
    image_note = (
        "Provided. Analyse this image first and base the slide on it." if has_image else "None"
    )
    return f"""You are a professional presentation designer. Create a high-quality slide in HTML/CSS suitable for executive meetings and conferences.

ABSOLUTE OUTPUT RULES
1. Start with a <style> tag and close it with </style>.
2. Then start <section class="slide {unique}"> and close it with </section>.
3. Output nothing else: no other tags, explanations or comments.

INPUT
- Presentation topic      : {args['topic']}
- Key point of this slide : {args['outline']}
- Reference image         : {image_note}
- Slide number / total    : {args['slideIndex']} / {args['totalSlides']}
- Primary colour          : {args['primaryColor']}
- Accent colour           : {args['accentColor']}
- Background colour       : {args['bgColor']}
- Font family             : {args['fontFamily']}
- Layout type             : {args['layoutType']}
- Diagram type            : {args['diagramType']}
- Design elements         : {args['extras']}
- Must include            : {args['forceInclude']}
- Variant                 : {args['variant']}

PRIORITIES
1. If a reference image is provided, reproduce its content, mood, colours and layout faithfully.
2. Professional design that blends international polish with Japanese aesthetics (meaningful whitespace, clear hierarchy, visible process).
3. Text and diagrams together convey complete information (50-80 words of body text).
4. Fixed 16:9 aspect ratio (width: 100%; height: 0; padding-bottom: 56.25%, or vw/vh units).

MARKUP
- Scope all CSS to `.{unique}`; never reset or change global styles.
- Title <h1 class="slide-title" data-element-type="title">, subtitle <h2 class="slide-subtitle" data-element-type="subtitle">,
  body <p class="slide-text" data-element-type="body">, list <ul class="slide-list" data-element-type="list">,
  highlight <div class="concept-box" data-element-type="highlight-box">, diagram <div class="diagram-container" data-element-type="diagram">.
- Two columns: <div class="flex-container" data-layout="two-column">; grid: <div class="grid-container" data-layout="grid" data-columns="3">.
- Diagrams are inline SVG with alt/aria attributes; no external image URLs.
- Include at least one modern design element: gradients, translucent shapes, geometric accents, shadows, CSS animations, refined borders, generous whitespace.
- Headings 32-40px bold, body 18-24px, AA contrast.
- Bottom right: "Slide {args['slideIndex']}/{args['totalSlides']} - {args['topic']}".
- Variant 1: traditional and trustworthy. Variant 2: modern and innovative. Variant 3: elegant Japanese-modern.
- Make sure "{args['forceInclude']}" appears on the slide.
- Never use <html>, <head> or <body>, markdown or backticks.

OUTPUT FORMAT (nothing else is allowed)
<style>
.{unique} {{
  /* base styles */
}}
</style>
<section class="slide {unique}">
  <!-- slide content -->
</section>"""


def is_valid_slide_markup(text: str) -> bool:
    text = (text or "").strip()
    return text.startswith("<style>") and "</style>" in text and '<section class="slide' in text


def _strip_fences(text: str) -> str:
    text = (text or "").strip()
    match = re.match(r"^```(?:html)?\s*\n(.*?)\n```$", text, re.DOTALL)
    return match.group(1).strip() if match else text


def _slide_llm(provider: Optional[str], model_name: Optional[str]) -> ChatLLM:
    if provider not in PROVIDER_BASE_URLS:
        provider, model_name = DEFAULT_SLIDE_PROVIDER, DEFAULT_SLIDE_MODEL
    return create_model(provider, model_name or DEFAULT_SLIDE_MODEL)


async def generate_slide(
    topic: str,
    outline: Optional[str] = None,
    slide_count: int = 1,
    slide_index: Optional[int] = None,
    total_slides: Optional[int] = None,
    image_data_url: Optional[str] = None,
    layout_type: Optional[str] = None,
    diagram_type: str = "auto",
    color_scheme: Optional[ColorScheme] = None,
    design_elements: Optional[List[str]] = None,
    font_family: Optional[str] = None,
    force_include: Optional[str] = None,
    variant: int = 1,
    model_provider: Optional[str] = None,
    model_name: Optional[str] = None,
) -> Dict[str, Any]:
    variant = variant or 1
    colors = color_scheme or ColorScheme()
    args = {
        "topic": topic,
        "outline": outline or topic,
        "slideIndex": str(slide_index) if slide_index is not None else "current",
        "totalSlides": str(total_slides) if total_slides is not None else "N",
        "primaryColor": colors.primary_color or DEFAULT_PRIMARY_COLOR,
        "accentColor": colors.accent_color or DEFAULT_ACCENT_COLOR,
        "bgColor": colors.bg_color or DEFAULT_BG_COLOR,
        "fontFamily": font_family or DEFAULT_FONT_FAMILY,
        "layoutType": layout_type or "default",
        "diagramType": diagram_type or "auto",
        "extras": ", ".join(design_elements) if design_elements else "modern-design",
        "uniqueClass": f"slide-{uuid.uuid4().hex[:6]}-v{variant}",
        "variant": variant,
        "forceInclude": force_include or "",
    }

    user_content: List[Dict[str, Any]] = [{"type": "text", "text": build_slide_prompt(args, bool(image_data_url))}]
    if image_data_url:
        user_content.insert(0, {"type": "image_url", "image_url": {"url": image_data_url}})
    messages = [
        {"role": "system", "content": SLIDE_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]

    llm = _slide_llm(model_provider, model_name)
    logger.info(
        f"[html_slide] topic='{topic}' outline='{outline}' using {llm.model_provider()} model {llm.config.model_name}"
    )

    variant_info = f" (variant {variant})" if variant > 1 else ""
    try:
        async for attempt in AsyncRetrying(stop=stop_after_attempt(SLIDE_MAX_ATTEMPTS)):
            with attempt:
                response = await llm.ainvoke(messages)
                html = _strip_fences(response.content or "")
                if not is_valid_slide_markup(html):
                    raise SlideFormatError("Generated content was not in the expected format.")
        html_content = html
        message = f'Successfully generated HTML and CSS for the slide focusing on "{outline or topic}"{variant_info}.'
    except RetryError as e:
        cause = e.last_attempt.exception()
        logger.warning(f"[html_slide] no usable slide after {SLIDE_MAX_ATTEMPTS} attempts: {cause}")
        if isinstance(cause, SlideFormatError):
            html_content = (
                '<style>.fallback-slide h1 { color: #555; }</style><section class="slide fallback-slide">'
                f"<h1>{outline or topic}</h1><p>Content generation issue after {SLIDE_MAX_ATTEMPTS} retries. "
                "Please check LLM response.</p></section>"
            )
            message = f"Attempt {SLIDE_MAX_ATTEMPTS}/{SLIDE_MAX_ATTEMPTS}: Generated content was not in the expected format."
        else:
            html_content = (
                '<style>.error-slide { background: #ffe0e0; color: red; }</style>'
                '<section class="slide error-slide"><h1>Error</h1><p>Could not generate slide content and CSS.</p></section>'
            )
            message = f"Attempt {SLIDE_MAX_ATTEMPTS}/{SLIDE_MAX_ATTEMPTS}: Error generating slide content."

    return {
        "htmlContent": html_content,
        "message": message,
        "variant": variant,
        "layoutType": layout_type or "default",
        "diagramType": diagram_type or "auto",
    }


def build_preview(
    html_content: Optional[str] = None,
    slides_array: Optional[List[str]] = None,
    title: Optional[str] = None,
    auto_open: bool = True,
    show_slide_controls: bool = True,
    start_slide: int = 1,
    theme: str = "light",
) -> Dict[str, Any]:
    slides = slides_array or ([html_content] if html_content else [])
    count = len(slides)
    if count == 0:
        return {
            "success": False,
            "message": "No slide content provided. Pass html_content or slides_array.",
        }

    valid_start = start_slide if start_slide and 0 < start_slide <= count else 1
    title = title or "Untitled presentation"
    return {
        "success": True,
        "message": f"Showing preview of '{title}'." + (f" ({count} slides)" if count > 1 else ""),
        "htmlContent": slides[0] if count == 1 else None,
        "slidesArray": slides if count > 1 else None,
        "slideCount": count,
        "title": title,
        "autoOpen": auto_open,
        "showSlideControls": show_slide_controls,
        "startSlide": valid_start,
        "theme": theme or "light",
    }


def append_to_file(file_path: str, content: str, root: Optional[Path] = None) -> str:
    """Append a line to a file under the slide working directory."""
    working_dir = (root or PUBLIC_DIR / SLIDE_WORKDIR_NAME).resolve()
    target = (working_dir / file_path).resolve()
    if not target.is_relative_to(working_dir):
        raise PermissionError(
            "Security violation: Attempted to write to a file outside the designated agent working directory."
        )
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a", encoding="utf-8") as f:
        f.write(content + "\n")
    return f"Successfully appended content to {file_path}."


@mcp.tool()
async def html_slide(
    topic: str,
    outline: Optional[str] = None,
    slide_count: int = 1,
    slide_index: Optional[int] = None,
    total_slides: Optional[int] = None,
    image_data_url: Optional[str] = None,
    layout_type: Optional[Literal[LAYOUT_TYPES]] = None,
    diagram_type: Literal[DIAGRAM_TYPES] = "auto",
    color_scheme: Optional[ColorScheme] = None,
    design_elements: Optional[
        List[Literal["gradients", "transparency", "geometric", "shadows", "animations", "borders", "whitespace"]]
    ] = None,
    font_family: Optional[str] = None,
    force_include: Optional[str] = None,
    variant: int = 1,
    model_provider: Optional[str] = None,
    model_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Generate one HTML slide (a <style> block plus a <section class="slide ...">) for a topic and outline.

    Supports 12 layouts (default, image-left, image-right, full-graphic, quote, comparison, timeline, list,
    title, section-break, data-visualization, photo-with-caption), diagram types, colour schemes, design
    elements, a reference image given as a data URL, and variants 1-3 of the same content.

    Args:
        topic: Main topic of the presentation.
        outline: Key points of this slide.
        slide_count: Number of slides for this call, normally 1.
        slide_index: Current slide number.
        total_slides: Total number of slides.
        image_data_url: Data URL of a reference image.
        layout_type: Slide layout.
        diagram_type: Diagram to include.
        color_scheme: primary_color, accent_color and bg_color hex codes.
        design_elements: Extra design elements.
        font_family: Font family.
        force_include: Content that must appear on the slide.
        variant: Design variant (1, 2, 3).
        model_provider: openai, claude, gemini or grok.
        model_name: Model name for the provider.
    """
    return await generate_slide(
        topic, outline, slide_count, slide_index, total_slides, image_data_url, layout_type, diagram_type,
        color_scheme, design_elements, font_family, force_include, variant, model_provider, model_name,
    )


@mcp.tool()
async def presentation_preview(
    html_content: Optional[str] = None,
    slides_array: Optional[List[str]] = None,
    title: Optional[str] = None,
    auto_open: bool = True,
    show_slide_controls: bool = True,
    start_slide: int = 1,
    theme: Literal["light", "dark", "auto"] = "light",
) -> Dict[str, Any]:
    """Show a preview of one slide or a slideshow of several slides.

    Args:
        html_content: HTML of a single slide.
        slides_array: HTML of several slides.
        title: Presentation title.
        auto_open: Open the preview panel automatically.
        show_slide_controls: Show previous / next controls.
        start_slide: First slide shown (1-based).
        theme: light, dark or auto.
    """
    return build_preview(html_content, slides_array, title, auto_open, show_slide_controls, start_slide, theme)


@mcp.tool()
async def file_append(file_path: str, content: str) -> Dict[str, Any]:
    """Append content to a file inside the public/slidecreatorAgent directory.

    Args:
        file_path: Path relative to public/slidecreatorAgent.
        content: Content to append.
    """
    try:
        return {"success": True, "message": append_to_file(file_path, content)}
    except OSError as e:
        logger.error(f"[file_append] {e}")
        return {"success": False, "message": f"Failed to append to file '{file_path}': {e}", "error": str(e)}


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Slides MCP Server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="sse")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8942)
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
