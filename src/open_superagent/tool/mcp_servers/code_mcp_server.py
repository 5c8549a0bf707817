import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from anthropic import AsyncAnthropic
from fastmcp import FastMCP
from tenacity import retry, stop_after_attempt, wait_exponential

from open_superagent.llm.chat_llm import parse_json_payload
from open_superagent.tool.logger import bootstrap_logger

ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
ANTHROPIC_BASE_URL = os.environ.get("ANTHROPIC_BASE_URL", "https://api.anthropic.com")
CODE_MODEL = os.environ.get("CODE_ANALYSIS_MODEL", "claude-3-5-sonnet-20241022")
MAX_TOKENS = 4000
REQUEST_TIMEOUT = 120

Operation = Literal["analyze", "generate", "review", "refactor", "generate-tests", "generate-docs", "analyze-project"]

CODE_OPERATIONS = ("analyze", "review", "refactor", "generate-tests", "generate-docs")
DEFAULT_EXCLUDES = ["node_modules", ".git", ".next", "dist", "build"]

# Initialize FastMCP server
mcp = FastMCP("code-mcp-server")

logger = bootstrap_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fenced(code: str, language: Optional[str]) -> str:
    return f"```{language or ''}\n{code}\n```"


def parse_reply(text: str) -> Any:
    """Return the JSON object in the reply, or the reply wrapped as a text summary."""
    try:
        return parse_json_payload(text)
    except ValueError:
        return {
            "summary": text,
            "rawResponse": text,
            "note": "Response was not in JSON format, returning as text summary",
        }


def validate_request(operation: str, code: Optional[str], specification: Optional[str]) -> Optional[str]:
    if operation == "generate" and not specification:
        return 'The "specification" field is required for the generate operation.'
    if operation in CODE_OPERATIONS and not code:
        return f'The "code" field is required for the {operation} operation.'
    return None


def scan_project(root: Path, max_depth: int, excludes: List[str], depth: int = 0) -> str:
    """Indented tree of the project, skipping entries whose name contains an excluded fragment."""
    if depth >= max_depth:
        return ""
    try:
        entries = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError:
        return ""
    lines = []
    indent = "  " * depth
    for entry in entries:
        if any(part in entry.name for part in excludes):
            continue
        if entry.is_dir():
            lines.append(f"{indent}{entry.name}/\n")
            lines.append(scan_project(entry, max_depth, excludes, depth + 1))
        else:
            lines.append(f"{indent}{entry.name}\n")
    return "".join(lines)


def build_prompts(operation: str, params: Dict[str, Any]) -> tuple:
    language = params.get("language")
    code = params.get("code") or ""
    subject = language or "code"

    if operation == "analyze":
        system = (
            "You are an expert code analyzer. Analyze the provided code and return a comprehensive analysis including:\n"
            "1. Issues (errors, warnings, info) with line numbers if possible\n"
            "2. Code metrics (lines of code, complexity, maintainability index)\n"
            "3. Improvement suggestions\n"
            "4. Summary\n\n"
            "Return the analysis in JSON format."
        )
        user = (
            f"Please analyze this {subject} with focus on {params['analysis_type']}:\n\n"
            f"{_fenced(code, language)}\n\n"
            "Analysis requirements:\n"
            f"- Include metrics: {params['include_metrics']}\n"
            f"- Generate suggestions: {params['generate_suggestions']}\n"
            f"- Analysis type: {params['analysis_type']}\n\n"
            "Return a comprehensive analysis in JSON format."
        )
    elif operation == "generate":
        system = (
            "You are an expert code generator. Generate high-quality, production-ready code based on "
            "specifications. Include explanations, dependencies, and optionally tests and documentation."
        )
        user = (
            f"Generate {language or ''} code based on this specification:\n\n"
            f"Specification: {params['specification']}\n\n"
            f"Language: {language or 'any'}\n"
            f"Style: {params.get('style') or 'modern best practices'}\n"
            f"Framework: {params.get('framework') or 'none specified'}\n"
            f"Include tests: {params['include_tests']}\n"
            f"Include documentation: {params['include_documentation']}\n\n"
            "Return the result in JSON format with code, explanation, dependencies, and metadata."
        )
    elif operation == "review":
        system = (
            "You are an expert code reviewer. Provide thorough code reviews focusing on bugs, security, "
            "performance, style, and maintainability. Rate the code quality and provide actionable feedback."
        )
        user = (
            f"Review this {subject} with focus on {params['review_type']}:\n\n"
            f"{_fenced(code, language)}\n\n"
            "Review requirements:\n"
            f"- Review type: {params['review_type']}\n"
            f"- Minimum severity: {params['severity']}\n"
            "- Include overall rating (1-10)\n"
            "- Identify strengths and areas for improvement\n\n"
            "Return a comprehensive review in JSON format."
        )
    elif operation == "refactor":
        target = params.get("target") or "overall improvement"
        system = (
            "You are an expert code refactoring specialist. Improve code quality while maintaining "
            f"functionality. Focus on {target}."
        )
        user = (
            f"Refactor this {subject} with focus on {params.get('refactor_type') or 'clean'}:\n\n"
            f"{_fenced(code, language)}\n\n"
            "Refactoring requirements:\n"
            f"- Type: {params.get('refactor_type') or 'clean'}\n"
            f"- Target: {target}\n"
            "- Maintain original functionality\n"
            "- Explain all changes made\n\n"
            "Return the refactored code with explanation in JSON format."
        )
    elif operation == "generate-tests":
        system = (
            f"You are an expert test generator. Create comprehensive unit tests with {params['coverage']} "
            f"coverage using {params['test_framework']} framework."
        )
        user = (
            f"Generate tests for this {subject}:\n\n"
            f"{_fenced(code, language)}\n\n"
            "Test requirements:\n"
            f"- Framework: {params['test_framework']}\n"
            f"- Coverage level: {params['coverage']}\n"
            "- Include edge cases and error scenarios\n\n"
            "Return the tests with explanation in JSON format, with the test code under \"code\"."
        )
    elif operation == "generate-docs":
        system = (
            f"You are an expert technical writer. Generate clear, comprehensive documentation in "
            f"{params['format']} format."
        )
        user = (
            f"Generate documentation for this {subject}:\n\n"
            f"{_fenced(code, language)}\n\n"
            "Documentation requirements:\n"
            f"- Format: {params['format']}\n"
            f"- Include examples: {params['include_examples']}\n"
            "- Document parameters, return values and exceptions\n\n"
            "Return the documented code with explanation in JSON format, with the documented code under \"code\"."
        )
    else:
        system = (
            "You are an expert project architect and code analyst. Analyze the provided project structure "
            "and provide insights about the project's architecture, technology stack, organization, and "
            "recommendations for improvement."
        )
        user = (
            "Analyze this project structure:\n\n"
            f"```\n{params['project_structure']}\n```\n\n"
            "Cover the technology stack, architecture pattern, project organization, strengths, "
            "recommendations and potential issues.\n\n"
            "Return the analysis in JSON format with structured insights."
        )
    return system, user


@retry(wait=wait_exponential(multiplier=2, min=2, max=30), stop=stop_after_attempt(5), reraise=True)
async def _ask_claude(system_prompt: str, user_prompt: str) -> str:
    client = AsyncAnthropic(api_key=ANTHROPIC_API_KEY, base_url=ANTHROPIC_BASE_URL, timeout=REQUEST_TIMEOUT)
    response = await client.messages.create(
        model=CODE_MODEL,
        max_tokens=MAX_TOKENS,
        system=system_prompt,
        messages=[{"role": "user", "content": user_prompt}],
    )
    text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
    if not text.strip():
        raise ValueError("Empty response from Claude")
    return text


def _failure(operation: str, message: str) -> Dict[str, Any]:
    return {
        "operation": operation,
        "success": False,
        "data": {"explanation": message, "metadata": {"operation": operation, "timestamp": _now()}},
    }


async def run_claude_analysis(operation: str, **params) -> Dict[str, Any]:
    error = validate_request(operation, params.get("code"), params.get("specification"))
    if error:
        logger.error(f"[claude-analysis] {error}")
        return _failure(operation, error)
    if not ANTHROPIC_API_KEY.strip():
        return _failure(
            operation,
            "ANTHROPIC_API_KEY environment variable is not set or empty. Please provide your Anthropic API key.",
        )

    metadata: Dict[str, Any] = {"operation": operation}
    if operation == "analyze-project":
        project_path = Path(params.get("project_path") or os.getcwd())
        max_depth = params.get("max_depth") or 3
        excludes = params.get("exclude_paths") or DEFAULT_EXCLUDES
        params["project_structure"] = scan_project(project_path, max_depth, excludes)
        metadata.update({"projectPath": str(project_path), "scannedDepth": max_depth, "excludedPaths": excludes})

    system_prompt, user_prompt = build_prompts(operation, params)
    logger.info(f"[claude-analysis] running {operation} with {CODE_MODEL}")
    try:
        reply = await _ask_claude(system_prompt, user_prompt)
    except Exception as e:
        logger.error(f"[claude-analysis] {operation} failed: {e}")
        return _failure(operation, f"Claude analysis error: {e}")

    result = parse_reply(reply)
    data: Dict[str, Any] = {
        "explanation": f"{operation.replace('-', ' ').capitalize()} completed successfully",
        "result": result,
    }
    if isinstance(result, dict):
        if result.get("explanation") and operation in ("generate", "refactor", "generate-tests", "generate-docs"):
            data["explanation"] = result["explanation"]
        code = result.get("code") or result.get("tests") or result.get("documentation")
        if isinstance(code, str) and operation != "analyze-project":
            data["code"] = code
    metadata["timestamp"] = _now()
    data["metadata"] = metadata
    return {"operation": operation, "success": True, "data": data}


@mcp.tool()
async def claude_analysis(
    operation: Operation,
    code: Optional[str] = None,
    language: Optional[str] = None,
    specification: Optional[str] = None,
    analysis_type: Literal["syntax", "logic", "performance", "security", "style", "comprehensive"] = "comprehensive",
    include_metrics: bool = True,
    generate_suggestions: bool = True,
    style: Optional[Literal["functional", "oop", "procedural"]] = None,
    framework: Optional[str] = None,
    include_tests: bool = False,
    include_documentation: bool = False,
    review_type: Literal["comprehensive", "security", "performance", "style"] = "comprehensive",
    severity: Literal["low", "medium", "high"] = "medium",
    refactor_type: Optional[Literal["optimize", "clean", "modernize", "extract-function", "rename-variables"]] = None,
    target: Optional[Literal["performance", "readability", "maintainability"]] = None,
    test_framework: Literal["jest", "mocha", "pytest", "junit", "auto"] = "auto",
    coverage: Literal["basic", "edge-cases", "comprehensive"] = "comprehensive",
    format: Literal["jsdoc", "sphinx", "markdown", "inline"] = "inline",
    include_examples: bool = True,
    project_path: Optional[str] = None,
    max_depth: int = 3,
    exclude_paths: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """AI-powered code assistance using Claude: analysis, generation, review, refactoring, tests and documentation.

    Args:
        operation: analyze, generate, review, refactor, generate-tests, generate-docs or analyze-project.
        code: The code to work on (required for every operation except generate and analyze-project).
        language: Programming language, auto-detected when omitted.
        specification: What to generate (required for generate).
        analysis_type: Focus of the analysis.
        include_metrics: Include code metrics in the analysis.
        generate_suggestions: Include improvement suggestions in the analysis.
        style: Coding style for generated code.
        framework: Framework for generated code.
        include_tests: Generate tests alongside the code.
        include_documentation: Generate documentation alongside the code.
        review_type: Focus of the review.
        severity: Minimum severity of reported review issues.
        refactor_type: Kind of refactoring.
        target: Quality the refactoring should improve.
        test_framework: Test framework for generated tests.
        coverage: Test coverage level.
        format: Documentation format.
        include_examples: Include usage examples in documentation.
        project_path: Directory to scan for analyze-project.
        max_depth: Maximum directory depth to scan.
        exclude_paths: Name fragments skipped while scanning.
    """
    return await run_claude_analysis(
        operation,
        code=code,
        language=language,
        specification=specification,
        analysis_type=analysis_type,
        include_metrics=include_metrics,
        generate_suggestions=generate_suggestions,
        style=style,
        framework=framework,
        include_tests=include_tests,
        include_documentation=include_documentation,
        review_type=review_type,
        severity=severity,
        refactor_type=refactor_type,
        target=target,
        test_framework=test_framework,
        coverage=coverage,
        format=format,
        include_examples=include_examples,
        project_path=project_path,
        max_depth=max_depth,
        exclude_paths=exclude_paths,
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Code Analysis MCP Server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="sse")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8943)
    args = parser.parse_args()

    if args.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="sse", host=args.host, port=args.port)
