from unittest.mock import AsyncMock, patch

import pytest

from open_superagent.tool.mcp_servers import code_mcp_server as code_server


@pytest.fixture
def with_key(monkeypatch):
    monkeypatch.setattr(code_server, "ANTHROPIC_API_KEY", "sk-test")


def test_validate_request():
    assert "specification" in code_server.validate_request("generate", None, None)
    assert code_server.validate_request("review", "", None) == 'The "code" field is required for the review operation.'
    assert code_server.validate_request("analyze-project", None, None) is None
    assert code_server.validate_request("analyze", "x = 1", None) is None


def test_parse_reply_wraps_plain_text():
    assert code_server.parse_reply('{"summary": "ok"}') == {"summary": "ok"}
    wrapped = code_server.parse_reply("looks fine")
    assert wrapped["summary"] == "looks fine"
    assert wrapped["rawResponse"] == "looks fine"


def test_scan_project_skips_excluded_entries(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "README.md").write_text("")

    tree = code_server.scan_project(tmp_path, max_depth=3, excludes=["node_modules"])

    assert tree == "README.md\nsrc/\n  app.py\n"
    assert code_server.scan_project(tmp_path, max_depth=1, excludes=[]) == "README.md\nnode_modules/\nsrc/\n"


@pytest.mark.asyncio
async def test_missing_api_key_fails_softly(monkeypatch):
    monkeypatch.setattr(code_server, "ANTHROPIC_API_KEY", "  ")
    result = await code_server.run_claude_analysis("review", code="x = 1", review_type="bugs", severity="low")
    assert result["success"] is False
    assert result["data"]["explanation"].startswith("ANTHROPIC_API_KEY environment variable is not set")


@pytest.mark.asyncio
async def test_generate_returns_code_and_explanation(with_key):
    reply = '{"code": "def add(a, b):\\n    return a + b", "explanation": "Adds numbers"}'
    ask = AsyncMock(return_value=reply)
    with patch.object(code_server, "_ask_claude", ask):
        result = await code_server.run_claude_analysis(
            "generate", specification="add two numbers", language="python",
            include_tests=False, include_documentation=False,
        )

    assert result["success"] is True
    assert result["data"]["code"].startswith("def add")
    assert result["data"]["explanation"] == "Adds numbers"
    assert result["data"]["metadata"]["operation"] == "generate"
    system_prompt, user_prompt = ask.await_args.args
    assert "expert code generator" in system_prompt
    assert "Specification: add two numbers" in user_prompt


@pytest.mark.asyncio
async def test_analyze_project_scans_the_tree(with_key, tmp_path):
    (tmp_path / "main.py").write_text("")
    ask = AsyncMock(return_value='{"architecture": "script"}')
    with patch.object(code_server, "_ask_claude", ask):
        result = await code_server.run_claude_analysis("analyze-project", project_path=str(tmp_path), max_depth=2)

    assert result["data"]["result"] == {"architecture": "script"}
    assert result["data"]["metadata"]["scannedDepth"] == 2
    assert "main.py" in ask.await_args.args[1]
    assert "code" not in result["data"]


@pytest.mark.asyncio
async def test_claude_errors_become_failures(with_key):
    with patch.object(code_server, "_ask_claude", AsyncMock(side_effect=RuntimeError("overloaded"))):
        result = await code_server.run_claude_analysis(
            "analyze", code="x = 1", analysis_type="quality", include_metrics=True, generate_suggestions=True
        )

    assert result["success"] is False
    assert result["data"]["explanation"] == "Claude analysis error: overloaded"
