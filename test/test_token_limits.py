from open_superagent.llm.token_limits import (
    get_compression_threshold,
    get_models_by_context_size,
    get_token_limit,
    normalize_model_name,
    supports_large_context,
)


def test_known_model_limits():
    limit = get_token_limit("gemini-2.5-flash")
    assert limit.context_window == 1_048_576
    assert limit.max_output == 8_000


def test_aliases_and_prefix_are_normalized():
    assert normalize_model_name("models/gemini-2.5-pro") == "gemini-2.5-pro"
    assert normalize_model_name("claude-sonnet-4") == "claude-4-sonnet"
    assert get_token_limit("claude-opus-4").context_window == 200_000


def test_unknown_model_has_no_limit():
    assert get_token_limit("my-local-model") is None
    assert get_compression_threshold("my-local-model") is None


def test_compression_threshold_is_95_percent():
    assert get_compression_threshold("gpt-4o") == int(128_000 * 0.95)


def test_context_size_buckets():
    buckets = get_models_by_context_size()
    assert "gpt-4.1" in buckets["large"]
    assert "o3" in buckets["medium"]
    assert "gpt-4o" in buckets["standard"]
    assert supports_large_context("gemini-1.5-pro")
    assert not supports_large_context("gpt-4-turbo")
