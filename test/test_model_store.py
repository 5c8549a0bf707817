import pytest

from open_superagent.agent.model_store import ModelConfigStore


def test_default_model_is_gemini_flash():
    store = ModelConfigStore()
    assert store.get().to_public() == {"provider": "gemini", "modelName": "gemini-2.5-flash"}


def test_set_replaces_current_model():
    store = ModelConfigStore()
    store.set("claude", "claude-4-sonnet")
    assert store.get().provider == "claude"
    assert store.get().model_name == "claude-4-sonnet"


@pytest.mark.parametrize("provider,model_name", [("", "x"), ("openai", ""), (None, None)])
def test_set_requires_both_fields(provider, model_name):
    store = ModelConfigStore()
    with pytest.raises(ValueError, match="Provider and modelName are required"):
        store.set(provider, model_name)
    assert store.get().provider == "gemini"


def test_request_level_choice_wins():
    store = ModelConfigStore()
    assert store.resolve("openai", "gpt-4o").provider == "openai"
    assert store.resolve("openai", None).provider == "gemini"
