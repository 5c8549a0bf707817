from unittest.mock import AsyncMock

import pytest

from open_superagent.agent.slide_creator import SlideCreatorError, SlideCreatorStore, build_plan


def _store():
    generator = AsyncMock(side_effect=lambda **kw: {"htmlContent": f"<section>{kw['slide_index']}</section>"})
    return SlideCreatorStore(slide_generator=generator), generator


def test_build_plan_lists_every_slide():
    plan = build_plan("Cats", 3, outline="history, breeds")
    assert plan.startswith("```plan")
    assert "Total slides: 3" in plan
    assert "Slide 3: summary and Q&A" in plan
    assert "Outline: history, breeds" in plan


@pytest.mark.asyncio
@pytest.mark.parametrize("body,message", [
    ({"action": "initial_request"}, "sessionId is required"),
    ({"sessionId": "s", "action": "dance"}, "Invalid action"),
    ({"sessionId": "s", "action": "initial_request", "topic": "Cats"}, "topic and slideCount are required"),
    ({"sessionId": "s", "action": "initial_request", "topic": "Cats", "slideCount": -3}, "slideCount must be at least 1"),
    ({"sessionId": "s", "action": "initial_request", "topic": "Cats", "slideCount": "many"}, "slideCount must be a number"),
    ({"sessionId": "s", "action": "user_message"}, "message is required"),
])
async def test_invalid_requests(body, message):
    store, _ = _store()
    with pytest.raises(SlideCreatorError, match=message):
        await store.handle(body)


@pytest.mark.asyncio
async def test_full_conversation_produces_deliverable():
    store, generator = _store()

    first = await store.handle({"sessionId": "s1", "action": "initial_request", "topic": "Cats", "slideCount": 2})
    assert first["nextExpectedAction"] == "plan_approval"
    assert first["data"].startswith("```plan")
    assert [m["role"] for m in first["fullMessageHistory"]] == ["user", "assistant"]

    second = await store.handle({"sessionId": "s1", "action": "plan_approval", "approvedPlan": first["data"]})

    assert second["nextExpectedAction"] == "deliverable"
    assert second["data"].startswith("```deliverable")
    assert "<section>1</section>" in second["data"] and "<section>2</section>" in second["data"]
    assert generator.await_count == 2
    assert generator.await_args.kwargs["total_slides"] == 2
    tool_message = next(m for m in second["fullMessageHistory"] if m["role"] == "tool")
    assert tool_message["toolName"] == "html_slide"


@pytest.mark.asyncio
async def test_user_message_is_recorded_and_sessions_clear():
    store, _ = _store()
    result = await store.handle({"sessionId": "s2", "action": "user_message", "message": "hello"})
    assert result["data"] == ""
    assert result["fullMessageHistory"][0]["content"] == "hello"

    store.clear("s2")
    assert store.get("s2") is None
