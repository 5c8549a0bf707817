#!/usr/bin/env python
# coding: utf-8
"""
Slide creator conversations
Plan -> approval -> HTML deliverable flow, one in-memory conversation per sessionId.
"""

import html
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from open_superagent.tool.logger import bootstrap_logger
from open_superagent.tool.mcp_servers.slides_mcp_server import generate_slide

logger = bootstrap_logger()

ACTIONS = ("initial_request", "plan_approval", "user_message")


class SlideCreatorError(ValueError):
    """Bad slide-creator request; the route answers 400 with the message."""
    pass


@dataclass
class SlideConversation:
    messages: List[Dict[str, Any]] = field(default_factory=list)
    topic: Optional[str] = None
    slide_count: int = 0
    outline: Optional[str] = None
    approved_plan: Optional[str] = None

    def add(self, role: str, content: str, **extra) -> Dict[str, Any]:
        message = {
            "id": str(uuid.uuid4()),
            "role": role,
            "content": content,
            "createdAt": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        self.messages.append(message)
        return message


def build_plan(topic: str, slide_count: int, outline: Optional[str] = None) -> str:
    lines = ["```plan", f"Topic: {topic}", f"Total slides: {slide_count}", "Slide overview:"]
    lines.append(f"  - Slide 1: {topic} - title and introduction")
    for index in range(2, slide_count):
        lines.append(f"  - Slide {index}: key point {index - 1}")
    if slide_count > 1:
        lines.append(f"  - Slide {slide_count}: summary and Q&A")
    if outline:
        lines.append(f"Outline: {outline}")
    lines.append("```")
    return "\n".join(lines)


def _slide_outline(topic: str, index: int, total: int) -> str:
    if index == 1:
        return f"{topic} - title and introduction"
    if index == total:
        return "Summary and Q&A"
    return f"Key point {index - 1} of {topic}"


def build_deliverable(topic: str, slides: List[str]) -> str:
    sections = "\n".join(slides)
    return (
        "```deliverable\n"
        "<!DOCTYPE html>\n"
        "<html lang=\"en\">\n"
        "<head>\n"
        "  <meta charset=\"UTF-8\">\n"
        f"  <title>Slides: {html.escape(topic)}</title>\n"
        "  <style>\n"
        "    body { font-family: sans-serif; margin: 0; padding: 0; background-color: #f0f0f0; }\n"
        "    main { display: flex; flex-direction: column; align-items: center; gap: 20px; }\n"
        "  </style>\n"
        "</head>\n"
        "<body>\n"
        "  <main>\n"
        f"{sections}\n"
        "  </main>\n"
        "</body>\n"
        "</html>\n"
        "```"
    )


class SlideCreatorStore:
    """In-memory slide-creator conversations keyed by sessionId."""

    def __init__(self, slide_generator: Callable = generate_slide):
        self._conversations: Dict[str, SlideConversation] = {}
        self._generate_slide = slide_generator

    def get(self, session_id: str) -> Optional[SlideConversation]:
        return self._conversations.get(session_id)

    def clear(self, session_id: str):
        self._conversations.pop(session_id, None)

    async def handle(self, body: Dict[str, Any]) -> Dict[str, Any]:
        session_id = body.get("sessionId")
        if not session_id:
            raise SlideCreatorError("sessionId is required")

        action = body.get("action")
        if action not in ACTIONS:
            raise SlideCreatorError("Invalid action")

        conversation = self._conversations.setdefault(session_id, SlideConversation())
        logger.info(f"[slide-creator] session={session_id} action={action}")

        if action == "initial_request":
            data, next_action = self._initial_request(conversation, body)
        elif action == "plan_approval":
            data, next_action = await self._plan_approval(conversation, body)
        else:
            message = body.get("message")
            if not message:
                raise SlideCreatorError("message is required for user_message action")
            conversation.add("user", message)
            data, next_action = "", ""

        return {
            "action": action,
            "nextExpectedAction": next_action,
            "data": data,
            "fullMessageHistory": conversation.messages,
        }

    def _initial_request(self, conversation: SlideConversation, body: Dict[str, Any]):
        topic = body.get("topic")
        slide_count = body.get("slideCount")
        if not topic or not slide_count:
            raise SlideCreatorError("topic and slideCount are required for initial_request")
        try:
            slide_count = int(slide_count)
        except (TypeError, ValueError):
            raise SlideCreatorError("slideCount must be a number")
        if slide_count < 1:
            raise SlideCreatorError("slideCount must be at least 1")

        outline = body.get("outline")
        conversation.topic = topic
        conversation.slide_count = slide_count
        conversation.outline = outline

        request = f'Please create {slide_count} slides about "{topic}".'
        if outline:
            request += f"\nThe outline is:\n{outline}"
        conversation.add("user", request)

        plan = build_plan(topic, slide_count, outline)
        conversation.add("assistant", plan)
        return plan, "plan_approval"

    async def _plan_approval(self, conversation: SlideConversation, body: Dict[str, Any]):
        approved_plan = body.get("approvedPlan")
        conversation.approved_plan = approved_plan
        conversation.add(
            "user",
            f"I approve the plan. The approved plan is:\n{approved_plan}" if approved_plan else "I approve the plan.",
        )

        topic = body.get("topic") or conversation.topic or "Presentation"
        total = conversation.slide_count or int(body.get("slideCount") or 1)
        conversation.add("tool", "Using Tool | html_slide", toolName="html_slide")

        slides = []
        for index in range(1, total + 1):
            result = await self._generate_slide(
                topic=topic,
                outline=_slide_outline(topic, index, total),
                slide_index=index,
                total_slides=total,
            )
            slides.append(result["htmlContent"])

        deliverable = build_deliverable(topic, slides)
        return deliverable, "deliverable"
