"""Tool-calling demo: one whole-response turn, then one streamed turn.

Usage:
    Add OPENROUTER_API_KEY=... (and optionally VISUAL_CROSSING_API_KEY=...)
    to .env, then:
    uv run --env-file=.env examples/tool_calling_demo.py
"""

import asyncio
import logging
import os

from toolloop.builtin import default_registry
from toolloop.events import TextDeltaEvent, ToolResultEvent
from toolloop.orchestrator import Orchestrator
from toolloop.provider import OpenRouter

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
    handlers=[
        logging.FileHandler('toolloop.log'),
        logging.StreamHandler()
    ]
)

MODEL_NAME = os.getenv("TOOLLOOP_MODEL", "nvidia/nemotron-3-nano-30b-a3b:free")


async def whole_response_demo(provider, registry):
    conversation = Orchestrator(provider=provider, model=MODEL_NAME, registry=registry)
    question = "What's the weather like in Lagos, Nigeria?"
    print(f"User: {question}\n")

    result = await conversation.run(question)

    for message in conversation.history:
        for tc in getattr(message, "tool_calls", []):
            print(f"Tool call: {tc.name}({tc.arguments})")
    print(f"\nAssistant: {result.text}")
    print(f"Tool rounds: {result.tool_rounds}, messages: {len(conversation.history)}")


async def streaming_demo(provider, registry):
    conversation = Orchestrator(provider=provider, model=MODEL_NAME, registry=registry)
    question = "What would 3 items at $19.99 cost with 8% tax?"
    print(f"User: {question}\n")
    print("Assistant: ", end="", flush=True)

    async for event in conversation.iter(question):
        if isinstance(event, TextDeltaEvent):
            print(event.content, end="", flush=True)
        elif isinstance(event, ToolResultEvent):
            print(f"\n[{event.call.name}] {event.output}\n", flush=True)
    print()


async def main():
    provider = OpenRouter()
    registry = default_registry()

    await whole_response_demo(provider, registry)
    print("\n---\n")
    await streaming_demo(provider, registry)


if __name__ == "__main__":
    asyncio.run(main())
