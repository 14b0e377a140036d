"""Shared test helpers: canned fal.ai payloads and a fake gateway."""

from __future__ import annotations

import asyncio
import copy
import json

from fal_media_mcp.registry import Category, all_models

IMAGE_PAYLOAD = {
    "images": [{"url": "https://fal.media/files/a.jpg", "width": 1024, "height": 768}],
    "seed": 42,
}
VIDEO_PAYLOAD = {
    "video": {"url": "https://fal.media/files/v.mp4", "width": 1280, "height": 720},
}


class FakeGateway:
    """Stands in for fal.ai; records every submission."""

    def __init__(self, payload=None, error=None, delays=None):
        self.payload = payload
        self.error = error
        self.delays = delays or {}
        self.calls = []

    async def submit(self, endpoint, arguments, key):
        self.calls.append({"endpoint": endpoint, "arguments": dict(arguments), "key": key})
        delay = self.delays.get(arguments.get("prompt"))
        if delay:
            await asyncio.sleep(delay)
        if self.error is not None:
            raise self.error
        if self.payload is not None:
            return copy.deepcopy(self.payload)
        model = next((m for m in all_models() if m.endpoint == endpoint), None)
        if model is not None and model.category != Category.IMAGE_GENERATION:
            return copy.deepcopy(VIDEO_PAYLOAD)
        return copy.deepcopy(IMAGE_PAYLOAD)


def payload_of(result) -> dict:
    """Decode the JSON text content of a CallToolResult (object or dict form)."""
    content = result["content"] if isinstance(result, dict) else result.content
    assert len(content) == 1
    text = content[0]["text"] if isinstance(content[0], dict) else content[0].text
    return json.loads(text)
