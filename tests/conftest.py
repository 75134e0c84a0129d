import io
import json
import re

import pytest
from PIL import Image

from quiz_engine.config import GenerationSettings, ProviderConfig, ProviderKind
from quiz_engine.gateway import ProviderGateway
from quiz_engine.images import load_image


# ─── Provider doubles ─────────────────────────────────────────────────────────

class ScriptedProvider:
    """
    Stands in for GeminiProvider / AzureOpenAIProvider behind a real ProviderGateway.

    Each call consumes the next scripted reply: a str is returned, an
    Exception is raised, a callable is called with the prompt.
    """
    label = "Scripted"

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def complete(self, prompt, image, config, options):
        self.calls.append({"prompt": prompt, "image": image, "config": config, "options": options})
        if not self.replies:
            raise AssertionError(f"unexpected provider call #{len(self.calls)}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def requested_batch(prompt):
    """(count, start_id) a bulk-generation prompt asks for."""
    count = int(re.search(r"Generate exactly (\d+)", prompt).group(1))
    start_id = int(re.search(r"starting from (\d+)", prompt).group(1))
    return count, start_id


def reading_reply(count, start_id=1, answer="B"):
    return json.dumps({
        "questions": [
            {
                "id": start_id + i,
                "passage": f"Memo {start_id + i}: the office will close early on Friday.",
                "question": f"What is memo {start_id + i} about?",
                "options": ["A closure", "A hiring", "A product", "A trip"],
                "answer": answer,
            }
            for i in range(count)
        ]
    })


def full_batch(prompt):
    return reading_reply(*requested_batch(prompt))


def partial_batch(delivered):
    def reply(prompt):
        _count, start_id = requested_batch(prompt)
        return reading_reply(delivered, start_id)
    return reply


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def gemini_config():
    return ProviderConfig(provider=ProviderKind.GEMINI, api_key="test-key", model="gemini-1.5-flash")


@pytest.fixture
def azure_config():
    return ProviderConfig(
        provider=ProviderKind.AZURE_OPENAI,
        api_key="test-key",
        model="gpt-4o",
        endpoint="https://example.openai.azure.com",
        deployment_name="gpt-4o",
    )


@pytest.fixture
def fast_settings():
    """Default batch sizes, no sleeping between calls."""
    return GenerationSettings(delay_seconds=0)


@pytest.fixture
def scripted_gateway():
    """Factory: scripted_gateway(*replies) -> (ProviderGateway, ScriptedProvider)."""
    def make(*replies):
        provider = ScriptedProvider(replies)
        gateway = ProviderGateway({ProviderKind.GEMINI: provider, ProviderKind.AZURE_OPENAI: provider})
        return gateway, provider
    return make


@pytest.fixture
def batch_replies():
    """Reply builders for bulk generation scripts."""
    class Replies:
        full = staticmethod(full_batch)
        partial = staticmethod(partial_batch)
        reading = staticmethod(reading_reply)
        requested = staticmethod(requested_batch)
    return Replies


@pytest.fixture
def sample_png_bytes():
    """A small white PNG."""
    img = Image.new("RGB", (200, 100), color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def sample_image(sample_png_bytes):
    return load_image(sample_png_bytes, name="page.png")
