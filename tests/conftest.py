import sys
from pathlib import Path

# so that src/ is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import pytest

from flow_builder.credentials import StaticCredentialStore
from flow_builder.llm.base import LLMProvider
from flow_builder.llm.gateway import ProviderGateway
from flow_builder.llm.suppression import FailedProviderRegistry
from flow_builder.llm.types import ChatMessage, LLMUsage, ProviderResponse
from flow_builder.storage.memory import InMemorySessionStore


@dataclass
class FakeProvider(LLMProvider):
    """
    Scripted provider: each call pops the next item; strings become replies,
    exceptions are raised. With `gate` set, every call waits on it first.
    """

    name: str = "fake"
    script: List[Any] = field(default_factory=lambda: ["ok"])
    configured: bool = True
    gate: Optional[asyncio.Event] = None
    credentials: Any = None
    calls: List[dict] = field(default_factory=list)

    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, *, system_prompt: str, messages: Sequence[ChatMessage]) -> ProviderResponse:
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages)})
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        item = self.script.pop(0) if self.script else "ok"
        if isinstance(item, Exception):
            raise item
        return ProviderResponse(
            content=str(item),
            provider=self.name,
            model=f"{self.name}-model",
            usage=LLMUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2),
            latency_ms=1,
        )


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


VALID_WORKFLOW = {
    "name": "Sheet to email",
    "nodes": [
        {
            "id": "1",
            "name": "Schedule",
            "type": "n8n-nodes-base.scheduleTrigger",
            "typeVersion": 1,
            "position": [250, 300],
            "parameters": {"rule": {"interval": [{"field": "hours"}]}},
        },
        {
            "id": "2",
            "name": "Read Sheet",
            "type": "n8n-nodes-base.googleSheets",
            "typeVersion": 4,
            "position": [500, 300],
            "parameters": {"operation": "read"},
        },
        {
            "id": "3",
            "name": "Send Email",
            "type": "n8n-nodes-base.gmail",
            "typeVersion": 2,
            "position": [750, 300],
            "parameters": {"operation": "send", "sendTo": "me@example.com"},
        },
    ],
    "connections": {
        "Schedule": {"main": [[{"node": "Read Sheet", "type": "main", "index": 0}]]},
        "Read Sheet": {"main": [[{"node": "Send Email", "type": "main", "index": 0}]]},
    },
}


@pytest.fixture
def valid_workflow():
    return json.loads(json.dumps(VALID_WORKFLOW))


@pytest.fixture
def primary():
    return FakeProvider(name="openai")


@pytest.fixture
def secondary():
    return FakeProvider(name="claude")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def suppression(clock):
    return FailedProviderRegistry(clock=clock)


@pytest.fixture
def gateway(primary, secondary, suppression):
    return ProviderGateway(
        providers={"openai": primary, "claude": secondary},
        primary="openai",
        secondary="claude",
        suppression=suppression,
    )


@pytest.fixture
def memory_store():
    return InMemorySessionStore()


@pytest.fixture
def credentials():
    return StaticCredentialStore({"n8n": "n8n-key"}, base_url="https://n8n.example.com/")


@pytest.fixture
def tmp_secrets_dir(tmp_path, monkeypatch):
    secrets_dir = tmp_path / "secrets"
    secrets_dir.mkdir()
    monkeypatch.setenv("FLOW_BUILDER_SECRETS_DIR", str(secrets_dir))
    return secrets_dir
