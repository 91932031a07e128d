import asyncio

import pytest

from flow_builder.llm.errors import (
    AllProvidersFailedError,
    NoProvidersConfiguredError,
    ProviderContextTooLargeError,
    ProviderRateLimitError,
    ProviderUnknownError,
    RequestSupersededError,
)
from flow_builder.llm.gateway import ProviderGateway
from flow_builder.llm.types import ChatMessage

HISTORY = [ChatMessage(role="user", content="Hi")]


@pytest.mark.asyncio
async def test_primary_success_has_no_fallback(gateway, primary, secondary):
    primary.script = ["hello from openai"]

    resp = await gateway.send(HISTORY, "system")

    assert resp.content == "hello from openai"
    assert resp.provider == "openai"
    assert resp.fallback is False
    assert secondary.calls == []
    assert primary.calls[0]["system_prompt"] == "system"


@pytest.mark.asyncio
async def test_rate_limit_falls_back_then_suppresses(gateway, primary, secondary, clock):
    primary.script = [ProviderRateLimitError("429", provider="openai")]
    secondary.script = ["first", "second"]

    first = await gateway.send(HISTORY, "system")
    assert first.provider == "claude"
    assert first.fallback is True
    assert first.error_code == "RATE_LIMIT"
    assert first.original_provider == "openai"
    assert first.show_notification is True
    assert first.silent_fallback is False

    second = await gateway.send(HISTORY, "system")
    assert second.provider == "claude"
    assert second.silent_fallback is True
    assert second.show_notification is False
    assert len(primary.calls) == 1

    clock.advance(30 * 60)
    primary.script = ["back"]
    third = await gateway.send(HISTORY, "system")
    assert third.provider == "openai"
    assert third.fallback is False


@pytest.mark.asyncio
async def test_context_length_falls_back_without_suppression(gateway, primary, secondary, suppression):
    primary.script = [ProviderContextTooLargeError("too long", provider="openai"), "ok again"]
    secondary.script = ["from claude"]

    resp = await gateway.send(HISTORY, "system")
    assert resp.provider == "claude"
    assert not suppression.is_suppressed("openai")

    resp = await gateway.send(HISTORY, "system")
    assert resp.provider == "openai"


@pytest.mark.asyncio
async def test_unknown_error_does_not_fall_back(gateway, primary, secondary):
    primary.script = [ProviderUnknownError("bad request", provider="openai")]

    with pytest.raises(ProviderUnknownError):
        await gateway.send(HISTORY, "system")
    assert secondary.calls == []


@pytest.mark.asyncio
async def test_exactly_one_hop(gateway, primary, secondary):
    primary.script = [ProviderRateLimitError("429", provider="openai")]
    secondary.script = [ProviderRateLimitError("429", provider="claude")]

    with pytest.raises(AllProvidersFailedError) as exc:
        await gateway.send(HISTORY, "system")

    assert exc.value.code == "ALL_PROVIDERS_FAILED"
    assert exc.value.primary_error.provider == "openai"
    assert exc.value.secondary_error.provider == "claude"
    assert len(primary.calls) == 1
    assert len(secondary.calls) == 1


@pytest.mark.asyncio
async def test_no_configured_providers(primary, secondary, suppression):
    primary.configured = False
    secondary.configured = False
    gw = ProviderGateway(
        providers={"openai": primary, "claude": secondary},
        primary="openai",
        secondary="claude",
        suppression=suppression,
    )

    with pytest.raises(NoProvidersConfiguredError):
        await gw.send(HISTORY, "system")


@pytest.mark.asyncio
async def test_only_secondary_configured_is_used_directly(primary, secondary, suppression):
    primary.configured = False
    secondary.script = ["claude only"]
    gw = ProviderGateway(
        providers={"openai": primary, "claude": secondary},
        primary="openai",
        secondary="claude",
        suppression=suppression,
    )

    resp = await gw.send(HISTORY, "system")
    assert resp.provider == "claude"
    assert resp.fallback is False
    assert [p["name"] for p in gw.available_providers() if p["available"]] == ["claude"]


@pytest.mark.asyncio
async def test_timeout_falls_back(gateway, primary, secondary):
    primary.gate = asyncio.Event()
    secondary.script = ["fast"]

    resp = await gateway.send(HISTORY, "system", timeout_s=0.01)

    assert resp.provider == "claude"
    assert resp.error_code == "TIMEOUT"


@pytest.mark.asyncio
async def test_newer_call_supersedes_in_flight_call(gateway, primary):
    primary.gate = asyncio.Event()
    primary.script = ["fresh"]

    first = asyncio.create_task(gateway.send(HISTORY, "system", session_id="s1"))
    await asyncio.sleep(0)
    assert gateway.in_flight("s1")

    second = asyncio.create_task(gateway.send(HISTORY, "system", session_id="s1"))
    await asyncio.sleep(0)
    primary.gate.set()

    with pytest.raises(RequestSupersededError):
        await first
    resp = await second
    assert resp.content == "fresh"
    assert len(primary.calls) == 2
    assert not gateway.in_flight("s1")


@pytest.mark.asyncio
async def test_cancel_reports_superseded(gateway, primary):
    primary.gate = asyncio.Event()

    task = asyncio.create_task(gateway.send(HISTORY, "system", session_id="s1"))
    await asyncio.sleep(0)
    assert gateway.cancel("s1") is True

    with pytest.raises(RequestSupersededError):
        await task
    assert gateway.cancel("s1") is False
