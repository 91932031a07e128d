import asyncio
import json

import pytest

from conftest import VALID_WORKFLOW
from flow_builder.llm.errors import ProviderUnknownError
from flow_builder.orchestrator.service import (
    GENERATION_SUCCESS_TEXT,
    ConversationOrchestrator,
    OrchestratorError,
)


def _orchestrator(memory_store, gateway, delay_s=10.0):
    return ConversationOrchestrator(store=memory_store, gateway=gateway, autosave_delay_s=delay_s)


async def _wait_in_flight(gateway, session_id):
    for _ in range(100):
        if gateway.in_flight(session_id):
            return
        await asyncio.sleep(0.001)
    raise AssertionError("provider call never started")


@pytest.mark.asyncio
async def test_successful_turn_updates_state(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    await orch.new_session("Sheets digest")
    primary.script = ["Got it. How often should the workflow run?"]

    result = await orch.send_message("I want to email a Google Sheets summary every morning")

    assert not result.discarded
    assert result.reply.sender == "assistant"
    assert result.reply.provider == "openai"
    assert result.state is orch.state
    assert result.state.phase in ("discovery", "validation")
    assert result.state.completeness > 0
    assert [m.sender for m in orch.messages] == ["user", "assistant"]
    assert result.notice is None


@pytest.mark.asyncio
async def test_failed_turn_appends_error_message(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    await orch.new_session("Broken")
    primary.script = [ProviderUnknownError("boom")]

    result = await orch.send_message("hello")

    assert result.error_code == "PROVIDER_UNKNOWN"
    assert result.reply.error is True
    assert orch.messages[-1].error is True
    assert orch.state is None


@pytest.mark.asyncio
async def test_turn_requires_active_session_and_text(memory_store, gateway):
    orch = _orchestrator(memory_store, gateway)
    with pytest.raises(OrchestratorError) as exc:
        await orch.send_message("hi")
    assert exc.value.code == "no_active_session"

    await orch.new_session("Empty")
    with pytest.raises(OrchestratorError) as exc:
        await orch.send_message("   ")
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_generation_stores_artifact_and_status(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    session = await orch.new_session("Sheets digest")
    primary.script = ["Sounds good.", "```json\n" + json.dumps(VALID_WORKFLOW) + "\n```"]
    await orch.send_message("Send a Gmail email from a Google Sheet every day")

    result = await orch.generate_artifact()

    assert result.artifact is not None
    assert len(result.artifact.nodes) == 3
    assert orch.artifact_accepted is True
    assert orch.messages[-1].content == GENERATION_SUCCESS_TEXT

    stored = await memory_store.get_session(session.id)
    assert stored.status == "generated"
    assert stored.artifact["name"] == "Sheet to email"

    await orch.close()
    stored = await memory_store.get_session(session.id)
    assert [m.content for m in stored.messages][-1] == GENERATION_SUCCESS_TEXT


@pytest.mark.asyncio
async def test_generation_failure_keeps_offer_open(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    session = await orch.new_session("Prose")
    primary.script = ["ok", "Sorry, I can't generate that right now."]
    await orch.send_message("build me something")

    result = await orch.generate_artifact()

    assert result.artifact is None
    assert result.error_code == "NO_STRUCTURED_CONTENT"
    assert result.offer_generate is True
    assert orch.messages[-1].error is True
    assert (await memory_store.get_session(session.id)).status == "draft"


@pytest.mark.asyncio
async def test_generation_needs_a_user_message(memory_store, gateway):
    orch = _orchestrator(memory_store, gateway)
    await orch.new_session("Nothing yet")
    with pytest.raises(OrchestratorError) as exc:
        await orch.generate_artifact()
    assert exc.value.code == "empty_conversation"


@pytest.mark.asyncio
async def test_switch_during_generation_discards_result(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    first = await orch.new_session("First")
    second = await memory_store.create_session("Second")
    await orch.send_message("email me a sheet")

    gate = asyncio.Event()
    primary.gate = gate
    primary.script = [json.dumps(VALID_WORKFLOW)]
    pending = asyncio.create_task(orch.generate_artifact())
    await _wait_in_flight(gateway, first.id)

    await orch.switch_session(second.id)
    gate.set()
    result = await pending

    assert result.discarded is True
    assert result.artifact is None
    assert orch.active_id == second.id
    assert orch.messages == []
    assert (await memory_store.get_session(first.id)).artifact is None
    assert (await memory_store.get_session(second.id)).artifact is None


@pytest.mark.asyncio
async def test_switch_during_turn_discards_reply(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    first = await orch.new_session("First")
    second = await memory_store.create_session("Second")

    gate = asyncio.Event()
    primary.gate = gate
    pending = asyncio.create_task(orch.send_message("hello there"))
    await _wait_in_flight(gateway, first.id)

    await orch.switch_session(second.id)
    gate.set()
    result = await pending

    assert result.discarded is True
    assert orch.messages == []

    # the first session keeps its in-memory log and gets it back on return
    snap = await orch.switch_session(first.id)
    assert [m.content for m in snap.messages] == ["hello there"]


@pytest.mark.asyncio
async def test_switch_to_unknown_session(memory_store, gateway):
    orch = _orchestrator(memory_store, gateway)
    with pytest.raises(OrchestratorError) as exc:
        await orch.switch_session("missing")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_loaded_session_replays_requirements(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    session = await orch.new_session("Replay")
    primary.script = ["When should it run?"]
    await orch.send_message("Every day read Google Sheets and send an email")
    await orch.close()
    expected = orch.state

    other = _orchestrator(memory_store, gateway)
    await other.switch_session(session.id)

    assert other.state is not None
    assert other.state.completeness == expected.completeness
    assert len(other.messages) == 2


@pytest.mark.asyncio
async def test_reset_during_generation_discards_result(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    session = await orch.new_session("Reset mid-generation")
    await orch.send_message("email me a sheet")

    gate = asyncio.Event()
    primary.gate = gate
    primary.script = [json.dumps(VALID_WORKFLOW)]
    pending = asyncio.create_task(orch.generate_artifact())
    await _wait_in_flight(gateway, session.id)

    await orch.reset()
    gate.set()
    result = await pending

    assert result.discarded is True
    assert result.artifact is None
    assert result.error_code == "REQUEST_SUPERSEDED"
    assert orch.active_id == session.id
    assert orch.messages == []
    assert not gateway.in_flight(session.id)
    assert (await memory_store.get_session(session.id)).artifact is None

@pytest.mark.asyncio
async def test_reset_clears_conversation(memory_store, gateway, primary):
    orch = _orchestrator(memory_store, gateway)
    session = await orch.new_session("Reset me")
    await orch.send_message("hello")

    await orch.reset()
    await orch.close()

    assert orch.messages == []
    assert orch.state is None
    assert (await memory_store.get_session(session.id)).messages == ()
