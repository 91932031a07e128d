import asyncio

import pytest

from flow_builder.conversation.models import Message
from flow_builder.orchestrator.autosave import DebouncedSaver, SaveState
from flow_builder.storage.errors import StorageUnavailableError
from flow_builder.storage.memory import InMemorySessionStore


class _BrokenStore(InMemorySessionStore):
    async def append_messages(self, session_id, messages, expected_version):
        raise StorageUnavailableError("db down", session_id=session_id)


async def _bound_saver(store, delay_s=0.05):
    session = await store.create_session("Autosave")
    saver = DebouncedSaver(store, delay_s=delay_s)
    saver.bind(session.id, session.version)
    return session, saver


@pytest.mark.asyncio
async def test_burst_of_mutations_produces_single_write(memory_store):
    session, saver = await _bound_saver(memory_store)
    log = []
    for text in ("first", "second", "third"):
        log.append(Message(content=text, sender="user"))
        saver.schedule(log)
        await asyncio.sleep(0.01)

    assert saver.state == SaveState.PENDING
    await saver.wait()

    assert memory_store.writes == 1
    stored = await memory_store.get_session(session.id)
    assert [m.content for m in stored.messages] == ["first", "second", "third"]
    assert stored.version == 2
    assert saver.version == 2
    assert saver.state == SaveState.IDLE


@pytest.mark.asyncio
async def test_nothing_is_written_before_the_delay(memory_store):
    _, saver = await _bound_saver(memory_store, delay_s=0.2)
    saver.schedule([Message(content="hi", sender="user")])
    await asyncio.sleep(0.05)
    assert memory_store.writes == 0
    await saver.wait()
    assert memory_store.writes == 1


@pytest.mark.asyncio
async def test_unchanged_log_is_not_rewritten(memory_store):
    session = await memory_store.create_session("Autosave")
    log = [Message(content="hello", sender="user")]
    saver = DebouncedSaver(memory_store, delay_s=0.01)
    saver.bind(session.id, session.version, log)

    saver.schedule(log)
    await saver.wait()

    assert memory_store.writes == 0
    assert saver.state == SaveState.IDLE


@pytest.mark.asyncio
async def test_conflict_skips_and_adopts_stored_version(memory_store):
    session, saver = await _bound_saver(memory_store, delay_s=0.01)
    # another writer bumps the version behind our back
    await memory_store.update_session(session.id, name="Renamed elsewhere")

    first = Message(content="one", sender="user")
    saver.schedule([first])
    await saver.wait()

    assert saver.state == SaveState.CONFLICT_SKIPPED
    assert saver.version == 2
    stored = await memory_store.get_session(session.id)
    assert stored.messages == ()

    saver.schedule([first, Message(content="two", sender="assistant")])
    await saver.wait()

    assert saver.state == SaveState.IDLE
    stored = await memory_store.get_session(session.id)
    assert [m.content for m in stored.messages] == ["one", "two"]
    assert stored.version == 3


@pytest.mark.asyncio
async def test_rebinding_drops_pending_save(memory_store):
    session, saver = await _bound_saver(memory_store, delay_s=0.05)
    other = await memory_store.create_session("Other")

    saver.schedule([Message(content="meant for the first session", sender="user")])
    saver.bind(other.id, other.version)
    await saver.wait()
    await asyncio.sleep(0.08)

    assert memory_store.writes == 0
    assert (await memory_store.get_session(session.id)).messages == ()
    assert (await memory_store.get_session(other.id)).messages == ()


@pytest.mark.asyncio
async def test_cancel_reports_whether_a_save_was_pending(memory_store):
    _, saver = await _bound_saver(memory_store)
    assert saver.cancel() is False
    saver.schedule([Message(content="x", sender="user")])
    assert saver.cancel() is True
    assert saver.state == SaveState.IDLE
    await saver.wait()
    assert memory_store.writes == 0


@pytest.mark.asyncio
async def test_flush_writes_immediately(memory_store):
    session, saver = await _bound_saver(memory_store, delay_s=10)
    saver.schedule([Message(content="now please", sender="user")])

    assert await saver.flush() is True
    assert memory_store.writes == 1
    assert await saver.flush() is None


@pytest.mark.asyncio
async def test_unbound_saver_ignores_mutations(memory_store):
    saver = DebouncedSaver(memory_store, delay_s=0.01)
    saver.schedule([Message(content="x", sender="user")])
    await saver.wait()
    assert saver.state == SaveState.IDLE
    assert memory_store.writes == 0


@pytest.mark.asyncio
async def test_storage_failure_is_recorded():
    store = _BrokenStore()
    session, saver = await _bound_saver(store, delay_s=0.01)
    saver.schedule([Message(content="x", sender="user")])
    await saver.wait()

    assert isinstance(saver.last_error, StorageUnavailableError)
    assert saver.state == SaveState.IDLE
    assert saver.version == session.version
