import pytest

from flow_builder.conversation.models import Message
from flow_builder.storage.base import Session, utcnow
from flow_builder.storage.errors import SessionNotFoundError, StatusRegressionError


@pytest.mark.asyncio
async def test_append_is_version_checked(memory_store):
    session = await memory_store.create_session("Invoices")
    assert session.version == 1 and session.status == "draft"

    ok = await memory_store.append_messages(session.id, [Message(content="hi", sender="user")], 1)
    assert ok.ok and ok.version == 2

    stale = await memory_store.append_messages(session.id, [Message(content="other", sender="user")], 1)
    assert stale.conflict
    assert stale.current_version == 2

    stored = await memory_store.get_session(session.id)
    assert [m.content for m in stored.messages] == ["hi"]


@pytest.mark.asyncio
async def test_missing_session(memory_store):
    assert await memory_store.get_session("nope") is None
    with pytest.raises(SessionNotFoundError):
        await memory_store.append_messages("nope", [], 1)


@pytest.mark.asyncio
async def test_artifact_and_status(memory_store, valid_workflow):
    session = await memory_store.create_session("Invoices")

    updated = await memory_store.set_artifact_and_status(session.id, valid_workflow, "generated")

    assert updated.status == "generated"
    assert updated.artifact["name"] == "Sheet to email"
    assert updated.version == 2


@pytest.mark.asyncio
async def test_deployed_session_never_returns_to_draft(memory_store, valid_workflow):
    session = await memory_store.create_session("Invoices")
    await memory_store.set_deployment_metadata(
        session.id, n8n_workflow_id="wf-1", deployed_at=utcnow(), status="deployed", artifact=valid_workflow
    )

    with pytest.raises(StatusRegressionError):
        await memory_store.update_session(session.id, status="draft")
    with pytest.raises(StatusRegressionError):
        await memory_store.set_artifact_and_status(session.id, valid_workflow, "draft")

    stored = await memory_store.get_session(session.id)
    assert stored.status == "deployed"
    assert stored.n8n_workflow_id == "wf-1"


@pytest.mark.asyncio
async def test_update_session_fields(memory_store):
    session = await memory_store.create_session("Invoices")

    result = await memory_store.update_session(
        session.id,
        expected_version=1,
        name="Invoice digest",
        messages=[{"content": "hello", "sender": "ai"}],
    )
    assert result.ok

    stored = await memory_store.get_session(session.id)
    assert stored.name == "Invoice digest"
    assert stored.messages[0].sender == "assistant"

    stale = await memory_store.update_session(session.id, expected_version=1, name="x")
    assert stale.conflict

    with pytest.raises(ValueError):
        await memory_store.update_session(session.id, version=10)


@pytest.mark.asyncio
async def test_list_and_delete(memory_store):
    first = await memory_store.create_session("first")
    second = await memory_store.create_session("second")
    await memory_store.update_session(first.id, description="touched")

    assert [s.id for s in await memory_store.list_sessions()] == [first.id, second.id]
    assert await memory_store.delete_session(second.id) is True
    assert await memory_store.delete_session(second.id) is False


def test_session_row_mapping():
    row = {
        "id": 7,
        "name": "Invoices",
        "chat_history": [{"id": "m1", "content": "hi", "sender": "user", "timestamp": "2024-05-01T10:00:00Z"}],
        "workflow_json": {"nodes": []},
        "status": "generated",
        "version": 3,
        "created_at": "2024-05-01T10:00:00+00:00",
        "updated_at": "2024-05-01T10:05:00+00:00",
    }

    session = Session.from_row(row)

    assert session.id == "7"
    assert session.messages[0].id == "m1"
    assert session.version == 3
    out = session.to_dict()
    assert out["messages"][0]["timestamp"] == "2024-05-01T10:00:00+00:00"
    assert out["deployed_at"] is None
