from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, Tuple

from flow_builder.conversation.models import Message
from flow_builder.storage.base import SessionStore
from flow_builder.storage.errors import StorageError
from flow_builder.utils.hashing import message_log_hash

logger = logging.getLogger(__name__)

AUTOSAVE_DELAY_S = 3.0


class SaveState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    CONFLICT_SKIPPED = "conflict_skipped"


class DebouncedSaver:
    """
    Debounced, version-checked persistence of one session's message log.

    idle -> pending on `schedule`; pending -> pending on every further
    mutation (timer restarted); pending -> in_flight when the timer fires;
    in_flight -> idle on success or when the log is unchanged;
    in_flight -> conflict_skipped on a version conflict. `bind` and `cancel`
    drop a pending save.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        delay_s: float = AUTOSAVE_DELAY_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.delay_s = delay_s
        self._sleep = sleep
        self.state = SaveState.IDLE
        self.session_id: Optional[str] = None
        self.version: Optional[int] = None
        self.last_saved_hash: Optional[str] = None
        self.last_error: Optional[StorageError] = None
        self._epoch = 0
        self._pending: Optional[Tuple[Message, ...]] = None
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    # ---- session binding -----------------------------------------------

    def bind(self, session_id: Optional[str], version: Optional[int], messages: Sequence[Message] = ()) -> None:
        """Points the saver at another session. Any pending save of the previous one is dropped."""
        self.cancel()
        self._epoch += 1
        self.session_id = session_id
        self.version = version
        self.last_saved_hash = message_log_hash(messages) if session_id else None
        self.last_error = None
        self.state = SaveState.IDLE

    def set_version(self, version: int) -> None:
        self.version = version

    # ---- scheduling ----------------------------------------------------

    def schedule(self, messages: Sequence[Message]) -> None:
        if self.session_id is None:
            return
        self._pending = tuple(messages)
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self.state = SaveState.PENDING
        self._timer = asyncio.create_task(self._run(self._epoch, self.session_id))

    def cancel(self) -> bool:
        cancelled = False
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            cancelled = True
        self._timer = None
        self._pending = None
        if self.state == SaveState.PENDING:
            self.state = SaveState.IDLE
        if cancelled:
            logger.info(json.dumps({"event": "autosave_cancelled", "session_id": self.session_id}))
        return cancelled

    async def wait(self) -> None:
        """Waits until no timer is pending and no write is in flight."""
        while True:
            active = [t for t in (self._timer, self._inflight) if t is not None and not t.done()]
            if not active:
                return
            await asyncio.wait(active)

    async def flush(self) -> Optional[bool]:
        """Writes the pending log now instead of waiting for the timer."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        if self._inflight is not None and not self._inflight.done():
            await asyncio.wait({self._inflight})
        if self._pending is None or self.session_id is None:
            return None
        return await self._save(self._epoch, self.session_id)

    # ---- firing --------------------------------------------------------

    async def _run(self, epoch: int, session_id: str) -> None:
        await self._sleep(self.delay_s)
        # past this point a new mutation schedules a fresh timer instead of cancelling this write
        if self._timer is asyncio.current_task():
            self._timer = None
        previous = self._inflight
        self._inflight = asyncio.current_task()
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        await self._save(epoch, session_id)

    def _current(self, epoch: int, session_id: str) -> bool:
        return epoch == self._epoch and session_id == self.session_id

    async def _save(self, epoch: int, session_id: str) -> Optional[bool]:
        if not self._current(epoch, session_id) or self._pending is None:
            self._skip(session_id, "session_changed")
            return None

        messages = self._pending
        digest = message_log_hash(messages)
        if digest == self.last_saved_hash:
            self._pending = None
            self.state = SaveState.IDLE
            self._skip(session_id, "unchanged")
            return None

        self.state = SaveState.IN_FLIGHT
        try:
            result = await self.store.append_messages(session_id, messages, self.version or 1)
        except StorageError as e:
            self.last_error = e
            if self._current(epoch, session_id) and self._pending is messages:
                self.state = SaveState.IDLE
            logger.warning(
                json.dumps({"event": "autosave_failed", "session_id": session_id, "error_code": e.code})
            )
            return False

        if not self._current(epoch, session_id):
            return result.ok

        if result.conflict:
            # adopt the stored version so the next mutation can save again
            self.version = result.current_version
            if self._pending is messages:
                self._pending = None
                self.state = SaveState.CONFLICT_SKIPPED
            self._skip(session_id, "conflict")
            return False

        self.version = result.version
        self.last_saved_hash = digest
        if self._pending is messages:
            self._pending = None
            self.state = SaveState.IDLE
        logger.info(
            json.dumps(
                {
                    "event": "autosave_flushed",
                    "session_id": session_id,
                    "messages_count": len(messages),
                    "version": result.version,
                }
            )
        )
        return True

    def _skip(self, session_id: str, reason: str) -> None:
        logger.info(json.dumps({"event": "autosave_skipped", "session_id": session_id, "reason": reason}))
