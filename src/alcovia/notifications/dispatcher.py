"""
Notification Dispatcher

Routes state-change events to the student's live push session.

Delivery is best effort: an event for a student without a session is
dropped, and nothing is queued or retried. A reconnecting client pulls the
authoritative state from the status endpoint instead.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Protocol

from alcovia.notifications.events import PushEvent

logger = logging.getLogger(__name__)


class PushSession(Protocol):
    """Anything that can send a JSON message to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


class NotificationDispatcher:
    """Maps student id to at most one push session.

    The map is guarded by a ``threading.Lock``; critical sections never
    await, so register, unregister and publish are safe from any task.
    ``publish`` must be called from a running event loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PushSession] = {}
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    def register(self, student_id: str, session: PushSession) -> None:
        """Map ``student_id`` to ``session``, replacing any earlier connection."""
        with self._lock:
            previous = self._sessions.get(student_id)
            self._sessions[student_id] = session

        if previous is not None and previous is not session:
            logger.info(f"Student {student_id} reconnected; previous push session replaced")
        else:
            logger.info(f"Student {student_id} registered for push updates")

    def unregister(self, session: PushSession) -> str | None:
        """Remove whichever student is mapped to ``session``.

        Returns:
            The student id that was unmapped, or None if the session was not
            current (e.g. already replaced by a newer connection)
        """
        with self._lock:
            for student_id, current in self._sessions.items():
                if current is session:
                    del self._sessions[student_id]
                    break
            else:
                return None

        logger.info(f"Student {student_id} unregistered from push updates")
        return student_id

    def is_connected(self, student_id: str) -> bool:
        with self._lock:
            return student_id in self._sessions

    def connection_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def publish(self, student_id: str, event: PushEvent) -> bool:
        """Deliver ``event`` to the student's session without waiting.

        Returns:
            True if a send was scheduled, False if the event was dropped
        """
        with self._lock:
            session = self._sessions.get(student_id)

        if session is None:
            logger.debug(f"No push session for student {student_id}; dropped {event.event}")
            return False

        payload = event.model_dump(mode="json")
        task = asyncio.get_running_loop().create_task(self._deliver(student_id, session, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _deliver(self, student_id: str, session: PushSession, payload: dict[str, Any]) -> None:
        try:
            await session.send_json(payload)
            logger.debug(f"Sent {payload['event']} to student {student_id}")
        except Exception as e:
            logger.warning(
                f"Push delivery to student {student_id} failed: {e}",
                extra={"event": payload.get("event")},
            )
            self._discard_session(student_id, session)

    def _discard_session(self, student_id: str, session: PushSession) -> None:
        with self._lock:
            if self._sessions.get(student_id) is session:
                del self._sessions[student_id]

    async def drain(self) -> None:
        """Wait for every scheduled send to finish."""
        pending = [task for task in self._pending if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self._pending if not task.done()]

    async def close(self) -> None:
        """Forget all sessions and flush in-flight sends (application shutdown)."""
        with self._lock:
            self._sessions.clear()
        await self.drain()
