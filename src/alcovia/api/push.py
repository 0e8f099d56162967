"""
Push channel WebSocket endpoint.

One socket per student. Connecting registers the socket with the
notification dispatcher (replacing any older socket for the same student);
disconnecting unregisters it. The server only pushes; the one client
message understood is a text ``ping``.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from alcovia.api.deps import get_dispatcher
from alcovia.core.validation import ValidationError, validate_student_id
from alcovia.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/students/{student_id}")
async def student_push_channel(
    websocket: WebSocket,
    student_id: str,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> None:
    """Stream ``status_changed`` and ``intervention_assigned`` events to a student.

    Message format:
        {"event": "status_changed", "student_id": "123", "status": "on_track", ...}
        {"event": "intervention_assigned", "student_id": "123", "task_text": "...", ...}

    Close codes:
        1008 if the student id is malformed
    """
    try:
        student_id = validate_student_id(student_id)
    except ValidationError as e:
        logger.warning(f"Push connection rejected: {e}")
        await websocket.close(code=1008, reason="Invalid student_id")
        return

    await websocket.accept()
    dispatcher.register(student_id, websocket)

    await websocket.send_json({"event": "connected", "student_id": student_id})

    try:
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "ping":
                await websocket.send_json({"event": "pong"})
            else:
                logger.debug(f"Ignoring client message on push channel: {message!r}")
    except WebSocketDisconnect:
        logger.info(f"Push channel closed for student {student_id}")
    finally:
        dispatcher.unregister(websocket)
