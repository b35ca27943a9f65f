import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from ..events import get_event_bus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/events")
async def session_events_ws(websocket: WebSocket, session: Optional[str] = None, output: bool = True):
    """Stream state, session and terminal events, optionally for one session."""
    await websocket.accept()
    bus = get_event_bus()
    q = bus.subscribe()

    try:
        while True:
            event = await q.get()
            if session and event.session_id != session:
                continue
            if not output and event.type.value == "session.output":
                continue
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        pass
    except RuntimeError as exc:
        # Socket closed while sending
        logger.debug("events websocket closed: %s", exc)
    finally:
        bus.unsubscribe(q)
