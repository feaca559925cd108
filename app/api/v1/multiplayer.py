"""
Multiplayer WebSocket endpoint
"""
import json
import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.dependencies import get_ws_orchestrator
from app.schemas.multiplayer import WebSocketMessage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def game_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time game communication.

    Every frame is ``{"type": <event>, "data": {...}}`` in both directions.
    """
    orchestrator = get_ws_orchestrator(websocket)
    await websocket.accept()

    session_id = uuid.uuid4().hex
    orchestrator.connect(session_id, websocket)

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                message = WebSocketMessage(**json.loads(raw))
            except (json.JSONDecodeError, TypeError, ValidationError):
                await websocket.send_json({"type": "error", "data": {"message": "Malformed message"}})
                continue

            await orchestrator.handle(session_id, message.type, message.data)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}", exc_info=True)
    finally:
        await orchestrator.disconnect(session_id)
