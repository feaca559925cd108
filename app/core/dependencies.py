"""
FastAPI dependencies
"""
from fastapi import Request, WebSocket

from app.services.orchestrator import GameOrchestrator


def get_orchestrator(request: Request) -> GameOrchestrator:
    """Orchestrator created by the application lifespan"""
    return request.app.state.orchestrator


def get_ws_orchestrator(websocket: WebSocket) -> GameOrchestrator:
    return websocket.app.state.orchestrator
