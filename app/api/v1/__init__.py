"""
API v1 routes aggregation
"""
from fastapi import APIRouter
from app.api.v1 import multiplayer, rooms

api_router = APIRouter()

# Room listings
api_router.include_router(rooms.router, tags=["rooms"])

# Multiplayer WebSocket lives outside the API prefix, see app.main
ws_router = multiplayer.router
