"""
Room HTTP endpoints.

Routes:
  GET /api/decks              — Available decks (name, card count)
  GET /api/rooms/{room_id}    — Public room summary; 404 when no one is connected
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from models.game import DeckSummary, RoomSummary
from services.deck_service import get_deck_service
from routers.ws_router import registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


@router.get("/decks", response_model=List[DeckSummary])
async def list_decks():
    return get_deck_service().list_decks()


@router.get("/rooms/{room_id}", response_model=RoomSummary)
async def get_room(room_id: str):
    room = registry.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.summary()
