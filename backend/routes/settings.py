"""Health check and game settings endpoints."""

from fastapi import APIRouter, Depends

from city_race.game import Game

from .models import get_game

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(game: Game = Depends(get_game)):
    """Current game tunables (defaults merged with stored settings)."""
    return await game.reload_config()


@router.patch("/settings")
async def update_settings(body: dict, game: Game = Depends(get_game)):
    """Update game tunables (partial merge)."""
    return await game.update_settings(body)
