"""Shop endpoints: catalog, purchase, activation, targeting, compass."""

from fastapi import APIRouter, Depends

from city_race.game import Game
from city_race.models import GeoPoint

from .models import TargetBody, get_game

router = APIRouter()


@router.get("/items")
async def list_items(game: Game = Depends(get_game)):
    """Shop catalog, cheapest first."""
    return await game.repo.list_items()


@router.post("/users/{user_id}/items/{item_id}/purchase")
async def purchase_item(user_id: str, item_id: str, game: Game = Depends(get_game)):
    """Buy an item with team currency."""
    return await game.items.purchase(user_id, item_id)


@router.post("/users/{user_id}/items/{item_id}/activate")
async def activate_item(user_id: str, item_id: str, game: Game = Depends(get_game)):
    """Activate an owned item."""
    return await game.items.activate(user_id, item_id)


@router.get("/users/{user_id}/active-item")
async def get_active_item(user_id: str, game: Game = Depends(get_game)):
    """The user's unexpired active item, or null."""
    return {"active_item": await game.items.active_item(user_id)}


@router.post("/users/{user_id}/active-item/target")
async def choose_target(user_id: str, body: TargetBody, game: Game = Depends(get_game)):
    """Apply the active curse or robbery to a team."""
    return await game.items.choose_target(user_id, body.team_id)


@router.post("/users/{user_id}/active-item/compass")
async def compass_reading(user_id: str, body: GeoPoint, game: Game = Depends(get_game)):
    """Bearing and distance from the given position to the next quest."""
    return await game.items.compass_reading(user_id, body)
