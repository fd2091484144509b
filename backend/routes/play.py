"""Quest progression endpoints: status, scan, answer, clue, location."""

from fastapi import APIRouter, Depends

from city_race.game import Game
from city_race.models import GeoPoint

from .models import AnswerBody, ScanBody, get_game

router = APIRouter()


@router.get("/teams/{team_id}/status")
async def team_status(team_id: str, game: Game = Depends(get_game)):
    """Quest state, current/next quest and curse countdown for a team."""
    return await game.quests.status(team_id)


@router.post("/teams/{team_id}/scan")
async def scan_quest(team_id: str, body: ScanBody, game: Game = Depends(get_game)):
    """Unlock a quest from its QR code payload."""
    return await game.quests.scan(team_id, body.quest_id)


@router.post("/teams/{team_id}/answer")
async def submit_answer(team_id: str, body: AnswerBody, game: Game = Depends(get_game)):
    """Answer the active quest."""
    return await game.quests.submit_answer(team_id, body.answer)


@router.post("/teams/{team_id}/clue")
async def buy_clue(team_id: str, game: Game = Depends(get_game)):
    """Buy the clue for the active quest (charged once)."""
    return await game.quests.buy_clue(team_id)


@router.post("/users/{user_id}/location")
async def report_location(user_id: str, body: GeoPoint, game: Game = Depends(get_game)):
    """Record a device position; may activate or drop the team's quest."""
    outcome = await game.location.record(user_id, body)
    return {"outcome": outcome.value}
