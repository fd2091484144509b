"""Team <-> organizer chat endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from city_race.game import Game
from city_race.models import ADMIN

from .models import BroadcastBody, SendMessage, get_game

router = APIRouter()


@router.get("/teams/{team_id}/messages")
async def get_messages(team_id: str, viewer: str = "team", game: Game = Depends(get_game)):
    """Open the chat as `viewer` (team|admin): returns history, marks incoming read."""
    if viewer not in ("team", "admin"):
        raise HTTPException(400, "viewer must be 'team' or 'admin'")
    conversation = await game.messaging.open_conversation(team_id, ADMIN if viewer == "admin" else team_id)
    messages = conversation.messages
    conversation.close()
    return messages


@router.post("/teams/{team_id}/messages", status_code=201)
async def send_message(team_id: str, body: SendMessage, game: Game = Depends(get_game)):
    """Send a message from the team to the organizers, or the other way."""
    sender, recipient = (ADMIN, team_id) if body.sender == "admin" else (team_id, ADMIN)
    try:
        return await game.messaging.send(sender, recipient, body.text)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/teams/{team_id}/unread")
async def team_unread(team_id: str, game: Game = Depends(get_game)):
    """Unread badge for a team."""
    return {"unread": await game.messaging.unread_count(team_id)}


@router.get("/admin/unread")
async def admin_unread(game: Game = Depends(get_game)):
    """Unread message count per team, for the organizers."""
    return await game.messaging.unread_by_team()


@router.post("/admin/broadcast", status_code=201)
async def broadcast(body: BroadcastBody, game: Game = Depends(get_game)):
    """Send the same message to every team."""
    try:
        return await game.messaging.broadcast(body.text)
    except ValueError as e:
        raise HTTPException(400, str(e))
