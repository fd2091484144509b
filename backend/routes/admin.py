"""Organizer endpoints: quests, teams, users, items, leaderboard."""

from fastapi import APIRouter, Depends

from city_race.game import Game

from .models import (
    AssignUser,
    CreateItem,
    CreateQuest,
    CreateTeam,
    CreateUser,
    CurrencyBody,
    MoveQuest,
    UpdateItem,
    UpdateQuest,
    get_game,
)

router = APIRouter()


# ── Quests ──────────────────────────────────────────────────


@router.get("/admin/quests")
async def list_quests(game: Game = Depends(get_game)):
    """All quests in sequence order."""
    return await game.repo.list_quests()


@router.post("/admin/quests", status_code=201)
async def create_quest(body: CreateQuest, game: Game = Depends(get_game)):
    """Create a quest; `sequence` inserts it at that position."""
    data = body.model_dump(exclude={"sequence"})
    return await game.catalog.create_quest(data, body.sequence)


@router.patch("/admin/quests/{quest_id}")
async def update_quest(quest_id: str, body: UpdateQuest, game: Game = Depends(get_game)):
    """Edit quest fields; a new `sequence` renumbers the others."""
    fields = body.model_dump(exclude_none=True, exclude={"sequence"})
    return await game.catalog.update_quest(quest_id, fields, body.sequence)


@router.post("/admin/quests/{quest_id}/move")
async def move_quest(quest_id: str, body: MoveQuest, game: Game = Depends(get_game)):
    """Drag-and-drop reorder."""
    return await game.catalog.move_quest(quest_id, body.sequence)


@router.delete("/admin/quests/{quest_id}")
async def delete_quest(quest_id: str, game: Game = Depends(get_game)):
    """Delete a quest; later quests move up one."""
    await game.catalog.delete_quest(quest_id)
    return {"ok": True}


# ── Teams / users ───────────────────────────────────────────


@router.get("/admin/teams")
async def list_teams(game: Game = Depends(get_game)):
    """Team table with the current-quest column and curse/immunity status."""
    return await game.team_overview()


@router.post("/admin/teams", status_code=201)
async def create_team(body: CreateTeam, game: Game = Depends(get_game)):
    """Create a team."""
    return await game.teams.create_team(body.name, body.color, body.currency)


@router.delete("/admin/teams/{team_id}")
async def delete_team(team_id: str, game: Game = Depends(get_game)):
    """Delete a team; its members become unassigned."""
    await game.teams.delete_team(team_id)
    return {"ok": True}


@router.post("/admin/teams/{team_id}/currency")
async def adjust_currency(team_id: str, body: CurrencyBody, game: Game = Depends(get_game)):
    """Add (or with a negative delta, remove) team currency."""
    return await game.teams.adjust_currency(team_id, body.delta)


@router.post("/admin/users", status_code=201)
async def create_user(body: CreateUser, game: Game = Depends(get_game)):
    """Add a player (or organizer) account record."""
    return await game.teams.create_user(body.email, body.name, body.team_id, body.is_admin)


@router.post("/admin/users/{user_id}/team")
async def assign_user(user_id: str, body: AssignUser, game: Game = Depends(get_game)):
    """Move a user to a team ("" to unassign)."""
    return await game.teams.assign_user(user_id, body.team_id)


# ── Items ───────────────────────────────────────────────────


@router.post("/admin/items", status_code=201)
async def create_item(body: CreateItem, game: Game = Depends(get_game)):
    """Add a shop item."""
    return await game.item_admin.create_item(body.model_dump())


@router.patch("/admin/items/{item_id}")
async def update_item(item_id: str, body: UpdateItem, game: Game = Depends(get_game)):
    """Edit a shop item."""
    return await game.item_admin.update_item(item_id, body.model_dump(exclude_none=True))


@router.delete("/admin/items/{item_id}")
async def delete_item(item_id: str, game: Game = Depends(get_game)):
    """Remove a shop item."""
    await game.item_admin.delete_item(item_id)
    return {"ok": True}


# ── Leaderboard ─────────────────────────────────────────────


@router.get("/leaderboard")
async def leaderboard(all: bool = False, game: Game = Depends(get_game)):
    """Podium (top 3 ranks with at least one solve), or every team with ?all=true."""
    return await game.leaderboard(top=None if all else 3)
