"""Leaderboard ranking and the admin "current quest" column."""

from __future__ import annotations

from pydantic import BaseModel, Field

from city_race.models import Quest, Team, User
from city_race.quests import next_quest


class RankedTeam(BaseModel):
    id: str
    name: str
    color: str
    solved: int
    rank: int
    members: list[str] = Field(default_factory=list)


def rank_teams(teams: list[Team], users: list[User] | None = None) -> list[RankedTeam]:
    """Dense ranking by solved quest count: 5, 5, 3 -> ranks 1, 1, 2."""
    members: dict[str, list[str]] = {}
    for user in users or []:
        if user.team_id:
            members.setdefault(user.team_id, []).append(user.display_name)
    ordered = sorted(teams, key=lambda t: (-t.solved_count, t.name))
    ranked: list[RankedTeam] = []
    rank, last = 0, None
    for team in ordered:
        if team.solved_count != last:
            rank += 1
            last = team.solved_count
        ranked.append(RankedTeam(
            id=team.id,
            name=team.name,
            color=team.color,
            solved=team.solved_count,
            rank=rank,
            members=members.get(team.id, []),
        ))
    return ranked


def podium(teams: list[Team], users: list[User] | None = None, size: int = 3) -> list[RankedTeam]:
    """Teams ranked 1..size; teams with nothing solved are left off."""
    return [t for t in rank_teams(teams, users) if t.solved > 0 and t.rank <= size]


def quest_display(team: Team, quests: list[Quest]) -> str:
    current = team.progress.current_quest
    if current:
        return next((q.name for q in quests if q.id == current), "Unknown Quest")
    upcoming = next_quest(team, quests)
    return f"Looking for {upcoming.name}" if upcoming else "No further quests"
