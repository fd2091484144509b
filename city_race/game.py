"""Game: every engine wired around one store and one clock.

    game = await Game.create(store, clock, source)
    await game.quests.scan(team_id, quest_id)
    await game.items.activate(user_id, item_id)

Nothing here reaches for globals: the store, the clock and the position
source are passed in, which is also how tests swap in MemoryStore,
ManualClock and StaticPositionSource.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from city_race.catalog import ItemAdmin, QuestCatalog, TeamAdmin
from city_race.clock import Clock, SystemClock
from city_race.config import GameConfig, load_config, update_settings
from city_race.items import ItemEngine
from city_race.leaderboard import RankedTeam, podium, quest_display, rank_teams
from city_race.location import LocationTracker, PositionSource
from city_race.messaging import MessagingTracker
from city_race.quests import QuestEngine
from city_race.repository import GameRepository
from city_race.scheduler import effective_status
from city_race.session import PlayerSession
from city_race.store import DocumentStore

logger = logging.getLogger(__name__)


class TeamOverview(BaseModel):
    """One row of the admin team table."""

    id: str
    name: str
    color: str
    currency: int
    solved: int
    quest: str
    status: str


class Game:
    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        source: PositionSource | None = None,
        config: GameConfig | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or GameConfig()
        self.repo = GameRepository(store, self.config.max_update_attempts)
        self.quests = QuestEngine(store, self.clock, self.config)
        self.items = ItemEngine(store, self.clock, self.config)
        self.messaging = MessagingTracker(store)
        self.location = LocationTracker(store, self.clock, self.quests, source, self.config)
        self.catalog = QuestCatalog(store)
        self.teams = TeamAdmin(store)
        self.item_admin = ItemAdmin(store)

    @classmethod
    async def create(
        cls,
        store: DocumentStore,
        clock: Clock | None = None,
        source: PositionSource | None = None,
    ) -> Game:
        """Build a game using the tunables stored in `settings`."""
        return cls(store, clock, source, await load_config(store))

    def _apply_config(self, config: GameConfig) -> None:
        self.config = config
        for engine in (self.quests, self.items, self.location):
            engine.config = config
        for repo in (self.repo, self.quests.repo, self.items.repo):
            repo.max_attempts = config.max_update_attempts

    async def reload_config(self) -> GameConfig:
        self._apply_config(await load_config(self.store))
        return self.config

    async def update_settings(self, fields: dict[str, Any]) -> GameConfig:
        self._apply_config(await update_settings(self.store, fields))
        return self.config

    async def session(self, user_id: str) -> PlayerSession:
        return await PlayerSession(self, user_id).start()

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def leaderboard(self, top: int | None = 3) -> list[RankedTeam]:
        teams = await self.repo.list_teams()
        users = await self.repo.list_users()
        if top is None:
            return rank_teams(teams, users)
        return podium(teams, users, size=top)

    async def team_overview(self) -> list[TeamOverview]:
        quests = await self.repo.list_quests()
        now = self.clock.now()
        return [
            TeamOverview(
                id=t.id,
                name=t.name,
                color=t.color,
                currency=t.currency,
                solved=t.solved_count,
                quest=quest_display(t, quests),
                status=effective_status(t, now).value,
            )
            for t in await self.repo.list_teams()
        ]
