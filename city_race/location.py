"""Player positions.

The device position comes from an injected PositionSource:

    async def get_current_position(self) -> GeoPoint: ...
    def watch_position(self, callback) -> Callable[[], None]: ...

Both raise PermissionDeniedError or PositionTimeoutError. StaticPositionSource
is a test double that reports whatever position it was last given.

LocationTracker.record() stores the user's live position, appends to the
location history only after a real move, and then lets the quest engine
auto-activate or drop the team's quest.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from city_race.clock import Clock
from city_race.config import GameConfig
from city_race.errors import PermissionDeniedError, PositionTimeoutError
from city_race.geofence import distance_m
from city_race.models import GeoPoint
from city_race.quests import LocationOutcome, QuestEngine
from city_race.repository import USERS, GameRepository, history_collection
from city_race.store import DocumentStore

logger = logging.getLogger(__name__)

PositionCallback = Callable[[GeoPoint], None]


class PositionSource(Protocol):
    async def get_current_position(self) -> GeoPoint: ...

    def watch_position(self, callback: PositionCallback) -> Callable[[], None]: ...


class StaticPositionSource:
    """Reports a settable position. `error` makes every read fail."""

    def __init__(self, position: GeoPoint | None = None) -> None:
        self.position = position
        self.error: Exception | None = None
        self.reads = 0
        self._watchers: list[PositionCallback] = []

    async def get_current_position(self) -> GeoPoint:
        self.reads += 1
        if self.error is not None:
            raise self.error
        if self.position is None:
            raise PositionTimeoutError("no position fix")
        return self.position

    def watch_position(self, callback: PositionCallback) -> Callable[[], None]:
        self._watchers.append(callback)

        def cancel() -> None:
            if callback in self._watchers:
                self._watchers.remove(callback)

        return cancel

    def move_to(self, position: GeoPoint) -> None:
        self.position = position
        for callback in list(self._watchers):
            callback(position)

    def deny(self) -> None:
        self.error = PermissionDeniedError("location permission denied")


class LocationTracker:
    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        quests: QuestEngine,
        source: PositionSource | None = None,
        config: GameConfig | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.quests = quests
        self.source = source
        self.config = config or GameConfig()
        self.repo = GameRepository(store)
        self._last_sample: dict[str, GeoPoint] = {}

    async def _last_logged(self, user_id: str) -> GeoPoint | None:
        if user_id not in self._last_sample:
            docs = await self.store.query(
                history_collection(user_id), order_by="timestamp", descending=True, limit=1
            )
            if not docs:
                return None
            self._last_sample[user_id] = GeoPoint(lat=docs[0]["lat"], lng=docs[0]["lng"])
        return self._last_sample[user_id]

    async def record(self, user_id: str, position: GeoPoint) -> LocationOutcome:
        user = await self.repo.get_user(user_id)
        now = self.clock.now()
        await self.store.update(USERS, user_id, {
            "location": position.model_dump(),
            "last_updated": now.isoformat(),
        })
        last = await self._last_logged(user_id)
        if last is None or distance_m(last, position) >= self.config.history_min_distance_m:
            await self.store.add(history_collection(user_id), {
                "lat": position.lat,
                "lng": position.lng,
                "timestamp": now.isoformat(),
            })
            self._last_sample[user_id] = position
        if not user.team_id:
            return LocationOutcome.UNCHANGED
        return await self.quests.on_location(user.team_id, position)

    async def poll(self, user_id: str) -> LocationOutcome:
        if self.source is None:
            raise PermissionDeniedError("no position source configured")
        try:
            position = await self.source.get_current_position()
        except (PermissionDeniedError, PositionTimeoutError) as exc:
            logger.warning("user %s: no position (%s)", user_id, exc.code)
            raise
        return await self.record(user_id, position)
