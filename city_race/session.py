"""Everything running on behalf of one signed-in player.

A PlayerSession owns the player's background work:

    location   PollLoop feeding LocationTracker.poll every location_poll_seconds
    unread     live unread-message count for the player's team (badge)
    countdown  Countdown that consumes the active item when it runs out

close() releases all of it; nothing keeps running after sign-out.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from city_race.store import Subscription
from city_race.timers import Countdown, PollLoop

if TYPE_CHECKING:
    from city_race.game import Game

logger = logging.getLogger(__name__)


class PlayerSession:
    def __init__(self, game: Game, user_id: str) -> None:
        self.game = game
        self.user_id = user_id
        self.team_id = ""
        self.unread = 0
        self.poll: PollLoop | None = None
        self.countdown: Countdown | None = None
        self._unread_sub: Subscription | None = None
        self.closed = False

    async def start(self) -> PlayerSession:
        user = await self.game.items.reconcile(self.user_id)
        self.team_id = user.team_id
        if self.game.location.source is not None:
            self.poll = PollLoop(
                lambda: self.game.location.poll(self.user_id),
                self.game.config.location_poll_seconds,
                name=f"location:{self.user_id}",
            ).start()
        if self.team_id:
            self._unread_sub = await self.game.messaging.watch_unread(self.team_id, self._on_unread)
        await self.track_item()
        logger.info("session started for user %s", self.user_id)
        return self

    def _on_unread(self, count: int) -> None:
        self.unread = count

    async def track_item(self) -> None:
        """(Re)arm the countdown for whatever item is active now."""
        if self.countdown is not None:
            await self.countdown.cancel()
            self.countdown = None
        active = await self.game.items.active_item(self.user_id)
        if active is None or self.closed:
            return
        self.countdown = Countdown(
            active.expires_at,
            self.game.clock,
            lambda: self.game.items.reconcile(self.user_id),
            name=f"item:{self.user_id}:{active.item_id}",
        ).start()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.poll is not None:
            await self.poll.stop()
        if self.countdown is not None:
            await self.countdown.cancel()
        if self._unread_sub is not None:
            self._unread_sub.unsubscribe()
        logger.info("session closed for user %s", self.user_id)

    async def __aenter__(self) -> PlayerSession:
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
