"""Item ownership, activation and expiry.

Lifecycle of a shop item held by a user:

    purchase   team pays, team inventory count +1, user.inventory[item] = True
    activate   user.active_item = {item, type, expires_at}; effect-specific
    resolve    claim() clears active_item and ownership, effect applied,
               team count -1; release() hands the item back on refusal
    consume    user.inventory[item] = False, active_item cleared, count -1

A user has at most one active item. Expiry is enforced lazily: every entry
point calls reconcile() first, which consumes an active item whose
expires_at has passed, so an expired item can never grant its effect. A
Countdown (see timers.py) may consume it earlier for display purposes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel

from city_race.clock import Clock
from city_race.config import GameConfig
from city_race.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    GameError,
    InsufficientFundsError,
    ItemAlreadyActiveError,
    ItemAlreadyOwnedError,
    ItemExpiredError,
    ItemNotOwnedError,
    NoActiveItemError,
    NotOnTeamError,
    PartialTransferError,
    TargetNoLongerEligibleError,
)
from city_race.geofence import bearing_deg, distance_m
from city_race.items.effects import (
    Activation,
    ActivationStatus,
    EffectContext,
    Resolution,
    effect_for,
)
from city_race.models import ActiveItem, GeoPoint, Item, Team, User
from city_race.quests import next_quest
from city_race.repository import GameRepository
from city_race.scheduler import is_expired
from city_race.store import DocumentStore

logger = logging.getLogger(__name__)


class CompassReading(BaseModel):
    quest_id: str = ""
    bearing_deg: float | None = None
    distance_m: float | None = None
    arrived: bool = False
    expired: bool = False
    blocked: bool = False


class ItemEngine:
    def __init__(self, store: DocumentStore, clock: Clock, config: GameConfig | None = None) -> None:
        self.config = config or GameConfig()
        self.repo = GameRepository(store, self.config.max_update_attempts)
        self.clock = clock

    async def _team_of(self, user: User) -> Team:
        if not user.team_id:
            raise NotOnTeamError(f"user {user.id} is not on a team")
        return await self.repo.get_team(user.team_id)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def purchase(self, user_id: str, item_id: str) -> User:
        user = await self.repo.get_user(user_id)
        team = await self._team_of(user)
        if user.owns(item_id):
            raise ItemAlreadyOwnedError(f"user {user_id} already holds {item_id}")
        item = await self.repo.get_item(item_id)

        def pay(fresh: Team) -> dict:
            if fresh.currency < item.price:
                raise InsufficientFundsError(f"{item.name} costs {item.price}, team has {fresh.currency}")
            return {
                "currency": fresh.currency - item.price,
                f"inventory.{item.id}": fresh.inventory.get(item.id, 0) + 1,
            }

        def take(fresh: User) -> dict:
            if fresh.owns(item.id):
                raise ItemAlreadyOwnedError(f"user {user_id} already holds {item.id}")
            return {f"inventory.{item.id}": True}

        await self.repo.update_team(team.id, pay)
        try:
            user = await self.repo.update_user(user_id, take)
        except GameError:
            # Paid but the item never reached the user; undo the payment.
            await self.refund(team.id, item.price)
            await self._decrement_count(team.id, item.id)
            raise
        logger.info("user %s bought %s for %d", user_id, item.id, item.price)
        return user

    async def refund(self, team_id: str, amount: int) -> Team:
        """Atomic credit; also the second leg of a robbery."""
        return await self.repo.update_team(team_id, lambda t: {"currency": t.currency + amount})

    async def _decrement_count(self, team_id: str, item_id: str) -> None:
        def dec(team: Team) -> dict:
            return {f"inventory.{item_id}": max(0, team.inventory.get(item_id, 0) - 1)}

        try:
            await self.repo.update_team(team_id, dec)
        except DocumentNotFoundError:
            logger.warning("team %s vanished; inventory count for %s not decremented", team_id, item_id)

    async def consume(self, user_id: str, item_id: str) -> User:
        """Spend an item: ownership flag off, active item cleared, team count -1."""
        owned = False

        def spend(user: User) -> dict:
            nonlocal owned
            owned = user.owns(item_id)
            changes: dict = {f"inventory.{item_id}": False}
            if user.active_item and user.active_item.item_id == item_id:
                changes["active_item"] = None
            return changes

        user = await self.repo.update_user(user_id, spend)
        if owned and user.team_id:
            await self._decrement_count(user.team_id, item_id)
        logger.debug("user %s consumed %s", user_id, item_id)
        return user

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def reconcile(self, user_id: str) -> User:
        """Consume the user's active item if it has expired."""
        user = await self.repo.get_user(user_id)
        active = user.active_item
        if active and is_expired(active.expires_at, self.clock.now()):
            logger.info("user %s: %s expired at %s", user_id, active.item_id, active.expires_at)
            user = await self.consume(user_id, active.item_id)
        return user

    async def active_item(self, user_id: str) -> ActiveItem | None:
        return (await self.reconcile(user_id)).active_item

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def arm(self, ctx: EffectContext) -> ActiveItem:
        """Set the user's active item, guarded against a concurrent activation."""
        active = ActiveItem(
            item_id=ctx.item.id,
            type=ctx.item.type,
            activated_at=ctx.now,
            expires_at=ctx.now + timedelta(minutes=ctx.item.duration),
        )

        def claim(user: User) -> dict:
            current = user.active_item
            if current and not is_expired(current.expires_at, ctx.now):
                raise ItemAlreadyActiveError(f"{current.item_id} is still active")
            if not user.owns(ctx.item.id):
                raise ItemNotOwnedError(f"user {user.id} does not hold {ctx.item.id}")
            return {"active_item": active}

        await self.repo.update_user(ctx.user.id, claim)
        return active

    async def activate(self, user_id: str, item_id: str) -> Activation:
        user = await self.reconcile(user_id)
        current = user.active_item
        item = await self.repo.get_item(item_id)
        if current is not None:
            if current.item_id != item_id:
                raise ItemAlreadyActiveError(f"{current.item_id} is still active")
            return await self._resume(user, item, current)
        if not user.owns(item_id):
            raise ItemNotOwnedError(f"user {user_id} does not hold {item_id}")
        team = await self._team_of(user)
        ctx = EffectContext(engine=self, user=user, team=team, item=item, now=self.clock.now())
        effect = effect_for(item.type)
        try:
            result = await effect.activate(ctx)
        except ConfigurationError as exc:
            logger.warning("misconfigured item %s: %s", item_id, exc)
            return Activation(
                status=ActivationStatus.MISCONFIGURED, item_id=item_id, type=item.type, message=str(exc),
            )
        logger.info("user %s activated %s (%s): %s", user_id, item_id, item.type, result.status.value)
        return result

    async def _resume(self, user: User, item: Item, current: ActiveItem) -> Activation:
        effect = effect_for(item.type)
        targets = []
        if effect.needs_target:
            team = await self._team_of(user)
            ctx = EffectContext(engine=self, user=user, team=team, item=item, now=self.clock.now())
            targets = await effect.eligible_targets(ctx)
        return Activation(
            status=ActivationStatus.RESUMED,
            item_id=item.id,
            type=item.type,
            targets=targets,
            expires_at=current.expires_at,
        )

    async def claim(self, user_id: str, active: ActiveItem, now: datetime) -> User:
        """Take an armed item off the user before its effect runs.

        Compare-and-set on the user: of two devices choosing a target for
        the same activation, only one gets past this point.
        """

        def take(user: User) -> dict:
            current = user.active_item
            if current is None or current.item_id != active.item_id or current.activated_at != active.activated_at:
                raise NoActiveItemError(f"{active.item_id} is no longer active")
            if is_expired(current.expires_at, now):
                raise ItemExpiredError(f"{active.item_id} expired at {current.expires_at.isoformat()}")
            return {"active_item": None, f"inventory.{active.item_id}": False}

        return await self.repo.update_user(user_id, take)

    async def release(self, user_id: str, active: ActiveItem) -> User:
        """Hand a claimed item back after its effect was refused."""

        def put_back(user: User) -> dict:
            changes: dict = {f"inventory.{active.item_id}": True}
            if user.active_item is None:
                changes["active_item"] = active
            return changes

        return await self.repo.update_user(user_id, put_back)

    async def choose_target(self, user_id: str, target_team_id: str) -> Resolution:
        user = await self.repo.get_user(user_id)
        active = user.active_item
        if active is None:
            raise NoActiveItemError("no item is active")
        now = self.clock.now()
        if is_expired(active.expires_at, now):
            await self.consume(user_id, active.item_id)
            raise ItemExpiredError(f"{active.item_id} expired at {active.expires_at.isoformat()}")
        item = await self.repo.get_item(active.item_id)
        effect = effect_for(item.type)
        if not effect.needs_target:
            raise NoActiveItemError(f"{item.name} does not take a target")
        team = await self._team_of(user)
        if target_team_id == team.id:
            raise TargetNoLongerEligibleError("a team cannot target itself")
        ctx = EffectContext(engine=self, user=user, team=team, item=item, now=now)
        await self.claim(user_id, active, now)
        try:
            result = await effect.apply(ctx, target_team_id)
        except PartialTransferError:
            await self._decrement_count(team.id, item.id)
            raise
        except GameError:
            await self.release(user_id, active)
            raise
        await self._decrement_count(team.id, item.id)
        logger.debug("user %s spent %s on team %s", user_id, item.id, target_team_id)
        return result

    # ------------------------------------------------------------------
    # Compass
    # ------------------------------------------------------------------

    async def compass_reading(self, user_id: str, position: GeoPoint) -> CompassReading:
        """Bearing and distance to the team's next quest; consumes on arrival or expiry."""
        user = await self.repo.get_user(user_id)
        active = user.active_item
        if active is None or active.type != "compass":
            raise NoActiveItemError("no compass is active")
        if is_expired(active.expires_at, self.clock.now()):
            await self.consume(user_id, active.item_id)
            logger.info("user %s: compass expired before arrival", user_id)
            return CompassReading(expired=True)
        team = await self._team_of(user)
        target = next_quest(team, await self.repo.list_quests())
        if team.progress.current_quest or target is None:
            return CompassReading(blocked=True)
        goal = target.location.point()
        distance = distance_m(position, goal)
        reading = CompassReading(
            quest_id=target.id,
            bearing_deg=bearing_deg(position, goal),
            distance_m=distance,
            arrived=distance <= target.location.fence - self.config.compass_tolerance_m,
        )
        if reading.arrived:
            await self.consume(user_id, active.item_id)
            logger.info("user %s: compass reached quest %s", user_id, target.id)
        return reading
