"""Per-type item behavior.

Each shop item type maps to one ItemEffect. The engine handles ownership,
expiry and the one-active-item rule; an effect only decides what activation
means for its type and, for targeted items, what choosing a target does.

    compass   arm, then guide the team to its next quest (no target)
    curse     pick a team that is neither cursed nor immune
    robbery   pick a team that is not immune and can pay the steal amount
    immunity  applied immediately to the own team
    anything else is a misconfigured item and does nothing
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from city_race.errors import (
    ConfigurationError,
    GameError,
    NoEligibleTargetError,
    PartialTransferError,
    TargetNoLongerEligibleError,
)
from city_race.models import Item, Team, User
from city_race.quests import next_quest
from city_race.scheduler import (
    can_be_cursed,
    can_be_robbed,
    curse_windows,
    immunity_window,
    is_cursed,
    is_immune,
)

if TYPE_CHECKING:
    from city_race.items.engine import ItemEngine

logger = logging.getLogger(__name__)


class ActivationStatus(str, Enum):
    ARMED = "armed"
    AWAITING_TARGET = "awaiting_target"
    APPLIED = "applied"
    REFUNDED = "refunded"
    BLOCKED = "blocked"
    MISCONFIGURED = "misconfigured"
    RESUMED = "resumed"


class TargetTeam(BaseModel):
    id: str
    name: str
    color: str = "#cccccc"
    currency: int = 0
    members: list[str] = Field(default_factory=list)


class Activation(BaseModel):
    status: ActivationStatus
    item_id: str
    type: str
    message: str = ""
    targets: list[TargetTeam] = Field(default_factory=list)
    expires_at: datetime | None = None


class Resolution(BaseModel):
    """Outcome of choosing a target for a curse or robbery."""

    type: str
    target_team_id: str
    amount: int = 0
    cursed_until: datetime | None = None
    immune_until: datetime | None = None


@dataclass
class EffectContext:
    engine: ItemEngine
    user: User
    team: Team
    item: Item
    now: datetime


class ItemEffect:
    type = ""
    needs_target = False

    async def activate(self, ctx: EffectContext) -> Activation:
        raise NotImplementedError

    async def eligible_targets(self, ctx: EffectContext) -> list[TargetTeam]:
        return []

    async def apply(self, ctx: EffectContext, target_team_id: str) -> Resolution:
        """Runs after the engine has claimed the active item; raising hands it back."""
        raise ConfigurationError(f"{self.type or 'this'} item does not take a target")

    async def _refund(self, ctx: EffectContext, message: str) -> Activation:
        await ctx.engine.refund(ctx.team.id, ctx.item.price)
        await ctx.engine.consume(ctx.user.id, ctx.item.id)
        logger.info("refunded %s to team %s: %s", ctx.item.price, ctx.team.id, message)
        return Activation(
            status=ActivationStatus.REFUNDED, item_id=ctx.item.id, type=ctx.item.type, message=message,
        )


class CompassEffect(ItemEffect):
    type = "compass"

    async def activate(self, ctx: EffectContext) -> Activation:
        quests = await ctx.engine.repo.list_quests()
        if ctx.team.progress.current_quest or next_quest(ctx.team, quests) is None:
            return Activation(
                status=ActivationStatus.BLOCKED,
                item_id=ctx.item.id,
                type=self.type,
                message="the compass only points at a quest you have not started yet",
            )
        active = await ctx.engine.arm(ctx)
        return Activation(
            status=ActivationStatus.ARMED, item_id=ctx.item.id, type=self.type, expires_at=active.expires_at,
        )


class _TargetedEffect(ItemEffect):
    needs_target = True

    def eligible(self, team: Team, ctx: EffectContext) -> bool:
        raise NotImplementedError

    async def eligible_targets(self, ctx: EffectContext) -> list[TargetTeam]:
        teams = [
            t for t in await ctx.engine.repo.list_teams()
            if t.id != ctx.team.id and self.eligible(t, ctx)
        ]
        members: dict[str, list[str]] = {}
        for user in await ctx.engine.repo.members_of([t.id for t in teams]):
            members.setdefault(user.team_id, []).append(user.display_name)
        return [
            TargetTeam(id=t.id, name=t.name, color=t.color, currency=t.currency, members=members.get(t.id, []))
            for t in teams
        ]

    async def activate(self, ctx: EffectContext) -> Activation:
        targets = await self.eligible_targets(ctx)
        if not targets:
            return await self._refund(ctx, f"no team can be targeted by {ctx.item.name!r}")
        active = await ctx.engine.arm(ctx)
        return Activation(
            status=ActivationStatus.AWAITING_TARGET,
            item_id=ctx.item.id,
            type=self.type,
            targets=targets,
            expires_at=active.expires_at,
        )


class CurseEffect(_TargetedEffect):
    type = "curse"

    def eligible(self, team: Team, ctx: EffectContext) -> bool:
        return can_be_cursed(team, ctx.now)

    async def apply(self, ctx: EffectContext, target_team_id: str) -> Resolution:
        cursed_until, immune_until = curse_windows(ctx.now, ctx.item.duration, ctx.item.cool_down_period)

        def curse(target: Team) -> dict:
            if is_cursed(target, ctx.now):
                raise TargetNoLongerEligibleError(f"team {target.name} is already cursed")
            if is_immune(target, ctx.now):
                raise TargetNoLongerEligibleError(f"team {target.name} is immune right now")
            return {"cursed_until": cursed_until, "cursed_by": ctx.team.id, "immune_until": immune_until}

        await ctx.engine.repo.update_team(target_team_id, curse)
        logger.info("team %s cursed team %s until %s", ctx.team.id, target_team_id, cursed_until)
        return Resolution(
            type=self.type, target_team_id=target_team_id, cursed_until=cursed_until, immune_until=immune_until,
        )


class RobberyEffect(_TargetedEffect):
    type = "robbery"

    def eligible(self, team: Team, ctx: EffectContext) -> bool:
        return can_be_robbed(team, ctx.now, ctx.item.steal_amount)

    async def apply(self, ctx: EffectContext, target_team_id: str) -> Resolution:
        amount = ctx.item.steal_amount

        def debit(target: Team) -> dict:
            if is_immune(target, ctx.now):
                raise TargetNoLongerEligibleError(f"team {target.name} is immune right now")
            if target.currency < amount:
                raise TargetNoLongerEligibleError(f"team {target.name} cannot pay {amount}")
            return {"currency": target.currency - amount}

        await ctx.engine.repo.update_team(target_team_id, debit)
        try:
            await ctx.engine.refund(ctx.team.id, amount)
        except GameError as exc:
            logger.error(
                "robbery: took %d from team %s but crediting team %s failed (%s); needs manual fix",
                amount, target_team_id, ctx.team.id, exc,
            )
            raise PartialTransferError(target_team_id, ctx.team.id, amount) from exc
        logger.info("team %s robbed %d from team %s", ctx.team.id, amount, target_team_id)
        return Resolution(type=self.type, target_team_id=target_team_id, amount=amount)


class ImmunityEffect(ItemEffect):
    type = "immunity"

    async def activate(self, ctx: EffectContext) -> Activation:
        if is_immune(ctx.team, ctx.now):
            return await self._refund(ctx, "your team is already immune")
        if is_cursed(ctx.team, ctx.now):
            return await self._refund(ctx, "immunity cannot lift an active curse")
        immune_until = immunity_window(ctx.now, ctx.item.duration)

        def protect(team: Team) -> dict:
            if is_cursed(team, ctx.now) or is_immune(team, ctx.now):
                raise NoEligibleTargetError("team state changed before immunity applied")
            return {"immune_until": immune_until}

        active = await ctx.engine.arm(ctx)
        try:
            await ctx.engine.repo.update_team(ctx.team.id, protect)
        except NoEligibleTargetError as exc:
            return await self._refund(ctx, str(exc))
        logger.info("team %s immune until %s", ctx.team.id, immune_until)
        return Activation(
            status=ActivationStatus.APPLIED, item_id=ctx.item.id, type=self.type, expires_at=active.expires_at,
        )


class DefaultEffect(ItemEffect):
    async def activate(self, ctx: EffectContext) -> Activation:
        raise ConfigurationError(
            f"item {ctx.item.id} has type {ctx.item.type!r}, which the game does not know"
        )


_EFFECTS: dict[str, ItemEffect] = {
    e.type: e for e in (CompassEffect(), CurseEffect(), RobberyEffect(), ImmunityEffect())
}


def effect_for(item_type: str) -> ItemEffect:
    return _EFFECTS.get(item_type, DefaultEffect())
