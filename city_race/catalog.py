"""Admin management of quests, teams, users and shop items.

Quest sequences are kept dense: after every operation here the quests are
numbered exactly 1..N. Each quest operation computes the new order in memory
and writes every changed sequence in one WriteBatch.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from city_race.errors import DocumentNotFoundError, InsufficientFundsError
from city_race.models import KNOWN_ITEM_TYPES, Item, Quest, Team, User
from city_race.repository import ITEMS, QUESTS, TEAMS, USERS, GameRepository, dump, parse
from city_race.store import DocumentStore, WriteBatch

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:20]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _renumber(batch: WriteBatch, ordered: list[Quest], skip: str = "") -> None:
    for index, quest in enumerate(ordered, start=1):
        if quest.sequence != index and quest.id != skip:
            batch.update(QUESTS, quest.id, {"sequence": index})


class QuestCatalog:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.repo = GameRepository(store)

    async def create_quest(self, data: dict[str, Any], sequence: int | None = None) -> Quest:
        """Insert a quest at `sequence` (default: append), shifting later quests up."""
        ordered = await self.repo.list_quests()
        position = _clamp(sequence if sequence is not None else len(ordered) + 1, 1, len(ordered) + 1)
        fields = {k: v for k, v in data.items() if k not in ("id", "sequence")}
        quest = parse(Quest, {**fields, "id": _new_id(), "sequence": position})
        ordered.insert(position - 1, quest)
        batch = self.store.batch()
        _renumber(batch, ordered, skip=quest.id)
        batch.set(QUESTS, quest.id, dump(quest))
        await batch.commit()
        logger.info("created quest %s at sequence %d", quest.id, position)
        return quest

    async def update_quest(
        self,
        quest_id: str,
        fields: dict[str, Any],
        sequence: int | None = None,
    ) -> Quest:
        """Edit a quest; a new `sequence` is clamped to 1..N and everything renumbered."""
        ordered = await self.repo.list_quests()
        current = next((q for q in ordered if q.id == quest_id), None)
        if current is None:
            raise DocumentNotFoundError(QUESTS, quest_id)
        changes = {k: v for k, v in fields.items() if k not in ("id", "sequence")}
        updated = parse(Quest, {**dump(current), **changes})
        ordered.remove(current)
        target = _clamp(sequence if sequence is not None else current.sequence, 1, len(ordered) + 1)
        ordered.insert(target - 1, updated)
        batch = self.store.batch()
        _renumber(batch, ordered, skip=quest_id)
        final = updated.model_copy(update={"sequence": target})
        batch.set(QUESTS, quest_id, dump(final))
        await batch.commit()
        if target != current.sequence:
            logger.info("moved quest %s from %d to %d", quest_id, current.sequence, target)
        return final

    async def move_quest(self, quest_id: str, new_sequence: int) -> Quest:
        return await self.update_quest(quest_id, {}, sequence=new_sequence)

    async def delete_quest(self, quest_id: str) -> None:
        ordered = await self.repo.list_quests()
        if not any(q.id == quest_id for q in ordered):
            raise DocumentNotFoundError(QUESTS, quest_id)
        remaining = [q for q in ordered if q.id != quest_id]
        batch = self.store.batch()
        batch.delete(QUESTS, quest_id)
        _renumber(batch, remaining)
        await batch.commit()
        logger.info("deleted quest %s", quest_id)

    async def normalize(self) -> list[Quest]:
        """Repair gaps and duplicates; ties keep id order."""
        ordered = sorted(await self.repo.list_quests(), key=lambda q: (q.sequence, q.id))
        batch = self.store.batch()
        _renumber(batch, ordered)
        if len(batch):
            logger.warning("renumbered %d quest(s) to restore sequence order", len(batch))
            await batch.commit()
        return await self.repo.list_quests()


class TeamAdmin:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.repo = GameRepository(store)

    async def create_team(self, name: str, color: str = "#cccccc", currency: int = 0) -> Team:
        team = Team(id=_new_id(), name=name, color=color, currency=currency)
        await self.store.set(TEAMS, team.id, dump(team))
        logger.info("created team %s (%s)", team.id, name)
        return team

    async def delete_team(self, team_id: str) -> None:
        await self.repo.get_team(team_id)
        for user in await self.repo.team_members(team_id):
            await self.store.update(USERS, user.id, {"team_id": ""})
        await self.store.delete(TEAMS, team_id)
        logger.info("deleted team %s", team_id)

    async def adjust_currency(self, team_id: str, delta: int) -> Team:
        def apply(team: Team) -> dict:
            if team.currency + delta < 0:
                raise InsufficientFundsError(f"team {team_id} has only {team.currency}")
            return {"currency": team.currency + delta}

        team = await self.repo.update_team(team_id, apply)
        logger.info("team %s currency %+d -> %d", team_id, delta, team.currency)
        return team

    async def create_user(
        self,
        email: str,
        name: str = "",
        team_id: str = "",
        is_admin: bool = False,
        user_id: str | None = None,
    ) -> User:
        if team_id:
            await self.repo.get_team(team_id)
        user = User(id=user_id or _new_id(), email=email, name=name, team_id=team_id, is_admin=is_admin)
        await self.store.set(USERS, user.id, dump(user))
        return user

    async def assign_user(self, user_id: str, team_id: str) -> User:
        if team_id:
            await self.repo.get_team(team_id)
        user = await self.repo.update_user(user_id, lambda u: {"team_id": team_id})
        logger.info("user %s assigned to team %s", user_id, team_id or "-")
        return user


class ItemAdmin:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.repo = GameRepository(store)

    async def create_item(self, data: dict[str, Any]) -> Item:
        item = parse(Item, {**data, "id": data.get("id") or _new_id()})
        if item.type not in KNOWN_ITEM_TYPES:
            logger.warning("item %s has unrecognized type %r", item.id, item.type)
        await self.store.set(ITEMS, item.id, dump(item))
        return item

    async def update_item(self, item_id: str, fields: dict[str, Any]) -> Item:
        current = await self.repo.get_item(item_id)
        item = parse(Item, {**dump(current), **fields, "id": item_id})
        await self.store.set(ITEMS, item_id, dump(item))
        return item

    async def delete_item(self, item_id: str) -> None:
        await self.repo.get_item(item_id)
        await self.store.delete(ITEMS, item_id)
