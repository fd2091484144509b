"""Typed read access over a DocumentStore.

Collections:
    teams, users, quests, items, messages, settings,
    users/<id>/location_history

Every document passes through its pydantic model on the way out. A document
that does not validate raises SchemaError; nothing is silently defaulted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from city_race.errors import DocumentNotFoundError, SchemaError
from city_race.models import Item, LocationSample, Quest, Setting, Team, User
from city_race.store import DocumentStore

TEAMS = "teams"
USERS = "users"
QUESTS = "quests"
ITEMS = "items"
MESSAGES = "messages"
SETTINGS = "settings"

M = TypeVar("M", bound=BaseModel)


def history_collection(user_id: str) -> str:
    return f"{USERS}/{user_id}/location_history"


def parse(model: type[M], doc: dict[str, Any], collection: str = "") -> M:
    try:
        return model.model_validate(doc)
    except ValidationError as exc:
        where = f"{collection}/{doc.get('id', '?')}" if collection else model.__name__
        raise SchemaError(f"{where} is malformed: {exc.error_count()} validation error(s)\n{exc}") from exc


def dump(record: BaseModel) -> dict[str, Any]:
    """Stored form of a record: JSON mode, aliases on disk."""
    return record.model_dump(mode="json", by_alias=True)


def jsonable(value: Any) -> Any:
    """Convert field values headed for the store (datetimes, nested models)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return dump(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


class GameRepository:
    def __init__(self, store: DocumentStore, max_attempts: int | None = None) -> None:
        self.store = store
        self.max_attempts = max_attempts

    async def _atomic(
        self,
        model: type[M],
        collection: str,
        doc_id: str,
        fn: Callable[[M], dict[str, Any] | None],
    ) -> M:
        def apply(doc: dict[str, Any]) -> dict[str, Any] | None:
            changes = fn(parse(model, doc, collection))
            return jsonable(changes) if changes else None

        doc = await self.store.run_atomic_update(collection, doc_id, apply, self.max_attempts)
        return parse(model, doc, collection)

    async def update_team(self, team_id: str, fn: Callable[[Team], dict[str, Any] | None]) -> Team:
        """Compare-and-set on a team. `fn` sees the fresh Team and returns changed fields."""
        return await self._atomic(Team, TEAMS, team_id, fn)

    async def update_user(self, user_id: str, fn: Callable[[User], dict[str, Any] | None]) -> User:
        return await self._atomic(User, USERS, user_id, fn)

    async def _get(self, model: type[M], collection: str, doc_id: str) -> M:
        doc = await self.store.get(collection, doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        return parse(model, doc, collection)

    async def _list(self, model: type[M], collection: str, **query: Any) -> list[M]:
        return [parse(model, d, collection) for d in await self.store.query(collection, **query)]

    # ------------------------------------------------------------------
    # Teams / users
    # ------------------------------------------------------------------

    async def get_team(self, team_id: str) -> Team:
        return await self._get(Team, TEAMS, team_id)

    async def list_teams(self) -> list[Team]:
        return await self._list(Team, TEAMS)

    async def get_user(self, user_id: str) -> User:
        return await self._get(User, USERS, user_id)

    async def list_users(self) -> list[User]:
        return await self._list(User, USERS)

    async def team_members(self, team_id: str) -> list[User]:
        return await self._list(User, USERS, where=[("team_id", "==", team_id)])

    async def members_of(self, team_ids: list[str]) -> list[User]:
        if not team_ids:
            return []
        return await self._list(User, USERS, where=[("team_id", "in", list(team_ids))])

    async def location_history(self, user_id: str) -> list[LocationSample]:
        return await self._list(LocationSample, history_collection(user_id), order_by="timestamp")

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    async def get_quest(self, quest_id: str) -> Quest:
        return await self._get(Quest, QUESTS, quest_id)

    async def list_quests(self) -> list[Quest]:
        return await self._list(Quest, QUESTS, order_by="sequence")

    async def quest_by_sequence(self, sequence: int) -> Quest | None:
        found = await self._list(Quest, QUESTS, where=[("sequence", "==", sequence)], limit=1)
        return found[0] if found else None

    async def max_sequence(self) -> int:
        top = await self._list(Quest, QUESTS, order_by="sequence", descending=True, limit=1)
        return top[0].sequence if top else 0

    # ------------------------------------------------------------------
    # Items / settings
    # ------------------------------------------------------------------

    async def get_item(self, item_id: str) -> Item:
        return await self._get(Item, ITEMS, item_id)

    async def list_items(self) -> list[Item]:
        return await self._list(Item, ITEMS, order_by="price")

    async def get_settings(self) -> list[Setting]:
        return await self._list(Setting, SETTINGS)
