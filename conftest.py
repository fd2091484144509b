import asyncio
import inspect
import os
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

# backend.app builds a module-level app at import; keep its files out of ./data
os.environ.setdefault("DATA_DIR", "data-tests")

from city_race.clock import ManualClock  # noqa: E402
from city_race.game import Game  # noqa: E402
from city_race.location import StaticPositionSource  # noqa: E402
from city_race.models import GeoPoint, Item, Quest, Team, User  # noqa: E402
from city_race.repository import ITEMS, QUESTS, TEAMS, USERS, dump  # noqa: E402
from city_race.store import MemoryStore  # noqa: E402

CLOCK_TOWER = GeoPoint(lat=48.2085, lng=16.3721)
STONE_BRIDGE = GeoPoint(lat=48.2110, lng=16.3790)
MARKET_HALL = GeoPoint(lat=48.1985, lng=16.3630)

QUESTS_SEED = [
    Quest(id="q1", sequence=1, name="Clock Tower", hint="Where hours are struck",
          clue="Look up", answer=["Paris", "paris "],
          location={**CLOCK_TOWER.model_dump(), "fence": 25}),
    Quest(id="q2", sequence=2, name="Stone Bridge", hint="Cross the slow river",
          clue="Under the arches", answer=["river"],
          location={**STONE_BRIDGE.model_dump(), "fence": 20}),
    Quest(id="q3", sequence=3, name="Market Hall", hint="Follow the bread",
          clue="Count them", answer=["footsteps", "steps"],
          location={**MARKET_HALL.model_dump(), "fence": 30}),
]

ITEMS_SEED = [
    Item(id="compass", name="Compass", type="compass", price=30, duration=10),
    Item(id="curse", name="Curse", type="curse", price=50, duration=5, cool_down_period=10),
    Item(id="robbery", name="Robbery", type="robbery", price=40, duration=2, steal_amount=25),
    Item(id="immunity", name="Immunity", type="immunity", price=35, duration=15),
    Item(id="banana", name="Banana", type="banana", price=10, duration=1),
]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def source():
    return StaticPositionSource()


@pytest.fixture
def game(store, clock, source):
    return Game(store, clock, source)


async def seed_world(store):
    """Three quests, two teams (red: alice+bob, blue: carol), one admin, five items."""
    for quest in QUESTS_SEED:
        await store.set(QUESTS, quest.id, dump(quest))
    for team in (
        Team(id="red", name="Red Foxes", color="#e74c3c", currency=100),
        Team(id="blue", name="Blue Owls", color="#3498db", currency=100),
    ):
        await store.set(TEAMS, team.id, dump(team))
    for user in (
        User(id="alice", email="alice@example.com", name="Alice", team_id="red"),
        User(id="bob", email="bob@example.com", name="Bob", team_id="red"),
        User(id="carol", email="carol@example.com", name="Carol", team_id="blue"),
        User(id="admin", email="gm@example.com", name="Gamemaster", is_admin=True),
    ):
        await store.set(USERS, user.id, dump(user))
    for item in ITEMS_SEED:
        await store.set(ITEMS, item.id, dump(item))


class YieldingStore(MemoryStore):
    """MemoryStore that hands control back to the loop on every read and
    inside every atomic update, so gathered coroutines interleave the way
    separate devices on a network do."""

    async def get(self, collection, doc_id):
        await asyncio.sleep(0)
        return await super().get(collection, doc_id)

    async def query(self, collection, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().query(collection, *args, **kwargs)

    async def run_atomic_update(self, collection, doc_id, fn, max_attempts=None):
        async def slow(doc):
            await asyncio.sleep(0)
            changes = fn(doc)
            if inspect.isawaitable(changes):
                changes = await changes
            return changes

        return await super().run_atomic_update(collection, doc_id, slow, max_attempts)


@pytest.fixture
async def racing_game(clock, source):
    """A seeded game whose store yields between read and write."""
    store = YieldingStore(clock=clock)
    await seed_world(store)
    return Game(store, clock, source)


@pytest.fixture
async def world(store):
    await seed_world(store)
    return SimpleNamespace(
        quests={q.id: q for q in QUESTS_SEED},
        items={i.id: i for i in ITEMS_SEED},
    )


@pytest.fixture
def client(clock):
    """TestClient over a seeded in-memory game."""
    from backend.app import create_app

    store = MemoryStore(clock=clock)
    asyncio.run(seed_world(store))
    with TestClient(create_app(store=store, clock=clock)) as c:
        yield c
