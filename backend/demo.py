"""Create demo quests, teams, players and shop items for development."""

import shutil
from pathlib import Path

from city_race.game import Game
from city_race.json_store import JsonFileStore

DEMO_QUESTS = [
    {
        "name": "The Clock Tower",
        "hint": "Where the hours are struck above the old square.",
        "text": "I have a face but no eyes, hands but no arms. What am I?",
        "clue": "Look up when the bells ring.",
        "answer": ["clock", "a clock"],
        "location": {"lat": 48.2085, "lng": 16.3721, "fence": 25},
    },
    {
        "name": "The Stone Bridge",
        "hint": "Cross the river where the water runs slowest.",
        "text": "What has a bed but never sleeps, and a mouth but never eats?",
        "clue": "It flows under the bridge.",
        "answer": ["river", "a river"],
        "location": {"lat": 48.2110, "lng": 16.3790, "fence": 20},
    },
    {
        "name": "The Market Hall",
        "hint": "Follow the smell of fresh bread.",
        "text": "The more of me you take, the more you leave behind. What am I?",
        "clue": "Count them as you walk.",
        "answer": ["footsteps", "steps"],
        "location": {"lat": 48.1985, "lng": 16.3630, "fence": 30},
    },
]

DEMO_TEAMS = [
    {"name": "Red Foxes", "color": "#e74c3c", "currency": 100},
    {"name": "Blue Owls", "color": "#3498db", "currency": 100},
    {"name": "Green Hares", "color": "#2ecc71", "currency": 60},
]

DEMO_ITEMS = [
    {"name": "Compass", "type": "compass", "price": 30, "duration": 10,
     "description": "Points to your next quest for ten minutes."},
    {"name": "Curse", "type": "curse", "price": 50, "duration": 5, "cool_down_period": 10,
     "description": "Freeze another team's answers for five minutes."},
    {"name": "Robbery", "type": "robbery", "price": 40, "duration": 2, "steal_amount": 25,
     "description": "Take 25 coins from a team that is not immune."},
    {"name": "Immunity", "type": "immunity", "price": 35, "duration": 15,
     "description": "No curses or robberies against your team for fifteen minutes."},
]


async def create_demo_data(game: Game) -> None:
    """Seed an empty store with a playable game."""
    for quest in DEMO_QUESTS:
        await game.catalog.create_quest(quest)
    for i, info in enumerate(DEMO_TEAMS, start=1):
        team = await game.teams.create_team(info["name"], info["color"], info["currency"])
        for n in (1, 2):
            await game.teams.create_user(
                f"player{i}{n}@example.com", name=f"{info['name']} #{n}", team_id=team.id,
            )
    await game.teams.create_user("admin@example.com", name="Gamemaster", is_admin=True, user_id="admin")
    for item in DEMO_ITEMS:
        await game.item_admin.create_item(item)
    await game.update_settings({"hotline_number": "+43 1 234 5678"})


async def reset_demo_data(data_dir: Path) -> None:
    """Wipe `data_dir` and write fresh demo data into it."""
    if data_dir.exists():
        shutil.rmtree(data_dir)
    await create_demo_data(Game(JsonFileStore(data_dir)))
