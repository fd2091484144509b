"""Tests for city_race.quests: unlocking, solving and clue purchase."""

import asyncio
from datetime import timedelta

import pytest

from city_race.errors import (
    AlreadySolvedError,
    DocumentNotFoundError,
    IncorrectAnswerError,
    InsufficientFundsError,
    NoActiveQuestError,
    QuestInProgressError,
    QuestLockedError,
    TeamCursedError,
)
from city_race.models import GeoPoint, Progress, Team
from city_race.quests import LocationOutcome, QuestState, last_solved_sequence, next_quest
from city_race.repository import TEAMS
from conftest import CLOCK_TOWER, MARKET_HALL, STONE_BRIDGE, QUESTS_SEED


async def _solved(game, team_id, *quest_ids):
    await game.store.update(TEAMS, team_id, {"progress.previous_quests": list(quest_ids)})


# ── Pure rules ──────────────────────────────────────────────


class TestProgressionRules:
    def test_last_solved_skips_deleted_quests(self) -> None:
        progress = Progress(previous_quests=["q1", "gone"])
        assert last_solved_sequence(progress, QUESTS_SEED) == 1

    def test_next_quest_from_start(self) -> None:
        assert next_quest(Team(id="t", name="T"), QUESTS_SEED).id == "q1"


# ── Unlocking ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scan_out_of_order_is_locked(game, world):
    with pytest.raises(QuestLockedError, match="sequence 1"):
        await game.quests.scan("red", "q2")
    assert (await game.repo.get_team("red")).progress.current_quest == ""


@pytest.mark.asyncio
async def test_scan_first_quest_activates_it(game, world):
    quest = await game.quests.scan("red", " q1 ")
    assert quest.id == "q1"
    status = await game.quests.status("red")
    assert status.state == QuestState.ACTIVE
    assert status.current_quest.id == "q1"


@pytest.mark.asyncio
async def test_scan_unknown_code(game, world):
    with pytest.raises(DocumentNotFoundError):
        await game.quests.scan("red", "nope")


@pytest.mark.asyncio
async def test_scan_solved_quest(game, world):
    await _solved(game, "red", "q1")
    with pytest.raises(AlreadySolvedError):
        await game.quests.scan("red", "q1")


@pytest.mark.asyncio
async def test_scan_while_quest_in_progress(game, world):
    await game.quests.scan("red", "q1")
    with pytest.raises(QuestInProgressError):
        await game.quests.scan("red", "q1")


@pytest.mark.asyncio
async def test_location_inside_fence_activates_next(game, world):
    assert await game.quests.on_location("red", CLOCK_TOWER) == LocationOutcome.ACTIVATED
    assert (await game.repo.get_team("red")).progress.current_quest == "q1"


@pytest.mark.asyncio
async def test_location_at_later_quest_does_nothing(game, world):
    assert await game.quests.on_location("red", STONE_BRIDGE) == LocationOutcome.UNCHANGED


@pytest.mark.asyncio
async def test_location_outside_fence_drops_current(game, world):
    await game.quests.scan("red", "q1")
    assert await game.quests.on_location("red", CLOCK_TOWER) == LocationOutcome.UNCHANGED
    assert await game.quests.on_location("red", MARKET_HALL) == LocationOutcome.DEACTIVATED
    assert (await game.repo.get_team("red")).progress.current_quest == ""


@pytest.mark.asyncio
async def test_location_near_fence_edge(game, world):
    # ~22m north of the tower, fence is 25m
    near = GeoPoint(lat=CLOCK_TOWER.lat + 0.0002, lng=CLOCK_TOWER.lng)
    assert await game.quests.on_location("red", near) == LocationOutcome.ACTIVATED


# ── Solving ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_answer_trimmed_and_case_insensitive(game, world):
    await game.quests.scan("red", "q1")
    result = await game.quests.submit_answer("red", "  PARIS")
    assert result.quest.id == "q1"
    assert not result.completed
    assert result.next_hint == "Cross the slow river"
    team = await game.repo.get_team("red")
    assert team.progress.previous_quests == ["q1"]
    assert team.progress.current_quest == ""


@pytest.mark.asyncio
async def test_wrong_answer_changes_nothing(game, world):
    await game.quests.scan("red", "q1")
    with pytest.raises(IncorrectAnswerError):
        await game.quests.submit_answer("red", "London")
    assert (await game.repo.get_team("red")).progress.current_quest == "q1"


@pytest.mark.asyncio
async def test_answer_without_active_quest(game, world):
    with pytest.raises(NoActiveQuestError):
        await game.quests.submit_answer("red", "Paris")


@pytest.mark.asyncio
async def test_cursed_team_cannot_answer(game, world, clock):
    await game.quests.scan("red", "q1")
    await game.store.update(TEAMS, "red", {"cursed_until": (clock.now() + timedelta(minutes=1)).isoformat()})
    with pytest.raises(TeamCursedError):
        await game.quests.submit_answer("red", "Paris")
    clock.advance(minutes=1)
    assert (await game.quests.submit_answer("red", "Paris")).quest.id == "q1"


@pytest.mark.asyncio
async def test_final_quest_completes(game, world):
    await _solved(game, "red", "q1", "q2")
    await game.quests.scan("red", "q3")
    result = await game.quests.submit_answer("red", "steps")
    assert result.completed
    assert result.next_hint == ""
    status = await game.quests.status("red")
    assert status.state == QuestState.COMPLETED
    assert status.next_quest is None
    assert status.solved_count == 3


@pytest.mark.asyncio
async def test_status_idle_shows_next_hint(game, world):
    status = await game.quests.status("blue")
    assert status.state == QuestState.IDLE
    assert status.next_quest.id == "q1"
    assert status.next_hint == "Where hours are struck"
    assert status.clue is None


# ── Clues ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_clue_charged_once(game, world):
    await game.quests.scan("red", "q1")
    first = await game.quests.buy_clue("red")
    second = await game.quests.buy_clue("red")
    assert first.charged and not second.charged
    assert first.clue == second.clue == "Look up"
    assert (await game.repo.get_team("red")).currency == 80
    assert (await game.quests.status("red")).clue == "Look up"


@pytest.mark.asyncio
async def test_concurrent_clue_purchase_charges_once(racing_game):
    game = racing_game
    await game.quests.scan("red", "q1")
    results = await asyncio.gather(*(game.quests.buy_clue("red") for _ in range(4)))
    assert sum(r.charged for r in results) == 1
    team = await game.repo.get_team("red")
    assert team.currency == 80
    assert team.progress.clue_purchased == ["q1"]


@pytest.mark.asyncio
async def test_clue_needs_funds(game, world):
    await game.quests.scan("red", "q1")
    await game.store.update(TEAMS, "red", {"currency": 19})
    with pytest.raises(InsufficientFundsError):
        await game.quests.buy_clue("red")
    assert (await game.repo.get_team("red")).currency == 19


@pytest.mark.asyncio
async def test_clue_price_follows_config(game, world):
    await game.update_settings({"clue_price": 35})
    await game.quests.scan("red", "q1")
    await game.quests.buy_clue("red")
    assert (await game.repo.get_team("red")).currency == 65


@pytest.mark.asyncio
async def test_clue_without_active_quest(game, world):
    with pytest.raises(NoActiveQuestError):
        await game.quests.buy_clue("red")


# ── Teammates racing ────────────────────────────────────────


@pytest.mark.asyncio
async def test_teammates_scan_same_code_together(racing_game):
    game = racing_game
    results = await asyncio.gather(
        game.quests.scan("red", "q1"), game.quests.scan("red", "q1"), return_exceptions=True,
    )
    assert sum(isinstance(r, QuestInProgressError) for r in results) == 1
    assert [r.id for r in results if not isinstance(r, Exception)] == ["q1"]
    assert (await game.repo.get_team("red")).progress.current_quest == "q1"


@pytest.mark.asyncio
async def test_teammates_answer_together(racing_game):
    game = racing_game
    await game.quests.scan("red", "q1")
    results = await asyncio.gather(
        game.quests.submit_answer("red", "Paris"),
        game.quests.submit_answer("red", "paris"),
        return_exceptions=True,
    )
    assert sum(isinstance(r, AlreadySolvedError) for r in results) == 1
    team = await game.repo.get_team("red")
    assert team.progress.previous_quests == ["q1"]
    assert team.progress.current_quest == ""
