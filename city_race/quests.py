"""Quest progression.

Per-team state machine over the sequenced quest list:

    IDLE       no current quest; the next quest (by sequence) can be unlocked
    ACTIVE     progress.current_quest is set
    COMPLETED  the highest-sequence quest has been solved

A quest is unlocked by scanning its code or by walking into its fence, and
dropped again when the team walks out of the fence. Every team write goes
through GameRepository.update_team so teammates racing each other on
separate devices cannot lose updates: checks are re-run against the fresh
document inside the compare-and-set.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel

from city_race.clock import Clock
from city_race.config import GameConfig
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
from city_race.geofence import is_inside
from city_race.models import GeoPoint, Progress, Quest, Team
from city_race.repository import GameRepository
from city_race.scheduler import TeamStatus, effective_status, remaining_seconds
from city_race.store import DocumentStore

logger = logging.getLogger(__name__)


class QuestState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"


class LocationOutcome(str, Enum):
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    UNCHANGED = "unchanged"


class TeamQuestStatus(BaseModel):
    team_id: str
    state: QuestState
    current_quest: Quest | None = None
    next_quest: Quest | None = None
    next_hint: str = ""
    solved_count: int = 0
    clue: str | None = None  # purchased clue for the current quest
    team_status: TeamStatus = TeamStatus.NORMAL
    cursed_seconds: float = 0
    cursed_by: str = ""  # name of the cursing team while cursed


class SolveResult(BaseModel):
    quest: Quest
    completed: bool
    next_hint: str = ""


class ClueResult(BaseModel):
    clue: str
    charged: bool


# ---------------------------------------------------------------------------
# Pure progression rules
# ---------------------------------------------------------------------------

def last_solved_sequence(progress: Progress, quests: list[Quest]) -> int:
    """Sequence of the most recently solved quest that still exists, else 0."""
    by_id = {q.id: q for q in quests}
    for quest_id in reversed(progress.previous_quests):
        if quest_id in by_id:
            return by_id[quest_id].sequence
    return 0


def next_quest(team: Team, quests: list[Quest]) -> Quest | None:
    wanted = last_solved_sequence(team.progress, quests) + 1
    return next((q for q in quests if q.sequence == wanted), None)


def quest_state(team: Team, quests: list[Quest]) -> QuestState:
    if team.progress.current_quest:
        return QuestState.ACTIVE
    if quests and last_solved_sequence(team.progress, quests) >= max(q.sequence for q in quests):
        return QuestState.COMPLETED
    return QuestState.IDLE


class QuestEngine:
    def __init__(self, store: DocumentStore, clock: Clock, config: GameConfig | None = None) -> None:
        self.config = config or GameConfig()
        self.repo = GameRepository(store, self.config.max_update_attempts)
        self.clock = clock

    async def status(self, team_id: str) -> TeamQuestStatus:
        team = await self.repo.get_team(team_id)
        quests = await self.repo.list_quests()
        now = self.clock.now()
        state = quest_state(team, quests)
        current = next((q for q in quests if q.id == team.progress.current_quest), None)
        upcoming = next_quest(team, quests) if state == QuestState.IDLE else None
        clue = None
        if current and current.id in team.progress.clue_purchased:
            clue = current.clue
        team_status = effective_status(team, now)
        cursed_by = ""
        if team_status == TeamStatus.CURSED and team.cursed_by:
            cursed_by = await self._team_name(team.cursed_by)
        return TeamQuestStatus(
            team_id=team.id,
            state=state,
            current_quest=current,
            next_quest=upcoming,
            next_hint=upcoming.hint if upcoming else "",
            solved_count=team.solved_count,
            clue=clue,
            team_status=team_status,
            cursed_seconds=remaining_seconds(team.cursed_until, now),
            cursed_by=cursed_by,
        )

    async def _team_name(self, team_id: str) -> str:
        try:
            return (await self.repo.get_team(team_id)).name
        except DocumentNotFoundError:
            return team_id

    # ------------------------------------------------------------------
    # Unlocking
    # ------------------------------------------------------------------

    async def scan(self, team_id: str, quest_id: str) -> Quest:
        """Unlock a quest by its code. Returns the now-current quest."""
        quest = await self.repo.get_quest(quest_id.strip())
        quests = await self.repo.list_quests()

        def assign(team: Team) -> dict:
            progress = team.progress
            if quest.id in progress.previous_quests:
                raise AlreadySolvedError(f"quest {quest.name!r} is already solved")
            expected = last_solved_sequence(progress, quests) + 1
            if quest.sequence != expected:
                raise QuestLockedError(
                    f"quest locked: complete quest with sequence {expected} first"
                )
            if progress.current_quest:
                raise QuestInProgressError("a quest is already in progress")
            return {"progress.current_quest": quest.id}

        await self.repo.update_team(team_id, assign)
        logger.info("team %s unlocked quest %s (sequence %d) by scan", team_id, quest.id, quest.sequence)
        return quest

    async def on_location(self, team_id: str, position: GeoPoint) -> LocationOutcome:
        """Auto-activate the next quest on fence entry, drop the current one on exit."""
        team = await self.repo.get_team(team_id)
        quests = await self.repo.list_quests()
        written = False

        if team.progress.current_quest:
            current = next((q for q in quests if q.id == team.progress.current_quest), None)
            if current is None or is_inside(position, current.location.point(), current.location.fence):
                return LocationOutcome.UNCHANGED

            def release(fresh: Team) -> dict | None:
                nonlocal written
                written = fresh.progress.current_quest == current.id
                return {"progress.current_quest": ""} if written else None

            await self.repo.update_team(team_id, release)
            if written:
                logger.info("team %s left the fence of quest %s", team_id, current.id)
                return LocationOutcome.DEACTIVATED
            return LocationOutcome.UNCHANGED

        target = next_quest(team, quests)
        if target is None or not is_inside(position, target.location.point(), target.location.fence):
            return LocationOutcome.UNCHANGED

        def claim(fresh: Team) -> dict | None:
            nonlocal written
            still_next = next_quest(fresh, quests)
            written = not fresh.progress.current_quest and still_next is not None and still_next.id == target.id
            return {"progress.current_quest": target.id} if written else None

        await self.repo.update_team(team_id, claim)
        if written:
            logger.info("team %s entered the fence of quest %s", team_id, target.id)
            return LocationOutcome.ACTIVATED
        return LocationOutcome.UNCHANGED

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    async def submit_answer(self, team_id: str, answer: str) -> SolveResult:
        team = await self.repo.get_team(team_id)
        if not team.progress.current_quest:
            raise NoActiveQuestError("no active quest")
        now = self.clock.now()
        if effective_status(team, now) == TeamStatus.CURSED:
            raise TeamCursedError(
                f"team is cursed for another {int(remaining_seconds(team.cursed_until, now))}s"
            )
        quest = await self.repo.get_quest(team.progress.current_quest)
        if not quest.accepts(answer):
            logger.debug("team %s: wrong answer for quest %s", team_id, quest.id)
            raise IncorrectAnswerError("incorrect answer")

        def solve(fresh: Team) -> dict:
            progress = fresh.progress
            if quest.id in progress.previous_quests:
                raise AlreadySolvedError(f"quest {quest.name!r} is already solved")
            if progress.current_quest != quest.id:
                raise NoActiveQuestError("the active quest changed")
            return {
                "progress.previous_quests": [*progress.previous_quests, quest.id],
                "progress.current_quest": "",
            }

        await self.repo.update_team(team_id, solve)
        max_seq = await self.repo.max_sequence()
        if quest.sequence >= max_seq:
            logger.info("team %s solved the final quest %s", team_id, quest.id)
            return SolveResult(quest=quest, completed=True)
        upcoming = await self.repo.quest_by_sequence(quest.sequence + 1)
        logger.info("team %s solved quest %s", team_id, quest.id)
        return SolveResult(quest=quest, completed=False, next_hint=upcoming.hint if upcoming else "")

    async def buy_clue(self, team_id: str) -> ClueResult:
        team = await self.repo.get_team(team_id)
        if not team.progress.current_quest:
            raise NoActiveQuestError("no active quest")
        quest = await self.repo.get_quest(team.progress.current_quest)
        price = self.config.clue_price
        charged = False

        def charge(fresh: Team) -> dict | None:
            nonlocal charged
            charged = False
            if fresh.progress.current_quest != quest.id:
                raise NoActiveQuestError("the active quest changed")
            if quest.id in fresh.progress.clue_purchased:
                return None
            if fresh.currency < price:
                raise InsufficientFundsError(f"a clue costs {price}, team has {fresh.currency}")
            charged = True
            return {
                "currency": fresh.currency - price,
                "progress.clue_purchased": [*fresh.progress.clue_purchased, quest.id],
            }

        await self.repo.update_team(team_id, charge)
        if charged:
            logger.info("team %s bought the clue for quest %s (%d)", team_id, quest.id, price)
        return ClueResult(clue=quest.clue, charged=charged)
