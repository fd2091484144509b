"""Curse and immunity windows.

Pure temporal rules, no I/O. A team carries two independent windows:

    cursed_until   end of the curse
    immune_until   end of immunity

Applying a curse stamps both at once: the curse for `duration` and immunity
for `duration + cool_down`. While both are unexpired the curse wins, so the
immunity only shows once the curse runs out.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from city_race.models import Team


class TeamStatus(str, Enum):
    NORMAL = "normal"
    CURSED = "cursed"
    IMMUNE = "immune"


def _active(until: datetime | None, now: datetime) -> bool:
    return until is not None and until > now


def is_cursed(team: Team, now: datetime) -> bool:
    return _active(team.cursed_until, now)


def is_immune(team: Team, now: datetime) -> bool:
    """Raw immunity window, ignoring curse dominance."""
    return _active(team.immune_until, now)


def effective_status(team: Team, now: datetime) -> TeamStatus:
    if is_cursed(team, now):
        return TeamStatus.CURSED
    if is_immune(team, now):
        return TeamStatus.IMMUNE
    return TeamStatus.NORMAL


def can_be_cursed(team: Team, now: datetime) -> bool:
    return not is_cursed(team, now) and not is_immune(team, now)


def can_be_robbed(team: Team, now: datetime, amount: int) -> bool:
    return team.currency >= amount and not is_immune(team, now)


def curse_windows(now: datetime, duration: float, cool_down: float) -> tuple[datetime, datetime]:
    """(cursed_until, immune_until) for a curse applied at `now`. Minutes in."""
    cursed_until = now + timedelta(minutes=duration)
    return cursed_until, cursed_until + timedelta(minutes=cool_down)


def immunity_window(now: datetime, duration: float) -> datetime:
    return now + timedelta(minutes=duration)


def remaining_seconds(until: datetime | None, now: datetime) -> float:
    if until is None:
        return 0.0
    return max(0.0, (until - now).total_seconds())


def is_expired(expires_at: datetime, now: datetime) -> bool:
    return expires_at <= now
