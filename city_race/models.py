"""Core domain models.

Every engine and store helper operates on these types. Pydantic validates
documents at every store boundary so a malformed record fails fast instead
of being read with silent defaults.

Stored documents are the JSON-mode dump of these models (snake_case keys,
ISO-8601 timestamps). Message is the only model with an aliased field:
`from` is a Python keyword, so it is `from_` in code and `"from"` on disk.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

ADMIN = "admin"

KNOWN_ITEM_TYPES = ("compass", "curse", "robbery", "immunity")


class GeoPoint(BaseModel):
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(ge=-180, le=180, allow_inf_nan=False)


class QuestLocation(GeoPoint):
    fence: float = Field(default=20, gt=0, allow_inf_nan=False)  # meters

    def point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)


class Progress(BaseModel):
    current_quest: str = ""  # "" when no quest is active
    previous_quests: list[str] = Field(default_factory=list)  # solve order
    clue_purchased: list[str] = Field(default_factory=list)


class Team(BaseModel):
    id: str
    name: str
    color: str = "#cccccc"
    currency: int = Field(default=0, ge=0)
    progress: Progress = Field(default_factory=Progress)
    inventory: dict[str, int] = Field(default_factory=dict)
    cursed_until: datetime | None = None
    cursed_by: str | None = None
    immune_until: datetime | None = None

    @property
    def solved_count(self) -> int:
        return len(self.progress.previous_quests)


class ActiveItem(BaseModel):
    item_id: str
    type: str
    activated_at: datetime
    expires_at: datetime


class User(BaseModel):
    id: str
    email: str
    name: str = ""
    team_id: str = ""  # empty for admins
    is_admin: bool = False
    location: GeoPoint | None = None
    last_updated: datetime | None = None
    inventory: dict[str, bool] = Field(default_factory=dict)
    active_item: ActiveItem | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def owns(self, item_id: str) -> bool:
        return self.inventory.get(item_id, False)


class LocationSample(BaseModel):
    """One entry of a user's append-only location history."""

    lat: float
    lng: float
    timestamp: datetime


class Quest(BaseModel):
    id: str
    sequence: int = Field(ge=1)
    name: str
    hint: str = ""
    text: str = ""
    clue: str = ""
    answer: list[str] = Field(default_factory=list)
    image_url: str = ""
    video_url: str = ""
    location: QuestLocation

    @model_validator(mode="after")
    def _single_media(self) -> Quest:
        if self.image_url and self.video_url:
            raise ValueError("a quest carries either an image or a video, not both")
        return self

    def accepts(self, answer: str) -> bool:
        """Trimmed, case-insensitive match against any accepted answer."""
        given = answer.strip().casefold()
        return any(given == a.strip().casefold() for a in self.answer)


class Item(BaseModel):
    """A shop catalog entry. `duration` and `cool_down_period` are minutes."""

    id: str
    name: str
    description: str = ""
    type: str
    price: int = Field(ge=0)
    duration: float = Field(default=0, ge=0)
    steal_amount: int = Field(default=0, ge=0)  # robbery only
    cool_down_period: float = Field(default=0, ge=0)  # curse only


class Message(BaseModel):
    """One admin↔team chat message. Exactly one side is ADMIN."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_: str = Field(alias="from")
    to: str
    text: str
    timestamp: datetime
    read_by_team: bool = False
    read_by_admin: bool = False

    @property
    def team_id(self) -> str:
        return self.to if self.from_ == ADMIN else self.from_


class Setting(BaseModel):
    id: str
    name: str = ""
    value: str | int | float | bool
