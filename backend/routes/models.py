"""Pydantic request bodies and the shared Game dependency."""

from typing import Literal

from fastapi import Request
from pydantic import BaseModel, Field

from city_race.game import Game
from city_race.models import QuestLocation


def get_game(request: Request) -> Game:
    return request.app.state.game


class ScanBody(BaseModel):
    quest_id: str


class AnswerBody(BaseModel):
    answer: str


class TargetBody(BaseModel):
    team_id: str


class SendMessage(BaseModel):
    text: str
    sender: Literal["team", "admin"] = "team"


class BroadcastBody(BaseModel):
    text: str


class CreateQuest(BaseModel):
    name: str
    hint: str = ""
    text: str = ""
    clue: str = ""
    answer: list[str] = Field(default_factory=list)
    image_url: str = ""
    video_url: str = ""
    location: QuestLocation
    sequence: int | None = None


class UpdateQuest(BaseModel):
    name: str | None = None
    hint: str | None = None
    text: str | None = None
    clue: str | None = None
    answer: list[str] | None = None
    image_url: str | None = None
    video_url: str | None = None
    location: QuestLocation | None = None
    sequence: int | None = None


class MoveQuest(BaseModel):
    sequence: int


class CreateTeam(BaseModel):
    name: str
    color: str = "#cccccc"
    currency: int = Field(default=0, ge=0)


class CurrencyBody(BaseModel):
    delta: int


class AssignUser(BaseModel):
    team_id: str


class CreateItem(BaseModel):
    name: str
    description: str = ""
    type: str
    price: int = Field(ge=0)
    duration: float = 0
    steal_amount: int = 0
    cool_down_period: float = 0


class UpdateItem(BaseModel):
    name: str | None = None
    description: str | None = None
    type: str | None = None
    price: int | None = None
    duration: float | None = None
    steal_amount: int | None = None
    cool_down_period: float | None = None


class CreateUser(BaseModel):
    email: str
    name: str = ""
    team_id: str = ""
    is_admin: bool = False
