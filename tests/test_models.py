"""Tests for city_race.models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from city_race.models import ADMIN, GeoPoint, Item, Message, Quest, Team, User
from city_race.repository import dump, parse
from city_race.errors import SchemaError

LOC = {"lat": 48.2, "lng": 16.3, "fence": 20}


class TestGeoPoint:
    def test_latitude_range(self) -> None:
        with pytest.raises(ValidationError):
            GeoPoint(lat=91, lng=0)

    def test_longitude_range(self) -> None:
        with pytest.raises(ValidationError):
            GeoPoint(lat=0, lng=-181)

    def test_nan_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GeoPoint(lat=float("nan"), lng=0)


class TestQuest:
    def test_answer_is_trimmed_and_case_insensitive(self) -> None:
        q = Quest(id="q1", sequence=1, name="Clock", answer=["Paris", "paris "], location=LOC)
        assert q.accepts("  PARIS")
        assert q.accepts("paris")
        assert not q.accepts("Pari")

    def test_no_answers_accepts_nothing(self) -> None:
        q = Quest(id="q1", sequence=1, name="Clock", location=LOC)
        assert not q.accepts("")

    def test_sequence_starts_at_one(self) -> None:
        with pytest.raises(ValidationError):
            Quest(id="q1", sequence=0, name="Clock", location=LOC)

    def test_fence_defaults_to_twenty(self) -> None:
        q = Quest(id="q1", sequence=1, name="Clock", location={"lat": 1, "lng": 2})
        assert q.location.fence == 20
        assert q.location.point() == GeoPoint(lat=1, lng=2)

    def test_zero_fence_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Quest(id="q1", sequence=1, name="Clock", location={**LOC, "fence": 0})

    def test_image_and_video_are_exclusive(self) -> None:
        with pytest.raises(ValidationError):
            Quest(id="q1", sequence=1, name="Clock", location=LOC,
                  image_url="a.png", video_url="a.mp4")

    def test_missing_location_is_schema_error(self) -> None:
        with pytest.raises(SchemaError, match="quests/q1"):
            parse(Quest, {"id": "q1", "sequence": 1, "name": "Clock"}, "quests")


class TestTeam:
    def test_defaults(self) -> None:
        t = Team(id="red", name="Red")
        assert t.currency == 0
        assert t.progress.current_quest == ""
        assert t.solved_count == 0
        assert t.cursed_until is None

    def test_negative_currency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Team(id="red", name="Red", currency=-1)

    def test_dump_uses_iso_timestamps(self) -> None:
        t = Team(id="red", name="Red", cursed_until=datetime(2025, 6, 1, 12, tzinfo=timezone.utc))
        assert dump(t)["cursed_until"] == "2025-06-01T12:00:00Z"


class TestUser:
    def test_display_name_falls_back_to_email(self) -> None:
        assert User(id="u", email="u@example.com").display_name == "u@example.com"
        assert User(id="u", email="u@example.com", name="Una").display_name == "Una"

    def test_owns(self) -> None:
        u = User(id="u", email="e", inventory={"compass": True, "curse": False})
        assert u.owns("compass")
        assert not u.owns("curse")
        assert not u.owns("robbery")


class TestItem:
    def test_unknown_type_is_still_valid(self) -> None:
        assert Item(id="b", name="Banana", type="banana", price=1).type == "banana"

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Item(id="b", name="Banana", type="banana", price=-1)


class TestMessage:
    def test_from_alias_on_disk(self) -> None:
        m = Message(id="m1", from_="red", to=ADMIN, text="hi",
                    timestamp=datetime(2025, 6, 1, tzinfo=timezone.utc))
        doc = dump(m)
        assert doc["from"] == "red"
        assert "from_" not in doc
        assert Message.model_validate(doc) == m

    def test_team_id_is_the_non_admin_side(self) -> None:
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert Message(id="a", from_=ADMIN, to="red", text="x", timestamp=now).team_id == "red"
        assert Message(id="b", from_="blue", to=ADMIN, text="x", timestamp=now).team_id == "blue"
