"""Game tunables: built-in defaults merged with the `settings` collection.

Each setting is one document in `settings` whose id is the field name:

    settings/clue_price -> {"name": "clue_price", "value": 25}

Unknown setting ids are left alone (organizers keep free-form entries there)
but never reach GameConfig.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from city_race.errors import ConfigurationError
from city_race.repository import SETTINGS, GameRepository
from city_race.store import DocumentStore

logger = logging.getLogger(__name__)


class GameConfig(BaseModel):
    clue_price: int = Field(default=20, ge=0)
    compass_tolerance_m: float = Field(default=5, ge=0)  # arrival = inside fence minus this
    history_min_distance_m: float = Field(default=10, ge=0)
    location_poll_seconds: float = Field(default=30, gt=0)
    max_update_attempts: int = Field(default=5, ge=1)
    hotline_number: str = ""


def _build(values: dict[str, Any]) -> GameConfig:
    try:
        return GameConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid game settings: {exc}") from exc


async def load_config(store: DocumentStore) -> GameConfig:
    """Read settings, returning defaults merged with stored values."""
    settings = await GameRepository(store).get_settings()
    return _build({s.id: s.value for s in settings if s.id in GameConfig.model_fields})


async def update_settings(store: DocumentStore, fields: dict[str, Any]) -> GameConfig:
    """Merge fields into settings and persist. Returns the full config."""
    current = await load_config(store)
    known = {k: v for k, v in fields.items() if k in GameConfig.model_fields}
    skipped = sorted(set(fields) - set(known))
    if skipped:
        logger.warning("ignoring unknown setting(s): %s", ", ".join(skipped))
    config = _build({**current.model_dump(), **known})
    for key in known:
        await store.set(SETTINGS, key, {"name": key, "value": getattr(config, key)})
    logger.info("settings updated: %s", ", ".join(sorted(known)) or "nothing")
    return config
