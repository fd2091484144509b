import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import router
from city_race.clock import Clock
from city_race.errors import (
    ConcurrentUpdateConflictError,
    ConfigurationError,
    DocumentNotFoundError,
    GameError,
    IncorrectAnswerError,
    InsufficientFundsError,
    NotOnTeamError,
    PartialTransferError,
    PermissionDeniedError,
    PositionTimeoutError,
    SchemaError,
)
from city_race.game import Game
from city_race.json_store import JsonFileStore
from city_race.store import DocumentStore

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

logger = logging.getLogger(__name__)

# Most specific class wins; anything else is a state conflict (409).
_STATUS: dict[type[GameError], int] = {
    DocumentNotFoundError: 404,
    IncorrectAnswerError: 400,
    NotOnTeamError: 400,
    ConfigurationError: 400,
    InsufficientFundsError: 402,
    PermissionDeniedError: 403,
    PositionTimeoutError: 504,
    SchemaError: 500,
    PartialTransferError: 500,
    ConcurrentUpdateConflictError: 503,
}


def status_for(exc: GameError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS:
            return _STATUS[cls]
    return 409


def create_app(
    data_dir: Path | None = None,
    store: DocumentStore | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if store is None:
        resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
        store = JsonFileStore(resolved, clock=clock)
    game = Game(store, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await game.reload_config()
        yield

    app = FastAPI(title="City Race", lifespan=lifespan)
    app.state.game = game
    app.include_router(router, prefix="/api")

    @app.exception_handler(GameError)
    async def game_error(request: Request, exc: GameError):
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})

    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
