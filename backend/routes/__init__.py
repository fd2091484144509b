"""FastAPI API endpoints under /api.

Endpoint groups: play (quest status, scan, answer, clue, location), shop
(items, purchase, activate, target, compass), chat (messages, unread,
broadcast), admin (quests, teams, items, leaderboard) and settings.

Ids arrive as path parameters; nothing here authenticates them. Game errors
are turned into JSON responses by the handler installed in backend.app.
"""

from fastapi import APIRouter

from .admin import router as admin_router
from .chat import router as chat_router
from .play import router as play_router
from .settings import router as settings_router
from .shop import router as shop_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(play_router)
router.include_router(shop_router)
router.include_router(chat_router)
router.include_router(admin_router)
