"""Game error taxonomy.

Every error carries a stable `code` so callers (the HTTP layer, a UI) can
branch without matching on messages. Validation errors are raised before any
write happens and are always safe to retry.
"""

from __future__ import annotations


class GameError(RuntimeError):
    code = "GameError"


# ---------------------------------------------------------------------------
# Store / schema
# ---------------------------------------------------------------------------

class DocumentNotFoundError(GameError):
    code = "NotFound"

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


class SchemaError(GameError):
    """A stored document is missing required fields or has the wrong shape."""

    code = "SchemaError"


class ConcurrentUpdateConflictError(GameError):
    code = "ConcurrentUpdateConflict"


class ConfigurationError(GameError):
    code = "ConfigurationError"


# ---------------------------------------------------------------------------
# Quest progression
# ---------------------------------------------------------------------------

class QuestLockedError(GameError):
    code = "QuestLocked"


class AlreadySolvedError(GameError):
    code = "AlreadySolved"


class QuestInProgressError(GameError):
    code = "QuestInProgress"


class NoActiveQuestError(GameError):
    code = "NoActiveQuest"


class IncorrectAnswerError(GameError):
    code = "IncorrectAnswer"


class TeamCursedError(GameError):
    code = "TeamCursed"


class InsufficientFundsError(GameError):
    code = "InsufficientFunds"


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

class NotOnTeamError(GameError):
    code = "NotOnTeam"


class ItemAlreadyOwnedError(GameError):
    code = "ItemAlreadyOwned"


class ItemNotOwnedError(GameError):
    code = "ItemNotOwned"


class ItemAlreadyActiveError(GameError):
    code = "ItemAlreadyActive"


class NoActiveItemError(GameError):
    code = "NoActiveItem"


class ItemExpiredError(GameError):
    code = "ItemExpired"


class TargetNoLongerEligibleError(GameError):
    code = "TargetNoLongerEligible"


class NoEligibleTargetError(GameError):
    """Internal: resolved by refunding the item, never shown as a failure."""

    code = "NoEligibleTarget"


class PartialTransferError(GameError):
    """The first leg of a two-step transfer committed and the second did not.

    Money is out of balance until someone reconciles it by hand.
    """

    code = "PartialTransfer"

    def __init__(self, debited: str, credited: str, amount: int) -> None:
        super().__init__(
            f"debited {amount} from team {debited} but failed to credit team {credited}"
        )
        self.debited = debited
        self.credited = credited
        self.amount = amount


# ---------------------------------------------------------------------------
# Position source
# ---------------------------------------------------------------------------

class PermissionDeniedError(GameError):
    code = "PermissionDenied"


class PositionTimeoutError(GameError):
    code = "Timeout"
