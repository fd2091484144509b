"""Shop items: ownership, activation, targeting and expiry.

ItemEngine owns the item lifecycle (purchase, activate, choose_target,
compass_reading, reconcile, consume). Type-specific behavior lives in one
ItemEffect per item type, selected with effect_for(item.type):

  compass   CompassEffect   armed; bearing/distance to the next quest
  curse     CurseEffect     awaiting_target; curses the chosen team
  robbery   RobberyEffect   awaiting_target; moves steal_amount to own team
  immunity  ImmunityEffect  applied to own team immediately
  other     DefaultEffect   misconfigured; never mutates anything

When nobody can be targeted (or immunity cannot apply) the price is refunded
and the item consumed.
"""

from .effects import (  # noqa: F401
    Activation,
    ActivationStatus,
    CompassEffect,
    CurseEffect,
    DefaultEffect,
    EffectContext,
    ImmunityEffect,
    ItemEffect,
    Resolution,
    RobberyEffect,
    TargetTeam,
    effect_for,
)
from .engine import CompassReading, ItemEngine  # noqa: F401
