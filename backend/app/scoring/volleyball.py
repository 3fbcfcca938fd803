"""Volleyball scoring rules.

Rally-point scoring to 25 points (15 in the deciding set) with a win-by-2
requirement and no cap. Matches default to best-of-5 sets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .. import config as app_config

HOME = "home"
AWAY = "away"


def other(side: str) -> str:
    return AWAY if side == HOME else HOME


@dataclass(frozen=True)
class VolleyballRules:
    points_to: int = 25
    deciding_points_to: int = 15
    win_by: int = 2
    best_of: int = 5
    timeouts_per_set: int = 2
    max_substitutions_per_set: int = 6

    @property
    def sets_needed(self) -> int:
        return self.best_of // 2 + 1

    def is_deciding_set(self, set_number: int) -> bool:
        return set_number >= self.best_of

    def target_for_set(self, set_number: int) -> int:
        if self.is_deciding_set(set_number):
            return self.deciding_points_to
        return self.points_to


def default_rules() -> VolleyballRules:
    return VolleyballRules(
        points_to=app_config.POINTS_TO,
        deciding_points_to=app_config.DECIDING_POINTS_TO,
        best_of=app_config.BEST_OF,
        timeouts_per_set=app_config.TIMEOUTS_PER_SET,
        max_substitutions_per_set=app_config.MAX_SUBSTITUTIONS_PER_SET,
    )


def rules_from_config(config: Optional[Dict]) -> VolleyballRules:
    """Build rules from a ruleset config.

    ``config`` uses the ruleset keys ``pointsTo``, ``decidingPointsTo``,
    ``winBy``, ``bestOf``, ``timeoutsPerSet`` and ``maxSubstitutions``. Missing
    keys fall back to the environment defaults.
    """

    base = default_rules()
    if not config:
        return base

    def _pick(key: str, fallback: int) -> int:
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            return fallback
        return value

    best_of = _pick("bestOf", base.best_of)
    if best_of % 2 == 0:
        raise ValueError("bestOf must be odd")

    return VolleyballRules(
        points_to=_pick("pointsTo", base.points_to),
        deciding_points_to=_pick("decidingPointsTo", base.deciding_points_to),
        win_by=_pick("winBy", base.win_by),
        best_of=best_of,
        timeouts_per_set=_pick("timeoutsPerSet", base.timeouts_per_set),
        max_substitutions_per_set=_pick(
            "maxSubstitutions", base.max_substitutions_per_set
        ),
    )


def set_winner(
    home: int, away: int, set_number: int, rules: VolleyballRules
) -> Optional[str]:
    """Return the side that has won the set, or ``None`` while it is live."""

    target = rules.target_for_set(set_number)
    if home >= target and home - away >= rules.win_by:
        return HOME
    if away >= target and away - home >= rules.win_by:
        return AWAY
    return None


def match_winner(
    sets_home: int, sets_away: int, rules: VolleyballRules
) -> Optional[str]:
    if sets_home >= rules.sets_needed:
        return HOME
    if sets_away >= rules.sets_needed:
        return AWAY
    return None
