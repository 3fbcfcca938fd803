"""Court lineup helpers: rotation, libero replacement and the bench pool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

LIBERO_ROLES = {"L", "LIBERO", "LÍBERO"}
MIDDLE_BLOCKER_ROLES = {"MB", "C"}

# Back-row positions ordered from the one entered most recently (P1) to the
# one entered earliest (P5).
BACK_ROW_BY_RECENCY = (1, 6, 5)


@dataclass(frozen=True)
class PlayerV2:
    id: str
    number: Optional[int] = None
    name: str = ""
    role: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.nickname:
            return self.nickname
        if self.name:
            return self.name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.id


@dataclass(frozen=True)
class OnCourtPlayer:
    position: int
    player: PlayerV2


def _role(player: Optional[PlayerV2]) -> str:
    if player is None or not player.role:
        return ""
    return player.role.strip().upper()


def is_libero(player: Optional[PlayerV2]) -> bool:
    return _role(player) in LIBERO_ROLES


def is_middle_blocker(player: Optional[PlayerV2]) -> bool:
    return _role(player) in MIDDLE_BLOCKER_ROLES


def is_valid_substitution(player_out: PlayerV2, player_in: PlayerV2) -> bool:
    """Only field<->field or libero<->libero swaps are allowed."""

    return is_libero(player_out) == is_libero(player_in)


def rotate_lineup(lineup: Mapping[int, str]) -> Dict[int, str]:
    """Rotate clockwise: the player at P2 moves to P1, P1 moves to P6."""

    if len(lineup) != 6:
        return dict(lineup)
    return {pos: lineup[pos % 6 + 1] for pos in range(1, 7)}


def roster_index(roster: Iterable[PlayerV2]) -> Dict[str, PlayerV2]:
    return {p.id: p for p in roster}


def libero_slot(
    lineup: Mapping[int, str],
    roster_by_id: Mapping[str, PlayerV2],
    preferred: Optional[int] = None,
) -> Optional[int]:
    """Return the back-row position the libero should take, if any.

    Only middle blockers in the back row qualify. When more than one does,
    ``preferred`` (the position the libero most recently entered) wins, then
    the most recently rotated-in back-row position.
    """

    candidates = [
        pos
        for pos in BACK_ROW_BY_RECENCY
        if is_middle_blocker(roster_by_id.get(lineup.get(pos, "")))
    ]
    if not candidates:
        return None
    if preferred in candidates:
        return preferred
    return candidates[0]


def effective_lineup(
    lineup: Mapping[int, str],
    libero_id: Optional[str],
    is_serving: bool,
    roster: Sequence[PlayerV2],
    libero_position: Optional[int] = None,
) -> List[OnCourtPlayer]:
    """Return who is actually on court right now.

    While serving the base rotation is returned unchanged. While receiving the
    libero replaces one back-row middle blocker. The substitution is computed
    on every call and never stored.
    """

    by_id = roster_index(roster)
    effective: Dict[int, str] = dict(lineup)

    libero = by_id.get(libero_id or "")
    if (
        not is_serving
        and libero is not None
        and is_libero(libero)
        and libero.id not in lineup.values()
    ):
        slot = libero_slot(lineup, by_id, libero_position)
        if slot is not None:
            effective[slot] = libero.id

    court: List[OnCourtPlayer] = []
    for pos in sorted(effective):
        player = by_id.get(effective[pos])
        if player is not None:
            court.append(OnCourtPlayer(position=pos, player=player))
    return court


def bench_players(
    lineup: Mapping[int, str],
    libero_id: Optional[str],
    roster: Sequence[PlayerV2],
) -> List[PlayerV2]:
    """Roster players neither in the base rotation nor the active libero."""

    on_court = set(lineup.values())
    if libero_id:
        on_court.add(libero_id)
    return [p for p in roster if p.id not in on_court]


def position_of(lineup: Mapping[int, str], player_id: str) -> Optional[int]:
    for pos, pid in lineup.items():
        if pid == player_id:
            return pos
    return None
