"""Per-set substitution bookkeeping.

A starter who leaves the court forms a pair with the player who replaced
them. The pair can be used twice per set: once out, once back in the reverse
direction. Each team has a limited number of substitutions per set. Libero
swaps are not counted here. Several substitutions made at one stoppage are
validated together as a batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Sequence, Tuple

MAX_PAIR_USES = 2


@dataclass(frozen=True)
class SubstitutionPair:
    starter_id: str
    substitute_id: str
    uses: int = 1

    def involves(self, player_id: str) -> bool:
        return player_id in (self.starter_id, self.substitute_id)


@dataclass(frozen=True)
class SetSubstitutions:
    set_number: int = 1
    total: int = 0
    pairs: Tuple[SubstitutionPair, ...] = field(default_factory=tuple)

    def pair_for(self, player_id: str) -> Optional[SubstitutionPair]:
        for pair in self.pairs:
            if pair.involves(player_id):
                return pair
        return None


def record_substitution(
    subs: SetSubstitutions, player_out_id: str, player_in_id: str
) -> SetSubstitutions:
    pair = subs.pair_for(player_out_id)
    if pair is not None and pair.involves(player_in_id):
        pairs = tuple(
            replace(p, uses=p.uses + 1) if p is pair else p for p in subs.pairs
        )
    else:
        pairs = subs.pairs + (SubstitutionPair(player_out_id, player_in_id),)
    return replace(subs, total=subs.total + 1, pairs=pairs)


def validate_substitution(
    subs: SetSubstitutions,
    player_out_id: str,
    player_in_id: str,
    lineup: Mapping[int, str],
    max_per_set: int = 6,
) -> Optional[str]:
    """Return the reason a substitution is not allowed, or ``None``."""

    if player_out_id == player_in_id:
        return "a player cannot replace themselves"
    on_court = set(lineup.values())
    if player_out_id not in on_court:
        return "the outgoing player is not on court"
    if player_in_id in on_court:
        return "the incoming player is already on court"
    if subs.total >= max_per_set:
        return f"substitution limit of {max_per_set} per set reached"

    pair_out = subs.pair_for(player_out_id)
    pair_in = subs.pair_for(player_in_id)
    if pair_out is None and pair_in is None:
        return None
    if pair_out is None or pair_in is None or pair_out is not pair_in:
        return "one of the players is already paired with someone else"
    if pair_out.uses >= MAX_PAIR_USES:
        return "this pair has used both of its substitutions this set"
    if not (
        pair_out.substitute_id == player_out_id and pair_out.starter_id == player_in_id
    ):
        return "the starter must come back in place of the same substitute"
    return None


@dataclass(frozen=True)
class PlannedSubstitution:
    player_out_id: str
    player_in_id: str


@dataclass(frozen=True)
class SimulatedSubstitutions:
    lineup: Dict[int, str]
    substitutions: SetSubstitutions


def simulate_planned_substitutions(
    lineup: Mapping[int, str],
    subs: SetSubstitutions,
    planned: Sequence[PlannedSubstitution],
) -> SimulatedSubstitutions:
    """Court and pair bookkeeping after applying ``planned`` in order.

    Nothing is validated; a swap whose outgoing player is not on court only
    updates the pairs.
    """

    court = dict(lineup)
    for sub in planned:
        for position, player_id in court.items():
            if player_id == sub.player_out_id:
                court[position] = sub.player_in_id
                break
        subs = record_substitution(subs, sub.player_out_id, sub.player_in_id)
    return SimulatedSubstitutions(lineup=court, substitutions=subs)


def is_player_in_batch(planned: Sequence[PlannedSubstitution], player_id: str) -> bool:
    return any(player_id in (s.player_out_id, s.player_in_id) for s in planned)


def validate_batch(
    subs: SetSubstitutions,
    planned: Sequence[PlannedSubstitution],
    lineup: Mapping[int, str],
    max_per_set: int = 6,
) -> Optional[str]:
    """Return the reason a batch of substitutions is not allowed, or ``None``.

    Each swap is checked against the court and pairs as they stand after the
    swaps listed before it. A player may appear only once per batch.
    """

    if not planned:
        return "a substitution batch needs at least one substitution"
    for index, sub in enumerate(planned):
        earlier = planned[:index]
        if is_player_in_batch(earlier, sub.player_out_id) or is_player_in_batch(
            earlier, sub.player_in_id
        ):
            return f"substitution {index + 1}: a player can only appear once in a batch"
        simulated = simulate_planned_substitutions(lineup, subs, earlier)
        reason = validate_substitution(
            simulated.substitutions,
            sub.player_out_id,
            sub.player_in_id,
            simulated.lineup,
            max_per_set,
        )
        if reason is not None:
            return f"substitution {index + 1}: {reason}"
    return None
