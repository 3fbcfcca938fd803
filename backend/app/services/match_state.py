"""Derived match state: a pure fold over the match event log.

``compute_derived_state`` replays every event from the start. Nothing is
patched incrementally, so replaying the same log always gives the same state
and dropping the last event gives exactly the state before it was appended.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from ..scoring.volleyball import (
    AWAY,
    HOME,
    VolleyballRules,
    default_rules,
    match_winner,
    other,
    set_winner,
)
from .lineup import PlayerV2, libero_slot, position_of, roster_index, rotate_lineup
from .match_events import (
    EventType,
    LineupPayload,
    MatchEvent,
    PointPayload,
    ServiceChoicePayload,
    SetBoundaryPayload,
    SubstitutionPayload,
    TimeoutPayload,
)
from .substitutions import SetSubstitutions, record_substitution

logger = logging.getLogger(__name__)

OUR = "our"
OPPONENT = "opponent"


@dataclass(frozen=True)
class SetScore:
    set_number: int
    home: int
    away: int
    winner: str


@dataclass(frozen=True)
class DerivedMatchState:
    our_side: str = HOME
    current_set: int = 1
    home_score: int = 0
    away_score: int = 0
    set_scores: Tuple[SetScore, ...] = ()
    sets_won_home: int = 0
    sets_won_away: int = 0
    serving_side: str = OUR
    first_server: str = OUR
    lineup: Dict[int, str] = field(default_factory=dict)
    current_libero_id: Optional[str] = None
    libero_position: Optional[int] = None
    timeouts_home: int = 0
    timeouts_away: int = 0
    substitutions: SetSubstitutions = field(default_factory=SetSubstitutions)
    is_set_finished: bool = False
    is_match_finished: bool = False
    has_lineup_for_current_set: bool = False
    set_summary_modal_open: bool = False
    reception_evaluated: bool = False
    winner: Optional[str] = None
    event_count: int = 0

    @property
    def opponent_side(self) -> str:
        return other(self.our_side)

    @property
    def is_serving(self) -> bool:
        return self.serving_side == OUR

    @property
    def is_receiving(self) -> bool:
        return self.serving_side == OPPONENT

    @property
    def our_score(self) -> int:
        return self.home_score if self.our_side == HOME else self.away_score

    @property
    def opponent_score(self) -> int:
        return self.away_score if self.our_side == HOME else self.home_score

    def timeouts_for(self, side: str) -> int:
        return self.timeouts_home if side == HOME else self.timeouts_away

    def side_of(self, who: str) -> str:
        """Translate ``our``/``opponent`` into ``home``/``away``."""

        return self.our_side if who == OUR else self.opponent_side


def initial_state(our_side: str = HOME) -> DerivedMatchState:
    if our_side not in (HOME, AWAY):
        raise ValueError("our_side must be 'home' or 'away'")
    return DerivedMatchState(our_side=our_side)


def other_server(side: str) -> str:
    return OPPONENT if side == OUR else OUR


def _matches_current_set(set_number: Optional[int], state: DerivedMatchState) -> bool:
    return set_number is None or set_number == state.current_set


def _apply_point(
    state: DerivedMatchState, event_type: EventType, rules: VolleyballRules
) -> DerivedMatchState:
    if state.is_set_finished or state.is_match_finished:
        return state

    scorer = OUR if event_type is EventType.POINT_US else OPPONENT
    lineup = state.lineup
    if scorer == OUR and state.serving_side == OPPONENT:
        # Side-out: our team rotates before serving.
        lineup = rotate_lineup(lineup)

    side = state.side_of(scorer)
    home = state.home_score + (1 if side == HOME else 0)
    away = state.away_score + (1 if side == AWAY else 0)
    state = replace(
        state,
        home_score=home,
        away_score=away,
        serving_side=scorer,
        lineup=lineup,
        reception_evaluated=False,
    )

    won_by = set_winner(home, away, state.current_set, rules)
    if won_by is None:
        return state

    sets_home = state.sets_won_home + (1 if won_by == HOME else 0)
    sets_away = state.sets_won_away + (1 if won_by == AWAY else 0)
    winner = match_winner(sets_home, sets_away, rules)
    return replace(
        state,
        set_scores=state.set_scores + (SetScore(state.current_set, home, away, won_by),),
        sets_won_home=sets_home,
        sets_won_away=sets_away,
        is_set_finished=True,
        set_summary_modal_open=True,
        is_match_finished=winner is not None,
        winner=winner,
    )


def _apply_set_start(state: DerivedMatchState, payload: SetBoundaryPayload) -> DerivedMatchState:
    if state.is_match_finished:
        return state
    set_number = payload.set_number
    if set_number is None:
        played = state.home_score or state.away_score or state.is_set_finished
        set_number = state.current_set + 1 if played else state.current_set
    if set_number == state.current_set and not state.is_set_finished:
        # Explicit start of the set already in progress (e.g. set 1).
        return replace(state, set_summary_modal_open=False)
    first_server = other_server(state.first_server) if set_number > 1 else OUR
    return replace(
        state,
        current_set=set_number,
        home_score=0,
        away_score=0,
        serving_side=first_server,
        first_server=first_server,
        lineup={},
        current_libero_id=None,
        libero_position=None,
        timeouts_home=0,
        timeouts_away=0,
        substitutions=SetSubstitutions(set_number=set_number),
        is_set_finished=False,
        has_lineup_for_current_set=False,
        set_summary_modal_open=False,
        reception_evaluated=False,
    )


def _apply_service_choice(
    state: DerivedMatchState, payload: ServiceChoicePayload
) -> DerivedMatchState:
    if not _matches_current_set(payload.set_number, state):
        return state
    if state.home_score or state.away_score:
        return state
    return replace(state, serving_side=payload.serving_side, first_server=payload.serving_side)


def _apply_lineup(state: DerivedMatchState, payload: LineupPayload) -> DerivedMatchState:
    if not _matches_current_set(payload.set_number, state) or not payload.lineup:
        return state
    return replace(
        state,
        lineup=dict(payload.lineup),
        current_libero_id=payload.libero_id,
        libero_position=None,
        has_lineup_for_current_set=True,
    )


def _apply_substitution(
    state: DerivedMatchState, payload: SubstitutionPayload
) -> DerivedMatchState:
    if payload.is_libero_swap:
        if state.current_libero_id in (None, payload.player_out_id):
            return replace(state, current_libero_id=payload.player_in_id)
        return state

    position = position_of(state.lineup, payload.player_out_id)
    if position is None:
        return state
    lineup = dict(state.lineup)
    lineup[position] = payload.player_in_id
    return replace(
        state,
        lineup=lineup,
        substitutions=record_substitution(
            state.substitutions, payload.player_out_id, payload.player_in_id
        ),
    )


def _apply_timeout(state: DerivedMatchState, payload: TimeoutPayload) -> DerivedMatchState:
    if not _matches_current_set(payload.set_number, state):
        return state
    if payload.side == HOME:
        return replace(state, timeouts_home=state.timeouts_home + 1)
    return replace(state, timeouts_away=state.timeouts_away + 1)


def apply_event(
    state: DerivedMatchState,
    event: MatchEvent,
    rules: Optional[VolleyballRules] = None,
) -> DerivedMatchState:
    """Apply a single event. Events that cannot be interpreted are skipped."""

    rules = rules or default_rules()
    state = replace(state, event_count=state.event_count + 1)
    if not event.is_known:
        logger.debug("Skipping event %s of type %r", event.id, event.type)
        return state

    payload = event.payload
    event_type = event.type
    if event_type in (EventType.POINT_US, EventType.POINT_OPPONENT):
        assert isinstance(payload, PointPayload)
        return _apply_point(state, event_type, rules)
    if event_type is EventType.SET_START:
        assert isinstance(payload, SetBoundaryPayload)
        return _apply_set_start(state, payload)
    if event_type is EventType.SET_END:
        return replace(state, set_summary_modal_open=False)
    if event_type is EventType.SET_SERVICE_CHOICE:
        assert isinstance(payload, ServiceChoicePayload)
        return _apply_service_choice(state, payload)
    if event_type is EventType.SET_LINEUP:
        assert isinstance(payload, LineupPayload)
        return _apply_lineup(state, payload)
    if event_type is EventType.SUBSTITUTION:
        assert isinstance(payload, SubstitutionPayload)
        return _apply_substitution(state, payload)
    if event_type is EventType.TIMEOUT:
        assert isinstance(payload, TimeoutPayload)
        return _apply_timeout(state, payload)
    if event_type is EventType.RECEPTION_EVAL:
        if state.is_set_finished or state.is_match_finished:
            return state
        return replace(state, reception_evaluated=True)
    # Freeballs do not change the projection.
    return state


def _track_libero(
    state: DerivedMatchState, roster_by_id: Mapping[str, PlayerV2]
) -> DerivedMatchState:
    if state.is_serving or not state.current_libero_id:
        position = None
    else:
        position = libero_slot(state.lineup, roster_by_id, state.libero_position)
    if position == state.libero_position:
        return state
    return replace(state, libero_position=position)


def compute_derived_state(
    events: Iterable[MatchEvent],
    our_side: str = HOME,
    rules: Optional[VolleyballRules] = None,
    roster: Optional[Sequence[PlayerV2]] = None,
) -> DerivedMatchState:
    """Fold the full event log into a :class:`DerivedMatchState`.

    ``roster`` is optional; when given, the position the libero most recently
    entered is tracked so the lineup resolver can keep the libero in place
    while several back-row positions qualify.
    """

    rules = rules or default_rules()
    roster_by_id = roster_index(roster or [])
    state = initial_state(our_side)
    for event in events:
        state = apply_event(state, event, rules)
        if roster_by_id:
            state = _track_libero(state, roster_by_id)
    return state


def result_summary(state: DerivedMatchState) -> str:
    """Human-readable result, e.g. ``Sets: 3-1 (25-20, 23-25, 25-18, 25-22)``."""

    sets_won = f"{state.sets_won_home}-{state.sets_won_away}"
    scores = [f"{s.home}-{s.away}" for s in state.set_scores]
    if not state.is_set_finished and (state.home_score or state.away_score):
        scores.append(f"{state.home_score}-{state.away_score}")
    return f"Sets: {sets_won} ({', '.join(scores)})"


def match_status(state: DerivedMatchState) -> str:
    return "finished" if state.is_match_finished else "in_progress"
