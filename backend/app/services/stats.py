from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..scoring.volleyball import AWAY, HOME, VolleyballRules, default_rules, set_winner
from .lineup import PlayerV2
from .match_events import (
    POINT_TYPES,
    EventType,
    FreeballPayload,
    MatchEvent,
    PointPayload,
    ReceptionPayload,
    SetBoundaryPayload,
    SubstitutionPayload,
    TimeoutPayload,
    parse_timestamp,
)
from .match_state import OPPONENT, OUR

UNCLASSIFIED = "unclassified"

# reason -> (point type, side whose error gave the point away)
POINT_REASONS: Dict[str, Tuple[str, Optional[str]]] = {
    "serve_point": ("serve", None),
    "serve": ("serve", None),
    "attack_point": ("attack", None),
    "attack": ("attack", None),
    "block_point": ("block", None),
    "block": ("block", None),
    "attack_blocked": ("block", None),
    "opponent_point": ("opponent_point", None),
    "opponent_error": ("error", OPPONENT),
    "service_error": ("error", OUR),
    "attack_error": ("error", OUR),
    "block_error": ("error", OUR),
    "reception_error": ("error", OUR),
    "unforced_error": ("error", OUR),
}

REASON_LABELS = {
    "serve_point": "ace",
    "serve": "ace",
    "attack_point": "attack",
    "attack": "attack",
    "block_point": "block",
    "block": "block",
    "attack_blocked": "attack blocked",
    "opponent_point": "opponent point",
    "opponent_error": "opponent error",
    "service_error": "service error",
    "attack_error": "attack error",
    "block_error": "block error",
    "reception_error": "reception error",
    "unforced_error": "unforced error",
}


@dataclass(frozen=True)
class MatchStats:
    duration: str
    total_points_home: int
    total_points_away: int
    own_errors: int
    opponent_errors: int
    home_max_streak: int
    away_max_streak: int
    point_types: Dict[str, Dict[str, int]] = field(default_factory=dict)
    unclassified_points: int = 0


@dataclass(frozen=True)
class SetFlowData:
    set_number: int
    final_score_home: int
    final_score_away: int
    diff_series: List[int]
    max_abs_diff: int


@dataclass(frozen=True)
class SetSummary:
    set_number: int
    home: int
    away: int
    winner: Optional[str]
    stats: MatchStats


@dataclass(frozen=True)
class PlayerStats:
    player_id: str
    name: str
    points: int
    errors: int
    receptions: int
    reception_total: int
    participation: int

    @property
    def reception_average(self) -> float:
        return self.reception_total / self.receptions if self.receptions else 0.0


@dataclass(frozen=True)
class SubstitutionEntry:
    player_out_id: str
    player_in_id: str
    set_number: Optional[int]
    position: Optional[int]
    is_libero_swap: bool
    timestamp: str


@dataclass(frozen=True)
class TimeoutEntry:
    side: str
    set_number: int
    home: int
    away: int
    timestamp: str


@dataclass(frozen=True)
class ReceptionStats:
    player_id: str
    count: int
    total: int
    distribution: Dict[int, int]

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


def format_duration(seconds: float) -> str:
    minutes_total = max(int(seconds // 60), 0)
    hours, minutes = divmod(minutes_total, 60)
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"


def _duration(events: Sequence[MatchEvent]) -> str:
    if len(events) < 2:
        return "0m"
    start = parse_timestamp(events[0].timestamp)
    end = parse_timestamp(events[-1].timestamp)
    if start is None or end is None:
        return "0m"
    return format_duration((end - start).total_seconds())


def _point_side(event: MatchEvent, our_side: str) -> Optional[str]:
    """Return ``home``/``away`` for the side that won a point event."""

    if event.type is EventType.POINT_US:
        return our_side
    if event.type is EventType.POINT_OPPONENT:
        return AWAY if our_side == HOME else HOME
    return None


def classify_point(event: MatchEvent) -> Tuple[str, Optional[str]]:
    """Look up ``(point type, error side)`` for a point event.

    A reason whose error side would be the scoring team itself cannot be
    right, so it is reported as unclassified.
    """

    payload = event.payload
    reason = payload.reason if isinstance(payload, PointPayload) else None
    entry = POINT_REASONS.get((reason or "").lower())
    if entry is None:
        return UNCLASSIFIED, None
    scorer = OUR if event.type is EventType.POINT_US else OPPONENT
    point_type, error_side = entry
    if error_side == scorer:
        return UNCLASSIFIED, None
    return point_type, error_side


def calculate_match_stats(events: Sequence[MatchEvent], our_side: str = HOME) -> MatchStats:
    """Aggregate duration, points, errors and streaks for a list of events.

    Args:
        events: ordered match events; only point events affect the counts.
        our_side: ``"home"`` or ``"away"``.
    """
    totals = {HOME: 0, AWAY: 0}
    streak = {HOME: 0, AWAY: 0}
    best = {HOME: 0, AWAY: 0}
    errors = {OUR: 0, OPPONENT: 0}
    point_types: Dict[str, Dict[str, int]] = {OUR: defaultdict(int), OPPONENT: defaultdict(int)}
    unclassified = 0

    for event in events:
        side = _point_side(event, our_side)
        if side is None:
            continue
        loser = AWAY if side == HOME else HOME
        totals[side] += 1
        streak[side] += 1
        streak[loser] = 0
        best[side] = max(best[side], streak[side])

        scorer = OUR if side == our_side else OPPONENT
        point_type, error_side = classify_point(event)
        if point_type == UNCLASSIFIED:
            unclassified += 1
        point_types[scorer][point_type] += 1
        if error_side is not None:
            errors[error_side] += 1

    return MatchStats(
        duration=_duration(events),
        total_points_home=totals[HOME],
        total_points_away=totals[AWAY],
        own_errors=errors[OUR],
        opponent_errors=errors[OPPONENT],
        home_max_streak=best[HOME],
        away_max_streak=best[AWAY],
        point_types={k: dict(v) for k, v in point_types.items()},
        unclassified_points=unclassified,
    )


def events_by_set(events: Iterable[MatchEvent]) -> Dict[int, List[MatchEvent]]:
    """Split the log at ``SET_START`` boundaries.

    Events before the first ``SET_START`` belong to set 1. A ``SET_START``
    without a number opens the next set once the current one has points.
    """
    sets: Dict[int, List[MatchEvent]] = {}
    current = 1
    for event in events:
        if event.type is EventType.SET_START:
            payload = event.payload
            number = payload.set_number if isinstance(payload, SetBoundaryPayload) else None
            if number is None:
                played = any(e.type in POINT_TYPES for e in sets.get(current, ()))
                number = current + 1 if played else current
            current = number
        sets.setdefault(current, []).append(event)
    return sets


def calculate_game_flow(events: Sequence[MatchEvent], our_side: str = HOME) -> List[SetFlowData]:
    """Score differential (home minus away) after every rally, per set.

    Sets without points are left out.
    """
    flows: List[SetFlowData] = []
    for set_number, set_events in sorted(events_by_set(events).items()):
        home = away = 0
        series: List[int] = []
        for event in set_events:
            side = _point_side(event, our_side)
            if side is None:
                continue
            if side == HOME:
                home += 1
            else:
                away += 1
            series.append(home - away)
        if not series:
            continue
        flows.append(
            SetFlowData(
                set_number=set_number,
                final_score_home=home,
                final_score_away=away,
                diff_series=series,
                max_abs_diff=max(max(abs(d) for d in series), 1),
            )
        )
    return flows


def summarize_set(
    events: Sequence[MatchEvent],
    our_side: str,
    set_number: int,
    rules: Optional[VolleyballRules] = None,
) -> SetSummary:
    rules = rules or default_rules()
    set_events = events_by_set(events).get(set_number, [])
    stats = calculate_match_stats(set_events, our_side)
    home, away = stats.total_points_home, stats.total_points_away
    return SetSummary(
        set_number=set_number,
        home=home,
        away=away,
        winner=set_winner(home, away, set_number, rules),
        stats=stats,
    )


def summarize_sets(
    events: Sequence[MatchEvent],
    our_side: str = HOME,
    rules: Optional[VolleyballRules] = None,
) -> List[SetSummary]:
    return [
        summarize_set(events, our_side, n, rules)
        for n in sorted(events_by_set(events))
    ]


def reception_summary(events: Iterable[MatchEvent]) -> Dict[str, ReceptionStats]:
    """Per-player reception count, sum and 0-4 value distribution."""

    counts: Dict[str, int] = defaultdict(int)
    totals: Dict[str, int] = defaultdict(int)
    dist: Dict[str, Dict[int, int]] = defaultdict(lambda: defaultdict(int))
    for event in events:
        payload = event.payload
        if event.type is not EventType.RECEPTION_EVAL or not isinstance(payload, ReceptionPayload):
            continue
        counts[payload.player_id] += 1
        totals[payload.player_id] += payload.value
        dist[payload.player_id][payload.value] += 1
    return {
        pid: ReceptionStats(pid, counts[pid], totals[pid], dict(dist[pid]))
        for pid in counts
    }


def _event_player_id(event: MatchEvent) -> Optional[str]:
    payload = event.payload
    if isinstance(payload, (PointPayload, ReceptionPayload, FreeballPayload)):
        return payload.player_id
    return None


def player_stats(events: Iterable[MatchEvent], players: Sequence[PlayerV2]) -> List[PlayerStats]:
    """Per-player points won, errors, receptions and share of attributed events.

    A point counts as a player's error when its reason names an error on our
    side (see ``POINT_REASONS``). ``participation`` is the percentage of all
    events attributed to a roster player that name this player. Players with
    no attributed event are left out; the rest keep roster order.
    """

    known = {p.id for p in players}
    points: Dict[str, int] = defaultdict(int)
    errors: Dict[str, int] = defaultdict(int)
    receptions: Dict[str, int] = defaultdict(int)
    reception_totals: Dict[str, int] = defaultdict(int)
    involved: Dict[str, int] = defaultdict(int)

    for event in events:
        player_id = _event_player_id(event)
        if player_id not in known:
            continue
        involved[player_id] += 1
        if event.type is EventType.POINT_US:
            points[player_id] += 1
        elif event.type is EventType.POINT_OPPONENT:
            if classify_point(event)[1] == OUR:
                errors[player_id] += 1
        elif event.type is EventType.RECEPTION_EVAL:
            receptions[player_id] += 1
            reception_totals[player_id] += event.payload.value

    total = sum(involved.values())
    return [
        PlayerStats(
            player_id=p.id,
            name=p.display_name,
            points=points[p.id],
            errors=errors[p.id],
            receptions=receptions[p.id],
            reception_total=reception_totals[p.id],
            participation=round(involved[p.id] * 100 / total),
        )
        for p in players
        if involved.get(p.id)
    ]


def substitution_log(events: Iterable[MatchEvent]) -> List[SubstitutionEntry]:
    return [
        SubstitutionEntry(
            player_out_id=e.payload.player_out_id,
            player_in_id=e.payload.player_in_id,
            set_number=e.payload.set_number,
            position=e.payload.position,
            is_libero_swap=e.payload.is_libero_swap,
            timestamp=e.timestamp,
        )
        for e in events
        if e.type is EventType.SUBSTITUTION and isinstance(e.payload, SubstitutionPayload)
    ]


def timeout_log(events: Sequence[MatchEvent], our_side: str = HOME) -> List[TimeoutEntry]:
    """Every timeout with the set score at the moment it was called."""

    entries: List[TimeoutEntry] = []
    for set_number, set_events in sorted(events_by_set(events).items()):
        home = away = 0
        for event in set_events:
            side = _point_side(event, our_side)
            if side == HOME:
                home += 1
            elif side == AWAY:
                away += 1
            elif event.type is EventType.TIMEOUT and isinstance(event.payload, TimeoutPayload):
                entries.append(
                    TimeoutEntry(event.payload.side, set_number, home, away, event.timestamp)
                )
    return entries


def _player_label(player_id: Optional[str], players_by_id: Mapping[str, PlayerV2]) -> str:
    if not player_id:
        return ""
    player = players_by_id.get(player_id)
    if player is None:
        return player_id
    if player.number is not None:
        return f"#{player.number} {player.display_name}"
    return player.display_name


def describe_event(event: MatchEvent, players_by_id: Mapping[str, PlayerV2]) -> str:
    """Short timeline label for an event."""

    payload = event.payload
    if event.type in (EventType.POINT_US, EventType.POINT_OPPONENT):
        who = "Point us" if event.type is EventType.POINT_US else "Point opponent"
        reason = payload.reason if isinstance(payload, PointPayload) else None
        label = f"{who}: {REASON_LABELS.get(reason or '', reason or 'rally')}"
        player = _player_label(getattr(payload, "player_id", None), players_by_id)
        return f"{label} ({player})" if player else label
    if event.type is EventType.SUBSTITUTION and isinstance(payload, SubstitutionPayload):
        if payload.is_libero_swap:
            return "Libero swap"
        player_in = _player_label(payload.player_in_id, players_by_id)
        player_out = _player_label(payload.player_out_id, players_by_id)
        return f"Substitution: {player_in} for {player_out}"
    if event.type is EventType.SET_START and isinstance(payload, SetBoundaryPayload):
        return f"Set {payload.set_number} start" if payload.set_number else "Set start"
    if event.type is EventType.SET_END and isinstance(payload, SetBoundaryPayload):
        label = f"Set {payload.set_number} end" if payload.set_number else "Set end"
        if payload.home is not None and payload.away is not None:
            label += f" ({payload.home}-{payload.away})"
        return label
    if event.type is EventType.SET_LINEUP:
        return "Starting lineup"
    if event.type is EventType.RECEPTION_EVAL and isinstance(payload, ReceptionPayload):
        return f"Reception {payload.value}: {_player_label(payload.player_id, players_by_id)}"
    if event.type is EventType.FREEBALL_SENT:
        return "Freeball sent"
    if event.type is EventType.FREEBALL_RECEIVED:
        return "Freeball received"
    if event.type is EventType.TIMEOUT and isinstance(payload, TimeoutPayload):
        return f"Timeout {payload.side}"
    if event.type is EventType.SET_SERVICE_CHOICE:
        return "Service choice"
    return str(event.type.value if isinstance(event.type, EventType) else event.type)
