"""Event-log builders shared by the live scouting tests."""

import itertools

from app.scoring.volleyball import AWAY, HOME, default_rules, other
from app.services.lineup import PlayerV2
from app.services.match_events import (
    EventType,
    LineupPayload,
    PointPayload,
    ReceptionPayload,
    ServiceChoicePayload,
    SetBoundaryPayload,
    SubstitutionPayload,
    TimeoutPayload,
    new_event,
)

_ids = itertools.count(1)

ROSTER = [
    PlayerV2("p1", 1, "Setter", "S"),
    PlayerV2("p2", 2, "Outside A", "OH"),
    PlayerV2("p3", 3, "Middle A", "MB"),
    PlayerV2("p4", 4, "Opposite", "OP"),
    PlayerV2("p5", 5, "Outside B", "OH"),
    PlayerV2("p6", 6, "Middle B", "MB"),
    PlayerV2("p7", 7, "Outside C", "OH"),
    PlayerV2("p8", 8, "Middle C", "MB"),
    PlayerV2("L1", 10, "Libero A", "L"),
    PlayerV2("L2", 11, "Libero B", "L"),
]

LINEUP = {1: "p1", 2: "p2", 3: "p3", 4: "p4", 5: "p5", 6: "p6"}


def _event(event_type, payload):
    return new_event(
        event_type,
        payload,
        event_id=f"e{next(_ids)}",
        timestamp="2024-05-01T10:00:00Z",
    )


def point_us(reason=None, player_id=None):
    return _event(EventType.POINT_US, PointPayload(reason, player_id))


def point_opponent(reason=None, player_id=None):
    return _event(EventType.POINT_OPPONENT, PointPayload(reason, player_id))


def reception(player_id, value):
    return _event(EventType.RECEPTION_EVAL, ReceptionPayload(player_id, value))


def set_start(set_number=None):
    return _event(EventType.SET_START, SetBoundaryPayload(set_number=set_number))


def set_end(set_number, home, away):
    return _event(EventType.SET_END, SetBoundaryPayload(set_number, home, away))


def lineup(set_number=1, starters=None, libero_id="L1"):
    return _event(
        EventType.SET_LINEUP,
        LineupPayload(set_number, dict(starters or LINEUP), libero_id),
    )


def service_choice(serving_side, set_number=1):
    return _event(EventType.SET_SERVICE_CHOICE, ServiceChoicePayload(set_number, serving_side))


def substitution(out_id, in_id, set_number=1, libero=False):
    return _event(
        EventType.SUBSTITUTION,
        SubstitutionPayload(
            player_out_id=out_id,
            player_in_id=in_id,
            set_number=set_number,
            is_libero_swap=libero,
        ),
    )


def timeout(side, set_number=1):
    return _event(EventType.TIMEOUT, TimeoutPayload(side, set_number))


def rallies(home, away, our_side=HOME):
    """Point events reaching ``home``-``away`` without finishing the set early."""

    winner = HOME if home >= away else AWAY
    loser = AWAY if winner == HOME else HOME
    sides = [winner, loser] * min(home, away) + [winner] * abs(home - away)
    return [point_us() if side == our_side else point_opponent() for side in sides]


def played_set(set_number, home, away, our_side=HOME, acknowledged=True):
    """A full set: start, lineup, rallies and (optionally) the closing SET_END."""

    events = [set_start(set_number), lineup(set_number)]
    events += rallies(home, away, our_side)
    if acknowledged:
        events.append(set_end(set_number, home, away))
    return events


def rally_winners(set_scores, rules=None):
    """Rally winners (``home``/``away``) reaching each finished set score.

    Points alternate until the loser's total is reached so the set never ends
    early, then the winner takes the remaining rallies.
    """

    rules = rules or default_rules()
    sets = []
    for index, (home, away) in enumerate(set_scores, start=1):
        if home == away:
            raise ValueError("sets cannot be tied")
        winner = HOME if home > away else AWAY
        win_points, lose_points = max(home, away), min(home, away)
        target = rules.target_for_set(index)
        if win_points < target or win_points - lose_points < rules.win_by:
            raise ValueError(f"set {index} score {home}-{away} is not a finished set")
        if win_points > target and win_points - lose_points != rules.win_by:
            raise ValueError(f"set {index} score {home}-{away} went past the finish")
        rallies = [winner, other(winner)] * lose_points
        rallies += [winner] * (win_points - lose_points)
        sets.append(rallies)
    return sets
