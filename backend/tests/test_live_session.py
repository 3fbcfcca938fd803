import asyncio

import pytest

from app.exceptions import (
    InvalidCommand,
    InvalidSubstitution,
    LineupInvalid,
    LineupRequired,
    MatchFinished,
    NothingToUndo,
    PlayerNotFound,
    PromptBlocked,
    SetFinished,
    TimeoutLimitReached,
)
from app.scoring.volleyball import VolleyballRules
from app.services.live_session import MatchSession, SessionRegistry
from app.services.match_events import EventType
from app.services.match_flow import Prompt
from app.services.match_state import OPPONENT, OUR

from match_builders import LINEUP, ROSTER, played_set


def _session(rules=None, players=ROSTER, events=()):
    return MatchSession("m1", players=players, events=events, rules=rules)


def _started(server=OUR, **kwargs):
    session = _session(**kwargs)
    session.set_lineup(LINEUP, "L1", server)
    return session


def _win_set(session):
    for _ in range(25):
        session.point_us()


def test_new_session_asks_for_starters_and_blocks_rallies():
    session = _session()

    assert session.prompt is Prompt.STARTERS_PROMPT
    with pytest.raises(LineupRequired):
        session.point_us()


def test_dismissing_starters_prompt():
    session = _session()

    session.dismiss_prompt()

    assert session.prompt is Prompt.NONE


def test_reenter_brings_back_a_dismissed_starters_prompt():
    session = _session()
    session.dismiss_prompt()

    assert session.reenter() is Prompt.STARTERS_PROMPT
    assert session.prompt is Prompt.STARTERS_PROMPT


def test_reenter_closes_open_prompts_but_keeps_the_set_summary():
    session = _started()
    session.open_substitution()
    assert session.prompt is Prompt.SUBSTITUTION_PROMPT

    assert session.reenter() is Prompt.NONE

    _win_set(session)
    assert session.reenter() is Prompt.SET_SUMMARY_PROMPT


def test_first_lineup_starts_set_one_with_service_choice():
    session = _session()

    appended = session.set_lineup(LINEUP, "L1", OUR)

    assert [e.type for e in appended] == [
        EventType.SET_START,
        EventType.SET_SERVICE_CHOICE,
        EventType.SET_LINEUP,
    ]
    assert session.state.has_lineup_for_current_set
    assert session.prompt is Prompt.NONE


@pytest.mark.parametrize(
    "starters, libero, server, error",
    [
        ({1: "p1", 2: "p2", 3: "p3", 4: "p4", 5: "p5"}, "L1", OUR, LineupInvalid),
        ({**LINEUP, 6: "p1"}, "L1", OUR, LineupInvalid),
        ({**LINEUP, 6: "L2"}, "L1", OUR, LineupInvalid),
        (LINEUP, "p7", OUR, LineupInvalid),
        (LINEUP, "L1", None, LineupInvalid),
        ({**LINEUP, 6: "ghost"}, "L1", OUR, PlayerNotFound),
        (LINEUP, "L1", "both", InvalidCommand),
    ],
)
def test_invalid_lineups_are_rejected(starters, libero, server, error):
    session = _session()

    with pytest.raises(error):
        session.set_lineup(starters, libero, server)

    assert session.events == []


def test_lineup_cannot_change_after_first_point():
    session = _started()
    session.point_us()

    with pytest.raises(LineupInvalid):
        session.set_lineup(LINEUP, "L1", OUR)


def test_each_rally_command_appends_one_event():
    session = _started()
    before = len(session.events)

    assert len(session.point_us("attack_point", "p2")) == 1
    assert len(session.point_opponent("attack")) == 1
    assert len(session.freeball_sent()) == 1
    assert len(session.freeball_received("p5")) == 1
    assert len(session.timeout("home")) == 1
    assert len(session.events) == before + 5


def test_unknown_player_is_rejected():
    session = _started()

    with pytest.raises(PlayerNotFound):
        session.point_us("attack_point", "ghost")
    with pytest.raises(PlayerNotFound):
        session.freeball_received("ghost")


def test_reception_flow_while_receiving():
    session = _started(server=OPPONENT)
    assert session.prompt is Prompt.RECEPTION_PROMPT

    assert len(session.reception_eval("p2", 3)) == 1
    assert session.prompt is Prompt.NONE

    session.point_opponent()
    assert session.prompt is Prompt.RECEPTION_PROMPT

    appended = session.reception_eval("p5", 0)
    assert [e.type for e in appended] == [EventType.RECEPTION_EVAL, EventType.POINT_OPPONENT]
    assert session.state.opponent_score == 2
    assert session.prompt is Prompt.RECEPTION_PROMPT

    with pytest.raises(InvalidCommand):
        session.reception_eval("p5", 5)


def test_undoing_a_reception_rating_reopens_the_prompt():
    session = _started(server=OPPONENT)
    session.reception_eval("p2", 3)
    assert session.prompt is Prompt.NONE

    session.undo()
    assert session.prompt is Prompt.RECEPTION_PROMPT

    session.redo()
    assert session.prompt is Prompt.NONE


def test_reception_cannot_be_rated_while_serving():
    session = _started(server=OUR)

    with pytest.raises(InvalidCommand):
        session.reception_eval("p2", 0)

    assert session.state.opponent_score == 0
    assert len(session.events) == 3


def test_timeout_cap_per_side():
    session = _started()
    session.timeout(OUR)
    session.timeout("home")

    with pytest.raises(TimeoutLimitReached) as exc:
        session.timeout(OUR)

    assert exc.value.code == "timeout_limit_reached"
    assert session.state.timeouts_home == 2
    session.timeout(OPPONENT)
    assert session.state.timeouts_away == 1

    with pytest.raises(InvalidCommand):
        session.timeout("bench")


def test_field_substitution_and_bench():
    session = _started()

    session.substitution("p3", "p8")

    snap = session.snapshot()
    assert session.state.lineup[3] == "p8"
    assert "p3" in [p.id for p in snap.bench]
    with pytest.raises(InvalidSubstitution):
        session.substitution("p2", "p3")
    with pytest.raises(InvalidSubstitution):
        session.substitution("p2", "L2")


def test_substitution_batch_is_all_or_nothing():
    session = _started()

    appended = session.substitutions([("p3", "p8"), ("p2", "p7")])

    assert [e.payload.position for e in appended] == [3, 2]
    assert session.state.lineup[3] == "p8"
    assert session.state.lineup[2] == "p7"
    assert session.state.substitutions.total == 2

    before = len(session.events)
    with pytest.raises(InvalidSubstitution):
        session.substitutions([("p8", "p3"), ("p3", "p5")])
    with pytest.raises(InvalidSubstitution):
        session.substitutions([("p8", "p3"), ("p1", "L2")])
    with pytest.raises(PlayerNotFound):
        session.substitutions([("p8", "p3"), ("p1", "ghost")])
    assert len(session.events) == before
    assert session.state.lineup[3] == "p8"


def test_libero_swaps():
    session = _started()

    session.substitution("L1", "L2")
    assert session.state.current_libero_id == "L2"
    assert session.state.substitutions.total == 0

    session.libero_swap()
    assert session.state.current_libero_id == "L1"

    with pytest.raises(InvalidSubstitution):
        session.substitution("L2", "L1")


def test_libero_swap_needs_a_second_libero():
    session = _started(players=[p for p in ROSTER if p.id != "L2"])

    with pytest.raises(InvalidSubstitution):
        session.libero_swap()


def test_libero_leaves_court_when_we_serve():
    session = _started(server=OPPONENT)
    receiving = {c.position: c.player.id for c in session.snapshot().on_court}
    assert receiving[6] == "L1"

    session.point_us()

    serving = {c.position: c.player.id for c in session.snapshot().on_court}
    assert "L1" not in serving.values()
    assert serving[1] == "p2"


def test_undo_and_redo():
    session = _started()
    session.point_us()
    session.point_opponent()

    undone = session.undo()
    assert undone.type is EventType.POINT_OPPONENT
    assert session.state.away_score == 0
    assert session.snapshot().can_redo

    session.redo()
    assert session.state.away_score == 1

    session.undo()
    session.point_us()
    with pytest.raises(NothingToUndo):
        session.redo()


def test_undo_on_empty_log():
    with pytest.raises(NothingToUndo):
        _session().undo()


def test_set_summary_then_next_set():
    session = _started()
    _win_set(session)

    assert session.prompt is Prompt.SET_SUMMARY_PROMPT
    with pytest.raises(SetFinished):
        session.point_us()
    with pytest.raises(PromptBlocked):
        session.open_substitution()

    appended = session.acknowledge_set_summary()

    assert [e.type for e in appended] == [EventType.SET_END, EventType.SET_START]
    assert session.state.current_set == 2
    assert session.prompt is Prompt.STARTERS_PROMPT
    with pytest.raises(PromptBlocked):
        session.acknowledge_set_summary()


def test_undo_set_end_reopens_the_set():
    session = _started()
    _win_set(session)
    session.acknowledge_set_summary()
    count = len(session.events)

    removed = session.undo_set_end()

    assert [e.type for e in removed] == [EventType.POINT_US, EventType.SET_END, EventType.SET_START]
    assert len(session.events) == count - 3
    assert session.state.current_set == 1
    assert (session.state.home_score, session.state.away_score) == (24, 0)
    assert not session.state.is_set_finished
    assert session.prompt is Prompt.NONE

    session.point_us()
    assert session.prompt is Prompt.SET_SUMMARY_PROMPT


def test_undo_set_end_before_acknowledgement():
    session = _started()
    _win_set(session)

    session.undo_set_end()

    assert session.state.home_score == 24
    with pytest.raises(NothingToUndo):
        session.undo_set_end()


def test_finished_match_syncs_exactly_once():
    session = _started(rules=VolleyballRules(best_of=3))
    _win_set(session)
    assert session.pop_sync() is None
    session.acknowledge_set_summary()
    session.set_lineup(LINEUP, "L1")
    _win_set(session)

    result = session.pop_sync()
    assert result is not None
    assert result.status == "finished"
    assert result.result == "Sets: 2-0 (25-0, 25-0)"
    assert result.actions[-1]["type"] == "POINT_US"
    assert session.pop_sync() is None
    assert not session.is_complete

    session.acknowledge_set_summary()
    assert session.is_complete
    assert session.prompt is Prompt.MATCH_FINISHED_PROMPT
    assert session.pop_sync() is None
    with pytest.raises(MatchFinished):
        session.timeout("home")


def test_loading_finished_match_does_not_sync():
    events = played_set(1, 25, 20) + played_set(2, 25, 18) + played_set(3, 25, 10)

    session = _session(events=events)

    assert session.state.is_match_finished
    assert session.prompt is Prompt.MATCH_FINISHED_PROMPT
    assert session.pop_sync() is None
    assert session.match_result().status == "finished"


def test_replace_players_updates_bench():
    session = _started()

    session.replace_players([p for p in ROSTER if p.id != "p8"])

    assert "p8" not in [p.id for p in session.snapshot().bench]


@pytest.mark.anyio
async def test_registry_loads_each_match_once():
    registry = SessionRegistry()
    calls = []

    async def loader():
        calls.append(1)
        await asyncio.sleep(0)
        return _session()

    first, second = await asyncio.gather(
        registry.get_or_load("m1", loader), registry.get_or_load("m1", loader)
    )

    assert first is second
    assert calls == [1]
    assert "m1" in registry and len(registry) == 1

    registry.discard("m1")
    assert registry.get("m1") is None
