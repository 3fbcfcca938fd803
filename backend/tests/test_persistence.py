import logging

import pytest
from sqlalchemy.exc import OperationalError

from app import db
from app.exceptions import ConvocationRequired, MatchNotFound
from app.models import Match, MatchConvocation, Player, RuleSet, Team
from app.services import persistence
from app.services.live_session import MatchResult
from app.services.match_events import events_to_dicts

from match_builders import lineup, point_us, set_start


async def _seed(actions=(), convoked=("a", "b", "c"), ruleset=None, best_of=None):
    async with db.AsyncSessionLocal() as session:
        session.add(Team(id="t1", name="Falcons"))
        if ruleset is not None:
            session.add(RuleSet(id="r1", name="Youth", config=ruleset))
        session.add_all(
            [
                Player(id="a", team_id="t1", name="Ana", number=9, role="OH"),
                Player(id="b", team_id="t1", name="Bea", number=2, role="S"),
                Player(id="c", team_id="t1", name="Cris", number=5, role="L"),
                Player(id="d", team_id="t1", name="Dani", number=1, role="MB"),
            ]
        )
        session.add(
            Match(
                id="m1",
                team_id="t1",
                ruleset_id="r1" if ruleset is not None else None,
                opponent_name="Hawks",
                best_of=best_of,
                actions=events_to_dicts(actions),
            )
        )
        await session.flush()
        for pid in convoked:
            session.add(MatchConvocation(id=f"mc-{pid}", match_id="m1", player_id=pid))
        await session.commit()


@pytest.mark.anyio
async def test_available_players_are_convoked_and_ordered():
    await _seed()

    async with db.AsyncSessionLocal() as session:
        players = await persistence.get_available_players(session, "m1")

    assert [p.id for p in players] == ["b", "c", "a"]
    assert players[1].role == "L"


@pytest.mark.anyio
async def test_unknown_match_raises():
    await _seed()

    async with db.AsyncSessionLocal() as session:
        with pytest.raises(MatchNotFound):
            await persistence.get_match(session, "missing")


@pytest.mark.anyio
async def test_lineup_for_set_reads_stored_log():
    starters = {1: "a", 2: "b", 3: "d", 4: "x", 5: "y", 6: "z"}
    await _seed(actions=[set_start(1), lineup(1, {1: "q"}), lineup(1, starters), point_us()])

    async with db.AsyncSessionLocal() as session:
        assert await persistence.get_lineup_for_set(session, "m1", 1) == starters
        assert await persistence.get_lineup_for_set(session, "m1", 2) is None


@pytest.mark.anyio
async def test_rules_merge_ruleset_and_best_of():
    await _seed(ruleset={"pointsTo": 21, "bestOf": 5}, best_of=3)

    async with db.AsyncSessionLocal() as session:
        match = await persistence.get_match(session, "m1")
        rules = await persistence.get_rules(session, match)

    assert rules.points_to == 21
    assert rules.best_of == 5


@pytest.mark.anyio
async def test_sync_writes_actions_status_and_result():
    await _seed()
    result = MatchResult(
        actions=events_to_dicts([point_us()]),
        status="finished",
        result="Sets: 3-0 (25-10, 25-11, 25-12)",
    )

    async with db.AsyncSessionLocal() as session:
        assert await persistence.sync_match_result(session, "m1", result) is None

    async with db.AsyncSessionLocal() as session:
        match = await persistence.get_match(session, "m1")
    assert match.status == "finished"
    assert match.result == result.result
    assert match.actions == result.actions
    assert match.updated_at is not None


@pytest.mark.anyio
async def test_sync_failure_is_reported_not_raised(monkeypatch, caplog):
    await _seed()
    result = MatchResult(actions=[], status="finished", result="Sets: 0-0 ()")

    async with db.AsyncSessionLocal() as session:
        async def broken_commit():
            raise OperationalError("UPDATE match", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "commit", broken_commit)
        with caplog.at_level(logging.ERROR):
            error = await persistence.sync_match_result(session, "m1", result)

    assert error == "could not save match: OperationalError"
    assert "Failed to persist match m1" in caplog.text


@pytest.mark.anyio
async def test_load_session_requires_convocation_for_fresh_match():
    await _seed(convoked=())

    async with db.AsyncSessionLocal() as session:
        with pytest.raises(ConvocationRequired):
            await persistence.load_match_session(session, "m1")


@pytest.mark.anyio
async def test_load_session_replays_stored_log():
    await _seed(actions=[set_start(1), point_us(), point_us()], convoked=())

    async with db.AsyncSessionLocal() as session:
        live = await persistence.load_match_session(session, "m1")

    assert live.state.home_score == 2
    assert live.players == []
    assert len(live.events) == 3
