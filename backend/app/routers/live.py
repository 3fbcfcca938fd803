# backend/app/routers/live.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import MatchFinished, ProblemDetail, http_problem
from ..rate_limits import command_rate_limit, limiter
from ..schemas import (
    BenchPlayerOut,
    FreeballCommand,
    LiberoSwapCommand,
    LineupCommand,
    LiveCommand,
    LiveCommandIn,
    LiveMatchOut,
    LiveStateOut,
    MatchStatsOut,
    MatchStatsPageOut,
    OnCourtOut,
    PlayerStatsOut,
    PointCommand,
    ReceptionCommand,
    ReceptionOut,
    SetFlowOut,
    SetScoreOut,
    SetSummaryOut,
    SubstitutionBatchCommand,
    SubstitutionCommand,
    SubstitutionLogOut,
    TimelineEntryOut,
    TimeoutCommand,
    TimeoutLogOut,
)
from ..services.lineup import is_libero, roster_index
from ..services.live_session import MatchSession, SessionRegistry, SessionSnapshot
from ..services.match_events import MatchEvent, event_to_dict, events_from_dicts
from ..services.match_state import compute_derived_state, result_summary
from ..services.persistence import (
    get_available_players,
    get_match,
    get_rules,
    load_match_session,
    sync_match_result,
)
from ..services.stats import (
    MatchStats,
    calculate_game_flow,
    calculate_match_stats,
    describe_event,
    player_stats,
    reception_summary,
    substitution_log,
    summarize_sets,
    timeout_log,
)
from .streams import broadcast

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/matches",
    tags=["live"],
    responses={
        404: {"model": ProblemDetail},
        409: {"model": ProblemDetail},
        422: {"model": ProblemDetail},
    },
)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.live_sessions


async def _live_session(
    mid: str, session: AsyncSession, registry: SessionRegistry
) -> MatchSession:
    return await registry.get_or_load(mid, lambda: load_match_session(session, mid))


def _to_live_out(
    snap: SessionSnapshot,
    appended: Optional[list[MatchEvent]] = None,
    synced: bool = False,
    sync_error: Optional[str] = None,
) -> LiveMatchOut:
    state = snap.state
    return LiveMatchOut(
        matchId=snap.match_id,
        state=LiveStateOut(
            ourSide=state.our_side,
            currentSet=state.current_set,
            homeScore=state.home_score,
            awayScore=state.away_score,
            setsWonHome=state.sets_won_home,
            setsWonAway=state.sets_won_away,
            setScores=[
                SetScoreOut(setNumber=s.set_number, home=s.home, away=s.away, winner=s.winner)
                for s in state.set_scores
            ],
            servingSide=state.serving_side,
            lineup=dict(state.lineup),
            currentLiberoId=state.current_libero_id,
            timeoutsHome=state.timeouts_home,
            timeoutsAway=state.timeouts_away,
            substitutionsUsed=state.substitutions.total,
            isSetFinished=state.is_set_finished,
            isMatchFinished=state.is_match_finished,
            hasLineupForCurrentSet=state.has_lineup_for_current_set,
            setSummaryModalOpen=state.set_summary_modal_open,
            winner=state.winner,
        ),
        prompt=snap.prompt.value,
        onCourt=[
            OnCourtOut(
                position=c.position,
                playerId=c.player.id,
                name=c.player.display_name,
                number=c.player.number,
                role=c.player.role,
                isLibero=is_libero(c.player),
            )
            for c in snap.on_court
        ],
        bench=[
            BenchPlayerOut(
                playerId=p.id, name=p.display_name, number=p.number, role=p.role
            )
            for p in snap.bench
        ],
        eventCount=snap.event_count,
        canUndo=snap.can_undo,
        canRedo=snap.can_redo,
        appended=[event_to_dict(e) for e in appended or []],
        synced=synced,
        syncError=sync_error,
    )


async def _after_change(
    mid: str,
    live: MatchSession,
    session: AsyncSession,
    registry: SessionRegistry,
    appended: Optional[list[MatchEvent]] = None,
) -> LiveMatchOut:
    """Persist a finished match once, broadcast, and render the new state.

    Once the final set summary is closed the complete log (with its last
    ``SET_END``) is stored and the live session is released.
    """

    synced = False
    sync_error = None
    result = live.pop_sync()
    if result is None and live.is_complete:
        result = live.match_result()
    if result is not None:
        sync_error = await sync_match_result(session, mid, result)
        synced = sync_error is None
    if live.is_complete and sync_error is None:
        registry.discard(mid)
        logger.info("Released live session for finished match %s", mid)
    out = _to_live_out(live.snapshot(), appended, synced, sync_error)
    await broadcast(
        mid,
        {
            "type": "live",
            "state": out.state.model_dump(),
            "prompt": out.prompt,
            "eventCount": out.eventCount,
        },
    )
    return out


def apply_command(live: MatchSession, command: LiveCommand) -> list[MatchEvent]:
    if isinstance(command, PointCommand):
        if command.type == "POINT_US":
            return live.point_us(command.reason, command.playerId)
        return live.point_opponent(command.reason, command.playerId)
    if isinstance(command, SubstitutionCommand):
        return live.substitution(command.playerOutId, command.playerInId)
    if isinstance(command, SubstitutionBatchCommand):
        return live.substitutions(
            [(sub.playerOutId, sub.playerInId) for sub in command.substitutions]
        )
    if isinstance(command, LiberoSwapCommand):
        return live.libero_swap()
    if isinstance(command, TimeoutCommand):
        return live.timeout(command.team)
    if isinstance(command, LineupCommand):
        return live.set_lineup(
            command.as_mapping(), command.liberoId, command.initialServingSide
        )
    if isinstance(command, ReceptionCommand):
        return live.reception_eval(command.playerId, command.value)
    if isinstance(command, FreeballCommand):
        if command.type == "FREEBALL_SENT":
            return live.freeball_sent()
        return live.freeball_received(command.playerId)
    raise TypeError(f"unsupported command {type(command).__name__}")


# GET /api/v0/matches/{mid}/live
@router.get("/{mid}/live", response_model=LiveMatchOut)
async def enter_live(
    mid: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = await _live_session(mid, session, registry)
    live.reenter()
    out = _to_live_out(live.snapshot())
    if live.is_complete:
        registry.discard(mid)
    return out


# POST /api/v0/matches/{mid}/live/commands
@router.post("/{mid}/live/commands", response_model=LiveMatchOut)
@limiter.limit(command_rate_limit)
async def post_command(
    request: Request,
    mid: str,
    body: LiveCommandIn,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = await _live_session(mid, session, registry)
    try:
        appended = apply_command(live, body.command)
    except MatchFinished:
        if live.is_complete:
            registry.discard(mid)
        raise
    return await _after_change(mid, live, session, registry, appended)


# POST /api/v0/matches/{mid}/live/undo
@router.post("/{mid}/live/undo", response_model=LiveMatchOut)
@limiter.limit(command_rate_limit)
async def undo(
    request: Request,
    mid: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = await _live_session(mid, session, registry)
    live.undo()
    return await _after_change(mid, live, session, registry)


# POST /api/v0/matches/{mid}/live/redo
@router.post("/{mid}/live/redo", response_model=LiveMatchOut)
@limiter.limit(command_rate_limit)
async def redo(
    request: Request,
    mid: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = await _live_session(mid, session, registry)
    event = live.redo()
    return await _after_change(mid, live, session, registry, [event])


PROMPT_ACTIONS = (
    "ack-set-summary",
    "undo-set-summary",
    "ack-reception",
    "open-substitution",
    "close-substitution",
    "dismiss",
)


# POST /api/v0/matches/{mid}/live/prompt/{action}
@router.post("/{mid}/live/prompt/{action}", response_model=LiveMatchOut)
async def prompt_action(
    mid: str,
    action: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    if action not in PROMPT_ACTIONS:
        raise http_problem(
            status_code=404,
            detail=f"unknown prompt action '{action}'",
            code="prompt_action_unknown",
        )
    live = await _live_session(mid, session, registry)
    appended: list[MatchEvent] = []
    if action == "ack-set-summary":
        appended = live.acknowledge_set_summary()
    elif action == "undo-set-summary":
        live.undo_set_end()
    elif action == "ack-reception":
        live.acknowledge_reception()
    elif action == "open-substitution":
        live.open_substitution()
    elif action == "close-substitution":
        live.close_substitution()
    else:
        live.dismiss_prompt()
    return await _after_change(mid, live, session, registry, appended)


# POST /api/v0/matches/{mid}/live/save
@router.post("/{mid}/live/save", response_model=LiveMatchOut)
async def save_live(
    mid: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = registry.get(mid)
    if live is None:
        raise http_problem(
            status_code=409,
            detail="match is not being scouted live",
            code="live_session_missing",
        )
    sync_error = await sync_match_result(session, mid, live.match_result())
    if sync_error is None:
        # Save-and-exit ends the session; the stored log is now authoritative.
        registry.discard(mid)
    return _to_live_out(live.snapshot(), synced=sync_error is None, sync_error=sync_error)


def _stats_out(stats: MatchStats) -> MatchStatsOut:
    return MatchStatsOut(
        duration=stats.duration,
        totalPointsHome=stats.total_points_home,
        totalPointsAway=stats.total_points_away,
        ownErrors=stats.own_errors,
        opponentErrors=stats.opponent_errors,
        homeMaxStreak=stats.home_max_streak,
        awayMaxStreak=stats.away_max_streak,
        pointTypes=stats.point_types,
        unclassifiedPoints=stats.unclassified_points,
    )


# GET /api/v0/matches/{mid}/stats
@router.get("/{mid}/stats", response_model=MatchStatsPageOut)
async def match_stats(
    mid: str,
    session: AsyncSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
):
    live = registry.get(mid)
    if live is not None:
        events, our_side, rules, players = live.events, live.our_side, live.rules, live.players
    else:
        m = await get_match(session, mid)
        events = events_from_dicts(m.actions)
        our_side = m.home_away
        rules = await get_rules(session, m)
        players = await get_available_players(session, mid)
    players_by_id = roster_index(players)
    state = compute_derived_state(events, our_side, rules)
    return MatchStatsPageOut(
        matchId=mid,
        result=result_summary(state),
        stats=_stats_out(calculate_match_stats(events, our_side)),
        gameFlow=[
            SetFlowOut(
                setNumber=f.set_number,
                finalScoreHome=f.final_score_home,
                finalScoreAway=f.final_score_away,
                diffSeries=f.diff_series,
                maxAbsDiff=f.max_abs_diff,
            )
            for f in calculate_game_flow(events, our_side)
        ],
        sets=[
            SetSummaryOut(
                setNumber=s.set_number,
                home=s.home,
                away=s.away,
                winner=s.winner,
                stats=_stats_out(s.stats),
            )
            for s in summarize_sets(events, our_side, rules)
        ],
        receptions=[
            ReceptionOut(
                playerId=r.player_id,
                count=r.count,
                average=round(r.average, 2),
                distribution=r.distribution,
            )
            for r in reception_summary(events).values()
        ],
        players=[
            PlayerStatsOut(
                playerId=p.player_id,
                name=p.name,
                points=p.points,
                errors=p.errors,
                receptions=p.receptions,
                receptionAverage=round(p.reception_average, 2),
                participation=p.participation,
            )
            for p in player_stats(events, players)
        ],
        substitutions=[
            SubstitutionLogOut(
                setNumber=s.set_number,
                playerOutId=s.player_out_id,
                playerInId=s.player_in_id,
                position=s.position,
                isLiberoSwap=s.is_libero_swap,
                timestamp=s.timestamp,
            )
            for s in substitution_log(events)
        ],
        timeouts=[
            TimeoutLogOut(
                setNumber=t.set_number,
                team=t.side,
                homeScore=t.home,
                awayScore=t.away,
                timestamp=t.timestamp,
            )
            for t in timeout_log(events, our_side)
        ],
        timeline=[
            TimelineEntryOut(
                id=e.id,
                type=str(event_to_dict(e)["type"]),
                timestamp=e.timestamp,
                label=describe_event(e, players_by_id),
            )
            for e in events
        ],
    )
