# backend/app/routers/matches.py
import uuid
from collections.abc import Sequence

from fastapi import APIRouter, Depends, Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Match, MatchConvocation, Player, RuleSet, Team
from ..schemas import ConvocationIn, MatchCreate, MatchIdOut, MatchOut
from ..exceptions import http_problem
from ..rate_limits import limiter, write_rate_limit
from ..services.persistence import get_available_players, get_match as load_match
from ..time_utils import coerce_utc, to_naive_utc

# Resource-only prefix; versioning is added in main.py
router = APIRouter(prefix="/matches", tags=["matches"])


async def _check_players(session: AsyncSession, player_ids: Sequence[str]) -> None:
    if not player_ids:
        return
    found = set(
        (
            await session.execute(
                select(Player.id).where(
                    Player.id.in_(player_ids), Player.deleted_at.is_(None)
                )
            )
        ).scalars().all()
    )
    missing = [pid for pid in player_ids if pid not in found]
    if missing:
        raise http_problem(
            status_code=400,
            detail=f"unknown players: {', '.join(missing)}",
            code="match_unknown_players",
        )


async def _convoked_ids(session: AsyncSession, mid: str) -> list[str]:
    return list(
        (
            await session.execute(
                select(MatchConvocation.player_id).where(MatchConvocation.match_id == mid)
            )
        ).scalars().all()
    )


def _to_match_out(m: Match, player_ids: list[str]) -> MatchOut:
    return MatchOut(
        id=m.id,
        teamId=m.team_id,
        opponentName=m.opponent_name,
        homeAway=m.home_away,
        rulesetId=m.ruleset_id,
        bestOf=m.best_of,
        status=m.status,
        result=m.result,
        playedAt=coerce_utc(m.played_at),
        location=m.location,
        playerIds=player_ids,
        actions=list(m.actions or []),
    )


async def create_match(body: MatchCreate, session: AsyncSession) -> MatchIdOut:
    if body.teamId is not None and await session.get(Team, body.teamId) is None:
        raise http_problem(
            status_code=404,
            detail=f"team '{body.teamId}' not found",
            code="team_not_found",
        )
    if body.rulesetId is not None:
        ruleset = await session.get(RuleSet, body.rulesetId)
        if ruleset is None:
            raise http_problem(
                status_code=400,
                detail="unknown ruleset",
                code="match_unknown_ruleset",
            )
    player_ids = list(dict.fromkeys(body.playerIds))
    await _check_players(session, player_ids)

    mid = uuid.uuid4().hex
    session.add(
        Match(
            id=mid,
            team_id=body.teamId,
            ruleset_id=body.rulesetId,
            opponent_name=body.opponentName.strip(),
            home_away=body.homeAway,
            best_of=body.bestOf,
            status="planned",
            actions=[],
            played_at=to_naive_utc(body.playedAt),
            location=body.location,
        )
    )
    for pid in player_ids:
        session.add(MatchConvocation(id=uuid.uuid4().hex, match_id=mid, player_id=pid))
    await session.commit()
    return MatchIdOut(id=mid)


# POST /api/v0/matches
@router.post("", response_model=MatchIdOut)
@limiter.limit(write_rate_limit)
async def create_match_route(
    request: Request,
    body: MatchCreate,
    session: AsyncSession = Depends(get_session),
) -> MatchIdOut:
    return await create_match(body, session)


# GET /api/v0/matches/{mid}
@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, session: AsyncSession = Depends(get_session)):
    m = await load_match(session, mid)
    return _to_match_out(m, await _convoked_ids(session, mid))


# PUT /api/v0/matches/{mid}/convocation
@router.put("/{mid}/convocation", response_model=MatchOut)
async def set_convocation(
    request: Request,
    mid: str,
    body: ConvocationIn,
    session: AsyncSession = Depends(get_session),
):
    m = await load_match(session, mid)
    await _check_players(session, body.playerIds)
    await session.execute(delete(MatchConvocation).where(MatchConvocation.match_id == mid))
    for pid in body.playerIds:
        session.add(MatchConvocation(id=uuid.uuid4().hex, match_id=mid, player_id=pid))
    await session.commit()
    registry = getattr(request.app.state, "live_sessions", None)
    live = registry.get(mid) if registry is not None else None
    if live is not None:
        live.replace_players(await get_available_players(session, mid))
    return _to_match_out(m, list(body.playerIds))
