import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Player, Team
from ..schemas import PlayerCreate, PlayerListOut, PlayerOut
from ..exceptions import ProblemDetail, PlayerNotFound, http_problem

router = APIRouter(
    prefix="/players",
    tags=["players"],
    responses={400: {"model": ProblemDetail}, 404: {"model": ProblemDetail}},
)


def _to_player_out(p: Player) -> PlayerOut:
    return PlayerOut(
        id=p.id,
        name=p.name,
        team_id=p.team_id,
        number=p.number,
        role=p.role,
        first_name=p.first_name,
        last_name=p.last_name,
        nickname=p.nickname,
    )


@router.post("", response_model=PlayerOut)
async def create_player(
    body: PlayerCreate,
    session: AsyncSession = Depends(get_session),
):
    if body.team_id is not None and await session.get(Team, body.team_id) is None:
        raise http_problem(
            status_code=404,
            detail=f"team '{body.team_id}' not found",
            code="team_not_found",
        )
    if body.team_id is not None and body.number is not None:
        taken = (
            await session.execute(
                select(Player.id).where(
                    Player.team_id == body.team_id,
                    Player.number == body.number,
                    Player.deleted_at.is_(None),
                )
            )
        ).scalar_one_or_none()
        if taken:
            raise http_problem(
                status_code=400,
                detail=f"number {body.number} is already taken in this team",
                code="player_number_taken",
            )
    p = Player(
        id=uuid.uuid4().hex,
        team_id=body.team_id,
        name=body.name,
        number=body.number,
        role=body.role.upper() if body.role else None,
        first_name=body.first_name,
        last_name=body.last_name,
        nickname=body.nickname,
    )
    session.add(p)
    await session.commit()
    return _to_player_out(p)


@router.get("", response_model=PlayerListOut)
async def list_players(
    team: str = "",
    q: str = "",
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Player).where(Player.deleted_at.is_(None))
    count_stmt = select(func.count()).select_from(Player).where(
        Player.deleted_at.is_(None)
    )
    if team:
        stmt = stmt.where(Player.team_id == team)
        count_stmt = count_stmt.where(Player.team_id == team)
    if q:
        stmt = stmt.where(Player.name.ilike(f"%{q}%"))
        count_stmt = count_stmt.where(Player.name.ilike(f"%{q}%"))
    total = (await session.execute(count_stmt)).scalar()
    stmt = stmt.order_by(Player.number, Player.name).limit(limit).offset(offset)
    rows = (await session.execute(stmt)).scalars().all()
    return PlayerListOut(
        players=[_to_player_out(p) for p in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{player_id}", response_model=PlayerOut)
async def get_player(player_id: str, session: AsyncSession = Depends(get_session)):
    p = await session.get(Player, player_id)
    if not p or p.deleted_at is not None:
        raise PlayerNotFound(player_id)
    return _to_player_out(p)


@router.delete("/{player_id}", status_code=204)
async def delete_player(
    player_id: str,
    session: AsyncSession = Depends(get_session),
):
    p = await session.get(Player, player_id)
    if not p or p.deleted_at is not None:
        raise PlayerNotFound(player_id)
    p.deleted_at = func.now()
    await session.commit()
    return Response(status_code=204)
