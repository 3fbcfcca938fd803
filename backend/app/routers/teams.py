from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import ProblemDetail, http_problem
from ..models import Team
from ..schemas import TeamCreate, TeamOut

router = APIRouter(
    prefix="/teams",
    tags=["teams"],
    responses={404: {"model": ProblemDetail}},
)


def _to_team_out(team: Team) -> TeamOut:
    return TeamOut(id=team.id, name=team.name)


@router.post("", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    body: TeamCreate,
    session: AsyncSession = Depends(get_session),
) -> TeamOut:
    team = Team(id=body.id, name=body.name)
    session.add(team)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise http_problem(
            status_code=409,
            detail="team already exists",
            code="team_exists",
        )
    return _to_team_out(team)


@router.get("", response_model=list[TeamOut])
async def list_teams(session: AsyncSession = Depends(get_session)) -> list[TeamOut]:
    rows = (await session.execute(select(Team).order_by(Team.name))).scalars().all()
    return [_to_team_out(team) for team in rows]
