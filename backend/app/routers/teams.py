import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import ProblemDetail, TeamNotFound, http_problem
from ..models import Match, Player, Team
from ..schemas import PlayerOut, StandingOut, TeamCreate, TeamOut, TeamUpdate
from .admin import require_admin
from .auth import Caller
from .players import _to_player_out

router = APIRouter(
    prefix="/teams",
    tags=["teams"],
    responses={404: {"model": ProblemDetail}},
)


def _to_team_out(team: Team) -> TeamOut:
    return TeamOut(
        id=team.id,
        code=team.code,
        name=team.name,
        shortName=team.short_name,
        group=team.group,
        coach=team.coach,
    )


def _to_standing_out(team: Team) -> StandingOut:
    return StandingOut(
        teamId=team.id,
        code=team.code,
        name=team.name,
        group=team.group,
        played=team.matches_played or 0,
        won=team.matches_won or 0,
        lost=team.matches_lost or 0,
        tied=team.matches_tied or 0,
        noResult=team.matches_no_result or 0,
        points=team.points or 0,
        netRunRate=team.net_run_rate or 0.0,
    )


async def points_table(
    session: AsyncSession, group: str | None = None, limit: int | None = None
) -> list[StandingOut]:
    stmt = select(Team).where(Team.deleted_at.is_(None))
    if group:
        stmt = stmt.where(Team.group == group.upper())
    stmt = stmt.order_by(Team.points.desc(), Team.net_run_rate.desc(), Team.name)
    if limit:
        stmt = stmt.limit(limit)
    rows = (await session.execute(stmt)).scalars().all()
    return [_to_standing_out(t) for t in rows]


async def _get_team(session: AsyncSession, tid: str) -> Team:
    team = (
        await session.execute(
            select(Team).where(
                or_(Team.id == tid, Team.code == tid.upper()),
                Team.deleted_at.is_(None),
            )
        )
    ).scalar_one_or_none()
    if not team:
        raise TeamNotFound(tid)
    return team


@router.post("", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    body: TeamCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
) -> TeamOut:
    existing = (
        await session.execute(select(Team).where(Team.code == body.code))
    ).scalar_one_or_none()
    if existing:
        raise http_problem(
            status_code=409,
            detail="team already exists",
            code="team_exists",
        )
    team = Team(
        id=uuid.uuid4().hex,
        code=body.code,
        name=body.name,
        short_name=body.shortName,
        group=body.group,
        coach=body.coach,
    )
    session.add(team)
    await session.commit()
    return _to_team_out(team)


@router.get("", response_model=list[TeamOut])
async def list_teams(
    group: str | None = None, session: AsyncSession = Depends(get_session)
) -> list[TeamOut]:
    stmt = select(Team).where(Team.deleted_at.is_(None))
    if group:
        stmt = stmt.where(Team.group == group.upper())
    rows = (await session.execute(stmt.order_by(Team.name))).scalars().all()
    return [_to_team_out(t) for t in rows]


# GET /api/v0/teams/points-table
@router.get("/points-table", response_model=list[StandingOut])
async def get_points_table(
    group: str | None = None, session: AsyncSession = Depends(get_session)
) -> list[StandingOut]:
    return await points_table(session, group)


@router.get("/{tid}", response_model=TeamOut)
async def get_team(tid: str, session: AsyncSession = Depends(get_session)) -> TeamOut:
    return _to_team_out(await _get_team(session, tid))


@router.put("/{tid}", response_model=TeamOut)
async def update_team(
    tid: str,
    body: TeamUpdate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
) -> TeamOut:
    team = await _get_team(session, tid)
    changes = body.model_dump(exclude_unset=True)
    if "name" in changes:
        team.name = changes["name"]
    if "shortName" in changes:
        team.short_name = changes["shortName"]
    if "group" in changes:
        team.group = changes["group"]
    if "coach" in changes:
        team.coach = changes["coach"]
    await session.commit()
    return _to_team_out(team)


@router.get("/{tid}/players", response_model=list[PlayerOut])
async def list_team_players(
    tid: str, session: AsyncSession = Depends(get_session)
) -> list[PlayerOut]:
    team = await _get_team(session, tid)
    rows = (
        await session.execute(
            select(Player)
            .where(Player.team_id == team.id, Player.deleted_at.is_(None))
            .order_by(Player.jersey_number, Player.name)
        )
    ).scalars().all()
    return [_to_player_out(p) for p in rows]


@router.delete("/{tid}", status_code=204)
async def delete_team(
    tid: str,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    team = await _get_team(session, tid)
    scheduled = (
        await session.execute(
            select(Match.id).where(
                or_(Match.team1_id == team.id, Match.team2_id == team.id),
                Match.deleted_at.is_(None),
            ).limit(1)
        )
    ).scalar_one_or_none()
    if scheduled:
        raise http_problem(
            status_code=409,
            detail="team still has matches; delete them first",
            code="team_has_matches",
        )
    team.deleted_at = func.now()
    await session.commit()
    return Response(status_code=204)
