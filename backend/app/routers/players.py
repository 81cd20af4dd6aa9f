import uuid
from typing import get_args

from fastapi import APIRouter, Depends, Response, Query
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Player, Team
from ..schemas import (
    LeaderboardEntryOut,
    LeaderboardType,
    PlayerCreate,
    PlayerOut,
    PlayerUpdate,
)
from ..exceptions import ProblemDetail, PlayerNotFound, TeamNotFound, http_problem
from .admin import require_admin
from .auth import Caller

router = APIRouter(
    prefix="/players",
    tags=["players"],
    responses={400: {"model": ProblemDetail}, 404: {"model": ProblemDetail}},
)

SEARCH_LIMIT = 20

# stat type -> (stats column, field ranked on, lowest first, field that
# must be non-zero for a player to qualify)
LEADERBOARDS = {
    "batting-runs": ("batting_stats", "runs", False, "innings"),
    "batting-average": ("batting_stats", "average", False, "innings"),
    "bowling-wickets": ("bowling_stats", "wickets", False, "balls"),
    "bowling-economy": ("bowling_stats", "economy", True, "balls"),
}


def _to_player_out(p: Player) -> PlayerOut:
    return PlayerOut(
        id=p.id,
        name=p.name,
        teamId=p.team_id,
        role=p.role,
        jerseyNumber=p.jersey_number,
        battingStats=p.batting_stats or {},
        bowlingStats=p.bowling_stats or {},
    )


async def _get_player(session: AsyncSession, player_id: str) -> Player:
    p = await session.get(Player, player_id)
    if not p or p.deleted_at is not None:
        raise PlayerNotFound(player_id)
    return p


async def _ensure_team(session: AsyncSession, team_id: str) -> None:
    team = await session.get(Team, team_id)
    if not team or team.deleted_at is not None:
        raise TeamNotFound(team_id)


@router.post("", response_model=PlayerOut, status_code=201)
async def create_player(
    body: PlayerCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    if body.teamId:
        await _ensure_team(session, body.teamId)
    p = Player(
        id=uuid.uuid4().hex,
        name=body.name,
        team_id=body.teamId,
        role=body.role,
        jersey_number=body.jerseyNumber,
        batting_stats={},
        bowling_stats={},
    )
    session.add(p)
    await session.commit()
    return _to_player_out(p)


@router.get("", response_model=list[PlayerOut])
async def list_players(
    response: Response,
    q: str = "",
    teamId: str | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Player).where(Player.deleted_at.is_(None))
    count_stmt = select(func.count()).select_from(Player).where(
        Player.deleted_at.is_(None)
    )
    if q:
        stmt = stmt.where(Player.name.ilike(f"%{q}%"))
        count_stmt = count_stmt.where(Player.name.ilike(f"%{q}%"))
    if teamId:
        stmt = stmt.where(Player.team_id == teamId)
        count_stmt = count_stmt.where(Player.team_id == teamId)
    total = (await session.execute(count_stmt)).scalar()
    stmt = stmt.order_by(Player.name).limit(limit).offset(offset)
    rows = (await session.execute(stmt)).scalars().all()
    response.headers["X-Total-Count"] = str(total)
    return [_to_player_out(p) for p in rows]


# GET /api/v0/players/stats/leaderboard?type=batting-runs
@router.get("/stats/leaderboard", response_model=list[LeaderboardEntryOut])
async def leaderboard(
    type: str,
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """Rank players on their career figures.

    Figures live in JSON columns, so ranking happens here rather than in SQL.
    Players who have not batted (or bowled) yet are left out.
    """
    if type not in LEADERBOARDS:
        raise http_problem(
            status_code=400,
            detail=f"type must be one of {', '.join(get_args(LeaderboardType))}",
            code="leaderboard_type_invalid",
        )
    column, field, ascending, qualifier = LEADERBOARDS[type]
    rows = (
        await session.execute(select(Player).where(Player.deleted_at.is_(None)))
    ).scalars().all()
    ranked = []
    for p in rows:
        stats = getattr(p, column) or {}
        if stats.get(qualifier):
            ranked.append((stats.get(field) or 0, p, stats))
    ranked.sort(key=lambda r: (r[0] if ascending else -r[0], r[1].name))
    return [
        LeaderboardEntryOut(
            rank=i,
            playerId=p.id,
            name=p.name,
            teamId=p.team_id,
            value=value,
            stats=stats,
        )
        for i, (value, p, stats) in enumerate(ranked[:limit], start=1)
    ]


# GET /api/v0/players/search/{query}
@router.get("/search/{query}", response_model=list[PlayerOut])
async def search_players(query: str, session: AsyncSession = Depends(get_session)):
    rows = (
        await session.execute(
            select(Player)
            .where(
                or_(Player.name.ilike(f"%{query}%"), Player.id == query),
                Player.deleted_at.is_(None),
            )
            .order_by(Player.name)
            .limit(SEARCH_LIMIT)
        )
    ).scalars().all()
    return [_to_player_out(p) for p in rows]


@router.get("/{player_id}", response_model=PlayerOut)
async def get_player(player_id: str, session: AsyncSession = Depends(get_session)):
    return _to_player_out(await _get_player(session, player_id))


@router.put("/{player_id}", response_model=PlayerOut)
async def update_player(
    player_id: str,
    body: PlayerUpdate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    p = await _get_player(session, player_id)
    changes = body.model_dump(exclude_unset=True)
    if changes.get("teamId"):
        await _ensure_team(session, changes["teamId"])
    if "name" in changes:
        p.name = changes["name"]
    if "teamId" in changes:
        p.team_id = changes["teamId"]
    if "role" in changes:
        p.role = changes["role"]
    if "jerseyNumber" in changes:
        p.jersey_number = changes["jerseyNumber"]
    await session.commit()
    return _to_player_out(p)


@router.delete("/{player_id}", status_code=204)
async def delete_player(
    player_id: str,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    p = await _get_player(session, player_id)
    p.deleted_at = func.now()
    await session.commit()
    return Response(status_code=204)
