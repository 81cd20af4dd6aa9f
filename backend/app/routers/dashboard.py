from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Match, Player, Team
from ..schemas import DashboardOut
from .admin import require_admin
from .auth import Caller
from .matches import LIVE_STATUSES, _summary_out
from .teams import points_table

router = APIRouter(prefix="/admin", tags=["admin"])

RECENT_LIMIT = 5
POINTS_TABLE_LIMIT = 8


async def _count(session: AsyncSession, model, *criteria) -> int:
    stmt = select(func.count()).select_from(model).where(model.deleted_at.is_(None))
    for criterion in criteria:
        stmt = stmt.where(criterion)
    return (await session.execute(stmt)).scalar() or 0


async def _matches(session: AsyncSession, *criteria, order_by, limit=None):
    stmt = select(Match).where(Match.deleted_at.is_(None), *criteria).order_by(*order_by)
    if limit:
        stmt = stmt.limit(limit)
    return [_summary_out(m) for m in (await session.execute(stmt)).scalars().all()]


# GET /api/v0/admin/dashboard
@router.get("/dashboard", response_model=DashboardOut)
async def dashboard(
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    statistics = {
        "totalTeams": await _count(session, Team),
        "totalPlayers": await _count(session, Player),
        "totalMatches": await _count(session, Match),
        "liveMatches": await _count(session, Match, Match.status.in_(LIVE_STATUSES)),
        "completedMatches": await _count(session, Match, Match.status == "completed"),
        "upcomingMatches": await _count(session, Match, Match.status == "scheduled"),
    }
    return DashboardOut(
        statistics=statistics,
        liveMatches=await _matches(
            session,
            Match.status.in_(LIVE_STATUSES),
            order_by=(Match.date, Match.start_time),
        ),
        upcomingMatches=await _matches(
            session,
            Match.status == "scheduled",
            order_by=(Match.date, Match.start_time),
            limit=RECENT_LIMIT,
        ),
        recentMatches=await _matches(
            session,
            Match.status == "completed",
            order_by=(Match.date.desc(), Match.start_time.desc()),
            limit=RECENT_LIMIT,
        ),
        pointsTable=await points_table(session, limit=POINTS_TABLE_LIMIT),
    )
