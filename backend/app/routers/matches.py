# backend/app/routers/matches.py
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..db import get_session
from ..models import Match, MatchAuditLog, Player, Team
from ..schemas import (
    BallIn,
    CurrentOverOut,
    MatchCreate,
    MatchOut,
    MatchStateOut,
    MatchSummaryOut,
    ResultIn,
    StatusUpdate,
    TossOut,
    UndoIn,
)
from .streams import broadcast, broadcast_highlight
from ..scoring import cricket as cricket_engine, innings as innings_engine, ledger
from ..scoring.errors import (
    CrossInningsUndo,
    DuplicateBall,
    EmptyLedger,
    IllegalTransition,
    InvalidBallSequence,
    ScoringError,
    UndoConflict,
)
from ..services import match_locks, recompute_standings
from ..exceptions import MatchConflict, MatchNotFound, http_problem
from .auth import Caller, limiter, require_scorer, _rate_limits_disabled
from .admin import require_admin

logger = logging.getLogger(__name__)

# Resource-only prefix; versioning is added in main.py
router = APIRouter(prefix="/matches", tags=["matches"])

LIVE_STATUSES = ("toss", "live", "innings-break")
CONFLICT_ERRORS = (
    IllegalTransition,
    InvalidBallSequence,
    EmptyLedger,
    CrossInningsUndo,
    UndoConflict,
    DuplicateBall,
)


def _scoring_rate_limit() -> str:
    if _rate_limits_disabled():
        return "1000/second"
    return "120/minute"


def _scoring_problem(exc: ScoringError):
    status = 409 if isinstance(exc, CONFLICT_ERRORS) else 400
    return http_problem(status_code=status, detail=exc.detail, code=exc.code)


def _engine_state(m: Match) -> dict[str, Any]:
    return {
        "config": {"overs": m.overs, "team1": m.team1_id, "team2": m.team2_id},
        "status": m.status,
        "toss": {"winner": m.toss_winner_id, "decision": m.toss_decision},
        "currentInnings": m.current_innings,
        "innings": m.innings or [],
        "result": m.result,
    }


def _store_state(m: Match, state: dict[str, Any]) -> None:
    m.status = state["status"]
    m.toss_winner_id = state["toss"]["winner"]
    m.toss_decision = state["toss"]["decision"]
    m.current_innings = state["currentInnings"]
    m.innings = state["innings"]
    m.result = state["result"]


def _apply_event(m: Match, event: dict[str, Any]) -> dict[str, Any]:
    try:
        return cricket_engine.apply(event, _engine_state(m))
    except ScoringError as exc:
        raise _scoring_problem(exc)


def _summary_out(m: Match) -> MatchSummaryOut:
    return MatchSummaryOut(
        id=m.id,
        code=m.code,
        matchNumber=m.match_number,
        team1Id=m.team1_id,
        team2Id=m.team2_id,
        venue=m.venue,
        date=m.date,
        startTime=m.start_time,
        matchType=m.match_type,
        overs=m.overs,
        status=m.status,
        toss=TossOut(winner=m.toss_winner_id, decision=m.toss_decision),
        currentInnings=m.current_innings,
        score=cricket_engine.current_score(_engine_state(m)),
        result=m.result,
    )


def _match_out(m: Match) -> MatchOut:
    return MatchOut(
        **_summary_out(m).model_dump(),
        innings=m.innings or [],
        streamLink=m.stream_link,
        version=m.version,
    )


def _active_match_clause(mid: str):
    return (
        or_(Match.id == mid, Match.code == mid.upper()),
        Match.deleted_at.is_(None),
    )


async def _resolve_match_id(session: AsyncSession, mid: str) -> str:
    """Map an id or code (any case) to the match id the locks are keyed on."""
    match_id = (
        await session.execute(select(Match.id).where(*_active_match_clause(mid)))
    ).scalar_one_or_none()
    if not match_id:
        raise MatchNotFound(mid)
    return match_id


async def _get_active_match(session: AsyncSession, mid: str) -> Match:
    m = (
        await session.execute(
            select(Match)
            .where(*_active_match_clause(mid))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not m:
        raise MatchNotFound(mid)
    return m


async def _resolve_team_id(session: AsyncSession, m: Match, ref: str | None) -> str | None:
    """Accept either a team id or a team code for one of the match's teams."""
    if not ref or ref in (m.team1_id, m.team2_id):
        return ref
    team = (
        await session.execute(
            select(Team).where(Team.code == ref.upper(), Team.deleted_at.is_(None))
        )
    ).scalar_one_or_none()
    return team.id if team else ref


def _audit(
    session: AsyncSession,
    m: Match,
    caller: Caller,
    action: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    session.add(
        MatchAuditLog(
            id=uuid.uuid4().hex,
            match_id=m.id,
            actor_role=caller.role,
            actor=caller.subject,
            action=action,
            metadata_json=metadata,
        )
    )


async def _save(session: AsyncSession, m: Match, *, recompute: bool = False) -> None:
    # rollback expires m; read the id while it is still loaded
    match_id = m.id
    try:
        await session.flush()
        if recompute:
            await recompute_standings(session)
        await session.commit()
    except StaleDataError:
        await session.rollback()
        logger.warning("Concurrent write lost on match %s", match_id)
        raise MatchConflict(match_id)


async def _validate_ball_players(
    session: AsyncSession, state: dict[str, Any], body: BallIn
) -> None:
    innings = cricket_engine.current_innings(state)
    if innings is None:
        return
    ids = body.player_ids()
    if not ids:
        return
    rows = (
        await session.execute(
            select(Player).where(Player.id.in_(ids), Player.deleted_at.is_(None))
        )
    ).scalars().all()
    players = {p.id: p for p in rows}
    missing = sorted(ids - set(players))
    if missing:
        raise http_problem(
            status_code=404,
            detail=f"unknown players: {', '.join(missing)}",
            code="player_not_found",
        )
    sides = (
        (innings["team"], (body.strikerId, body.nonStrikerId, body.dismissedId), "bat"),
        (innings["bowlingTeam"], (body.bowlerId, body.fielderId), "field"),
    )
    for team_id, pids, role in sides:
        for pid in pids:
            if pid and players[pid].team_id != team_id:
                raise http_problem(
                    status_code=400,
                    detail=f"player '{pid}' does not {role} in this innings",
                    code="ball_invalid",
                )


def _highlight_kind(ball: dict[str, Any]) -> str | None:
    if ball["wicket"]:
        return "wicket"
    if ball["runs"] == 6:
        return "six"
    if ball["runs"] == 4:
        return "four"
    return None


async def _publish_status(
    m: Match, state: dict[str, Any], previous: str | None = None
) -> None:
    innings = cricket_engine.current_innings(state)
    await broadcast(
        m.id,
        {
            "type": "status",
            "matchId": m.id,
            "status": state["status"],
            "previousStatus": previous,
            "toss": state["toss"],
            "currentInnings": state["currentInnings"],
            "innings": innings_engine.summary(innings) if innings else None,
            "result": state["result"],
            "version": m.version,
        },
    )


# GET /api/v0/matches
@router.get("", response_model=list[MatchSummaryOut])
async def list_matches(
    response: Response,
    status: str | None = None,
    teamId: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Match).where(Match.deleted_at.is_(None))
    if status:
        stmt = stmt.where(Match.status == status)
    if teamId:
        stmt = stmt.where(or_(Match.team1_id == teamId, Match.team2_id == teamId))
    stmt = stmt.order_by(Match.date, Match.start_time).offset(offset).limit(limit + 1)

    result = (await session.execute(stmt)).scalars().all()
    has_more = len(result) > limit
    matches = result[:limit]

    response.headers["X-Limit"] = str(limit)
    response.headers["X-Offset"] = str(offset)
    response.headers["X-Has-More"] = "true" if has_more else "false"
    if has_more:
        response.headers["X-Next-Offset"] = str(offset + limit)
    return [_summary_out(m) for m in matches]


# GET /api/v0/matches/live
@router.get("/live", response_model=list[MatchSummaryOut])
async def list_live_matches(session: AsyncSession = Depends(get_session)):
    rows = (
        await session.execute(
            select(Match)
            .where(Match.status.in_(LIVE_STATUSES), Match.deleted_at.is_(None))
            .order_by(Match.date, Match.start_time)
        )
    ).scalars().all()
    return [_summary_out(m) for m in rows]


# POST /api/v0/matches
async def create_match(body: MatchCreate, session: AsyncSession) -> Match:
    teams = (
        await session.execute(
            select(Team.id).where(
                Team.id.in_([body.team1Id, body.team2Id]),
                Team.deleted_at.is_(None),
            )
        )
    ).scalars().all()
    if len(set(teams)) != 2:
        raise http_problem(
            status_code=404,
            detail="one or both teams not found",
            code="team_not_found",
        )
    existing = (
        await session.execute(select(Match.id).where(Match.code == body.code))
    ).scalar_one_or_none()
    if existing:
        raise http_problem(
            status_code=400,
            detail=f"match '{body.code}' already exists",
            code="match_exists",
        )

    state = cricket_engine.init_state(
        {"team1": body.team1Id, "team2": body.team2Id, "overs": body.overs}
    )
    last_number = (await session.execute(select(func.max(Match.match_number)))).scalar()
    m = Match(
        id=uuid.uuid4().hex,
        code=body.code,
        match_number=(last_number or 0) + 1,
        team1_id=body.team1Id,
        team2_id=body.team2Id,
        venue=body.venue,
        date=body.date,
        start_time=body.startTime,
        match_type=body.matchType,
        overs=state["config"]["overs"],
        stream_link=body.streamLink,
    )
    _store_state(m, state)
    session.add(m)
    await session.commit()
    return m


@router.post("", response_model=MatchOut, status_code=201)
async def create_match_route(
    body: MatchCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    return _match_out(await create_match(body, session))


# GET /api/v0/matches/{mid}
@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, session: AsyncSession = Depends(get_session)):
    return _match_out(await _get_active_match(session, mid))


# GET /api/v0/matches/{mid}/current-over
@router.get("/{mid}/current-over", response_model=CurrentOverOut)
async def get_current_over(mid: str, session: AsyncSession = Depends(get_session)):
    m = await _get_active_match(session, mid)
    innings = cricket_engine.current_innings(_engine_state(m))
    if innings is None:
        raise http_problem(
            status_code=409,
            detail="no innings in progress",
            code="match_no_innings",
        )
    view = ledger.current_over_view(innings)
    return CurrentOverOut(
        innings=innings["number"],
        over=innings["completedOvers"],
        legalBalls=view.legal_balls,
        balls=list(view),
    )


# POST /api/v0/matches/{mid}/balls
async def submit_ball(
    mid: str,
    body: BallIn,
    session: AsyncSession,
    caller: Caller,
) -> MatchStateOut:
    match_id = await _resolve_match_id(session, mid)
    async with match_locks.hold(match_id):
        m = await _get_active_match(session, match_id)
        state = _engine_state(m)
        if state["status"] == "live":
            await _validate_ball_players(session, state, body)

        index = state["currentInnings"] - 1
        new_state = _apply_event(m, body.to_event())
        innings = new_state["innings"][index]
        ball = ledger.last_ball(innings)
        _store_state(m, new_state)

        previous = state["status"]
        changed = new_state["status"] != previous
        if changed:
            logger.info(
                "Match %s: innings %d closed at %d/%d (%s overs); now %s",
                m.id,
                innings["number"],
                innings["totalRuns"],
                innings["totalWickets"],
                innings["totalOvers"],
                new_state["status"],
            )
            _audit(session, m, caller, new_state["status"], {"seq": ball["seq"]})
        await _save(session, m, recompute=new_state["status"] == "completed")

        await broadcast(
            m.id,
            {
                "type": "ball",
                "matchId": m.id,
                "ball": ball,
                "innings": innings_engine.summary(innings),
                "status": new_state["status"],
                "currentInnings": new_state["currentInnings"],
                "version": m.version,
            },
        )
        if changed:
            await _publish_status(m, new_state, previous)
        kind = _highlight_kind(ball)
        if kind:
            await broadcast_highlight(
                {
                    "type": "highlight",
                    "kind": kind,
                    "matchId": m.id,
                    "ball": ball,
                    "score": {
                        "team": innings["team"],
                        "runs": innings["totalRuns"],
                        "wickets": innings["totalWickets"],
                        "overs": innings["totalOvers"],
                    },
                }
            )
        return MatchStateOut(match=_match_out(m), ball=ball)


@router.post("/{mid}/balls", response_model=MatchStateOut)
@limiter.limit(_scoring_rate_limit)
async def submit_ball_route(
    request: Request,
    mid: str,
    body: BallIn,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_scorer),
):
    return await submit_ball(mid, body, session, caller)


# POST /api/v0/matches/{mid}/undo
async def undo_last_ball(
    mid: str,
    body: UndoIn,
    session: AsyncSession,
    caller: Caller,
) -> MatchStateOut:
    match_id = await _resolve_match_id(session, mid)
    async with match_locks.hold(match_id):
        m = await _get_active_match(session, match_id)
        state = _engine_state(m)
        current = cricket_engine.current_innings(state)
        removed = ledger.last_ball(current) if current else None
        new_state = _apply_event(m, {"type": "UNDO", "seq": body.seq})
        _store_state(m, new_state)
        _audit(session, m, caller, "undo", {"ball": removed})
        await _save(session, m)

        innings = cricket_engine.current_innings(new_state)
        await broadcast(
            m.id,
            {
                "type": "undo",
                "matchId": m.id,
                "ball": removed,
                "innings": innings_engine.summary(innings),
                "status": new_state["status"],
                "currentInnings": new_state["currentInnings"],
                "version": m.version,
            },
        )
        return MatchStateOut(match=_match_out(m), ball=removed)


@router.post("/{mid}/undo", response_model=MatchStateOut)
async def undo_last_ball_route(
    mid: str,
    body: UndoIn | None = None,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_scorer),
):
    return await undo_last_ball(mid, body or UndoIn(), session, caller)


# PUT /api/v0/matches/{mid}/status
async def update_status(
    mid: str,
    body: StatusUpdate,
    session: AsyncSession,
    caller: Caller,
) -> MatchStateOut:
    if body.status in ("abandoned", "cancelled") and not caller.has_role("admin"):
        raise http_problem(
            status_code=403,
            detail=f"only an administrator can mark a match {body.status}",
            code="auth_forbidden",
        )
    match_id = await _resolve_match_id(session, mid)
    async with match_locks.hold(match_id):
        m = await _get_active_match(session, match_id)
        state = _engine_state(m)
        try:
            event = cricket_engine.event_for_status(
                state,
                body.status,
                tossWinner=await _resolve_team_id(session, m, body.tossWinner),
                tossDecision=body.tossDecision,
            )
        except ScoringError as exc:
            raise _scoring_problem(exc)
        new_state = _apply_event(m, event)
        _store_state(m, new_state)
        _audit(
            session,
            m,
            caller,
            "status",
            {"from": state["status"], "to": new_state["status"], "toss": new_state["toss"]},
        )
        await _save(session, m)
        logger.info("Match %s: %s -> %s", m.id, state["status"], new_state["status"])

        await _publish_status(m, new_state, state["status"])
        return MatchStateOut(match=_match_out(m))


@router.put("/{mid}/status", response_model=MatchStateOut)
async def update_status_route(
    mid: str,
    body: StatusUpdate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_scorer),
):
    return await update_status(mid, body, session, caller)


# PUT /api/v0/matches/{mid}/result
async def override_result(
    mid: str,
    body: ResultIn,
    session: AsyncSession,
    caller: Caller,
) -> MatchStateOut:
    match_id = await _resolve_match_id(session, mid)
    async with match_locks.hold(match_id):
        m = await _get_active_match(session, match_id)
        if body.playerOfMatchId:
            player = await session.get(Player, body.playerOfMatchId)
            if not player or player.deleted_at is not None:
                raise http_problem(
                    status_code=404,
                    detail="player of the match not found",
                    code="player_not_found",
                )
        previous = m.status
        new_state = _apply_event(
            m,
            {
                "type": "RESULT",
                "winner": await _resolve_team_id(session, m, body.winnerId),
                "winType": body.winType,
                "margin": body.margin,
                "description": body.description,
                "playerOfMatch": body.playerOfMatchId,
            },
        )
        _store_state(m, new_state)
        _audit(session, m, caller, "result_override", new_state["result"])
        await _save(session, m, recompute=True)
        logger.info("Match %s: result overridden (%s)", m.id, new_state["result"]["description"])

        await _publish_status(m, new_state, previous)
        return MatchStateOut(match=_match_out(m))


@router.put("/{mid}/result", response_model=MatchStateOut)
async def override_result_route(
    mid: str,
    body: ResultIn,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    return await override_result(mid, body, session, caller)


# DELETE /api/v0/matches/{mid}
@router.delete("/{mid}", status_code=204)
async def delete_match(
    mid: str,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(require_admin),
):
    match_id = await _resolve_match_id(session, mid)
    async with match_locks.hold(match_id):
        m = await _get_active_match(session, match_id)
        was_completed = m.status == "completed"
        m.deleted_at = func.now()
        _audit(session, m, caller, "delete")
        await _save(session, m, recompute=was_completed)
        logger.info("Match %s deleted", m.id)
    return Response(status_code=204)
