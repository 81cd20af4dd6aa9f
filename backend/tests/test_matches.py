import asyncio
import os
import sys

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.db import Base, get_session
from app.exceptions import DomainException, MatchConflict
from app.main import domain_exception_handler, http_exception_handler
from app.models import Match, Player, Team
from app.routers import auth, dashboard, matches, players, teams
from app.schemas import BallIn, MatchCreate, MatchStateOut, StatusUpdate
from app.services import MatchLockRegistry


def _headers(role: str) -> dict[str, str]:
    token, _ = auth.create_token(role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client_and_events(monkeypatch):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async_session_maker = sessionmaker(
        engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with async_session_maker() as session:
            yield session

    published = []

    async def fake_broadcast(mid: str, message: dict) -> bool:
        published.append((mid, message))
        return True

    async def fake_highlight(message: dict) -> bool:
        published.append(("global", message))
        return True

    monkeypatch.setattr(matches, "broadcast", fake_broadcast)
    monkeypatch.setattr(matches, "broadcast_highlight", fake_highlight)

    app = FastAPI()
    app.state.limiter = auth.limiter
    app.add_exception_handler(RateLimitExceeded, auth.rate_limit_handler)
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    for module in (auth, teams, players, matches, dashboard):
        app.include_router(module.router)
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client, published

    asyncio.run(engine.dispose())


def _seed(client: TestClient, overs: int = 5) -> dict[str, str]:
    admin = _headers("admin")
    ids: dict[str, str] = {}
    for key, code, name in (("t1", "MPG", "Mumbai Pirates"), ("t2", "DLS", "Delhi Lions")):
        resp = client.post(
            "/teams",
            json={"code": code, "name": name, "shortName": code, "group": "A"},
            headers=admin,
        )
        assert resp.status_code == 201, resp.text
        ids[key] = resp.json()["id"]
    for key, team in (("a1", "t1"), ("a2", "t1"), ("a3", "t1"), ("b1", "t2"), ("b2", "t2")):
        resp = client.post(
            "/players", json={"name": key.upper(), "teamId": ids[team]}, headers=admin
        )
        assert resp.status_code == 201, resp.text
        ids[key] = resp.json()["id"]
    resp = client.post(
        "/matches",
        json={
            "code": "m001",
            "team1Id": ids["t1"],
            "team2Id": ids["t2"],
            "venue": "Wankhede",
            "date": "2024-05-01",
            "startTime": "14:00",
            "overs": overs,
        },
        headers=admin,
    )
    assert resp.status_code == 201, resp.text
    ids["match"] = resp.json()["id"]
    return ids


def _start(client: TestClient, ids: dict[str, str]) -> None:
    scorer = _headers("scorer")
    mid = ids["match"]
    resp = client.put(
        f"/matches/{mid}/status",
        json={"status": "toss", "tossWinner": "MPG", "tossDecision": "bat"},
        headers=scorer,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["match"]["toss"] == {"winner": ids["t1"], "decision": "bat"}
    resp = client.put(f"/matches/{mid}/status", json={"status": "live"}, headers=scorer)
    assert resp.status_code == 200, resp.text


def _opening_ball(ids: dict[str, str], **extra) -> dict:
    return {
        "batsmanId": ids["a1"],
        "nonStrikerId": ids["a2"],
        "bowlerId": ids["b1"],
        **extra,
    }


def test_create_match_assigns_number_and_code(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)

    resp = client.get("/matches/M001")
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == ids["match"]
    assert data["matchNumber"] == 1
    assert data["status"] == "scheduled"
    assert data["overs"] == 5
    assert data["score"] is None
    assert data["version"] == 1


def test_create_match_rejects_bad_input(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    admin = _headers("admin")
    body = {
        "code": "M002",
        "team1Id": ids["t1"],
        "team2Id": "missing",
        "venue": "Eden",
        "date": "2024-05-02",
        "startTime": "19:30",
    }

    resp = client.post("/matches", json=body, headers=admin)
    assert resp.status_code == 404
    assert resp.json()["code"] == "team_not_found"

    resp = client.post(
        "/matches", json={**body, "team2Id": ids["t2"], "code": "M001"}, headers=admin
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "match_exists"

    resp = client.post(
        "/matches", json={**body, "team2Id": ids["t1"]}, headers=admin
    )
    assert resp.status_code == 422

    resp = client.post(
        "/matches", json={**body, "team2Id": ids["t2"]}, headers=_headers("scorer")
    )
    assert resp.status_code == 403


def test_ball_rejected_while_scheduled(client_and_events):
    client, published = client_and_events
    ids = _seed(client)

    resp = client.post(
        f"/matches/{ids['match']}/balls",
        json=_opening_ball(ids, runs=1),
        headers=_headers("scorer"),
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "match_illegal_transition"
    assert published == []


def test_scoring_requires_a_scorer_token(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    _start(client, ids)

    resp = client.post(f"/matches/{ids['match']}/balls", json=_opening_ball(ids))
    assert resp.status_code == 401
    assert resp.json()["code"] == "auth_missing_token"

    resp = client.post(
        f"/matches/{ids['match']}/balls",
        json=_opening_ball(ids),
        headers=_headers("viewer"),
    )
    assert resp.status_code == 401


def test_submit_ball_and_undo(client_and_events):
    client, published = client_and_events
    ids = _seed(client)
    _start(client, ids)
    mid = ids["match"]
    scorer = _headers("scorer")
    published.clear()

    resp = client.post(
        f"/matches/{mid}/balls", json=_opening_ball(ids, runs=4), headers=scorer
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["ball"]["seq"] == 0
    assert data["ball"]["striker"] == ids["a1"]
    assert data["match"]["score"]["runs"] == 4
    assert data["match"]["innings"][0]["team"] == ids["t1"]
    version = data["match"]["version"]

    kinds = [message["type"] for _, message in published]
    assert kinds == ["ball", "highlight"]
    assert published[0][0] == mid
    assert published[0][1]["innings"]["runs"] == 4
    assert published[1][0] == "global"
    assert published[1][1]["kind"] == "four"

    resp = client.get(f"/matches/{mid}/current-over")
    assert resp.status_code == 200
    assert resp.json()["legalBalls"] == 1
    assert resp.json()["over"] == 0
    assert len(resp.json()["balls"]) == 1

    resp = client.post(f"/matches/{mid}/undo", json={"seq": 3}, headers=scorer)
    assert resp.status_code == 409
    assert resp.json()["code"] == "undo_conflict"

    resp = client.post(f"/matches/{mid}/undo", json={"seq": 0}, headers=scorer)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["ball"]["runs"] == 4
    assert data["match"]["score"]["runs"] == 0
    assert data["match"]["version"] > version
    assert published[-1][1]["type"] == "undo"

    resp = client.post(f"/matches/{mid}/undo", headers=scorer)
    assert resp.status_code == 409
    assert resp.json()["code"] == "ledger_empty"


def test_ball_participants_must_belong_to_the_right_side(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    _start(client, ids)
    mid = ids["match"]
    scorer = _headers("scorer")

    resp = client.post(
        f"/matches/{mid}/balls",
        json=_opening_ball(ids, bowlerId=ids["a3"]),
        headers=scorer,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "ball_invalid"

    resp = client.post(
        f"/matches/{mid}/balls",
        json=_opening_ball(ids, bowlerId="nobody"),
        headers=scorer,
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "player_not_found"

    resp = client.post(
        f"/matches/{mid}/balls",
        json=_opening_ball(ids, extraType="wide", extras=1, runs=2),
        headers=scorer,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "ball_invalid"

    resp = client.get(f"/matches/{mid}")
    assert resp.json()["score"]["runs"] == 0


def test_duplicate_ball_key_is_rejected(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    _start(client, ids)
    mid = ids["match"]
    scorer = _headers("scorer")

    resp = client.post(
        f"/matches/{mid}/balls",
        json=_opening_ball(ids, runs=1, idempotencyKey="ball-1"),
        headers=scorer,
    )
    assert resp.status_code == 200
    resp = client.post(
        f"/matches/{mid}/balls",
        json={"runs": 1, "idempotencyKey": "ball-1"},
        headers=scorer,
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "ball_duplicate"
    assert client.get(f"/matches/{mid}").json()["score"]["runs"] == 1


def test_wicket_is_broadcast_as_highlight(client_and_events):
    client, published = client_and_events
    ids = _seed(client)
    _start(client, ids)
    published.clear()

    resp = client.post(
        f"/matches/{ids['match']}/balls",
        json=_opening_ball(ids, wicket=True, wicketType="bowled"),
        headers=_headers("scorer"),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["match"]["score"]["wickets"] == 1
    highlight = published[-1]
    assert highlight[0] == "global"
    assert highlight[1]["kind"] == "wicket"
    assert highlight[1]["score"]["wickets"] == 1


def test_only_admin_can_abandon(client_and_events):
    client, published = client_and_events
    ids = _seed(client)
    _start(client, ids)
    mid = ids["match"]

    resp = client.put(
        f"/matches/{mid}/status", json={"status": "abandoned"}, headers=_headers("scorer")
    )
    assert resp.status_code == 403

    resp = client.put(
        f"/matches/{mid}/status", json={"status": "abandoned"}, headers=_headers("admin")
    )
    assert resp.status_code == 200
    assert resp.json()["match"]["status"] == "abandoned"
    assert published[-1][1]["type"] == "status"
    assert published[-1][1]["previousStatus"] == "live"

    resp = client.post(
        f"/matches/{mid}/balls", json=_opening_ball(ids), headers=_headers("scorer")
    )
    assert resp.status_code == 409


def test_unreachable_status_is_rejected(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)

    resp = client.put(
        f"/matches/{ids['match']}/status",
        json={"status": "completed"},
        headers=_headers("scorer"),
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "match_illegal_transition"

    resp = client.put(
        f"/matches/{ids['match']}/status",
        json={"status": "live"},
        headers=_headers("scorer"),
    )
    assert resp.status_code == 409


def test_result_override_updates_points_table(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    _start(client, ids)
    mid = ids["match"]
    body = {"winnerId": ids["t2"], "winType": "runs", "margin": 12}

    resp = client.put(f"/matches/{mid}/result", json=body, headers=_headers("scorer"))
    assert resp.status_code == 403

    resp = client.put(f"/matches/{mid}/result", json=body, headers=_headers("admin"))
    assert resp.status_code == 200, resp.text
    match = resp.json()["match"]
    assert match["status"] == "completed"
    assert match["result"]["overridden"] is True
    assert match["result"]["description"] == "12 runs"

    table = client.get("/teams/points-table").json()
    assert [row["teamId"] for row in table] == [ids["t2"], ids["t1"]]
    assert table[0]["points"] == 2
    assert table[0]["won"] == 1
    assert table[1]["lost"] == 1

    resp = client.post(f"/matches/{mid}/undo", headers=_headers("scorer"))
    assert resp.status_code == 409
    assert resp.json()["code"] == "match_illegal_transition"


def test_list_and_live_matches(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)

    assert client.get("/matches/live").json() == []
    resp = client.get("/matches", params={"status": "scheduled"})
    assert [m["id"] for m in resp.json()] == [ids["match"]]
    assert resp.headers["X-Has-More"] == "false"

    _start(client, ids)
    assert [m["id"] for m in client.get("/matches/live").json()] == [ids["match"]]
    assert client.get("/matches", params={"teamId": "other"}).json() == []


def test_delete_match(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)
    mid = ids["match"]

    resp = client.delete(f"/matches/{mid}", headers=_headers("scorer"))
    assert resp.status_code == 403
    resp = client.delete(f"/matches/{mid}", headers=_headers("admin"))
    assert resp.status_code == 204

    resp = client.get(f"/matches/{mid}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "match_not_found"


def test_admin_dashboard(client_and_events):
    client, _ = client_and_events
    ids = _seed(client)

    resp = client.get("/admin/dashboard", headers=_headers("scorer"))
    assert resp.status_code == 403

    resp = client.get("/admin/dashboard", headers=_headers("admin"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["statistics"]["totalTeams"] == 2
    assert data["statistics"]["totalPlayers"] == 5
    assert data["statistics"]["upcomingMatches"] == 1
    assert [m["id"] for m in data["upcomingMatches"]] == [ids["match"]]
    assert data["liveMatches"] == []
    assert len(data["pointsTable"]) == 2


SCORER = auth.Caller(role="scorer", subject="scorer-test")


@pytest.fixture()
def file_db(tmp_path, monkeypatch):
    """Separate connections per session, like two workers sharing a database."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'scoring.db'}", poolclass=NullPool
    )
    async_session_maker = sessionmaker(
        engine, expire_on_commit=False, class_=AsyncSession
    )

    async def ignore(*args) -> bool:
        return True

    monkeypatch.setattr(matches, "broadcast", ignore)
    monkeypatch.setattr(matches, "broadcast_highlight", ignore)
    yield engine, async_session_maker


async def _live_match(engine, async_session_maker) -> str:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_session_maker() as session:
        session.add_all(
            [
                Team(id="t1", code="MPG", name="Mumbai Pirates", short_name="MPG"),
                Team(id="t2", code="DLS", name="Delhi Lions", short_name="DLS"),
                Player(id="a1", name="A1", team_id="t1"),
                Player(id="a2", name="A2", team_id="t1"),
                Player(id="b1", name="B1", team_id="t2"),
            ]
        )
        await session.commit()
        m = await matches.create_match(
            MatchCreate(
                code="M001",
                team1Id="t1",
                team2Id="t2",
                venue="Wankhede",
                date="2024-05-01",
                startTime="14:00",
                overs=5,
            ),
            session,
        )
        mid = m.id
    for update in (
        StatusUpdate(status="toss", tossWinner="t1", tossDecision="bat"),
        StatusUpdate(status="live"),
    ):
        async with async_session_maker() as session:
            await matches.update_status(mid, update, session, SCORER)
    return mid


def _even_ball(runs: int) -> BallIn:
    return BallIn(batsmanId="a1", nonStrikerId="a2", bowlerId="b1", runs=runs)


async def _stored_innings(async_session_maker, mid: str) -> dict:
    async with async_session_maker() as session:
        return (await session.get(Match, mid)).innings[0]


def test_balls_addressed_by_id_and_code_are_serialized(file_db):
    engine, async_session_maker = file_db

    async def scenario():
        mid = await _live_match(engine, async_session_maker)

        async def submit(ref: str, runs: int):
            async with async_session_maker() as session:
                return await matches.submit_ball(ref, _even_ball(runs), session, SCORER)

        outcomes = await asyncio.gather(
            submit(mid, 2), submit("m001", 4), return_exceptions=True
        )
        innings = await _stored_innings(async_session_maker, mid)
        await engine.dispose()
        return outcomes, innings

    outcomes, innings = asyncio.run(scenario())

    assert all(isinstance(o, MatchStateOut) for o in outcomes), outcomes
    assert sorted(o.ball["seq"] for o in outcomes) == [1, 2]
    assert innings["totalRuns"] == 6
    assert innings["legalBalls"] == 2
    assert [b["seq"] for b in innings["currentOver"]] == [1, 2]


def test_lost_concurrent_write_is_a_match_conflict(file_db, monkeypatch):
    engine, async_session_maker = file_db

    class NoLocks:
        """Each request behaves as if served by a different process."""

        def hold(self, match_id):
            return MatchLockRegistry(timeout_seconds=1).hold(match_id)

    monkeypatch.setattr(matches, "match_locks", NoLocks())

    # both requests read the same version before either one writes
    arrived = []
    both_loaded = asyncio.Event()
    validate = matches._validate_ball_players

    async def wait_for_other(session, state, body):
        await validate(session, state, body)
        arrived.append(body)
        if len(arrived) == 2:
            both_loaded.set()
        await both_loaded.wait()

    monkeypatch.setattr(matches, "_validate_ball_players", wait_for_other)

    async def scenario():
        mid = await _live_match(engine, async_session_maker)

        async def submit(ref: str, runs: int):
            async with async_session_maker() as session:
                return await matches.submit_ball(ref, _even_ball(runs), session, SCORER)

        outcomes = await asyncio.gather(
            submit(mid, 2), submit("M001", 4), return_exceptions=True
        )
        innings = await _stored_innings(async_session_maker, mid)
        await engine.dispose()
        return mid, outcomes, innings

    mid, outcomes, innings = asyncio.run(scenario())

    won = [o for o in outcomes if isinstance(o, MatchStateOut)]
    lost = [o for o in outcomes if isinstance(o, MatchConflict)]
    assert len(won) == 1 and len(lost) == 1, outcomes
    assert lost[0].status_code == 409
    assert lost[0].code == "match_conflict"
    assert mid in lost[0].detail

    assert len(innings["currentOver"]) == 1
    assert innings["totalRuns"] == won[0].ball["runs"]
