"""Team standings and player career figures.

Both are rebuilt from every completed, non-deleted match rather than patched
incrementally, so a result override or a deleted match can never leave
stale points behind.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Match, Player, Team
from ..scoring.innings import MAX_WICKETS, average, economy, strike_rate

logger = logging.getLogger(__name__)

POINTS_FOR_WIN = 2
POINTS_FOR_TIE = 1
POINTS_FOR_NO_RESULT = 1


def _team_row() -> dict[str, Any]:
    return {
        "matches_played": 0,
        "matches_won": 0,
        "matches_lost": 0,
        "matches_tied": 0,
        "matches_no_result": 0,
        "points": 0,
        "runs_scored": 0,
        "balls_faced": 0,
        "runs_conceded": 0,
        "balls_bowled": 0,
    }


def _innings_balls(innings: dict[str, Any], overs_limit: int) -> int:
    # An all-out side is charged its full quota of overs.
    if innings.get("totalWickets", 0) >= MAX_WICKETS:
        return overs_limit * 6
    return int(innings.get("legalBalls", 0))


def net_run_rate(
    runs_scored: int, balls_faced: int, runs_conceded: int, balls_bowled: int
) -> float:
    scored = runs_scored * 6 / balls_faced if balls_faced else 0.0
    conceded = runs_conceded * 6 / balls_bowled if balls_bowled else 0.0
    return round(scored - conceded, 3)


def tally_standings(matches: Iterable[Match]) -> dict[str, dict[str, Any]]:
    """Aggregate standings keyed by team id from completed matches."""

    table: dict[str, dict[str, Any]] = {}
    for match in matches:
        result = match.result if isinstance(match.result, dict) else None
        if match.status != "completed" or not result:
            continue
        team1 = table.setdefault(match.team1_id, _team_row())
        team2 = table.setdefault(match.team2_id, _team_row())
        team1["matches_played"] += 1
        team2["matches_played"] += 1

        win_type = result.get("winType")
        winner = result.get("winner")
        if win_type == "no-result":
            for row in (team1, team2):
                row["matches_no_result"] += 1
                row["points"] += POINTS_FOR_NO_RESULT
            continue
        if win_type == "tie" or not winner:
            for row in (team1, team2):
                row["matches_tied"] += 1
                row["points"] += POINTS_FOR_TIE
        else:
            loser = match.team2_id if winner == match.team1_id else match.team1_id
            table[winner]["matches_won"] += 1
            table[winner]["points"] += POINTS_FOR_WIN
            table[loser]["matches_lost"] += 1

        for innings in match.innings or []:
            batting, bowling = innings.get("team"), innings.get("bowlingTeam")
            if batting not in table or bowling not in table:
                continue
            runs = int(innings.get("totalRuns", 0))
            balls = _innings_balls(innings, match.overs)
            table[batting]["runs_scored"] += runs
            table[batting]["balls_faced"] += balls
            table[bowling]["runs_conceded"] += runs
            table[bowling]["balls_bowled"] += balls
    return table


def _batting_row() -> dict[str, Any]:
    return {
        "matches": 0,
        "innings": 0,
        "runs": 0,
        "ballsFaced": 0,
        "fours": 0,
        "sixes": 0,
        "notOuts": 0,
        "highestScore": 0,
        "halfCenturies": 0,
        "centuries": 0,
        "average": 0,
        "strikeRate": 0,
    }


def _bowling_row() -> dict[str, Any]:
    return {
        "matches": 0,
        "innings": 0,
        "balls": 0,
        "maidens": 0,
        "runsConceded": 0,
        "wickets": 0,
        "bestBowling": {"wickets": 0, "runs": 0},
        "fourWickets": 0,
        "fiveWickets": 0,
        "economy": 0,
        "average": 0,
    }


def tally_player_stats(
    matches: Iterable[Match],
) -> tuple[dict[str, dict[str, Any]], dict[str, dict[str, Any]]]:
    batting: dict[str, dict[str, Any]] = {}
    bowling: dict[str, dict[str, Any]] = {}
    for match in matches:
        if match.status != "completed":
            continue
        seen_batting: set[str] = set()
        seen_bowling: set[str] = set()
        for innings in match.innings or []:
            for entry in innings.get("batting", []):
                pid = entry["player"]
                row = batting.setdefault(pid, _batting_row())
                if pid not in seen_batting:
                    row["matches"] += 1
                    seen_batting.add(pid)
                row["innings"] += 1
                row["runs"] += entry["runs"]
                row["ballsFaced"] += entry["balls"]
                row["fours"] += entry["fours"]
                row["sixes"] += entry["sixes"]
                if not entry["isOut"]:
                    row["notOuts"] += 1
                row["highestScore"] = max(row["highestScore"], entry["runs"])
                if entry["runs"] >= 100:
                    row["centuries"] += 1
                elif entry["runs"] >= 50:
                    row["halfCenturies"] += 1
            for entry in innings.get("bowling", []):
                pid = entry["player"]
                row = bowling.setdefault(pid, _bowling_row())
                if pid not in seen_bowling:
                    row["matches"] += 1
                    seen_bowling.add(pid)
                row["innings"] += 1
                row["balls"] += entry["balls"]
                row["maidens"] += entry["maidens"]
                row["runsConceded"] += entry["runs"]
                row["wickets"] += entry["wickets"]
                best = row["bestBowling"]
                if entry["wickets"] > best["wickets"] or (
                    entry["wickets"] == best["wickets"] and entry["runs"] < best["runs"]
                ):
                    row["bestBowling"] = {"wickets": entry["wickets"], "runs": entry["runs"]}
                if entry["wickets"] >= 5:
                    row["fiveWickets"] += 1
                elif entry["wickets"] >= 4:
                    row["fourWickets"] += 1

    for row in batting.values():
        row["average"] = average(row["runs"], row["innings"] - row["notOuts"])
        row["strikeRate"] = strike_rate(row["runs"], row["ballsFaced"])
    for row in bowling.values():
        row["economy"] = economy(row["runsConceded"], row["balls"])
        row["average"] = average(row["runsConceded"], row["wickets"])
    return batting, bowling


async def recompute_standings(session: AsyncSession) -> None:
    """Rebuild team standings and player career figures in ``session``.

    The caller commits.
    """

    matches = (
        await session.execute(
            select(Match).where(
                Match.deleted_at.is_(None),
                Match.status == "completed",
            )
        )
    ).scalars().all()

    table = tally_standings(matches)
    teams = (
        await session.execute(select(Team).where(Team.deleted_at.is_(None)))
    ).scalars().all()
    for team in teams:
        row = table.get(team.id, _team_row())
        for field, value in row.items():
            setattr(team, field, value)
        team.net_run_rate = net_run_rate(
            row["runs_scored"],
            row["balls_faced"],
            row["runs_conceded"],
            row["balls_bowled"],
        )

    batting, bowling = tally_player_stats(matches)
    players = (
        await session.execute(select(Player).where(Player.deleted_at.is_(None)))
    ).scalars().all()
    for player in players:
        player.batting_stats = batting.get(player.id, _batting_row())
        player.bowling_stats = bowling.get(player.id, _bowling_row())

    logger.info(
        "Recomputed standings for %d teams from %d completed matches",
        len(teams),
        len(matches),
    )
