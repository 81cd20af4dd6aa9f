"""Innings aggregator.

Every run, wicket and over that ends up in a scorecard is derived here from
the ball ledger. State is a plain JSON-friendly dict so it can be stored on
the match row as-is.
"""

from typing import Any, Dict, Optional

from . import ledger
from .errors import BallValidationError, DuplicateBall, EmptyLedger, InningsAllOut

MAX_WICKETS = 10

EXTRA_TYPES = ("wide", "no-ball", "bye", "leg-bye", "penalty")
EXTRA_KEYS = {
    "wide": "wides",
    "no-ball": "noBalls",
    "bye": "byes",
    "leg-bye": "legByes",
    "penalty": "penalty",
}
UNCHARGED_EXTRAS = ("bye", "leg-bye")

WICKET_TYPES = (
    "bowled",
    "caught",
    "lbw",
    "run-out",
    "stumped",
    "hit-wicket",
    "retired",
)
BOWLER_WICKETS = ("bowled", "caught", "lbw", "stumped", "hit-wicket")
FIELDER_WICKETS = ("caught", "run-out", "stumped")
# Dismissals possible off an illegal delivery.
ILLEGAL_DELIVERY_WICKETS = {
    "wide": ("run-out", "stumped", "hit-wicket"),
    "no-ball": ("run-out",),
}


def new_innings(
    number: int, team: str, bowling_team: str, target: Optional[int] = None
) -> Dict:
    return {
        "number": number,
        "team": team,
        "bowlingTeam": bowling_team,
        "target": target,
        "balls": [],
        "currentOver": [],
        "totalRuns": 0,
        "totalWickets": 0,
        "completedOvers": 0,
        "legalBalls": 0,
        "totalOvers": 0.0,
        "extras": {key: 0 for key in EXTRA_KEYS.values()},
        "batting": [],
        "bowling": [],
        "striker": None,
        "nonStriker": None,
        "bowler": None,
        "lastOverBowler": None,
        "completed": False,
    }


def overs_notation(balls: int) -> float:
    """``20`` legal balls -> ``3.2`` (three overs and two balls)."""

    return round(balls // ledger.BALLS_PER_OVER + (balls % ledger.BALLS_PER_OVER) / 10, 1)


def strike_rate(runs: int, balls: int) -> float:
    return round(runs * 100 / balls, 2) if balls else 0


def economy(runs: int, balls: int) -> float:
    overs = balls / ledger.BALLS_PER_OVER
    return round(runs / overs, 2) if overs else 0


def average(runs: int, dismissals: int) -> float:
    return round(runs / dismissals, 2) if dismissals else 0


def run_rate(runs: int, balls: int) -> float:
    return economy(runs, balls)


def charged_runs(ball: Dict) -> int:
    """Runs conceded by the bowler on ``ball``."""

    if ball["extraType"] in UNCHARGED_EXTRAS:
        return ball["runs"]
    return ball["runs"] + ball["extras"]


def ran_runs(ball: Dict) -> int:
    """Runs physically run between the wickets, which decide strike."""

    extra_type = ball["extraType"]
    if extra_type in ("bye", "leg-bye"):
        return ball["runs"] + ball["extras"]
    if extra_type in ledger.ILLEGAL_DELIVERIES:
        # the first run of a wide or no-ball is the penalty
        return ball["runs"] + max(ball["extras"] - 1, 0)
    return ball["runs"]


def _count(data: Dict, field: str) -> int:
    value = data.get(field) or 0
    if isinstance(value, bool):
        raise BallValidationError(f"{field} must be an integer (not a boolean)")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise BallValidationError(f"{field} must be an integer")
    if parsed != value:
        raise BallValidationError(f"{field} must be an integer")
    if parsed < 0:
        raise BallValidationError(f"{field} must be >= 0")
    return parsed


def _batting_entry(innings: Dict, player_id: str) -> Optional[Dict]:
    return next((b for b in innings["batting"] if b["player"] == player_id), None)


def _bowling_entry(innings: Dict, player_id: str) -> Optional[Dict]:
    return next((b for b in innings["bowling"] if b["player"] == player_id), None)


def _ensure_batter(innings: Dict, player_id: str) -> Dict:
    entry = _batting_entry(innings, player_id)
    if entry is None:
        entry = {
            "player": player_id,
            "runs": 0,
            "balls": 0,
            "fours": 0,
            "sixes": 0,
            "strikeRate": 0,
            "isOut": False,
            "outMethod": None,
            "bowler": None,
            "fielder": None,
            "isBatting": True,
            "isStriker": False,
            "order": len(innings["batting"]) + 1,
        }
        innings["batting"].append(entry)
    return entry


def _ensure_bowler(innings: Dict, player_id: str) -> Dict:
    entry = _bowling_entry(innings, player_id)
    if entry is None:
        entry = {
            "player": player_id,
            "balls": 0,
            "overs": 0.0,
            "maidens": 0,
            "runs": 0,
            "wickets": 0,
            "wides": 0,
            "noBalls": 0,
            "economy": 0,
            "average": 0,
        }
        innings["bowling"].append(entry)
    return entry


def build_ball(innings: Dict, data: Dict[str, Any]) -> Dict:
    """Validate submitted ball data and resolve it into a ledger record.

    Striker, non-striker and bowler fall back to the players currently at the
    crease and bowling the over, so a scorer only has to name them when they
    change.
    """

    extra_type = data.get("extraType") or None
    if extra_type is not None and extra_type not in EXTRA_TYPES:
        raise BallValidationError(f"unknown extraType '{extra_type}'")
    runs = _count(data, "runs")
    extras = _count(data, "extras")

    if extra_type is None and extras:
        raise BallValidationError("extras require an extraType")
    if extra_type is not None and extras < 1:
        raise BallValidationError(f"a {extra_type} must award at least one extra")
    if extra_type in ("wide", "bye", "leg-bye") and runs:
        raise BallValidationError(f"a {extra_type} cannot have runs off the bat")

    wicket = bool(data.get("wicket"))
    wicket_type = data.get("wicketType") if wicket else None
    fielder = data.get("fielder") if wicket else None
    if wicket:
        if wicket_type not in WICKET_TYPES:
            raise BallValidationError("a wicket requires a valid wicketType")
        allowed = ILLEGAL_DELIVERY_WICKETS.get(extra_type)
        if allowed is not None and wicket_type not in allowed:
            raise BallValidationError(
                f"a batsman cannot be out {wicket_type} off a {extra_type}"
            )
        if fielder and wicket_type not in FIELDER_WICKETS:
            raise BallValidationError(f"a {wicket_type} dismissal has no fielder")

    striker = data.get("striker") or innings["striker"]
    non_striker = data.get("nonStriker") or innings["nonStriker"]
    if not striker:
        raise BallValidationError("striker is required")
    if not non_striker:
        raise BallValidationError("non-striker is required")
    if striker == non_striker:
        raise BallValidationError("striker and non-striker must be different players")
    for player_id in (striker, non_striker):
        entry = _batting_entry(innings, player_id)
        if entry and entry["isOut"]:
            raise BallValidationError(f"player '{player_id}' is already out")

    new_over = not innings["currentOver"]
    bowler = data.get("bowler") or (None if new_over else innings["bowler"])
    if not bowler:
        raise BallValidationError("bowler is required")
    if bowler in (striker, non_striker):
        raise BallValidationError("bowler cannot also be batting")
    if new_over and bowler == innings["lastOverBowler"]:
        raise BallValidationError("a bowler cannot bowl consecutive overs")

    dismissed = None
    if wicket:
        dismissed = data.get("dismissed") or striker
        if dismissed not in (striker, non_striker):
            raise BallValidationError("dismissed player must be one of the batsmen")

    key = data.get("key") or None
    if key and any(b.get("key") == key for b in ledger.all_balls(innings)):
        raise DuplicateBall(f"ball '{key}' has already been recorded")

    ball = ledger.next_position(innings)
    ball.update(
        bowler=bowler,
        striker=striker,
        nonStriker=non_striker,
        runs=runs,
        extras=extras,
        extraType=extra_type,
        wicket=wicket,
        wicketType=wicket_type,
        dismissed=dismissed,
        fielder=fielder or None,
        commentary=data.get("commentary") or "",
        key=key,
    )
    return ball


def apply_ball(innings: Dict, data: Dict[str, Any]) -> Dict:
    """Validate, record and aggregate one delivery; return the recorded ball."""

    ledger.ensure_open(innings)
    ball = build_ball(innings, data)
    if ball["wicket"] and innings["totalWickets"] >= MAX_WICKETS:
        raise InningsAllOut()
    over_done = ledger.record(innings, ball)
    _accumulate(innings, ball, over_done)
    return ball


def _accumulate(innings: Dict, ball: Dict, over_done: bool) -> None:
    extra_type = ball["extraType"]
    legal = ledger.is_legal(ball)

    innings["totalRuns"] += ball["runs"] + ball["extras"]
    if extra_type:
        innings["extras"][EXTRA_KEYS[extra_type]] += ball["extras"]
    if legal:
        innings["legalBalls"] += 1
    innings["totalOvers"] = overs_notation(innings["legalBalls"])

    batter = _ensure_batter(innings, ball["striker"])
    _ensure_batter(innings, ball["nonStriker"])
    batter["runs"] += ball["runs"]
    if extra_type != "wide":
        batter["balls"] += 1
    if ball["runs"] == 4:
        batter["fours"] += 1
    elif ball["runs"] == 6:
        batter["sixes"] += 1
    batter["strikeRate"] = strike_rate(batter["runs"], batter["balls"])

    bowler = _ensure_bowler(innings, ball["bowler"])
    if legal:
        bowler["balls"] += 1
    bowler["overs"] = overs_notation(bowler["balls"])
    bowler["runs"] += charged_runs(ball)
    if extra_type == "wide":
        bowler["wides"] += ball["extras"]
    elif extra_type == "no-ball":
        bowler["noBalls"] += ball["extras"]

    if ball["wicket"]:
        innings["totalWickets"] += 1
        credited = ball["wicketType"] in BOWLER_WICKETS
        if credited:
            bowler["wickets"] += 1
        out = _ensure_batter(innings, ball["dismissed"])
        out.update(
            isOut=True,
            outMethod=ball["wicketType"],
            bowler=ball["bowler"] if credited else None,
            fielder=ball["fielder"],
            isBatting=False,
            isStriker=False,
        )

    bowler["economy"] = economy(bowler["runs"], bowler["balls"])
    bowler["average"] = average(bowler["runs"], bowler["wickets"])

    striker, non_striker = ball["striker"], ball["nonStriker"]
    if ran_runs(ball) % 2:
        striker, non_striker = non_striker, striker
    if ball["wicket"]:
        if striker == ball["dismissed"]:
            striker = None
        else:
            non_striker = None

    if over_done:
        striker, non_striker = non_striker, striker
        this_over = ledger.over_balls(innings, ball["over"])
        if all(b["bowler"] == ball["bowler"] for b in this_over) and not sum(
            charged_runs(b) for b in this_over
        ):
            bowler["maidens"] += 1
        innings["lastOverBowler"] = ball["bowler"]
        innings["bowler"] = None
    else:
        innings["bowler"] = ball["bowler"]

    innings["striker"], innings["nonStriker"] = striker, non_striker
    for entry in innings["batting"]:
        if not entry["isOut"]:
            entry["isBatting"] = entry["player"] in (striker, non_striker)
            entry["isStriker"] = entry["player"] == striker


def undo_last(innings: Dict) -> Dict:
    """Remove the most recent ball and return it.

    The innings is rebuilt from the remaining ledger, so totals, player
    figures, strike and the re-opened over end up exactly as they were before
    the removed ball was accepted.
    """

    history = list(ledger.all_balls(innings))
    if not history:
        raise EmptyLedger()
    removed = history.pop()

    rebuilt = new_innings(
        innings["number"],
        innings["team"],
        innings["bowlingTeam"],
        target=innings.get("target"),
    )
    for ball in history:
        apply_ball(rebuilt, ball)

    innings.clear()
    innings.update(rebuilt)
    return removed


def summary(innings: Dict) -> Dict:
    """Totals for display; the full ledger is left out."""

    balls = innings["legalBalls"]
    out = {
        "number": innings["number"],
        "team": innings["team"],
        "bowlingTeam": innings["bowlingTeam"],
        "runs": innings["totalRuns"],
        "wickets": innings["totalWickets"],
        "overs": innings["totalOvers"],
        "extras": dict(innings["extras"]),
        "runRate": run_rate(innings["totalRuns"], balls),
        "striker": innings["striker"],
        "nonStriker": innings["nonStriker"],
        "bowler": innings["bowler"],
        "currentOver": list(ledger.current_over_view(innings)),
        "batting": [dict(b) for b in innings["batting"]],
        "bowling": [dict(b) for b in innings["bowling"]],
        "target": innings.get("target"),
        "completed": innings["completed"],
    }
    return out
