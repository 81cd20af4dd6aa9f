"""Cricket scoring engine.

Drives a limited-overs match through its phases::

    scheduled -> toss -> live <-> innings-break -> completed

with ``abandoned``/``cancelled`` reachable from any phase that is not
terminal. ``apply`` never mutates the state it is given; a rejected event
leaves the caller's state exactly as it was.
"""

import copy
from typing import Callable, Dict, Optional

from . import innings as innings_engine
from . import ledger
from .errors import (
    BallValidationError,
    CrossInningsUndo,
    EmptyLedger,
    IllegalTransition,
    InningsAllOut,
    InvalidEvent,
    UndoConflict,
)

DEFAULT_OVERS = 20

STATUSES = (
    "scheduled",
    "toss",
    "live",
    "innings-break",
    "completed",
    "abandoned",
    "cancelled",
)
TERMINAL_STATUSES = ("completed", "abandoned", "cancelled")
TOSS_DECISIONS = {"bat": "bat", "bowl": "bowl", "field": "bowl"}
RESULT_TYPES = ("runs", "wickets", "super-over", "tie", "no-result")


def init_state(config: Dict) -> Dict:
    """Initialise a scheduled match.

    ``config`` must name ``team1`` and ``team2`` and may set ``overs`` – the
    per-innings limit (default ``20``).
    """

    team1, team2 = config.get("team1"), config.get("team2")
    if not team1 or not team2 or team1 == team2:
        raise InvalidEvent("a match needs two different teams")
    overs = config.get("overs") or DEFAULT_OVERS
    if isinstance(overs, bool) or not isinstance(overs, int) or overs < 1:
        raise InvalidEvent("overs must be a positive integer")
    return {
        "config": {"overs": overs, "team1": team1, "team2": team2},
        "status": "scheduled",
        "toss": {"winner": None, "decision": None},
        "currentInnings": 1,
        "innings": [],
        "result": None,
    }


def current_innings(state: Dict) -> Optional[Dict]:
    index = state["currentInnings"] - 1
    if 0 <= index < len(state["innings"]):
        return state["innings"][index]
    return None


def _other_team(state: Dict, team: str) -> str:
    cfg = state["config"]
    return cfg["team2"] if team == cfg["team1"] else cfg["team1"]


def _require(state: Dict, action: str, allowed) -> None:
    if state["status"] not in allowed:
        raise IllegalTransition(action, state["status"])


def _toss(event: Dict, state: Dict) -> None:
    _require(state, "record the toss", ("scheduled", "toss"))
    winner = event.get("winner")
    if winner not in (state["config"]["team1"], state["config"]["team2"]):
        raise InvalidEvent("toss winner must be one of the two teams")
    decision = TOSS_DECISIONS.get(event.get("decision") or "")
    if decision is None:
        raise InvalidEvent("toss decision must be 'bat' or 'bowl'")
    state["toss"] = {"winner": winner, "decision": decision}
    state["status"] = "toss"


def _start(event: Dict, state: Dict) -> None:
    _require(state, "start the match", ("toss",))
    toss = state["toss"]
    if not toss.get("winner") or not toss.get("decision"):
        raise IllegalTransition(
            "start the match", state["status"], "toss outcome must be recorded first"
        )
    batting = (
        toss["winner"] if toss["decision"] == "bat" else _other_team(state, toss["winner"])
    )
    state["innings"] = [
        innings_engine.new_innings(1, batting, _other_team(state, batting))
    ]
    state["currentInnings"] = 1
    state["status"] = "live"


def _innings_finished(state: Dict, innings: Dict) -> bool:
    if innings["completedOvers"] >= state["config"]["overs"]:
        return True
    if innings["totalWickets"] >= innings_engine.MAX_WICKETS:
        return True
    target = innings.get("target")
    return bool(target) and innings["totalRuns"] >= target


def _close_innings(state: Dict, innings: Dict) -> None:
    innings["completed"] = True
    if state["currentInnings"] == 1:
        state["innings"].append(
            innings_engine.new_innings(
                2,
                innings["bowlingTeam"],
                innings["team"],
                target=innings["totalRuns"] + 1,
            )
        )
        state["currentInnings"] = 2
        state["status"] = "innings-break"
    else:
        state["result"] = compute_result(state)
        state["status"] = "completed"


def _ball(event: Dict, state: Dict) -> None:
    _require(state, "submit a ball", ("live",))
    innings = current_innings(state)
    if innings is None:
        raise IllegalTransition("submit a ball", state["status"], "no innings in progress")
    data = event.get("ball")
    if not isinstance(data, dict):
        raise BallValidationError("ball data is required")
    try:
        innings_engine.apply_ball(innings, data)
    except InningsAllOut:
        _close_innings(state, innings)
        return
    if _innings_finished(state, innings):
        _close_innings(state, innings)


def _resume(event: Dict, state: Dict) -> None:
    _require(state, "resume play", ("innings-break",))
    state["status"] = "live"


def _undo(event: Dict, state: Dict) -> None:
    _require(state, "undo a ball", ("live", "innings-break"))
    innings = current_innings(state)
    last = ledger.last_ball(innings) if innings else None
    if last is None:
        if state["currentInnings"] > 1:
            raise CrossInningsUndo()
        raise EmptyLedger()
    expected = event.get("seq")
    if expected is not None and last["seq"] != expected:
        raise UndoConflict(
            f"last ball is #{last['seq']}, not #{expected}; refresh and retry"
        )
    innings_engine.undo_last(innings)


def _halt(status: str) -> Callable[[Dict, Dict], None]:
    def handler(event: Dict, state: Dict) -> None:
        if state["status"] in TERMINAL_STATUSES:
            raise IllegalTransition(f"mark the match {status}", state["status"])
        state["status"] = status

    return handler


def _result(event: Dict, state: Dict) -> None:
    _require(state, "set the result", ("live", "innings-break", "completed"))
    win_type = event.get("winType")
    if win_type not in RESULT_TYPES:
        raise InvalidEvent(f"winType must be one of {', '.join(RESULT_TYPES)}")
    winner = event.get("winner") or None
    teams = (state["config"]["team1"], state["config"]["team2"])
    if win_type in ("tie", "no-result"):
        if winner is not None:
            raise InvalidEvent(f"a {win_type} has no winner")
    elif winner not in teams:
        raise InvalidEvent("winner must be one of the two teams")
    margin = event.get("margin")
    chosen = event.get("playerOfMatch") or (state["result"] or {}).get("playerOfMatch")
    state["result"] = {
        "winner": winner,
        "winType": win_type,
        "margin": margin,
        "description": event.get("description") or _describe(win_type, margin),
        "playerOfMatch": chosen or player_of_match(state),
        "overridden": True,
    }
    for innings in state["innings"]:
        innings["completed"] = True
    state["status"] = "completed"


_HANDLERS: Dict[str, Callable[[Dict, Dict], None]] = {
    "TOSS": _toss,
    "START": _start,
    "BALL": _ball,
    "RESUME": _resume,
    "UNDO": _undo,
    "ABANDON": _halt("abandoned"),
    "CANCEL": _halt("cancelled"),
    "RESULT": _result,
}


def apply(event: Dict, state: Dict) -> Dict:
    handler = _HANDLERS.get(event.get("type"))
    if handler is None:
        raise InvalidEvent("invalid cricket event")
    new_state = copy.deepcopy(state)
    handler(event, new_state)
    return new_state


def event_for_status(state: Dict, status: str, **toss) -> Dict:
    """Translate a requested status into the engine event that reaches it."""

    if status == "toss":
        return {
            "type": "TOSS",
            "winner": toss.get("tossWinner"),
            "decision": toss.get("tossDecision"),
        }
    if status == "live":
        if state["status"] == "innings-break":
            return {"type": "RESUME"}
        return {"type": "START"}
    if status == "abandoned":
        return {"type": "ABANDON"}
    if status == "cancelled":
        return {"type": "CANCEL"}
    if status not in STATUSES:
        raise InvalidEvent(f"unknown status '{status}'")
    raise IllegalTransition(f"move to {status}", state["status"])


def _describe(win_type: str, margin) -> str:
    if win_type == "tie":
        return "Match tied"
    if win_type == "no-result":
        return "No result"
    if margin is None:
        return win_type
    unit = win_type if margin != 1 else win_type.rstrip("s")
    return f"{margin} {unit}"


def player_of_match(state: Dict) -> Optional[str]:
    """Highest individual run-scorer across both innings."""

    best: Optional[Dict] = None
    for innings in state["innings"]:
        for entry in innings["batting"]:
            if best is None or entry["runs"] > best["runs"]:
                best = entry
    return best["player"] if best else None


def compute_result(state: Dict) -> Dict:
    first, second = state["innings"][0], state["innings"][1]
    if first["totalRuns"] > second["totalRuns"]:
        winner, win_type = first["team"], "runs"
        margin = first["totalRuns"] - second["totalRuns"]
    elif second["totalRuns"] > first["totalRuns"]:
        winner, win_type = second["team"], "wickets"
        margin = innings_engine.MAX_WICKETS - second["totalWickets"]
    else:
        winner, win_type, margin = None, "tie", None
    return {
        "winner": winner,
        "winType": win_type,
        "margin": margin,
        "description": _describe(win_type, margin),
        "playerOfMatch": player_of_match(state),
        "overridden": False,
    }


def current_score(state: Dict) -> Optional[Dict]:
    innings = current_innings(state)
    if innings is None:
        return None
    return {
        "runs": innings["totalRuns"],
        "wickets": innings["totalWickets"],
        "overs": innings["totalOvers"],
        "currentOver": list(ledger.current_over_view(innings)),
    }


def summary(state: Dict) -> Dict:
    return {
        "status": state["status"],
        "config": state["config"],
        "toss": state["toss"],
        "currentInnings": state["currentInnings"],
        "score": current_score(state),
        "innings": [innings_engine.summary(i) for i in state["innings"]],
        "result": state["result"],
    }
