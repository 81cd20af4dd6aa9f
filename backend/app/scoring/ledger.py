"""Ball ledger for a single innings.

Completed overs live in ``innings["balls"]``; the over being bowled lives in
``innings["currentOver"]`` until its sixth legal delivery rolls the whole
buffer into the ledger.
"""

from typing import Dict, Iterator, List, Optional

from .errors import InvalidBallSequence

BALLS_PER_OVER = 6
ILLEGAL_DELIVERIES = ("wide", "no-ball")


def is_legal(ball: Dict) -> bool:
    return ball.get("extraType") not in ILLEGAL_DELIVERIES


def legal_count(balls: List[Dict]) -> int:
    return sum(1 for ball in balls if is_legal(ball))


def ensure_open(innings: Dict) -> None:
    if innings.get("completed"):
        raise InvalidBallSequence(f"innings {innings['number']} is already completed")


def record(innings: Dict, ball: Dict) -> bool:
    """Append ``ball`` to the innings.

    Returns ``True`` when the ball was the sixth legal delivery of the over,
    in which case the buffer has been moved into the ledger and the over
    counter advanced.
    """

    ensure_open(innings)
    buffer = innings["currentOver"]
    if legal_count(buffer) >= BALLS_PER_OVER:
        raise InvalidBallSequence("current over already holds six legal deliveries")

    buffer.append(ball)
    if not is_legal(ball) or legal_count(buffer) < BALLS_PER_OVER:
        return False

    innings["balls"].extend(buffer)
    innings["currentOver"] = []
    innings["completedOvers"] += 1
    return True


def all_balls(innings: Dict) -> Iterator[Dict]:
    yield from innings["balls"]
    yield from innings["currentOver"]


def ball_count(innings: Dict) -> int:
    return len(innings["balls"]) + len(innings["currentOver"])


def last_ball(innings: Dict) -> Optional[Dict]:
    if innings["currentOver"]:
        return innings["currentOver"][-1]
    if innings["balls"]:
        return innings["balls"][-1]
    return None


def next_position(innings: Dict) -> Dict[str, int]:
    """Sequence position the next delivery will occupy."""

    return {
        "seq": ball_count(innings),
        "over": innings["completedOvers"],
        "ball": legal_count(innings["currentOver"]) + 1,
    }


def over_balls(innings: Dict, over: int) -> List[Dict]:
    return [ball for ball in all_balls(innings) if ball["over"] == over]


class OverView:
    """Read-only view of the over in progress.

    Each iteration starts afresh from the live buffer and yields copies, so
    the view can be walked any number of times without touching the innings.
    """

    def __init__(self, innings: Dict) -> None:
        self._innings = innings

    def __iter__(self) -> Iterator[Dict]:
        for ball in self._innings["currentOver"]:
            yield dict(ball)

    def __len__(self) -> int:
        return len(self._innings["currentOver"])

    @property
    def legal_balls(self) -> int:
        return legal_count(self._innings["currentOver"])


def current_over_view(innings: Dict) -> OverView:
    return OverView(innings)
