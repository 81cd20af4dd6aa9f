"""Errors raised by the cricket scoring engine.

All of them subclass ``ValueError`` so callers that only care about "the
event was rejected" can keep catching ``ValueError`` like the other engines.
"""


class ScoringError(ValueError):
    code = "scoring_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidEvent(ScoringError):
    code = "match_event_invalid"


class BallValidationError(InvalidEvent):
    """Malformed ball data; nothing was touched."""

    code = "ball_invalid"


class InvalidBallSequence(ScoringError):
    code = "ball_invalid_sequence"


class EmptyLedger(ScoringError):
    code = "ledger_empty"

    def __init__(self, detail: str = "no balls recorded in this innings") -> None:
        super().__init__(detail)


class CrossInningsUndo(ScoringError):
    code = "undo_cross_innings"

    def __init__(
        self, detail: str = "cannot undo a ball from a previous innings"
    ) -> None:
        super().__init__(detail)


class UndoConflict(ScoringError):
    code = "undo_conflict"


class DuplicateBall(ScoringError):
    code = "ball_duplicate"


class InningsAllOut(ScoringError):
    """Signal: the innings already has ten wickets.

    The match engine treats this as an innings boundary, never as a failure
    to report back to the scorer.
    """

    code = "innings_all_out"

    def __init__(self, detail: str = "all ten wickets have fallen") -> None:
        super().__init__(detail)


class IllegalTransition(ScoringError):
    code = "match_illegal_transition"

    def __init__(self, action: str, status: str, detail: str | None = None) -> None:
        super().__init__(detail or f"cannot {action} while match is {status}")
        self.action = action
        self.status = status
