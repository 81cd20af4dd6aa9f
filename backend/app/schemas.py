from typing import Any, Dict, List, Literal, Optional
from datetime import date as calendar_date, datetime
from pydantic import BaseModel, Field, model_validator, field_validator, ConfigDict

from .config import DEFAULT_OVERS

ExtraType = Literal["wide", "no-ball", "bye", "leg-bye", "penalty"]
WicketType = Literal[
    "bowled", "caught", "lbw", "run-out", "stumped", "hit-wicket", "retired"
]
MatchStatus = Literal[
    "scheduled", "toss", "live", "innings-break", "completed", "abandoned", "cancelled"
]
MatchType = Literal["group", "quarter-final", "semi-final", "final"]
WinType = Literal["runs", "wickets", "super-over", "tie", "no-result"]


def _trimmed(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{field} must not be empty")
    return trimmed


class LoginIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=200)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    expiresAt: datetime


class CallerOut(BaseModel):
    role: str
    subject: str


class TeamCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    shortName: str = Field(..., min_length=1, max_length=3)
    group: Optional[Literal["A", "B", "C", "D"]] = None
    coach: Optional[str] = Field(default=None, max_length=200)

    model_config = ConfigDict(extra="forbid")

    @field_validator("code", "shortName", mode="before")
    @classmethod
    def _upper(cls, value: Any, info) -> str:
        trimmed = _trimmed(value, info.field_name)
        if any(ch.isspace() for ch in trimmed):
            raise ValueError(f"{info.field_name} must not contain whitespace")
        return trimmed.upper()

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _trimmed(value, "name")


class TeamUpdate(BaseModel):
    """Editable team fields; the code is fixed once the team exists."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    shortName: Optional[str] = Field(default=None, min_length=1, max_length=3)
    group: Optional[Literal["A", "B", "C", "D"]] = None
    coach: Optional[str] = Field(default=None, max_length=200)

    model_config = ConfigDict(extra="forbid")

    @field_validator("shortName", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> str:
        return _trimmed(value, "shortName").upper()

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _trimmed(value, "name")


class TeamOut(BaseModel):
    id: str
    code: str
    name: str
    shortName: str
    group: Optional[str] = None
    coach: Optional[str] = None


class StandingOut(BaseModel):
    teamId: str
    code: str
    name: str
    group: Optional[str] = None
    played: int
    won: int
    lost: int
    tied: int
    noResult: int
    points: int
    netRunRate: float


class PlayerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    teamId: Optional[str] = None
    role: Optional[
        Literal["batsman", "bowler", "all-rounder", "wicket-keeper"]
    ] = None
    jerseyNumber: Optional[int] = Field(default=None, ge=0, le=999)

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _trimmed(value, "name")


class PlayerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    teamId: Optional[str] = None
    role: Optional[
        Literal["batsman", "bowler", "all-rounder", "wicket-keeper"]
    ] = None
    jerseyNumber: Optional[int] = Field(default=None, ge=0, le=999)

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _trimmed(value, "name")


LeaderboardType = Literal[
    "batting-runs", "batting-average", "bowling-wickets", "bowling-economy"
]


class LeaderboardEntryOut(BaseModel):
    rank: int
    playerId: str
    name: str
    teamId: Optional[str] = None
    value: float
    stats: Dict[str, Any] = Field(default_factory=dict)


class PlayerOut(BaseModel):
    id: str
    name: str
    teamId: Optional[str] = None
    role: Optional[str] = None
    jerseyNumber: Optional[int] = None
    battingStats: Dict[str, Any] = Field(default_factory=dict)
    bowlingStats: Dict[str, Any] = Field(default_factory=dict)


class MatchCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    team1Id: str
    team2Id: str
    venue: str = Field(..., min_length=1, max_length=200)
    date: calendar_date
    startTime: str = Field(..., min_length=1, max_length=20)
    overs: int = Field(default=DEFAULT_OVERS, ge=5, le=50)
    matchType: MatchType = "group"
    streamLink: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("code", mode="before")
    @classmethod
    def _upper_code(cls, value: Any) -> str:
        return _trimmed(value, "code").upper()

    @field_validator("venue", mode="before")
    @classmethod
    def _validate_venue(cls, value: Any) -> str:
        return _trimmed(value, "venue")

    @model_validator(mode="after")
    def _distinct_teams(self) -> "MatchCreate":
        if self.team1Id == self.team2Id:
            raise ValueError("team1 and team2 cannot be the same")
        return self


class StatusUpdate(BaseModel):
    status: MatchStatus
    tossWinner: Optional[str] = None
    tossDecision: Optional[Literal["bat", "bowl", "field"]] = None

    @model_validator(mode="after")
    def _toss_fields(self) -> "StatusUpdate":
        if self.status == "toss" and (not self.tossWinner or not self.tossDecision):
            raise ValueError("tossWinner and tossDecision are required for the toss")
        return self


class BallIn(BaseModel):
    """One delivery as submitted by the scorer.

    Striker, non-striker and bowler may be omitted while they are unchanged;
    the engine keeps track of who is at the crease and who is bowling.
    """

    bowlerId: Optional[str] = None
    strikerId: Optional[str] = Field(default=None, alias="batsmanId")
    nonStrikerId: Optional[str] = None
    runs: int = Field(default=0, ge=0, le=7)
    extras: int = Field(default=0, ge=0, le=7)
    extraType: Optional[ExtraType] = None
    wicket: bool = False
    wicketType: Optional[WicketType] = None
    dismissedId: Optional[str] = None
    fielderId: Optional[str] = None
    commentary: Optional[str] = Field(default=None, max_length=500)
    idempotencyKey: Optional[str] = Field(default=None, min_length=1, max_length=100)

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _wicket_fields(self) -> "BallIn":
        if self.wicket and self.wicketType is None:
            raise ValueError("wicketType is required when wicket is true")
        if not self.wicket and (self.wicketType or self.dismissedId):
            raise ValueError("wicketType and dismissedId require wicket to be true")
        return self

    def player_ids(self) -> set[str]:
        return {
            pid
            for pid in (
                self.bowlerId,
                self.strikerId,
                self.nonStrikerId,
                self.dismissedId,
                self.fielderId,
            )
            if pid
        }

    def to_event(self) -> Dict[str, Any]:
        return {
            "type": "BALL",
            "ball": {
                "bowler": self.bowlerId,
                "striker": self.strikerId,
                "nonStriker": self.nonStrikerId,
                "runs": self.runs,
                "extras": self.extras,
                "extraType": self.extraType,
                "wicket": self.wicket,
                "wicketType": self.wicketType,
                "dismissed": self.dismissedId,
                "fielder": self.fielderId,
                "commentary": self.commentary,
                "key": self.idempotencyKey,
            },
        }


class UndoIn(BaseModel):
    seq: Optional[int] = Field(default=None, ge=0)


class ResultIn(BaseModel):
    winnerId: Optional[str] = None
    winType: WinType
    margin: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=200)
    playerOfMatchId: Optional[str] = None

    @model_validator(mode="after")
    def _winner_required(self) -> "ResultIn":
        if self.winType in ("tie", "no-result"):
            if self.winnerId:
                raise ValueError(f"a {self.winType} has no winner")
        elif not self.winnerId:
            raise ValueError("winnerId is required")
        return self


class TossOut(BaseModel):
    winner: Optional[str] = None
    decision: Optional[str] = None


class MatchSummaryOut(BaseModel):
    id: str
    code: str
    matchNumber: int
    team1Id: str
    team2Id: str
    venue: str
    date: calendar_date
    startTime: str
    matchType: str
    overs: int
    status: str
    toss: TossOut
    currentInnings: int
    score: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None


class MatchOut(MatchSummaryOut):
    innings: List[Dict[str, Any]] = Field(default_factory=list)
    streamLink: Optional[str] = None
    version: int


class MatchStateOut(BaseModel):
    """What a scoring action returns: the new match plus what changed."""

    match: MatchOut
    ball: Optional[Dict[str, Any]] = None


class CurrentOverOut(BaseModel):
    innings: int
    over: int
    legalBalls: int
    balls: List[Dict[str, Any]]


class DashboardOut(BaseModel):
    statistics: Dict[str, int]
    liveMatches: List[MatchSummaryOut]
    upcomingMatches: List[MatchSummaryOut]
    recentMatches: List[MatchSummaryOut]
    pointsTable: List[StandingOut]
