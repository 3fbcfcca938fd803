from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field, model_validator, field_validator, ConfigDict

from .time_utils import require_utc


class TeamOut(BaseModel):
    id: str
    name: str


class TeamCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)

    model_config = ConfigDict(extra="forbid")

    @field_validator("id", mode="before")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("id must be a string")
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("id must not be empty")
        if any(ch.isspace() for ch in trimmed):
            raise ValueError("id must not contain whitespace")
        return trimmed

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("name must be a string")
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("name must not be empty")
        return trimmed


class PlayerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    team_id: Optional[str] = None
    number: Optional[int] = Field(default=None, ge=0, le=99)
    role: Optional[str] = Field(default=None, max_length=10)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("name must be a string")
        return " ".join(value.split())

    @field_validator("role", "first_name", "last_name", "nickname", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeError("must be a string")
        trimmed = value.strip()
        return trimmed or None


class PlayerOut(BaseModel):
    id: str
    name: str
    team_id: Optional[str] = None
    number: Optional[int] = None
    role: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None


class PlayerListOut(BaseModel):
    players: List[PlayerOut]
    total: int
    limit: int
    offset: int


class MatchCreate(BaseModel):
    opponentName: str = Field(..., min_length=1, max_length=200)
    teamId: Optional[str] = None
    homeAway: Literal["home", "away"] = "home"
    rulesetId: Optional[str] = None
    bestOf: Optional[int] = None
    playedAt: Optional[datetime] = None
    location: Optional[str] = None
    playerIds: List[str] = Field(default_factory=list)

    @field_validator("playedAt")
    def _normalize_played_at(cls, v: datetime | None) -> datetime | None:
        return require_utc(v, field_name="playedAt")

    @field_validator("bestOf")
    def _odd_best_of(cls, v: int | None) -> int | None:
        if v is not None and (v < 1 or v % 2 == 0):
            raise ValueError("bestOf must be a positive odd number")
        return v


class ConvocationIn(BaseModel):
    playerIds: List[str]

    @field_validator("playerIds")
    def _dedupe(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(pid.strip() for pid in v if pid and pid.strip()))


class MatchIdOut(BaseModel):
    id: str


class MatchOut(BaseModel):
    id: str
    teamId: Optional[str] = None
    opponentName: str
    homeAway: str
    rulesetId: Optional[str] = None
    bestOf: Optional[int] = None
    status: str
    result: Optional[str] = None
    playedAt: Optional[datetime] = None
    location: Optional[str] = None
    playerIds: List[str] = Field(default_factory=list)
    actions: List[Dict[str, Any]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Live commands
# ---------------------------------------------------------------------------


class PointCommand(BaseModel):
    type: Literal["POINT_US", "POINT_OPPONENT"]
    reason: Optional[str] = Field(default=None, max_length=50)
    playerId: Optional[str] = None


class SubstitutionCommand(BaseModel):
    type: Literal["SUBSTITUTION"]
    playerOutId: str
    playerInId: str


class SubstitutionEntryIn(BaseModel):
    playerOutId: str
    playerInId: str


class SubstitutionBatchCommand(BaseModel):
    type: Literal["SUBSTITUTION_BATCH"]
    substitutions: List[SubstitutionEntryIn] = Field(..., min_length=1)


class LiberoSwapCommand(BaseModel):
    type: Literal["LIBERO_SWAP"]


class TimeoutCommand(BaseModel):
    type: Literal["TIMEOUT"]
    team: Literal["home", "away", "our", "opponent"]


class LineupEntryIn(BaseModel):
    position: int = Field(..., ge=1, le=6)
    playerId: str


class LineupCommand(BaseModel):
    type: Literal["SET_LINEUP"]
    lineup: List[LineupEntryIn]
    liberoId: Optional[str] = None
    initialServingSide: Optional[Literal["our", "opponent"]] = None

    @model_validator(mode="after")
    def _unique_positions(self) -> "LineupCommand":
        positions = [entry.position for entry in self.lineup]
        if len(positions) != len(set(positions)):
            raise ValueError("lineup positions must be unique")
        return self

    def as_mapping(self) -> Dict[int, str]:
        return {entry.position: entry.playerId for entry in self.lineup}


class ReceptionCommand(BaseModel):
    type: Literal["RECEPTION_EVAL"]
    playerId: str
    value: int = Field(..., ge=0, le=4)


class FreeballCommand(BaseModel):
    type: Literal["FREEBALL_SENT", "FREEBALL_RECEIVED"]
    playerId: Optional[str] = None


LiveCommand = Annotated[
    Union[
        PointCommand,
        SubstitutionCommand,
        SubstitutionBatchCommand,
        LiberoSwapCommand,
        TimeoutCommand,
        LineupCommand,
        ReceptionCommand,
        FreeballCommand,
    ],
    Field(discriminator="type"),
]


class LiveCommandIn(BaseModel):
    command: LiveCommand


# ---------------------------------------------------------------------------
# Live views
# ---------------------------------------------------------------------------


class SetScoreOut(BaseModel):
    setNumber: int
    home: int
    away: int
    winner: str


class OnCourtOut(BaseModel):
    position: int
    playerId: str
    name: str
    number: Optional[int] = None
    role: Optional[str] = None
    isLibero: bool = False


class BenchPlayerOut(BaseModel):
    playerId: str
    name: str
    number: Optional[int] = None
    role: Optional[str] = None


class LiveStateOut(BaseModel):
    ourSide: str
    currentSet: int
    homeScore: int
    awayScore: int
    setsWonHome: int
    setsWonAway: int
    setScores: List[SetScoreOut]
    servingSide: str
    lineup: Dict[int, str]
    currentLiberoId: Optional[str] = None
    timeoutsHome: int
    timeoutsAway: int
    substitutionsUsed: int
    isSetFinished: bool
    isMatchFinished: bool
    hasLineupForCurrentSet: bool
    setSummaryModalOpen: bool
    winner: Optional[str] = None


class LiveMatchOut(BaseModel):
    matchId: str
    state: LiveStateOut
    prompt: str
    onCourt: List[OnCourtOut]
    bench: List[BenchPlayerOut]
    eventCount: int
    canUndo: bool
    canRedo: bool
    appended: List[Dict[str, Any]] = Field(default_factory=list)
    synced: bool = False
    syncError: Optional[str] = None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class MatchStatsOut(BaseModel):
    duration: str
    totalPointsHome: int
    totalPointsAway: int
    ownErrors: int
    opponentErrors: int
    homeMaxStreak: int
    awayMaxStreak: int
    pointTypes: Dict[str, Dict[str, int]]
    unclassifiedPoints: int


class SetFlowOut(BaseModel):
    setNumber: int
    finalScoreHome: int
    finalScoreAway: int
    diffSeries: List[int]
    maxAbsDiff: int


class SetSummaryOut(BaseModel):
    setNumber: int
    home: int
    away: int
    winner: Optional[str] = None
    stats: MatchStatsOut


class ReceptionOut(BaseModel):
    playerId: str
    count: int
    average: float
    distribution: Dict[int, int]


class PlayerStatsOut(BaseModel):
    playerId: str
    name: str
    points: int
    errors: int
    receptions: int
    receptionAverage: float
    participation: int


class SubstitutionLogOut(BaseModel):
    setNumber: Optional[int] = None
    playerOutId: str
    playerInId: str
    position: Optional[int] = None
    isLiberoSwap: bool = False
    timestamp: str


class TimeoutLogOut(BaseModel):
    setNumber: int
    team: str
    homeScore: int
    awayScore: int
    timestamp: str


class TimelineEntryOut(BaseModel):
    id: str
    type: str
    timestamp: str
    label: str


class MatchStatsPageOut(BaseModel):
    matchId: str
    result: str
    stats: MatchStatsOut
    gameFlow: List[SetFlowOut]
    sets: List[SetSummaryOut]
    receptions: List[ReceptionOut]
    players: List[PlayerStatsOut] = Field(default_factory=list)
    substitutions: List[SubstitutionLogOut] = Field(default_factory=list)
    timeouts: List[TimeoutLogOut] = Field(default_factory=list)
    timeline: List[TimelineEntryOut]
