"""
tracker/server.py - FastAPI server for the Castelar tracker and Impostor.

Endpoints:
    GET    /health                  Server health check
    GET    /players                 Standings (?year=&month= for a period)
    POST   /players                 Add a player
    GET    /players/{id}            One player with derived fields
    DELETE /players/{id}            Remove a player
    PUT    /players/{id}/stage      Manual stage override
    POST   /matches                 Settle a match
    GET    /matches                 Match log, newest first (?year=&month=)
    GET    /matches/count           Match counter (?year=&month=)
    PUT    /matches/count           Set the initial match number
    GET    /matches/{id}            One match
    DELETE /matches/{id}            Undo a match (?policy=reverse|replay)

Impostor:
    GET    /people                  Roster
    POST   /people                  Add a person
    POST   /people/import           Bulk import
    DELETE /people/{id}             Remove a person
    POST   /impostor/round          Deal a round
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from castelar.config import DEFAULT_UNDO_POLICY, load_config
from castelar.history import Match, StandingRow, period_standings
from castelar.impostor import deal_round
from castelar.phases import FINAL_STAGE, PlayerProgress, to_row

from .db import (
    DuplicatePlayerError,
    InvalidMatchError,
    MatchNotFoundError,
    PlayerNotFoundError,
    TrackerDB,
)

logger = logging.getLogger(__name__)


# Global DB instance — set during lifespan
_db: TrackerDB | None = None
_undo_policy: str = DEFAULT_UNDO_POLICY


def get_db() -> TrackerDB:
    assert _db is not None, "DB not initialized"
    return _db


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _db, _undo_policy
    config = load_config()
    db_path = getattr(app.state, "db_path", None) or config.tracker.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    _db = TrackerDB(db_path)
    _undo_policy = getattr(app.state, "undo_policy", None) or config.tracker.undo_policy
    logger.info(f"Tracker DB initialized: {db_path} (undo policy: {_undo_policy})")

    yield
    _db.close()
    _db = None


app = FastAPI(title="Castelar Tracker", lifespan=lifespan)

# Allow the web frontend to call the API
from starlette.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ======================================================================
# Request/Response Models
# ======================================================================


class PlayerRequest(BaseModel):
    name: str = Field(min_length=1)


class PlayerResponse(BaseModel):
    id: str
    name: str
    wins: int
    losses: int
    championships: int
    stage_index: int
    group_wins: int
    group_losses: int
    # Derived on read, never stored
    phase_label: str
    win_percentage: float
    record: str


class StageRequest(BaseModel):
    stage_index: int = Field(ge=0, le=FINAL_STAGE)


class MatchRequest(BaseModel):
    winning_team: list[str]
    losing_team: list[str]


class MatchResponse(BaseModel):
    id: str
    match_date: str
    match_number: int
    year: int
    winning_team: list[str]
    losing_team: list[str]


class SettlementResponse(BaseModel):
    match: MatchResponse
    winners: list[PlayerResponse]
    losers: list[PlayerResponse]


class UndoResponse(BaseModel):
    match_id: str
    policy: str
    players: list[PlayerResponse]


class CountResponse(BaseModel):
    total_matches: int
    initial_match_number: int | None = None


class CountRequest(BaseModel):
    initial_match_number: int = Field(ge=0)


class PersonRequest(BaseModel):
    name: str = Field(min_length=1)


class PersonPayload(BaseModel):
    id: str | None = None
    name: str | None = None
    username: str | None = None


class PersonResponse(BaseModel):
    id: str
    name: str


class ImportRequest(BaseModel):
    people: list[PersonPayload]


class ImportResponse(BaseModel):
    imported: int


class RoundRequest(BaseModel):
    total_players: int = Field(ge=1)
    impostors: int | None = Field(default=None, ge=0)


class RoundResponse(BaseModel):
    secret: PersonResponse
    impostors: list[int]


class SuccessResponse(BaseModel):
    success: bool


class HealthResponse(BaseModel):
    status: str
    players: int
    total_matches: int


def _player_out(player: PlayerProgress) -> dict[str, Any]:
    return _standing_out(StandingRow.of(player))


def _standing_out(row: StandingRow) -> dict[str, Any]:
    return {
        **to_row(row.player),
        "phase_label": row.phase_label,
        "win_percentage": row.win_percentage,
        "record": row.record,
    }


def _match_out(match: Match) -> dict[str, Any]:
    return {
        "id": match.id,
        "match_date": match.match_date,
        "match_number": match.match_number,
        "year": match.year,
        "winning_team": match.winning_team,
        "losing_team": match.losing_team,
    }


# ======================================================================
# Endpoints
# ======================================================================


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    db = get_db()
    return {
        "status": "ok",
        "players": db.player_count(),
        "total_matches": db.match_count(),
    }


# ----------------------------------------------------------------------
# Players
# ----------------------------------------------------------------------


@app.get("/players", response_model=list[PlayerResponse])
def list_players(
    year: int | None = None, month: int | None = Query(default=None, ge=1, le=12)
) -> list[dict[str, Any]]:
    """Standings. With a period, records are replayed from that period's matches."""
    db = get_db()
    players = db.list_players()
    matches = db.list_matches() if year is not None or month is not None else []
    return [_standing_out(row) for row in period_standings(players, matches, year, month)]


@app.post("/players", response_model=PlayerResponse)
def add_player(req: PlayerRequest) -> dict[str, Any]:
    db = get_db()
    try:
        player = db.add_player(req.name)
    except DuplicatePlayerError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _player_out(player)


@app.get("/players/{player_id}", response_model=PlayerResponse)
def get_player(player_id: str) -> dict[str, Any]:
    player = get_db().get_player(player_id)
    if player is None:
        raise HTTPException(status_code=404, detail="Player not found")
    return _player_out(player)


@app.delete("/players/{player_id}", response_model=SuccessResponse)
def delete_player(player_id: str) -> dict[str, Any]:
    return {"success": get_db().delete_player(player_id)}


@app.put("/players/{player_id}/stage", response_model=PlayerResponse)
def set_stage(player_id: str, req: StageRequest) -> dict[str, Any]:
    """Manual correction. Bypasses win/loss accounting entirely."""
    db = get_db()
    try:
        player = db.set_stage(player_id, req.stage_index)
    except PlayerNotFoundError:
        raise HTTPException(status_code=404, detail="Player not found")
    return _player_out(player)


# ----------------------------------------------------------------------
# Matches
# ----------------------------------------------------------------------


@app.post("/matches", response_model=SettlementResponse)
def settle_match(req: MatchRequest) -> dict[str, Any]:
    db = get_db()
    try:
        settlement = db.settle_match(req.winning_team, req.losing_team)
    except InvalidMatchError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PlayerNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Player not found: {e.args[0]}")

    return {
        "match": _match_out(settlement.match),
        "winners": [_player_out(p) for p in settlement.winners],
        "losers": [_player_out(p) for p in settlement.losers],
    }


@app.get("/matches", response_model=list[MatchResponse])
def list_matches(
    year: int | None = None, month: int | None = Query(default=None, ge=1, le=12)
) -> list[dict[str, Any]]:
    return [_match_out(m) for m in get_db().list_matches(year, month)]


@app.get("/matches/count", response_model=CountResponse)
def match_count(
    year: int | None = None, month: int | None = Query(default=None, ge=1, le=12)
) -> dict[str, Any]:
    db = get_db()
    return {
        "total_matches": db.match_count_for_period(year, month),
        "initial_match_number": db.initial_match_number(),
    }


@app.put("/matches/count", response_model=CountResponse)
def set_match_count(req: CountRequest) -> dict[str, Any]:
    db = get_db()
    db.set_initial_match_number(req.initial_match_number)
    return {
        "total_matches": db.match_count(),
        "initial_match_number": db.initial_match_number(),
    }


@app.get("/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: str) -> dict[str, Any]:
    match = get_db().get_match(match_id)
    if match is None:
        raise HTTPException(status_code=404, detail="Match not found")
    return _match_out(match)


@app.delete("/matches/{match_id}", response_model=UndoResponse)
def undo_match(match_id: str, policy: str | None = None) -> dict[str, Any]:
    """Undo a match. "reverse" is approximate: stage moves and championships stay."""
    policy = policy or _undo_policy
    try:
        updated = get_db().undo_match(match_id, policy)
    except MatchNotFoundError:
        raise HTTPException(status_code=404, detail="Match not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "match_id": match_id,
        "policy": policy,
        "players": [_player_out(p) for p in updated.values()],
    }


# ----------------------------------------------------------------------
# People / Impostor
# ----------------------------------------------------------------------


@app.get("/people", response_model=list[PersonResponse])
def list_people() -> list[dict[str, Any]]:
    return get_db().list_people()


@app.post("/people", response_model=PersonResponse)
def add_person(req: PersonRequest) -> dict[str, Any]:
    try:
        return get_db().add_person(req.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/people/import", response_model=ImportResponse)
def import_people(req: ImportRequest) -> dict[str, Any]:
    imported = get_db().import_people(p.model_dump() for p in req.people)
    return {"imported": imported}


@app.delete("/people/{person_id}", response_model=SuccessResponse)
def delete_person(person_id: str) -> dict[str, Any]:
    return {"success": get_db().delete_person(person_id)}


@app.post("/impostor/round", response_model=RoundResponse)
def impostor_round(req: RoundRequest) -> dict[str, Any]:
    impostors = req.impostors
    if impostors is None:
        impostors = load_config().impostor.impostors

    try:
        dealt = deal_round(get_db().list_people(), req.total_players, impostors)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"secret": dealt.secret, "impostors": dealt.impostors}
