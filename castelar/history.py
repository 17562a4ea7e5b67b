"""
castelar/history.py - Match log replay, period standings and undo.

Nothing here touches storage. The tracker DB hands in players and matches,
gets new records back, and decides what to persist.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from .phases import (
    PlayerProgress,
    apply_outcome,
    fresh,
    phase_label,
    record,
    reverse_outcome,
    win_percentage,
)

logger = logging.getLogger(__name__)

UNDO_POLICIES = ("reverse", "replay")


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class Match:
    """One settled match from the log."""

    id: str
    match_date: str  # ISO-8601, UTC
    match_number: int
    year: int
    winning_team: list[str] = field(default_factory=list)
    losing_team: list[str] = field(default_factory=list)

    @property
    def played_at(self) -> datetime:
        return datetime.fromisoformat(self.match_date)

    @property
    def player_ids(self) -> set[str]:
        return set(self.winning_team) | set(self.losing_team)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Match":
        return cls(
            id=row["id"],
            match_date=row["match_date"],
            match_number=row.get("match_number") or 0,
            year=row.get("year") or 0,
            winning_team=_id_list(row.get("winning_team")),
            losing_team=_id_list(row.get("losing_team")),
        )


def _id_list(value: Any) -> list[str]:
    """Team columns are stored as JSON arrays."""
    if not value:
        return []
    if isinstance(value, str):
        return list(json.loads(value))
    return list(value)


@dataclass
class StandingRow:
    """A player record with its derived presentation fields."""

    player: PlayerProgress
    phase_label: str
    win_percentage: float
    record: str

    @classmethod
    def of(cls, player: PlayerProgress) -> "StandingRow":
        return cls(
            player=player,
            phase_label=phase_label(player),
            win_percentage=win_percentage(player),
            record=record(player),
        )


# ============================================================================
# Replay
# ============================================================================


def chronological(matches: Iterable[Match]) -> list[Match]:
    """Oldest first. Matches sharing a timestamp keep match_number order."""
    return sorted(matches, key=lambda m: (m.played_at, m.match_number))


def replay_matches(
    players: Iterable[PlayerProgress], matches: Iterable[Match]
) -> dict[str, PlayerProgress]:
    """Rebuild progress from zero by folding apply_outcome over the log.

    Every player starts at the zero record. Ids in a match that aren't in
    `players` (deleted since) are skipped. Returns id -> record, in the
    order the players were given.
    """
    table = {p.id: fresh(p) for p in players}

    for match in chronological(matches):
        for player_id in match.winning_team:
            if player_id in table:
                table[player_id] = apply_outcome(table[player_id], True)
        for player_id in match.losing_team:
            if player_id in table:
                table[player_id] = apply_outcome(table[player_id], False)

    return table


def replay_without(
    players: Iterable[PlayerProgress], matches: Iterable[Match], match_id: str
) -> dict[str, PlayerProgress]:
    """Recompute the players of one match as if it had never been played.

    Returns records only for players that took part in `match_id`. Progress
    that predates the log, and manual stage overrides, are lost.
    """
    matches = list(matches)
    target = next((m for m in matches if m.id == match_id), None)
    if target is None:
        return {}

    remaining = [m for m in matches if m.id != match_id]
    table = replay_matches(players, remaining)
    return {pid: rec for pid, rec in table.items() if pid in target.player_ids}


def reverse_match(
    players: Iterable[PlayerProgress], match: Match
) -> dict[str, PlayerProgress]:
    """Approximate undo: strip one win or loss from each participant.

    See phases.reverse_outcome for what this does not undo.
    """
    updated = {}
    for player in players:
        if player.id in match.winning_team:
            updated[player.id] = reverse_outcome(player, True)
        elif player.id in match.losing_team:
            updated[player.id] = reverse_outcome(player, False)
    return updated


# ============================================================================
# Periods and standings
# ============================================================================


def matches_in_period(
    matches: Iterable[Match], year: int | None = None, month: int | None = None
) -> list[Match]:
    """Filter by calendar year and/or month (1-12).

    A month with no year means that month of the current year.
    """
    if year is None and month is None:
        return list(matches)
    if month is not None and year is None:
        year = datetime.now(timezone.utc).year

    selected = []
    for match in matches:
        played = match.played_at
        if played.year != year:
            continue
        if month is not None and played.month != month:
            continue
        selected.append(match)
    return selected


def period_standings(
    players: Iterable[PlayerProgress],
    matches: Iterable[Match],
    year: int | None = None,
    month: int | None = None,
) -> list[StandingRow]:
    """Standings for a period.

    Unfiltered, this is the stored all-time table. With a year or month the
    table is replayed from that period's matches only, so everyone starts
    the period at zero.
    """
    players = list(players)
    if year is None and month is None:
        return standings(players)

    period = matches_in_period(matches, year, month)
    logger.debug(f"Replaying {len(period)} matches for year={year} month={month}")
    return standings(replay_matches(players, period).values())


def standings(players: Iterable[PlayerProgress]) -> list[StandingRow]:
    """Most wins first, then best win percentage, then name."""
    rows = [StandingRow.of(p) for p in players]
    rows.sort(key=lambda r: (-r.player.wins, -r.win_percentage, r.player.name.casefold()))
    return rows


def sort_by_name(players: Iterable[PlayerProgress]) -> list[PlayerProgress]:
    return sorted(players, key=lambda p: p.name.casefold())
