"""
tracker/db.py - SQLite storage for the Castelar tracker.

All queries go through TrackerDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests).

Writes that read a player, run the phase engine and write the player back
(settle, undo, stage override) hold one lock for the whole cycle and commit
as a single transaction, so concurrent submissions for the same player are
applied one after the other.
"""

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from castelar.history import (
    UNDO_POLICIES,
    Match,
    matches_in_period,
    replay_without,
    reverse_match,
)
from castelar.phases import PlayerProgress, apply_outcome, from_row, to_row

logger = logging.getLogger(__name__)


class PlayerNotFoundError(KeyError):
    """Raised when a player id is not in the store."""


class MatchNotFoundError(KeyError):
    """Raised when a match id is not in the log."""


class InvalidMatchError(ValueError):
    """Raised when a submitted match can't be settled (empty or overlapping teams)."""


class DuplicatePlayerError(ValueError):
    """Raised when adding a player whose name is already taken."""


@dataclass
class Settlement:
    """Result of settling one match."""

    match: Match
    winners: list[PlayerProgress] = field(default_factory=list)
    losers: list[PlayerProgress] = field(default_factory=list)


class TrackerDB:
    """Thin wrapper around SQLite for players, the match log and the counter."""

    def __init__(self, path: str = "castelar.db"):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS players (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                wins INTEGER DEFAULT 0,
                losses INTEGER DEFAULT 0,
                championships INTEGER DEFAULT 0,
                stage_index INTEGER DEFAULT 0,
                group_wins INTEGER DEFAULT 0,
                group_losses INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS matches (
                id TEXT PRIMARY KEY,
                match_date TEXT NOT NULL,
                match_number INTEGER NOT NULL,
                year INTEGER NOT NULL,
                winning_team TEXT NOT NULL,
                losing_team TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tracker_config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                total_matches INTEGER DEFAULT 0,
                initial_match_number INTEGER
            );

            CREATE TABLE IF NOT EXISTS people (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL
            );
            """
        )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    def list_players(self) -> list[PlayerProgress]:
        """All players, ordered by name."""
        with self._lock:
            return self._all_players()

    def get_player(self, player_id: str) -> PlayerProgress | None:
        with self._lock:
            return self._get_player(player_id)

    def add_player(self, name: str) -> PlayerProgress:
        """Create a player at the zero record."""
        name = name.strip()
        if not name:
            raise ValueError("Player name can't be blank")

        player = PlayerProgress(id=str(uuid.uuid4()), name=name)
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO players (id, name, wins, losses, championships, "
                        "stage_index, group_wins, group_losses) "
                        "VALUES (:id, :name, :wins, :losses, :championships, "
                        ":stage_index, :group_wins, :group_losses)",
                        to_row(player),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicatePlayerError(f"Player {name!r} already exists") from e
        logger.info(f"Added player {name} -> {player.id}")
        return player

    def save_player(self, player: PlayerProgress) -> None:
        """Upsert a full record keyed on id."""
        with self._lock, self._conn:
            self._upsert_player(player)

    def delete_player(self, player_id: str) -> bool:
        """Delete a player. Returns True if one was removed.

        Matches in the log keep the id; replays skip ids they don't know.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM players WHERE id = ?", (player_id,))
        if cursor.rowcount:
            logger.info(f"Deleted player {player_id}")
        return cursor.rowcount > 0

    def set_stage(self, player_id: str, stage_index: int) -> PlayerProgress:
        """Administrative override: assign stage_index directly.

        Unchecked on purpose. Win/loss, group and championship counters
        are left alone. Returns the record as written.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE players SET stage_index = ? WHERE id = ?",
                (stage_index, player_id),
            )
            if cursor.rowcount == 0:
                raise PlayerNotFoundError(player_id)
            player = self._get_player(player_id)
        logger.info(f"Stage override: {player_id} -> {stage_index}")
        return player

    # ------------------------------------------------------------------
    # Settlement and undo
    # ------------------------------------------------------------------

    def settle_match(
        self, winning_team: Iterable[str], losing_team: Iterable[str]
    ) -> Settlement:
        """Apply a match to every player in it and append it to the log.

        Player updates, the counter bump and the log entry commit together.
        """
        winners = list(dict.fromkeys(winning_team))
        losers = list(dict.fromkeys(losing_team))

        if not winners or not losers:
            raise InvalidMatchError("A match needs at least one winner and one loser")
        both = set(winners) & set(losers)
        if both:
            raise InvalidMatchError(f"Players on both teams: {sorted(both)}")

        with self._lock, self._conn:
            current = {}
            for player_id in winners + losers:
                player = self._get_player(player_id)
                if player is None:
                    raise PlayerNotFoundError(player_id)
                current[player_id] = player

            updated_winners = [apply_outcome(current[pid], True) for pid in winners]
            updated_losers = [apply_outcome(current[pid], False) for pid in losers]
            for player in updated_winners + updated_losers:
                self._upsert_player(player)

            now = datetime.now(timezone.utc)
            match = Match(
                id=str(uuid.uuid4()),
                match_date=now.isoformat(),
                match_number=self._bump_match_count(1),
                year=now.year,
                winning_team=winners,
                losing_team=losers,
            )
            self._insert_match(match)

        logger.info(
            f"Match #{match.match_number} recorded: "
            f"{len(winners)} winner(s) vs {len(losers)} loser(s) -> {match.id}"
        )
        return Settlement(match=match, winners=updated_winners, losers=updated_losers)

    def undo_match(self, match_id: str, policy: str = "reverse") -> dict[str, PlayerProgress]:
        """Remove a match from the log and roll its players back.

        "reverse" strips one win/loss from each participant and leaves stage
        and championships as they are. "replay" recomputes the participants
        from the log without this match. Returns the records written.
        """
        if policy not in UNDO_POLICIES:
            raise ValueError(f"Unknown undo policy {policy!r}, expected one of {UNDO_POLICIES}")

        with self._lock, self._conn:
            match = self._get_match(match_id)
            if match is None:
                raise MatchNotFoundError(match_id)

            players = self._all_players()
            if policy == "reverse":
                updated = reverse_match(players, match)
            else:
                updated = replay_without(players, self._all_matches(), match_id)

            for player in updated.values():
                self._upsert_player(player)

            # Bump first: without a counter row the count comes from the log
            self._bump_match_count(-1)
            self._conn.execute("DELETE FROM matches WHERE id = ?", (match_id,))

        logger.info(
            f"Undid match #{match.match_number} ({policy}): "
            f"{len(updated)} player(s) updated"
        )
        return updated

    # ------------------------------------------------------------------
    # Match log
    # ------------------------------------------------------------------

    def list_matches(self, year: int | None = None, month: int | None = None) -> list[Match]:
        """Matches in a period, newest first."""
        with self._lock:
            matches = self._all_matches()
        matches = matches_in_period(matches, year, month)
        matches.sort(key=lambda m: (m.played_at, m.match_number), reverse=True)
        return matches

    def get_match(self, match_id: str) -> Match | None:
        with self._lock:
            return self._get_match(match_id)

    # ------------------------------------------------------------------
    # Match counter
    # ------------------------------------------------------------------

    def match_count(self) -> int:
        """Total matches recorded, including any admin-set starting offset.

        Without a counter row, falls back to counting the log.
        """
        with self._lock:
            return self._match_count()

    def match_count_for_period(self, year: int | None = None, month: int | None = None) -> int:
        """Unfiltered this is the counter; otherwise matches logged in the period."""
        if year is None and month is None:
            return self.match_count()
        return len(self.list_matches(year, month))

    def set_initial_match_number(self, number: int) -> None:
        """Start (or restart) the counter at `number`."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO tracker_config (id, total_matches, initial_match_number) "
                "VALUES (1, ?, ?) ON CONFLICT(id) DO UPDATE SET "
                "total_matches = excluded.total_matches, "
                "initial_match_number = excluded.initial_match_number",
                (number, number),
            )
        logger.info(f"Match counter set to {number}")

    def initial_match_number(self) -> int | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT initial_match_number FROM tracker_config WHERE id = 1"
            ).fetchone()
        return row["initial_match_number"] if row else None

    # ------------------------------------------------------------------
    # People (Impostor roster)
    # ------------------------------------------------------------------

    def list_people(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name FROM people ORDER BY name COLLATE NOCASE"
            ).fetchall()
        return [dict(row) for row in rows]

    def add_person(self, name: str) -> dict[str, Any]:
        name = name.strip()
        if not name:
            raise ValueError("Name can't be blank")
        person = {"id": str(uuid.uuid4()), "name": name}
        with self._lock, self._conn:
            self._conn.execute("INSERT INTO people (id, name) VALUES (:id, :name)", person)
        return person

    def delete_person(self, person_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM people WHERE id = ?", (person_id,))
        return cursor.rowcount > 0

    def import_people(self, people: Iterable[dict[str, Any]]) -> int:
        """Bulk upsert by id. Entries without an id are inserted fresh.

        The name comes from `username`, falling back to `name`; blank names
        are skipped. Returns how many rows were written.
        """
        payload = []
        for person in people:
            name = (person.get("username") or person.get("name") or "").strip()
            if not name:
                continue
            payload.append({"id": person.get("id") or str(uuid.uuid4()), "name": name})

        if not payload:
            return 0

        with self._lock, self._conn:
            self._conn.executemany(
                "INSERT INTO people (id, name) VALUES (:id, :name) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
                payload,
            )
        logger.info(f"Imported {len(payload)} people")
        return len(payload)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def player_count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM players").fetchone()[0]

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _all_players(self) -> list[PlayerProgress]:
        rows = self._conn.execute(
            "SELECT * FROM players ORDER BY name COLLATE NOCASE"
        ).fetchall()
        return [from_row(dict(row)) for row in rows]

    def _get_player(self, player_id: str) -> PlayerProgress | None:
        row = self._conn.execute("SELECT * FROM players WHERE id = ?", (player_id,)).fetchone()
        return from_row(dict(row)) if row else None

    def _upsert_player(self, player: PlayerProgress) -> None:
        self._conn.execute(
            "INSERT INTO players (id, name, wins, losses, championships, "
            "stage_index, group_wins, group_losses) "
            "VALUES (:id, :name, :wins, :losses, :championships, "
            ":stage_index, :group_wins, :group_losses) "
            "ON CONFLICT(id) DO UPDATE SET "
            "name = excluded.name, wins = excluded.wins, losses = excluded.losses, "
            "championships = excluded.championships, stage_index = excluded.stage_index, "
            "group_wins = excluded.group_wins, group_losses = excluded.group_losses",
            to_row(player),
        )

    def _all_matches(self) -> list[Match]:
        rows = self._conn.execute("SELECT * FROM matches").fetchall()
        return [Match.from_row(dict(row)) for row in rows]

    def _get_match(self, match_id: str) -> Match | None:
        row = self._conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
        return Match.from_row(dict(row)) if row else None

    def _insert_match(self, match: Match) -> None:
        self._conn.execute(
            "INSERT INTO matches (id, match_date, match_number, year, winning_team, losing_team) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                match.id,
                match.match_date,
                match.match_number,
                match.year,
                json.dumps(match.winning_team),
                json.dumps(match.losing_team),
            ),
        )

    def _match_count(self) -> int:
        row = self._conn.execute(
            "SELECT total_matches FROM tracker_config WHERE id = 1"
        ).fetchone()
        if row is None:
            return self._conn.execute("SELECT COUNT(*) FROM matches").fetchone()[0]
        return row["total_matches"] or 0

    def _bump_match_count(self, delta: int) -> int:
        """Move the counter by delta (floor 0) and return the new value."""
        count = max(0, self._match_count() + delta)
        self._conn.execute(
            "INSERT INTO tracker_config (id, total_matches) VALUES (1, ?) "
            "ON CONFLICT(id) DO UPDATE SET total_matches = excluded.total_matches",
            (count,),
        )
        return count
