"""
castelar/phases.py - Bracket progression for the Castelar tracker.

Pure functions only. Every player walks the same fixed bracket:

    Group -> Round of 16 -> Quarterfinal -> Semifinal -> Final

The group is best-of-3 with early elimination on the second loss. Any
knockout loss sends the player back to Group; winning the Final counts a
championship and also restarts the bracket.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any

PHASES = ("Group", "Round of 16", "Quarterfinal", "Semifinal", "Final")

GROUP_STAGE = 0
FINAL_STAGE = len(PHASES) - 1

GROUP_MATCHES = 3
GROUP_WINS_TO_ADVANCE = 2
GROUP_LOSSES_TO_ELIMINATE = 2


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class PlayerProgress:
    """A player's lifetime record plus where they sit in the bracket."""

    id: str
    name: str = ""
    wins: int = 0
    losses: int = 0
    championships: int = 0
    stage_index: int = GROUP_STAGE
    # Only meaningful while stage_index == 0
    group_wins: int = 0
    group_losses: int = 0

    @property
    def group_played(self) -> int:
        return self.group_wins + self.group_losses

    @property
    def matches_played(self) -> int:
        return self.wins + self.losses


def fresh(player: PlayerProgress) -> PlayerProgress:
    """Zero record that keeps the player's id and name."""
    return PlayerProgress(id=player.id, name=player.name)


# ============================================================================
# Transitions
# ============================================================================


def _reset_group_progress(player: PlayerProgress) -> None:
    player.stage_index = GROUP_STAGE
    player.group_wins = 0
    player.group_losses = 0


def _resolve_group(player: PlayerProgress) -> None:
    """Settle a group that has played all its matches."""
    if player.group_wins >= GROUP_WINS_TO_ADVANCE:
        player.stage_index = 1
        player.group_wins = 0
        player.group_losses = 0
    else:
        _reset_group_progress(player)


def apply_outcome(player: PlayerProgress, did_win: bool) -> PlayerProgress:
    """Return the player's progress after one match. The input is not touched.

    Callers invoke this once per player per match: winners with
    did_win=True, losers with did_win=False. Order matters, outcomes do not
    commute.
    """
    updated = dataclasses.replace(player)

    if did_win:
        updated.wins += 1

        if updated.stage_index == GROUP_STAGE:
            updated.group_wins += 1
            if updated.group_played >= GROUP_MATCHES:
                _resolve_group(updated)
        elif updated.stage_index >= FINAL_STAGE:
            updated.championships += 1
            _reset_group_progress(updated)
        else:
            updated.stage_index += 1
    else:
        updated.losses += 1

        if updated.stage_index == GROUP_STAGE:
            updated.group_losses += 1
            # Concluded group is checked before early elimination
            if updated.group_played >= GROUP_MATCHES:
                _resolve_group(updated)
            elif updated.group_losses >= GROUP_LOSSES_TO_ELIMINATE:
                _reset_group_progress(updated)
        else:
            _reset_group_progress(updated)

    return updated


def reverse_outcome(player: PlayerProgress, did_win: bool) -> PlayerProgress:
    """Best-effort removal of one recorded outcome.

    Only the win/loss counters (and the group counters while in Group) are
    decremented, flooring at zero. Stage advancement, group resets and
    championships caused by the original match are NOT undone; that needs
    the full match history (see history.replay_without).
    """
    updated = dataclasses.replace(player)

    if did_win:
        updated.wins = max(0, updated.wins - 1)
        if updated.stage_index == GROUP_STAGE:
            updated.group_wins = max(0, updated.group_wins - 1)
    else:
        updated.losses = max(0, updated.losses - 1)
        if updated.stage_index == GROUP_STAGE:
            updated.group_losses = max(0, updated.group_losses - 1)

    return updated


# ============================================================================
# Derived fields
# ============================================================================


def phase_label(player: PlayerProgress) -> str:
    """Human-readable phase, e.g. "Group", "Group (1-0)" or "Semifinal"."""
    if player.stage_index <= GROUP_STAGE:
        if player.group_wins == 0 and player.group_losses == 0:
            return PHASES[GROUP_STAGE]
        return f"{PHASES[GROUP_STAGE]} ({player.group_wins}-{player.group_losses})"

    return PHASES[min(player.stage_index, FINAL_STAGE)]


def win_percentage(player: PlayerProgress) -> float:
    """Share of matches won, 0-100. Unrounded; round when displaying."""
    total = player.matches_played
    if total == 0:
        return 0.0
    return player.wins / total * 100


def record(player: PlayerProgress) -> str:
    return f"{player.wins}-{player.losses}"


# ============================================================================
# Storage rows
# ============================================================================


def from_row(row: dict[str, Any]) -> PlayerProgress:
    """Build a record from a storage row. Missing counters default to 0."""
    return PlayerProgress(
        id=row["id"],
        name=row.get("name") or "",
        wins=row.get("wins") or 0,
        losses=row.get("losses") or 0,
        championships=row.get("championships") or 0,
        stage_index=row.get("stage_index") or 0,
        group_wins=row.get("group_wins") or 0,
        group_losses=row.get("group_losses") or 0,
    )


def to_row(player: PlayerProgress) -> dict[str, Any]:
    """Storage payload for a record (derived fields are never stored)."""
    return dataclasses.asdict(player)
