"""Tests for castelar/phases.py — pure bracket transitions, no storage."""

import itertools

import pytest

from castelar.phases import (
    FINAL_STAGE,
    PHASES,
    PlayerProgress,
    apply_outcome,
    from_row,
    phase_label,
    record,
    reverse_outcome,
    to_row,
    win_percentage,
)


def _zero() -> PlayerProgress:
    return PlayerProgress(id="p1", name="Ana")


def _play(player: PlayerProgress, outcomes: str) -> PlayerProgress:
    """Apply a string of outcomes, e.g. "WLW"."""
    for outcome in outcomes:
        player = apply_outcome(player, outcome == "W")
    return player


# ============================================================================
# Group stage
# ============================================================================


class TestGroupStage:
    def test_three_wins_advances(self):
        p = _play(_zero(), "WWW")
        assert p.stage_index == 1
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.wins == 3
        assert p.losses == 0

    def test_two_wins_does_not_advance_early(self):
        """Promotion always waits for the third match."""
        p = _play(_zero(), "WW")
        assert p.stage_index == 0
        assert p.group_wins == 2
        assert p.group_losses == 0

    def test_two_losses_eliminates_early(self):
        p = _play(_zero(), "LL")
        assert p.stage_index == 0
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.losses == 2

    def test_win_loss_win_advances(self):
        p = _play(_zero(), "WLW")
        assert p.stage_index == 1
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.wins == 2
        assert p.losses == 1

    def test_win_win_loss_advances(self):
        """2-1 concluded on a loss still advances."""
        p = _play(_zero(), "WWL")
        assert p.stage_index == 1
        assert p.group_wins == 0
        assert p.group_losses == 0

    def test_loss_win_loss_eliminated(self):
        """Second loss ends the group; counters reset."""
        p = _play(_zero(), "LWL")
        assert p.stage_index == 0
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.wins == 1
        assert p.losses == 2

    def test_one_one_is_still_open(self):
        p = _play(_zero(), "WL")
        assert p.stage_index == 0
        assert p.group_wins == 1
        assert p.group_losses == 1

    def test_elimination_starts_fresh_group(self):
        p = _play(_zero(), "LL" + "WWW")
        assert p.stage_index == 1
        assert p.wins == 3
        assert p.losses == 2

    def test_concluded_group_checked_before_early_elimination(self):
        """1-1 then a loss: the group concludes at 1-2 and resets."""
        p = PlayerProgress(id="p1", wins=1, losses=1, group_wins=1, group_losses=1)
        p = apply_outcome(p, False)
        assert p.stage_index == 0
        assert p.losses == 2
        assert (p.group_wins, p.group_losses) == (0, 0)


# ============================================================================
# Knockout
# ============================================================================


class TestKnockout:
    @pytest.mark.parametrize("stage", [1, 2, 3])
    def test_win_advances_one_stage(self, stage):
        p = apply_outcome(PlayerProgress(id="p1", stage_index=stage), True)
        assert p.stage_index == stage + 1
        assert p.championships == 0

    def test_final_win_counts_championship(self):
        p = PlayerProgress(id="p1", wins=7, stage_index=FINAL_STAGE, championships=2)
        p = apply_outcome(p, True)
        assert p.championships == 3
        assert p.stage_index == 0
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.wins == 8

    def test_quarterfinal_loss_eliminates(self):
        p = PlayerProgress(id="p1", losses=1, stage_index=2, championships=1)
        p = apply_outcome(p, False)
        assert p.stage_index == 0
        assert p.group_wins == 0
        assert p.group_losses == 0
        assert p.losses == 2
        assert p.championships == 1

    def test_final_loss_eliminates(self):
        p = apply_outcome(PlayerProgress(id="p1", stage_index=FINAL_STAGE), False)
        assert p.stage_index == 0
        assert p.championships == 0

    def test_full_run_to_title(self):
        """3 group wins + 4 knockout wins = one championship."""
        p = _play(_zero(), "WWW" + "WWWW")
        assert p.championships == 1
        assert p.stage_index == 0
        assert p.wins == 7


# ============================================================================
# Invariants
# ============================================================================


class TestInvariants:
    def test_input_not_mutated(self):
        p = _zero()
        apply_outcome(p, True)
        assert p.wins == 0
        assert p.group_wins == 0

    def test_ranges_hold_for_every_short_sequence(self):
        """Every W/L sequence up to length 8 keeps the record valid."""
        for n in range(1, 9):
            for seq in itertools.product("WL", repeat=n):
                p = _zero()
                for outcome in seq:
                    before = p
                    p = apply_outcome(p, outcome == "W")
                    assert 0 <= p.stage_index <= FINAL_STAGE
                    assert 0 <= p.group_wins <= 3
                    assert 0 <= p.group_losses <= 3
                    assert p.group_wins + p.group_losses <= 3
                    if p.stage_index > 0:
                        assert p.group_wins == 0 and p.group_losses == 0
                    assert p.wins >= before.wins
                    assert p.losses >= before.losses
                    assert p.championships >= before.championships
                assert p.wins + p.losses == n

    def test_deterministic(self):
        seq = "WLWWWLWWWWWLL"
        assert _play(_zero(), seq) == _play(_zero(), seq)


# ============================================================================
# Derived fields
# ============================================================================


class TestPhaseLabel:
    def test_zero_record_is_bare_group(self):
        assert phase_label(_zero()) == "Group"

    def test_group_with_score(self):
        p = PlayerProgress(id="p1", group_wins=1, group_losses=0)
        assert phase_label(p) == "Group (1-0)"

    def test_group_one_one(self):
        p = PlayerProgress(id="p1", group_wins=1, group_losses=1)
        assert phase_label(p) == "Group (1-1)"

    @pytest.mark.parametrize("stage", range(1, len(PHASES)))
    def test_knockout_names(self, stage):
        assert phase_label(PlayerProgress(id="p1", stage_index=stage)) == PHASES[stage]

    def test_out_of_range_clamps_to_final(self):
        """Manual overrides can store anything; the label clamps."""
        assert phase_label(PlayerProgress(id="p1", stage_index=9)) == "Final"


class TestWinPercentage:
    def test_no_matches_is_zero(self):
        assert win_percentage(_zero()) == 0

    def test_only_wins_is_hundred(self):
        assert win_percentage(PlayerProgress(id="p1", wins=4)) == 100

    def test_full_precision(self):
        p = PlayerProgress(id="p1", wins=1, losses=2)
        assert win_percentage(p) == pytest.approx(33.333333, rel=1e-6)
        assert f"{win_percentage(p):.1f}" == "33.3"

    def test_record_string(self):
        assert record(PlayerProgress(id="p1", wins=5, losses=3)) == "5-3"


# ============================================================================
# Reversal
# ============================================================================


class TestReverseOutcome:
    def test_reverse_group_win(self):
        p = PlayerProgress(id="p1", wins=2, group_wins=2)
        p = reverse_outcome(p, True)
        assert p.wins == 1
        assert p.group_wins == 1

    def test_reverse_group_loss(self):
        p = PlayerProgress(id="p1", losses=1, group_losses=1)
        p = reverse_outcome(p, False)
        assert p.losses == 0
        assert p.group_losses == 0

    def test_floors_at_zero(self):
        p = reverse_outcome(_zero(), True)
        assert p.wins == 0
        assert p.group_wins == 0
        p = reverse_outcome(_zero(), False)
        assert p.losses == 0

    def test_stage_and_titles_untouched(self):
        """Approximate: the advancement a win caused is not undone."""
        p = PlayerProgress(id="p1", wins=4, stage_index=2, championships=1)
        p = reverse_outcome(p, True)
        assert p.wins == 3
        assert p.stage_index == 2
        assert p.championships == 1
        assert p.group_wins == 0


# ============================================================================
# Rows
# ============================================================================


class TestRows:
    def test_missing_counters_default_to_zero(self):
        p = from_row({"id": "x", "name": "Beto", "wins": None})
        assert p == PlayerProgress(id="x", name="Beto")

    def test_round_trip_keeps_fields(self):
        p = PlayerProgress(id="x", name="Beto", wins=3, losses=1, stage_index=2)
        assert from_row(to_row(p)) == p

    def test_row_has_no_derived_fields(self):
        row = to_row(_zero())
        assert "phase_label" not in row
        assert "win_percentage" not in row
