"""
Castelar - Bracket tracker and party games for the group

Players climb Group -> Round of 16 -> Quarterfinal -> Semifinal -> Final,
one match at a time. The Impostor helpers deal roles for the word game.
"""

__version__ = "0.1.0"

from .phases import (
    PHASES,
    PlayerProgress,
    apply_outcome,
    reverse_outcome,
    phase_label,
    win_percentage,
    record,
)

from .history import (
    Match,
    StandingRow,
    replay_matches,
    replay_without,
    reverse_match,
    matches_in_period,
    period_standings,
    standings,
)

from .impostor import (
    Round,
    pick_secret_person,
    generate_impostor_indices,
    deal_round,
)

__all__ = [
    # Version
    "__version__",
    # Phase engine
    "PHASES",
    "PlayerProgress",
    "apply_outcome",
    "reverse_outcome",
    "phase_label",
    "win_percentage",
    "record",
    # History
    "Match",
    "StandingRow",
    "replay_matches",
    "replay_without",
    "reverse_match",
    "matches_in_period",
    "period_standings",
    "standings",
    # Impostor
    "Round",
    "pick_secret_person",
    "generate_impostor_indices",
    "deal_round",
]
