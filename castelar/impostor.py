"""
castelar/impostor.py - Role assignment for the Impostor party game.

One person from the roster is the secret everyone shares, except the
impostors, who have to bluff. Pure helpers; pass an explicit
random.Random for repeatable deals.
"""

import random
from dataclasses import dataclass, field
from typing import Any, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Round:
    """A dealt round: the shared secret and the seats that don't get it."""

    secret: Any
    impostors: list[int] = field(default_factory=list)


def pick_secret_person(people: Sequence[T], rng: random.Random | None = None) -> T | None:
    """Uniform pick from the roster. None if the roster is empty."""
    if not people:
        return None
    rng = rng or random.Random()
    return people[rng.randrange(len(people))]


def generate_impostor_indices(
    total_players: int, impostor_count: int, rng: random.Random | None = None
) -> list[int]:
    """Distinct seat indices for the impostors.

    At least one player always knows the secret, so the count is capped at
    total_players - 1.
    """
    if total_players <= 0 or impostor_count <= 0:
        return []

    count = min(impostor_count, total_players - 1)
    rng = rng or random.Random()
    return rng.sample(range(total_players), count)


def deal_round(
    people: Sequence[T],
    total_players: int,
    impostor_count: int,
    rng: random.Random | None = None,
) -> Round:
    """Pick the secret and the impostor seats in one go."""
    rng = rng or random.Random()
    secret = pick_secret_person(people, rng)
    if secret is None:
        raise ValueError("Roster is empty, add people before dealing a round")
    return Round(secret=secret, impostors=generate_impostor_indices(total_players, impostor_count, rng))
