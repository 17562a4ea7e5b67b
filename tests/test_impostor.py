"""Tests for castelar/impostor.py — role assignment."""

import random

import pytest

from castelar.impostor import deal_round, generate_impostor_indices, pick_secret_person

PEOPLE = [{"id": str(i), "name": name} for i, name in enumerate(["Ana", "Beto", "Caro", "Dani"])]


class TestPickSecretPerson:
    def test_empty_roster(self):
        assert pick_secret_person([]) is None

    def test_pick_from_roster(self):
        assert pick_secret_person(PEOPLE, random.Random(1)) in PEOPLE

    def test_seeded_pick_is_repeatable(self):
        assert pick_secret_person(PEOPLE, random.Random(7)) == pick_secret_person(PEOPLE, random.Random(7))

    def test_every_person_can_be_picked(self):
        rng = random.Random(0)
        seen = {pick_secret_person(PEOPLE, rng)["name"] for _ in range(200)}
        assert seen == {"Ana", "Beto", "Caro", "Dani"}


class TestImpostorIndices:
    @pytest.mark.parametrize("total,count", [(0, 1), (5, 0), (-1, 2), (4, -3)])
    def test_degenerate_inputs(self, total, count):
        assert generate_impostor_indices(total, count) == []

    def test_distinct_and_in_range(self):
        seats = generate_impostor_indices(8, 3, random.Random(3))
        assert len(seats) == 3
        assert len(set(seats)) == 3
        assert all(0 <= s < 8 for s in seats)

    def test_capped_so_someone_knows_the_secret(self):
        assert len(generate_impostor_indices(4, 10)) == 3

    def test_single_player_gets_no_impostor(self):
        assert generate_impostor_indices(1, 1) == []


class TestDealRound:
    def test_deal(self):
        dealt = deal_round(PEOPLE, 6, 2, random.Random(5))
        assert dealt.secret in PEOPLE
        assert len(dealt.impostors) == 2

    def test_empty_roster_raises(self):
        with pytest.raises(ValueError):
            deal_round([], 6, 1)
