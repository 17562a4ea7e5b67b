"""Tests for castelar.cli — commands run against a temporary SQLite file."""

import json
import sys

import pytest

from castelar import cli
from tracker.db import TrackerDB


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "castelar.db")


def _run(monkeypatch, db_path: str, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["castelar", "--db", db_path, *argv])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    return exc.value.code


class TestCli:
    def test_add_and_record_by_name(self, monkeypatch, db_path, capsys):
        for name in ("Ana", "Beto", "Caro", "Dani"):
            assert _run(monkeypatch, db_path, "add-player", name) == 0

        assert _run(monkeypatch, db_path, "record", "-w", "ana,Beto", "-l", "Caro,Dani") == 0
        assert "Match #1 recorded" in capsys.readouterr().out

        db = TrackerDB(db_path)
        assert {p.name: p.wins for p in db.list_players()} == {"Ana": 1, "Beto": 1, "Caro": 0, "Dani": 0}

    def test_record_unknown_player(self, monkeypatch, db_path):
        _run(monkeypatch, db_path, "add-player", "Ana")
        assert _run(monkeypatch, db_path, "record", "-w", "Ana", "-l", "Nadie") == 1

    def test_duplicate_player(self, monkeypatch, db_path):
        _run(monkeypatch, db_path, "add-player", "Ana")
        assert _run(monkeypatch, db_path, "add-player", "Ana") == 1

    def test_standings_show_one_decimal(self, monkeypatch, db_path, capsys):
        for name in ("Ana", "Beto"):
            _run(monkeypatch, db_path, "add-player", name)
        _run(monkeypatch, db_path, "record", "-w", "Ana", "-l", "Beto")
        _run(monkeypatch, db_path, "record", "-w", "Beto", "-l", "Ana")
        _run(monkeypatch, db_path, "record", "-w", "Beto", "-l", "Ana")
        capsys.readouterr()

        assert _run(monkeypatch, db_path, "players") == 0
        out = capsys.readouterr().out
        assert "66.7%" in out
        assert "33.3%" in out

    def test_set_stage_by_name(self, monkeypatch, db_path):
        _run(monkeypatch, db_path, "add-player", "Ana")
        assert _run(monkeypatch, db_path, "set-stage", "Ana", "semifinal") == 0
        assert TrackerDB(db_path).list_players()[0].stage_index == 3

    def test_set_stage_index_with_whitespace(self, monkeypatch, db_path):
        _run(monkeypatch, db_path, "add-player", "Ana")
        assert _run(monkeypatch, db_path, "set-stage", "Ana", " 3 ") == 0
        assert TrackerDB(db_path).list_players()[0].stage_index == 3

    def test_set_stage_rejects_unknown(self, monkeypatch, db_path):
        _run(monkeypatch, db_path, "add-player", "Ana")
        assert _run(monkeypatch, db_path, "set-stage", "Ana", "7") == 1
        assert _run(monkeypatch, db_path, "set-stage", "Ana", "Playoffs") == 1

    def test_undo(self, monkeypatch, db_path):
        for name in ("Ana", "Beto"):
            _run(monkeypatch, db_path, "add-player", name)
        _run(monkeypatch, db_path, "record", "-w", "Ana", "-l", "Beto")
        match_id = TrackerDB(db_path).list_matches()[0].id

        assert _run(monkeypatch, db_path, "undo", match_id, "--policy", "replay") == 0
        assert _run(monkeypatch, db_path, "undo", match_id) == 1
        assert TrackerDB(db_path).match_count() == 0

    def test_import_people_and_deal(self, monkeypatch, db_path, tmp_path, capsys):
        roster = tmp_path / "people.txt"
        roster.write_text("Ana\nBeto\n\nCaro\n")
        assert _run(monkeypatch, db_path, "import-people", str(roster)) == 0
        assert "Imported 3 people" in capsys.readouterr().out

        assert _run(monkeypatch, db_path, "impostor", "-n", "4", "-i", "1") == 0
        out = capsys.readouterr().out
        assert out.count("IMPOSTOR") == 1
        assert out.count("Seat ") == 4

    def test_add_blank_person(self, monkeypatch, db_path):
        assert _run(monkeypatch, db_path, "add-person", "   ") == 1
        assert TrackerDB(db_path).list_people() == []

    def test_import_personas_wrapper(self, monkeypatch, db_path, tmp_path):
        roster = tmp_path / "people.json"
        roster.write_text(json.dumps({"personas": [{"name": "Ana"}, {"username": "beto"}]}))
        assert _run(monkeypatch, db_path, "import-people", str(roster)) == 0
        assert [p["name"] for p in TrackerDB(db_path).list_people()] == ["Ana", "beto"]

    def test_import_username_wins_over_name(self, monkeypatch, db_path, tmp_path):
        roster = tmp_path / "people.json"
        roster.write_text(json.dumps([{"id": "p1", "username": "caro", "name": "Carolina"}]))
        assert _run(monkeypatch, db_path, "import-people", str(roster)) == 0
        assert TrackerDB(db_path).list_people() == [{"id": "p1", "name": "caro"}]

    @pytest.mark.parametrize("payload", [["Ana", "Beto"], {"people": []}, "Ana", 3])
    def test_import_rejects_bad_shape(self, monkeypatch, db_path, tmp_path, payload):
        roster = tmp_path / "people.json"
        roster.write_text(json.dumps(payload))
        assert _run(monkeypatch, db_path, "import-people", str(roster)) == 1
        assert TrackerDB(db_path).list_people() == []
