#!/usr/bin/env python3
"""
castelar/cli.py - Command line interface for Castelar

Usage:
    castelar serve [--port 8000] [--db castelar.db]
    castelar players [--year 2025] [--month 3]
    castelar add-player <name>
    castelar record --winners Ana,Beto --losers Caro,Dani
    castelar undo <match_id> [--policy replay]
    castelar set-stage <player> <stage>
    castelar impostor --players 6 [--impostors 1]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from castelar.config import load_config
from castelar.phases import PHASES, PlayerProgress

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def open_db(args):
    """Open the tracker DB from --db, falling back to the config file."""
    from tracker.db import TrackerDB

    db_path = args.db or load_config().tracker.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return TrackerDB(db_path)


def resolve_player(db, ref: str) -> PlayerProgress | None:
    """Find a player by id or (case-insensitive) name."""
    player = db.get_player(ref)
    if player is not None:
        return player
    wanted = ref.strip().casefold()
    for candidate in db.list_players():
        if candidate.name.casefold() == wanted:
            return candidate
    logger.error(f"Unknown player: {ref}")
    return None


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def cmd_serve(args):
    """Start the tracker server."""
    try:
        import uvicorn
    except ImportError:
        logger.error("The server requires extra dependencies: pip install castelar[server]")
        return 1

    from tracker.server import app

    config = load_config()
    # Set DB path on app state so lifespan picks it up
    app.state.db_path = args.db or config.tracker.db_path
    app.state.undo_policy = args.undo_policy or config.tracker.undo_policy
    port = args.port or config.server.port
    host = args.host or config.server.host
    logger.info(f"Starting tracker on {host}:{port} (db: {app.state.db_path})")
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


def cmd_players(args):
    """Print standings, all-time or for a period."""
    from castelar.history import period_standings

    db = open_db(args)
    filtered = args.year is not None or args.month is not None
    matches = db.list_matches() if filtered else []
    rows = period_standings(db.list_players(), matches, args.year, args.month)

    period = "All time"
    if filtered:
        period = f"{args.year or 'this year'}" + (f" / month {args.month}" if args.month else "")

    print(f"\n🏆 Castelar standings ({period})\n")
    print(f"{'Name':<20} {'Phase':<16} {'Titles':>6} {'Record':>9} {'Win %':>7}")
    print("-" * 62)
    for row in rows:
        p = row.player
        print(
            f"{p.name:<20} {row.phase_label:<16} {p.championships:>6} "
            f"{row.record:>9} {row.win_percentage:>6.1f}%"
        )
    print()
    return 0


def cmd_add_player(args):
    db = open_db(args)
    try:
        player = db.add_player(args.name)
    except ValueError as e:
        logger.error(str(e))
        return 1
    print(f"Added {player.name} ({player.id})")
    return 0


def cmd_remove_player(args):
    db = open_db(args)
    player = resolve_player(db, args.player)
    if player is None:
        return 1
    db.delete_player(player.id)
    print(f"Removed {player.name}")
    return 0


def cmd_record(args):
    """Settle a match between two teams."""
    from castelar.phases import phase_label
    from tracker.db import InvalidMatchError, PlayerNotFoundError

    db = open_db(args)
    winners = [resolve_player(db, ref) for ref in _split(args.winners)]
    losers = [resolve_player(db, ref) for ref in _split(args.losers)]
    if None in winners or None in losers:
        return 1

    try:
        settlement = db.settle_match([p.id for p in winners], [p.id for p in losers])
    except (InvalidMatchError, PlayerNotFoundError) as e:
        logger.error(f"Can't record match: {e}")
        return 1

    print(f"\n✅ Match #{settlement.match.match_number} recorded\n")
    for label, team in (("W", settlement.winners), ("L", settlement.losers)):
        for p in team:
            print(f"   [{label}] {p.name:<20} {phase_label(p):<16} titles: {p.championships}")
    print()
    return 0


def cmd_matches(args):
    db = open_db(args)
    names = {p.id: p.name for p in db.list_players()}

    def _team(ids):
        return ", ".join(names.get(pid, f"<{pid[:8]}>") for pid in ids)

    for m in db.list_matches(args.year, args.month):
        print(f"#{m.match_number:<5} {m.match_date[:16]}  {m.id}")
        print(f"       W: {_team(m.winning_team)}")
        print(f"       L: {_team(m.losing_team)}")
    return 0


def cmd_undo(args):
    from tracker.db import MatchNotFoundError

    db = open_db(args)
    policy = args.policy or load_config().tracker.undo_policy
    try:
        updated = db.undo_match(args.match_id, policy)
    except MatchNotFoundError:
        logger.error(f"Unknown match: {args.match_id}")
        return 1

    print(f"Undid match {args.match_id} ({policy}), {len(updated)} player(s) updated")
    if policy == "reverse":
        print("Note: stage moves and championships from that match were not reverted.")
    return 0


def _parse_stage(value: str) -> int | None:
    value = value.strip()
    if value.isdigit():
        return int(value)
    for index, name in enumerate(PHASES):
        if name.casefold() == value.casefold():
            return index
    return None


def cmd_set_stage(args):
    """Manual stage correction."""
    db = open_db(args)
    player = resolve_player(db, args.player)
    if player is None:
        return 1

    stage = _parse_stage(args.stage)
    if stage is None or not 0 <= stage < len(PHASES):
        logger.error(f"Unknown stage: {args.stage}. Use 0-{len(PHASES) - 1} or one of {', '.join(PHASES)}")
        return 1

    db.set_stage(player.id, stage)
    print(f"{player.name} -> {PHASES[stage]}")
    return 0


def cmd_match_count(args):
    db = open_db(args)
    print(db.match_count_for_period(args.year, args.month))
    return 0


def cmd_set_match_number(args):
    db = open_db(args)
    db.set_initial_match_number(args.number)
    print(f"Match counter set to {args.number}")
    return 0


def cmd_add_person(args):
    db = open_db(args)
    try:
        person = db.add_person(args.name)
    except ValueError as e:
        logger.error(str(e))
        return 1
    print(f"Added {person['name']} ({person['id']})")
    return 0


def _roster_from_json(data) -> list[dict]:
    """Accept a bare list of people or a {"personas": [...]} wrapper."""
    if isinstance(data, dict) and "personas" in data:
        data = data["personas"]
    if not isinstance(data, list):
        raise ValueError("expected a list of people or {\"personas\": [...]}")
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError(f"expected an object with a name, got {entry!r}")
    return data


def cmd_import_people(args):
    """Import a roster: JSON (list of {id?, name|username}) or one name per line."""
    path = Path(args.file)
    if not path.exists():
        logger.error(f"No such file: {path}")
        return 1

    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        try:
            people = _roster_from_json(json.loads(text))
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to parse {path}: {e}")
            return 1
    else:
        people = [{"name": line} for line in text.splitlines()]

    db = open_db(args)
    print(f"Imported {db.import_people(people)} people")
    return 0


def cmd_impostor(args):
    """Deal an Impostor round from the roster."""
    from castelar.impostor import deal_round

    db = open_db(args)
    impostors = args.impostors if args.impostors is not None else load_config().impostor.impostors
    try:
        dealt = deal_round(db.list_people(), args.players, impostors)
    except ValueError as e:
        logger.error(str(e))
        return 1

    seats = set(dealt.impostors)
    print()
    for seat in range(args.players):
        role = "IMPOSTOR" if seat in seats else dealt.secret["name"]
        print(f"   Seat {seat + 1}: {role}")
    print()
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="castelar",
        description="Castelar bracket tracker and Impostor party game",
    )
    parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the tracker server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: from config)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 8000)")
    serve_parser.add_argument("--undo-policy", choices=["reverse", "replay"], default=None, help="Default undo policy")
    serve_parser.set_defaults(func=cmd_serve)

    # players command
    players_parser = subparsers.add_parser("players", help="Show standings")
    players_parser.add_argument("--year", "-y", type=int, default=None, help="Only matches from this year")
    players_parser.add_argument("--month", "-m", type=int, choices=range(1, 13), default=None, help="Only matches from this month")
    players_parser.set_defaults(func=cmd_players)

    # add-player command
    add_parser = subparsers.add_parser("add-player", help="Add a player")
    add_parser.add_argument("name", help="Display name")
    add_parser.set_defaults(func=cmd_add_player)

    # remove-player command
    remove_parser = subparsers.add_parser("remove-player", help="Remove a player")
    remove_parser.add_argument("player", help="Player name or id")
    remove_parser.set_defaults(func=cmd_remove_player)

    # record command
    record_parser = subparsers.add_parser("record", help="Record a match result")
    record_parser.add_argument("--winners", "-w", required=True, help="Comma-separated names or ids")
    record_parser.add_argument("--losers", "-l", required=True, help="Comma-separated names or ids")
    record_parser.set_defaults(func=cmd_record)

    # matches command
    matches_parser = subparsers.add_parser("matches", help="List recorded matches")
    matches_parser.add_argument("--year", "-y", type=int, default=None)
    matches_parser.add_argument("--month", "-m", type=int, choices=range(1, 13), default=None)
    matches_parser.set_defaults(func=cmd_matches)

    # undo command
    undo_parser = subparsers.add_parser("undo", help="Undo a recorded match")
    undo_parser.add_argument("match_id", help="Match id (see `castelar matches`)")
    undo_parser.add_argument("--policy", choices=["reverse", "replay"], default=None, help="Undo policy (default: from config)")
    undo_parser.set_defaults(func=cmd_undo)

    # set-stage command
    stage_parser = subparsers.add_parser("set-stage", help="Manually set a player's stage")
    stage_parser.add_argument("player", help="Player name or id")
    stage_parser.add_argument("stage", help="Stage index (0-4) or name")
    stage_parser.set_defaults(func=cmd_set_stage)

    # match-count command
    count_parser = subparsers.add_parser("match-count", help="Show the match counter")
    count_parser.add_argument("--year", "-y", type=int, default=None)
    count_parser.add_argument("--month", "-m", type=int, choices=range(1, 13), default=None)
    count_parser.set_defaults(func=cmd_match_count)

    # set-match-number command
    setnum_parser = subparsers.add_parser("set-match-number", help="Start the counter at a given number")
    setnum_parser.add_argument("number", type=int, help="Initial match number")
    setnum_parser.set_defaults(func=cmd_set_match_number)

    # add-person command
    person_parser = subparsers.add_parser("add-person", help="Add someone to the Impostor roster")
    person_parser.add_argument("name", help="Name")
    person_parser.set_defaults(func=cmd_add_person)

    # import-people command
    import_parser = subparsers.add_parser("import-people", help="Bulk import the Impostor roster")
    import_parser.add_argument("file", help="JSON list (or {\"personas\": [...]}) or text file with one name per line")
    import_parser.set_defaults(func=cmd_import_people)

    # impostor command
    impostor_parser = subparsers.add_parser("impostor", help="Deal an Impostor round")
    impostor_parser.add_argument("--players", "-n", type=int, required=True, help="Players at the table")
    impostor_parser.add_argument("--impostors", "-i", type=int, default=None, help="Impostors (default: from config)")
    impostor_parser.set_defaults(func=cmd_impostor)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
