#!/usr/bin/env python3
"""
Delete a game and its player records by id, bypassing token checks.
Refuses running games unless --force is given (a stuck timed game, for example).
Usage: python scripts/delete_game.py <game_id> [--force]
From repo root with PYTHONPATH=. or after pip install -e .
"""
import argparse
import sys

from taskhunt.api.database import init_db, make_engine, make_session_factory, resolve_database_url, transaction
from taskhunt.api.store import GameStore, PlayerStore
from taskhunt.engine.errors import LifecycleError
from taskhunt.engine.state import DELETABLE_STATES


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete a game and its players")
    parser.add_argument("game_id", type=str, help="Game id")
    parser.add_argument("--force", action="store_true", help="Delete even if the game is running")
    return parser


def main() -> None:
    args = get_parser().parse_args()
    game_id = args.game_id.strip()
    if not game_id:
        print("Error: provide a game id.", file=sys.stderr)
        sys.exit(1)

    engine = make_engine(resolve_database_url())
    init_db(engine)
    try:
        with transaction(make_session_factory(engine)) as session:
            games = GameStore(session)
            game = games.find(game_id, lock=True)
            if game is None:
                print(f"No game found with id: {game_id!r}")
                return
            if game.state not in DELETABLE_STATES and not args.force:
                print(f"Game {game_id} is {game.state.value}; pass --force to delete it anyway.", file=sys.stderr)
                sys.exit(1)
            games.delete(game_id)
            removed = PlayerStore(session).delete_many(game_id)
    except LifecycleError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    print(f"Deleted game {game.settings.name!r} ({game_id}) and {removed} player record(s).")


if __name__ == "__main__":
    main()
