# cli_driver.py
# This file is intended to be run to play the 2048 game on the CLI

from pathlib import Path
from typing import List, Optional
import argparse
import logging

from core import DIRECTION
from session import Session
from storage import (
    GameStore,
    InvalidSaveNameError,
    LoadError,
    PersistenceIOError,
    StorageConfig,
)

BOARD_SIZE_CHOICES = (4, 5)
DIRECTION_MAP = {'W': DIRECTION.UP, 'A': DIRECTION.LEFT, 'S': DIRECTION.DOWN, 'D': DIRECTION.RIGHT}
SAVE_COMMAND = 'P'
END_COMMAND = 'E'


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Play 2048 in the terminal.")
    parser.add_argument('--data-dir', type=Path, default=None,
                        help="Directory for saved games and scores (default: $SLIDE2048_DATA_DIR or .)")
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help="Logging verbosity")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    config = StorageConfig(data_dir=args.data_dir) if args.data_dir else StorageConfig.from_env()
    store = GameStore(config)

    try:
        session = choose_session(store)
        play(session)
    except (EOFError, KeyboardInterrupt):
        print("\nQuitting game.")
        return 1
    return 0


# --- Prompts ---

def choose_session(store: GameStore) -> Session:
    """Asks for a saved game to load or a board size for a new one."""
    while True:
        choice = input("Do you want to load a saved game (L) or start a new game (N)? ").strip().upper()
        if choice == 'L':
            try:
                names = store.list_saved_names()
            except PersistenceIOError as e:
                print(f"Error: {e}")
                continue
            if not names:
                print("There are no saved games.")
                continue
            print("Available games to load:")
            for name in names:
                print(f"  {name}")
            name = input("Enter the name of the game you want to load: ")
            try:
                session = Session.load(name, store)
            except (LoadError, PersistenceIOError) as e:
                print(f"Error: {e}")
                continue
            print("Game loaded successfully.")
            return session
        elif choice == 'N':
            return Session.new_session(ask_board_size(), store)
        else:
            print("Invalid choice.")


def ask_board_size() -> int:
    while True:
        raw = input("Enter 4 to play on a 4x4 board or 5 to play on a 5x5 board: ").strip()
        try:
            size = int(raw)
        except ValueError:
            print("Invalid input. Please enter a valid integer.")
            continue
        if size in BOARD_SIZE_CHOICES:
            print(f"You selected a {size}x{size} board.")
            return size
        print("Incorrect input. Please enter 4 or 5.")


def ask_to_continue(target_tile: int) -> bool:
    while True:
        answer = input(f"You reached {target_tile}! Do you want to continue playing the game? YES/NO ").strip().upper()
        if answer == 'YES':
            return True
        if answer == 'NO':
            return False
        print("Invalid input. Please enter YES or NO.")


# --- Game Loop ---

def play(session: Session) -> None:
    print("A - Left, D - Right, W - Up, S - Down, E - End game, P - Save game")
    while True:
        display_board_state(session)
        command = input("Enter move: ").strip().upper()

        if command == END_COMMAND:
            break
        if command == SAVE_COMMAND:
            save_game(session)
            continue

        chosen_direction = DIRECTION_MAP.get(command)
        if not chosen_direction:
            print("Invalid input. Use W, A, S, D, P or E.")
            continue

        outcome = session.apply_move(chosen_direction)
        if not outcome.changed:
            print("Move did not change the board. Try a different direction.")

        wants_to_continue = ask_to_continue(session.target_tile) if session.has_reached_target() else True
        if session.is_over(wants_to_continue):
            display_board_state(session)
            break

    end_game(session)


def save_game(session: Session) -> None:
    name = input("Enter file name: ")
    try:
        session.save(name)
    except (InvalidSaveNameError, PersistenceIOError) as e:
        print(f"Error: {e}")
        return
    print("Game saved successfully.")


def end_game(session: Session) -> None:
    """Records the final score and prints it along with the high score."""
    print(f"GAME OVER\nYour score is: {session.score}")
    try:
        high_score = session.finish()
    except PersistenceIOError as e:
        print(f"Error: could not record the score: {e}")
        return
    print(f"High score: {high_score}")


# --- Display Function ---
def display_board_state(session: Session) -> None:
    """Prints the board and score to the console."""
    print(f"\nScore: {session.score}")
    for row in session.tiles():
        print("\t".join(map(str, row)))
    print("-" * (session.size * 6)) # Adjust width based on board size


if __name__ == "__main__":
    raise SystemExit(main())
