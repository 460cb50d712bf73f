"""Blocking terminal prompts."""
import sys
from typing import Callable, TypeVar

from errors import InstallerError, UserCancelledError


T = TypeVar("T")


def _read(message: str) -> str:
    try:
        return input(message)
    except (EOFError, KeyboardInterrupt) as e:
        print(file=sys.stderr)
        raise UserCancelledError() from e


def prompt(message: str, validator: Callable[[str], T | None]) -> T:
    """
    Ask until `validator` accepts the answer.

    The validator returns a value to accept the answer and None (or raises an
    InstallerError, whose message is shown) to ask again.
    """
    while True:
        answer = _read(f"{message}\n> ").strip()
        if not answer:
            continue
        try:
            value = validator(answer)
        except InstallerError as e:
            print(f"\n{e}", file=sys.stderr)
            if e.path:
                print(e.path, file=sys.stderr)
            print(file=sys.stderr)
            continue
        if value is not None:
            return value


def confirm(message: str, default: bool = False) -> bool:
    hint = "[Y/n]" if default else "[y/N]"
    while True:
        answer = _read(f"{message} {hint} ").strip().lower()
        if not answer:
            return default
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False


def alert(message: str) -> None:
    """Show `message` and wait for the user to press enter."""
    _read(f"{message}\nPress enter to continue...")
