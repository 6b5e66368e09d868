"""Terminal helpers for CLI output and interactive prompts."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TextIO

from rich.console import Console

from .errors import Cancelled


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


def supports_color(stream: TextIO | None = None) -> bool:
    """Check if terminal supports color output."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return True


def colorize(text: str, color: str, bold: bool = False, stream: TextIO | None = None) -> str:
    """Apply color to text if terminal supports it."""
    if not supports_color(stream):
        return text
    prefix = (Colors.BOLD if bold else "") + color
    return f"{prefix}{text}{Colors.RESET}"


def print_success(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize("✓", Colors.GREEN, bold=True, stream=stream) + " " + message, file=stream)


def print_error(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    print(colorize("✗", Colors.RED, bold=True, stream=stream) + " " + message, file=stream)


def print_warning(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stderr
    print(colorize("⚠", Colors.YELLOW, bold=True, stream=stream) + " " + message, file=stream)


def print_info(message: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(colorize("ℹ", Colors.BLUE, bold=True, stream=stream) + " " + message, file=stream)


def print_summary_box(title: str, items: list[tuple[str, str]], stream: TextIO | None = None) -> None:
    """Print a formatted box with key-value pairs."""
    stream = stream or sys.stdout
    max_key_len = max((len(k) for k, _ in items), default=0)
    print(colorize(title, Colors.CYAN, bold=True, stream=stream), file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)
    for key, value in items:
        print(f"  {key.ljust(max_key_len)}  {value}", file=stream)
    print(colorize("─" * 60, Colors.DIM, stream=stream), file=stream)


# ---- prompts ------------------------------------------------------------------
InputFunc = Callable[[str], str]


def prompt_text(
    title: str,
    *,
    placeholder: str = "",
    validate: Callable[[str], object] | None = None,
    input_func: InputFunc = input,
    stream: TextIO | None = None,
) -> str:
    """Ask for a single line of text; Ctrl+C / EOF raise :class:`Cancelled`.

    ``validate`` may raise an exception whose message is shown before asking again.
    """
    stream = stream or sys.stderr
    hint = f" [{placeholder}]" if placeholder else ""
    while True:
        try:
            value = input_func(f"{title}{hint}: ").strip()
        except (KeyboardInterrupt, EOFError) as exc:
            raise Cancelled() from exc
        if validate is None:
            return value
        try:
            validate(value)
        except Exception as exc:  # noqa: BLE001 - surfaced back to the user
            print(colorize(str(exc), Colors.RED, stream=stream), file=stream)
            continue
        return value


def prompt_multiline(title: str, *, stream: TextIO | None = None, reader: TextIO | None = None) -> str:
    """Read text until EOF (Ctrl+D); Ctrl+C raises :class:`Cancelled`."""
    stream = stream or sys.stderr
    reader = reader or sys.stdin
    print(f"{title} (finish with Ctrl+D):", file=stream)
    try:
        return reader.read()
    except KeyboardInterrupt as exc:
        raise Cancelled() from exc


def confirm(question: str, *, default: bool = False, input_func: InputFunc = input) -> bool:
    suffix = " [Y/n] " if default else " [y/N] "
    try:
        answer = input_func(question + suffix).strip().lower()
    except (KeyboardInterrupt, EOFError) as exc:
        raise Cancelled() from exc
    if not answer:
        return default
    return answer in ("y", "yes")


@contextmanager
def waiting(message: str) -> Iterator[None]:
    """Show a spinner on stderr while blocking."""
    console = Console(stderr=True)
    with console.status(message, spinner="dots"):
        yield


__all__ = [
    "Colors",
    "colorize",
    "confirm",
    "print_error",
    "print_info",
    "print_success",
    "print_summary_box",
    "print_warning",
    "prompt_multiline",
    "prompt_text",
    "supports_color",
    "waiting",
]
