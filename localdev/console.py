"""User-facing status output.

Commands report progress with one-line status messages prefixed by an icon,
coloured when stdout is a terminal and ``NO_COLOR`` is unset. Diagnostics for
operators go through :mod:`localdev.logging` instead.
"""

from __future__ import annotations

import enum
import os
import sys

RULE = "═" * 63


class Style(enum.StrEnum):
    """ANSI colour codes used for status lines."""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    BLUE = "\033[0;34m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"


def _use_colour() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return sys.stdout.isatty()


def paint(text: str, style: Style) -> str:
    """Wrap ``text`` in ``style`` when colour output is enabled."""
    if not _use_colour():
        return text
    return f"{style}{text}{Style.RESET}"


def info(message: str) -> None:
    """Print an informational status line."""
    print(paint(f"ℹ️  {message}", Style.BLUE))


def success(message: str) -> None:
    """Print a success status line."""
    print(paint(f"✅ {message}", Style.GREEN))


def warn(message: str) -> None:
    """Print a warning status line."""
    print(paint(f"⚠️  {message}", Style.YELLOW))


def error(message: str) -> None:
    """Print an error status line."""
    print(paint(f"❌ {message}", Style.RED))


def header(title: str) -> None:
    """Print a section header framed by horizontal rules."""
    print()
    print(paint(RULE, Style.BLUE))
    print(paint(f"🔧 {title}", Style.BLUE))
    print(paint(RULE, Style.BLUE))


def banner(title: str) -> None:
    """Print a command title followed by a rule."""
    print(title)
    print(RULE)
    print()


def detail(line: str) -> None:
    """Print an indented detail line beneath a status message."""
    print(f"  {line}")


def confirm(prompt: str, *, assume_yes: bool = False) -> bool:
    """Ask a ``[Y/n]`` question; anything but ``n``/``N`` counts as yes."""
    if assume_yes:
        return True
    try:
        reply = input(f"{prompt} [Y/n]: ")
    except EOFError:
        return False
    return not reply.strip().lower().startswith("n")
