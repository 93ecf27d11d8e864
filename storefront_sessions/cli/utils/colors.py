"""
CLI output primitives built on Click.

    success(), error(), warning(), info(), dim()
    kv()        aligned key-value pair
    section()   titled divider

click.style handles NO_COLOR and dumb terminals.
"""

from __future__ import annotations

import click


_CHECK = "✓"
_CROSS = "✗"


def success(message: str) -> None:
    """Print success message in green."""
    click.echo(click.style(message, fg="green"))


def error(message: str) -> None:
    """Print error message in red (stderr)."""
    click.echo(click.style(message, fg="red"), err=True)


def warning(message: str) -> None:
    """Print warning message in yellow (stderr)."""
    click.echo(click.style(message, fg="yellow"), err=True)


def info(message: str) -> None:
    """Print info message in cyan."""
    click.echo(click.style(message, fg="cyan"))


def dim(message: str) -> None:
    click.echo(click.style(message, dim=True))


def section(title: str, *, fg: str = "cyan") -> None:
    click.echo(click.style(f"── {title} ", fg=fg, bold=True))


def kv(
    key: str,
    value: object,
    *,
    key_width: int = 16,
    indent: int = 2,
    key_fg: str = "white",
    val_fg: str = "cyan",
) -> None:
    """
    Print an aligned key-value pair.

        customer_id:    t_3f9c...
        expires_at:     1700172800
    """
    prefix = " " * indent
    k = click.style(f"{key}:", fg=key_fg)
    v = click.style(str(value), fg=val_fg)
    padding = " " * max(1, key_width - len(key) - 1)
    click.echo(f"{prefix}{k}{padding}{v}")
