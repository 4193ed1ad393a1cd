"""Colored operator-facing diagnostics.

Every line printed here is also sent to the ``amberqs`` logger so the run log
keeps the same record as the terminal.
"""
import logging

from rich.console import Console
from rich.text import Text

console = Console(highlight=False)
logger = logging.getLogger("amberqs")

_TAGS = {
    "info": ("[INFO]", "blue", logging.INFO),
    "success": ("[SUCCESS]", "green", logging.INFO),
    "warning": ("[WARNING]", "bold yellow", logging.WARNING),
    "error": ("[ERROR]", "red", logging.ERROR),
    "step": ("[STEP]", "cyan", logging.INFO),
}


def _emit(kind: str, message: str) -> None:
    tag, style, level = _TAGS[kind]
    console.print(Text.assemble((tag, style), " ", str(message)), soft_wrap=True)
    logger.log(level, "%s %s", tag, message)


def log_info(message: str) -> None:
    _emit("info", message)


def log_success(message: str) -> None:
    _emit("success", message)


def log_warning(message: str) -> None:
    _emit("warning", message)


def log_error(message: str) -> None:
    _emit("error", message)


def log_step(message: str) -> None:
    _emit("step", message)


def banner(title: str) -> None:
    """Print a framed section title."""
    rule = "=" * 46
    console.print()
    console.print(rule)
    console.print(Text(f"  {title}", style="bold"))
    console.print(rule)
    console.print()


def echo(message: str = "") -> None:
    """Plain line, no tag (tables, hints)."""
    console.print(Text(str(message)), soft_wrap=True)
