"""
Console output formatting for Cedar.

Provides styled terminal status lines for research sessions, plus the
logging setup used by the command-line front end.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class Style:
    """ANSI escape codes for terminal styling."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    BRIGHT_WHITE = "\033[97m"


class StatusIcon:
    """Status icons for different operations."""
    SUCCESS = "✓"
    FAILURE = "✗"
    WARNING = "⚠"
    INFO = "ℹ"
    RUNNING = "●"
    PENDING = "○"
    ARROW = "→"
    BULLET = "•"
    CODE = "💻"
    BRAIN = "🧠"
    PACKAGE = "📦"


class Console:
    """
    Styled console output for Cedar.

    Status lines for:
    - Step execution and results
    - Dependency installs
    - Validation verdicts
    - Research loop progress
    """

    _enabled = True  # Can disable colors for non-TTY
    _verbose = False

    @classmethod
    def enable_colors(cls, enabled: bool = True) -> None:
        """Enable or disable colored output."""
        cls._enabled = enabled

    @classmethod
    def set_verbose(cls, verbose: bool = True) -> None:
        """Enable verbose output mode."""
        cls._verbose = verbose

    @classmethod
    def _style(cls, text: str, *styles: str) -> str:
        """Apply styles to text if colors are enabled."""
        if not cls._enabled or not sys.stdout.isatty():
            return text
        style_str = "".join(styles)
        return f"{style_str}{text}{Style.RESET}"

    @classmethod
    def _line(cls, icon: str, message: str, detail: Optional[str]) -> None:
        if detail:
            detail_text = cls._style(f"({detail})", Style.DIM)
            print(f"{icon} {message} {detail_text}")
        else:
            print(f"{icon} {message}")

    # === Status Messages ===

    @classmethod
    def success(cls, message: str, detail: Optional[str] = None) -> None:
        """Print a success message."""
        icon = cls._style(StatusIcon.SUCCESS, Style.GREEN, Style.BOLD)
        cls._line(icon, cls._style(message, Style.GREEN), detail)

    @classmethod
    def error(cls, message: str, detail: Optional[str] = None) -> None:
        """Print an error message."""
        icon = cls._style(StatusIcon.FAILURE, Style.RED, Style.BOLD)
        cls._line(icon, cls._style(message, Style.RED), detail)

    @classmethod
    def warning(cls, message: str, detail: Optional[str] = None) -> None:
        """Print a warning message."""
        icon = cls._style(StatusIcon.WARNING, Style.YELLOW)
        cls._line(icon, cls._style(message, Style.YELLOW), detail)

    @classmethod
    def info(cls, message: str, detail: Optional[str] = None) -> None:
        """Print an info message."""
        icon = cls._style(StatusIcon.INFO, Style.BLUE)
        cls._line(icon, message, detail)

    @classmethod
    def debug(cls, message: str) -> None:
        """Print a debug message (verbose mode only)."""
        if cls._verbose:
            print(cls._style(f"  {message}", Style.DIM))

    # === Research Activity ===

    @classmethod
    def step_start(cls, index: int, kind: str, title: str) -> None:
        """Log a step starting."""
        icon = cls._style(StatusIcon.RUNNING, Style.CYAN)
        step = cls._style(f"Step {index}", Style.BOLD)
        kind_text = cls._style(f"[{kind}]", Style.DIM)
        print(f"\n{icon} {step} {kind_text} {title}")

    @classmethod
    def step_result(cls, index: int, status: str, elapsed_ms: int) -> None:
        """Log a step's final status."""
        if status == "succeeded":
            icon = cls._style(StatusIcon.SUCCESS, Style.GREEN)
        else:
            icon = cls._style(StatusIcon.FAILURE, Style.RED)
        print(f"{icon} Step {index} {status} {cls._style(f'({elapsed_ms}ms)', Style.DIM)}")

    @classmethod
    def install(cls, package: str, ok: bool) -> None:
        """Log a package install attempt."""
        icon = cls._style(StatusIcon.PACKAGE, Style.MAGENTA)
        outcome = cls._style("installed", Style.GREEN) if ok else cls._style("failed", Style.RED)
        print(f"{icon} pip install {package}: {outcome}")

    @classmethod
    def verdict(cls, valid: bool, confidence: float, next_action: str) -> None:
        """Log a validation verdict."""
        icon = cls._style(StatusIcon.BRAIN, Style.MAGENTA)
        label = cls._style("valid", Style.GREEN) if valid else cls._style("invalid", Style.YELLOW)
        print(f"{icon} Verdict: {label} (confidence {confidence:.2f}) {StatusIcon.ARROW} {next_action}")

    # === Headers ===

    @classmethod
    def header(cls, text: str, width: int = 60) -> None:
        """Print a section header."""
        line = cls._style("=" * width, Style.DIM)
        header_text = cls._style(text.center(width), Style.BOLD)
        print(f"\n{line}")
        print(header_text)
        print(line)


console = Console()


def get_current_timestamp() -> str:
    """Return the current local time as an ISO-8601 string."""
    return datetime.now().isoformat()


def configure_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """
    Configure the ``cedar`` logger hierarchy.

    Diagnostics go to stderr so they never mix with step output; an
    optional log file receives the same records.
    """
    logger = logging.getLogger("cedar")
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


__all__ = [
    "Style",
    "StatusIcon",
    "Console",
    "console",
    "get_current_timestamp",
    "configure_logging",
]
