"""
Colored CLI output utilities for chronophoto.

Provides styled terminal output, progress bars and stage tracking.
"""

from __future__ import annotations

import os
import shutil
import sys
import time
from dataclasses import dataclass

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from .utils import format_duration

colorama_init(autoreset=True)


class Colors:
    """Color constants for consistent styling."""

    HEADER = Fore.CYAN + Style.BRIGHT
    STAGE = Fore.BLUE + Style.BRIGHT
    SUCCESS = Fore.GREEN + Style.BRIGHT
    WARNING = Fore.YELLOW
    ERROR = Fore.RED + Style.BRIGHT
    INFO = Fore.WHITE
    VALUE = Fore.YELLOW + Style.BRIGHT
    METRIC = Fore.MAGENTA
    PATH = Fore.CYAN
    PROGRESS = Fore.GREEN
    RESET = Style.RESET_ALL


class Symbols:
    """Unicode symbols for status indicators."""

    CHECK = "\u2714"  # ✔
    CROSS = "\u2718"  # ✘
    BULLET = "\u2022"  # •
    CAMERA = "\U0001F4F7"  # 📷
    SLICE = "\U0001F52A"  # 🔪
    STAR = "\u2605"   # ★
    DISK = "\U0001F4BE"  # 💾
    BROOM = "\U0001F9F9"  # 🧹

    @classmethod
    def use_ascii(cls):
        """Switch to ASCII-only fallbacks."""
        cls.CHECK = "[OK]"
        cls.CROSS = "[X]"
        cls.BULLET = "*"
        cls.CAMERA = "[C]"
        cls.SLICE = "[S]"
        cls.STAR = "*"
        cls.DISK = "[D]"
        cls.BROOM = "[R]"


def print_banner(version: str) -> None:
    """Print the chronophoto startup banner."""
    banner = f"""
{Colors.HEADER}╔══════════════════════════════════════════════════════════════╗
║  {Symbols.CAMERA}  chronophoto                                              ║
║     Long-exposure compositing of time-lapse sequences        ║
║     Version: {version:<20}                            ║
╚══════════════════════════════════════════════════════════════╝{Colors.RESET}
"""
    print(banner)


def print_header(text: str, width: int = 60) -> None:
    """Print a styled section header."""
    line = "═" * width
    print(f"\n{Colors.HEADER}{line}")
    print(f"  {text}")
    print(f"{line}{Colors.RESET}")


def print_success(text: str) -> None:
    print(f"{Colors.SUCCESS}{Symbols.CHECK} {text}{Colors.RESET}")


def print_warning(text: str) -> None:
    print(f"{Colors.WARNING}! {text}{Colors.RESET}")


def print_error(text: str) -> None:
    print(f"{Colors.ERROR}{Symbols.CROSS} {text}{Colors.RESET}", file=sys.stderr)


def print_info(text: str) -> None:
    print(f"{Colors.INFO}{Symbols.BULLET} {text}{Colors.RESET}")


def print_metric(name: str, value: str | int | float, unit: str = "") -> None:
    """Print a metric with value."""
    if unit:
        print(f"  {Colors.METRIC}{name}: {Colors.VALUE}{value}{Colors.RESET} {unit}")
    else:
        print(f"  {Colors.METRIC}{name}: {Colors.VALUE}{value}{Colors.RESET}")


def print_path(label: str, path: str) -> None:
    print(f"  {Colors.INFO}{label}: {Colors.PATH}{path}{Colors.RESET}")


def print_summary_box(lines: list[str], title: str = "Summary") -> None:
    """Print a summary box with multiple lines."""
    width = max(len(line) for line in lines) + 4
    width = max(width, len(title) + 4)

    print(f"\n{Colors.SUCCESS}╔" + "═" * width + "╗")
    print(f"║ {title:^{width-2}} ║")
    print("╟" + "─" * width + "╢")
    for line in lines:
        print(f"║  {line:<{width-3}}║")
    print("╚" + "═" * width + f"╝{Colors.RESET}")


def format_bytes(n_bytes: int) -> str:
    """Format byte count in human-readable form."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if n_bytes < 1024:
            return f"{n_bytes:.1f} {unit}"
        n_bytes /= 1024
    return f"{n_bytes:.1f} PB"


@dataclass
class ProgressConfig:
    """Configuration for progress bars."""

    bar_format: str = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]"
    ncols: int = 80
    colour: str = "green"
    leave: bool = True


def create_progress_bar(
    total: int,
    desc: str,
    unit: str = "frame",
    config: ProgressConfig | None = None,
    disable: bool = False,
) -> tqdm:
    """
    Create a styled progress bar.

    Parameters
    ----------
    total : int
        Total number of items (0 if unknown).
    desc : str
        Description text.
    unit : str, default "frame"
        Unit name for items.
    config : ProgressConfig, optional
        Progress bar configuration.
    disable : bool, default False
        Disable the progress bar.

    Returns
    -------
    tqdm
        Configured progress bar.
    """
    if config is None:
        config = ProgressConfig()

    return tqdm(
        total=total or None,
        desc=f"{Colors.PROGRESS}{desc}{Colors.RESET}",
        unit=unit,
        bar_format=config.bar_format,
        ncols=config.ncols,
        colour=config.colour,
        leave=config.leave,
        disable=disable,
    )


class PipelineProgress:
    """
    Track and display progress of the pipeline stages.

    Example
    -------
    >>> progress = PipelineProgress(total_stages=4)
    >>> progress.start_stage(1, "Discovery")
    >>> progress.update_detail("Found 240 frames")
    >>> progress.complete_stage()
    """

    def __init__(self, total_stages: int = 4, quiet: bool = False):
        self.total_stages = total_stages
        self.current_stage = 0
        self.quiet = quiet
        self._stage_start_time = None

    def start_stage(self, stage_num: int, name: str, emoji: str = "") -> None:
        if self.quiet:
            return

        self.current_stage = stage_num
        self._stage_start_time = time.time()

        stage_text = f"Stage {stage_num}/{self.total_stages}: {name}"
        if emoji:
            print(f"\n{Colors.STAGE}{emoji}  {stage_text}{Colors.RESET}")
        else:
            print(f"\n{Colors.STAGE}▶ {stage_text}{Colors.RESET}")

    def update_detail(self, text: str) -> None:
        if self.quiet:
            return
        print(f"   {Colors.INFO}{text}{Colors.RESET}")

    def complete_stage(self, message: str = "") -> None:
        """Mark current stage as complete, with its duration."""
        if self.quiet:
            return

        message = message or "Complete"
        if self._stage_start_time:
            elapsed = time.time() - self._stage_start_time
            message = f"{message} ({format_duration(elapsed)})"
        print(f"   {Colors.SUCCESS}{Symbols.CHECK} {message}{Colors.RESET}")

    def fail_stage(self, message: str) -> None:
        if self.quiet:
            return
        print(f"   {Colors.ERROR}{Symbols.CROSS} {message}{Colors.RESET}")


def detect_terminal_capabilities() -> dict:
    """
    Detect terminal capabilities for optimal display.

    Returns
    -------
    dict
        Capabilities dict with 'unicode', 'color', 'width' keys.
    """
    caps = {
        "unicode": True,
        "color": True,
        "width": 80,
    }

    if not sys.stdout.isatty():
        caps["color"] = False
    elif os.environ.get("NO_COLOR"):
        caps["color"] = False
    elif os.environ.get("TERM") == "dumb":
        caps["color"] = False
        caps["unicode"] = False

    caps["width"] = shutil.get_terminal_size().columns

    encoding = (getattr(sys.stdout, "encoding", None) or "").lower()
    if "utf" not in encoding and "utf" not in os.environ.get("LANG", "").lower():
        caps["unicode"] = False

    return caps


def setup_terminal() -> dict:
    """Configure symbols for the current terminal and return its capabilities."""
    caps = detect_terminal_capabilities()

    if not caps["unicode"]:
        Symbols.use_ascii()

    return caps
