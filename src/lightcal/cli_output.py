"""
Colored terminal output for the lightcal command line.

Renders calibration results: per-frame stage status with the reason a
stage was skipped or failed, master selection for a light frame, and the
batch summary box. Also builds the shared tqdm bar used by TqdmProgress.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from .catalog import MasterSelection
from .config import STAGE_ORDER, BatchResult, FrameOutcome, FrameStatus, MasterKind, Stage, StackingInfo, StageStatus
from .utils import format_duration

# Initialize colorama for cross-platform support
colorama_init(autoreset=True)


class Colors:
    """Color constants for consistent styling."""

    HEADER = Fore.CYAN + Style.BRIGHT
    STEP = Fore.BLUE + Style.BRIGHT

    SUCCESS = Fore.GREEN + Style.BRIGHT
    WARNING = Fore.YELLOW
    ERROR = Fore.RED + Style.BRIGHT
    INFO = Fore.WHITE
    MUTED = Style.DIM

    VALUE = Fore.YELLOW + Style.BRIGHT
    METRIC = Fore.MAGENTA
    PATH = Fore.CYAN

    RESET = Style.RESET_ALL


class Symbols:
    """Status symbols (with ASCII fallbacks)."""

    CHECK = "✔"
    CROSS = "✘"
    SKIP = "○"
    STOP = "■"
    BULLET = "•"

    @classmethod
    def use_ascii(cls):
        """Switch to ASCII-only fallbacks."""
        cls.CHECK = "[OK]"
        cls.CROSS = "[X]"
        cls.SKIP = "[-]"
        cls.STOP = "[#]"
        cls.BULLET = "*"


STAGE_LABELS = {
    Stage.OFFSET: "Offset",
    Stage.DARK: "Dark",
    Stage.FLAT: "Flat",
    Stage.HOT_PIXELS: "Hot pixels",
}


def _stage_style(status: StageStatus) -> tuple[str, str]:
    """(color, symbol) of a stage status."""
    if status is StageStatus.APPLIED:
        return Colors.SUCCESS, Symbols.CHECK
    if status is StageStatus.SKIPPED:
        return Colors.WARNING, Symbols.SKIP
    if status is StageStatus.FAILED:
        return Colors.ERROR, Symbols.CROSS
    return Colors.MUTED, Symbols.STOP


def _frame_style(status: FrameStatus) -> tuple[str, str]:
    """(color, symbol) of a final frame status."""
    if status is FrameStatus.CALIBRATED:
        return Colors.SUCCESS, Symbols.CHECK
    if status is FrameStatus.SKIPPED:
        return Colors.WARNING, Symbols.SKIP
    if status is FrameStatus.CANCELLED:
        return Colors.MUTED, Symbols.STOP
    return Colors.ERROR, Symbols.CROSS


def print_banner(version: str) -> None:
    """Print the lightcal startup banner."""
    print(f"\n{Colors.HEADER}lightcal {version}: offset, dark, flat and hot pixel calibration{Colors.RESET}")


def print_success(text: str) -> None:
    print(f"{Colors.SUCCESS}{Symbols.CHECK} {text}{Colors.RESET}")


def print_warning(text: str) -> None:
    print(f"{Colors.WARNING}! {text}{Colors.RESET}")


def print_error(text: str) -> None:
    print(f"{Colors.ERROR}{Symbols.CROSS} {text}{Colors.RESET}")


def print_info(text: str) -> None:
    print(f"{Colors.INFO}{Symbols.BULLET} {text}{Colors.RESET}")


def print_metric(name: str, value: str | int | float, unit: str = "") -> None:
    """Print a metric with value."""
    suffix = f" {unit}" if unit else ""
    print(f"  {Colors.METRIC}{name}: {Colors.VALUE}{value}{Colors.RESET}{suffix}")


def print_path(label: str, path: str) -> None:
    """Print a file path."""
    print(f"  {Colors.INFO}{label}: {Colors.PATH}{path}{Colors.RESET}")


def format_stage(stage: Stage, status: StageStatus, note: str = "", master: str | None = None) -> str:
    """
    One line describing what a stage did to a frame.

    Applied stages show the master used; skipped and failed stages show why.
    """
    color, symbol = _stage_style(status)
    line = f"{color}{symbol} {STAGE_LABELS[stage]:<10} {status.value}{Colors.RESET}"
    if status is StageStatus.APPLIED and master:
        line += f" {Colors.MUTED}{Path(master).name}{Colors.RESET}"
    elif note:
        line += f" {Colors.MUTED}{note}{Colors.RESET}"
    return line


def print_frame_outcome(outcome: FrameOutcome) -> None:
    """
    Print the final status of one frame and what each stage did.

    Example
    -------
    >>> print_frame_outcome(result.outcomes[0])
    ✘ light_0001.fits failed
        ✔ Offset     applied bias.fits
        ✘ Dark       failed Master dark shape (99, 100) does not match ...
        ■ Flat       not_run
        ■ Hot pixels not_run
    """
    color, symbol = _frame_style(outcome.status)
    print(f"{color}{symbol} {Path(outcome.frame_id).name} {outcome.status.value}{Colors.RESET}")
    for stage in STAGE_ORDER:
        master = outcome.masters.get(stage.value)
        print("    " + format_stage(stage, outcome.stages[stage], outcome.notes.get(stage, ""), master))

    details = []
    if outcome.dark_scale is not None and outcome.dark_scale != 1.0:
        details.append(f"dark x{outcome.dark_scale:.3g}")
    if outcome.defective is not None:
        details.append(f"{outcome.defective.count} defective flat pixel(s)")
    if outcome.hot_pixels:
        details.append(f"{outcome.hot_pixels} hot pixel(s) replaced")
    if details:
        print(f"    {Colors.METRIC}{', '.join(details)}{Colors.RESET}")
    if outcome.error is not None and outcome.status is not FrameStatus.FAILED:
        print(f"    {Colors.MUTED}{outcome.error}{Colors.RESET}")


def print_selection(info: StackingInfo, selection: MasterSelection) -> None:
    """Print the acquisition metadata of a light and the masters selected for it."""
    print_path("Light", info.frame_id)
    print_metric("Exposure", info.exposure_s if info.exposure_s is not None else "?", "s")
    print_metric("Temperature", info.temperature_c if info.temperature_c is not None else "?", "C")
    print_metric("Filter", info.filter_name or "-")
    print_metric("Binning", f"{info.binning[0]}x{info.binning[1]}")

    for kind in MasterKind:
        master = selection.get(kind)
        if master is None:
            print_warning(f"{kind.value}: no matching master")
            continue
        note = ""
        if kind is MasterKind.DARK and selection.dark_needs_scaling:
            note = f" (scaled from {master.info.exposure_s} s)"
        print_info(f"{kind.value}: {Path(master.frame_id).name}{note}")


def print_batch_summary(result: BatchResult, output_dir: str | Path) -> None:
    """Print the frame counts of a batch in a box."""
    lines = [f"{status.value.capitalize() + ':':<12} {result.count(status)}" for status in FrameStatus]
    lines.insert(0, f"{'Frames:':<12} {len(result.outcomes)}")
    lines.append(f"{'Written:':<12} {len(result.outputs)}")
    lines.append(f"{'Output:':<12} {output_dir}")
    if result.aborted:
        lines.append("Batch aborted by the missing-master policy")

    title = "Calibration"
    width = max(max(len(line) for line in lines), len(title)) + 4
    color = Colors.ERROR if result.aborted or result.count(FrameStatus.FAILED) else Colors.SUCCESS

    print(f"\n{color}╔{'═' * width}╗")
    print(f"║ {title:^{width - 2}} ║")
    print(f"╟{'─' * width}╢")
    for line in lines:
        print(f"║  {line:<{width - 3}}║")
    print(f"╚{'═' * width}╝{Colors.RESET}")


BAR_FORMAT = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]"


def create_progress_bar(total: int, desc: str, unit: str = "stage", disable: bool = False) -> tqdm:
    """
    Create the styled bar shared by the calibration workers.

    Parameters
    ----------
    total : int
        Total number of updates (frames times stages).
    desc : str
        Description text.
    unit : str, default "stage"
        Unit name for updates.
    disable : bool, default False
        Disable the progress bar.
    """
    return tqdm(
        total=total,
        desc=f"{Fore.GREEN}{desc}{Colors.RESET}",
        unit=unit,
        bar_format=BAR_FORMAT,
        ncols=80,
        colour="green",
        leave=True,
        disable=disable,
    )


class RunProgress:
    """
    Numbered steps of a command-line calibration run.

    Example
    -------
    >>> steps = RunProgress(("Load light frames", "Calibrate", "Write outputs"))
    >>> steps.start("Load light frames")
    >>> steps.complete("12 frame(s) loaded")
    """

    def __init__(self, steps: tuple[str, ...], quiet: bool = False):
        self.steps = steps
        self.quiet = quiet
        self._started = None

    def start(self, name: str) -> None:
        self._started = time.perf_counter()
        if not self.quiet:
            number = self.steps.index(name) + 1
            print(f"\n{Colors.STEP}▶ Step {number}/{len(self.steps)}: {name}{Colors.RESET}")

    def complete(self, message: str = "") -> None:
        if self.quiet:
            return
        elapsed = format_duration(time.perf_counter() - self._started) if self._started else ""
        timing = f" ({elapsed})" if elapsed else ""
        print(f"   {Colors.SUCCESS}{Symbols.CHECK} {message or 'Complete'}{timing}{Colors.RESET}")

    def warn(self, message: str) -> None:
        if not self.quiet:
            print(f"   {Colors.WARNING}! {message}{Colors.RESET}")


def setup_terminal() -> dict:
    """
    Detect terminal capabilities and switch to ASCII symbols when needed.

    Returns
    -------
    dict
        Capabilities with 'unicode' and 'color' keys.
    """
    caps = {"unicode": True, "color": sys.stdout.isatty() and not os.environ.get("NO_COLOR")}
    if os.environ.get("TERM") == "dumb":
        caps["color"] = caps["unicode"] = False
    if sys.platform == "win32" and "utf" not in os.environ.get("LANG", "").lower():
        caps["unicode"] = False

    if not caps["unicode"]:
        Symbols.use_ascii()
    return caps
