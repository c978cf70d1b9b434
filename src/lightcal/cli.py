"""
Command-line interface for the lightcal calibration engine.

Usage:
    python -m lightcal calibrate <lights...> --bias B.fits --dark D.fits --flat F.fits [options]
    lightcal select <light> --masters M1.fits M2.fits ...

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

from .batch import LightFrame, calibrate_batch
from .catalog import MasterCatalog, select_masters
from .cli_output import (
    RunProgress,
    print_banner,
    print_batch_summary,
    print_error,
    print_frame_outcome,
    print_selection,
    print_success,
    print_warning,
    setup_terminal,
)
from .config import BatchResult, CalibrationSettings, FrameStatus, MasterKind
from .io import calibration_history, load_catalog, read_header, read_light, write_frame
from .progress import TqdmProgress
from .report import write_all_reports
from .stars import detect_stars
from .utils import calibrated_path, format_duration, get_version

logger = logging.getLogger(__name__)

RUN_STEPS = ("Load light frames", "Calibrate", "Write outputs")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def calibrate_files(
    light_paths: list[str | Path],
    catalog: MasterCatalog,
    settings: CalibrationSettings,
    output_dir: str | Path,
    detect: bool = True,
    overwrite: bool = False,
    quiet: bool = False,
) -> BatchResult:
    """
    Calibrate FITS light frames and write the results.

    Parameters
    ----------
    light_paths : list of paths
        Light frames to calibrate.
    catalog : MasterCatalog
        Available masters.
    settings : CalibrationSettings
        Engine settings.
    output_dir : str or Path
        Directory receiving ``<name>_cal.fits`` files and reports.
    detect : bool, default True
        Detect stars in each light to protect them from hot-pixel interpolation.
    overwrite : bool, default False
        Overwrite existing outputs.
    quiet : bool, default False
        Suppress progress display.

    Returns
    -------
    BatchResult
        Per-frame outcomes and output paths.
    """
    output_dir = Path(output_dir)
    start_time = time.time()
    steps = RunProgress(RUN_STEPS, quiet=quiet)

    steps.start("Load light frames")
    lights = []
    for path in light_paths:
        try:
            buffer, info = read_light(path)
        except (OSError, ValueError) as e:
            steps.warn(f"Cannot read {path}: {e}")
            logger.error("Cannot read %s: %s", path, e)
            continue
        stars = detect_stars(buffer) if detect else None
        lights.append(LightFrame(buffer, info, stars))
    steps.complete(f"{len(lights)} frame(s) loaded")

    steps.start("Calibrate")
    with TqdmProgress(len(lights), desc="Calibrate", disable=quiet) as sink:
        result = calibrate_batch(lights, catalog, settings, progress=sink)
    steps.complete(
        f"{result.count(FrameStatus.CALIBRATED)} calibrated, {result.count(FrameStatus.FAILED)} failed"
    )

    steps.start("Write outputs")
    outcomes = {o.frame_id: o for o in result.outcomes}
    for frame_id, buffer in result.calibrated.items():
        out_path = calibrated_path(frame_id, output_dir)
        write_frame(
            out_path,
            buffer,
            header=read_header(frame_id),
            history=calibration_history(outcomes[frame_id]),
            overwrite=overwrite,
        )
        result.outputs[frame_id] = str(out_path)
    reports = write_all_reports(result, output_dir)
    steps.complete(f"{len(result.outputs)} frame(s), {len(reports)} report(s)")

    logger.info("Calibration run finished in %s", format_duration(time.time() - start_time))
    return result


def _catalog_from_args(args: argparse.Namespace) -> MasterCatalog:
    return load_catalog(
        offsets=args.bias or (),
        darks=args.dark or (),
        flats=args.flat or (),
        masters=args.masters or (),
    )


def _add_master_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--bias",
        type=str,
        nargs="+",
        help="Master offset (bias) FITS file(s)",
    )
    parser.add_argument(
        "--dark",
        type=str,
        nargs="+",
        help="Master dark FITS file(s), bias-subtracted",
    )
    parser.add_argument(
        "--flat",
        type=str,
        nargs="+",
        help="Master flat FITS file(s)",
    )
    parser.add_argument(
        "--masters",
        type=str,
        nargs="+",
        help="Master FITS file(s) classified by their IMAGETYP keyword",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="lightcal",
        description="Apply master offset, dark and flat frames to astronomical light frames",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"lightcal {get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Calibrate command
    cal_parser = subparsers.add_parser(
        "calibrate",
        help="Calibrate light frames",
    )
    cal_parser.add_argument(
        "lights",
        type=str,
        nargs="+",
        help="Light frame FITS files",
    )
    _add_master_arguments(cal_parser)
    cal_parser.add_argument(
        "--out",
        type=str,
        default="calibrated",
        help="Output directory (default: calibrated)",
    )
    cal_parser.add_argument(
        "--debloom",
        action="store_true",
        help="Leave saturated pixels out of flat division",
    )
    cal_parser.add_argument(
        "--hot-sigma",
        type=float,
        default=5.0,
        help="Hot pixel threshold in local sigma (default: 5.0)",
    )
    cal_parser.add_argument(
        "--no-hot-pixels",
        action="store_true",
        help="Disable hot pixel interpolation",
    )
    cal_parser.add_argument(
        "--stars",
        type=str,
        choices=["auto", "none"],
        default="auto",
        help="Star protection: detect stars in each light (auto) or none (default: auto)",
    )
    cal_parser.add_argument(
        "--defective",
        type=str,
        choices=["keep", "sentinel"],
        default="keep",
        help="Defective flat pixels: keep unflatted value or write a sentinel (default: keep)",
    )
    cal_parser.add_argument(
        "--on-missing",
        type=str,
        choices=["skip_stage", "skip_frame", "abort"],
        default="skip_stage",
        help="Policy when a required master is missing (default: skip_stage)",
    )
    cal_parser.add_argument(
        "--require",
        type=str,
        nargs="+",
        choices=[k.value for k in MasterKind],
        default=None,
        help="Master kinds the missing-master policy applies to (default: all)",
    )
    cal_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of parallel workers (default: CPU count - 1)",
    )
    cal_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite existing outputs",
    )
    cal_parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress progress output",
    )
    cal_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    # Select command
    select_parser = subparsers.add_parser(
        "select",
        help="Show which masters would be applied to a light frame",
    )
    select_parser.add_argument(
        "light",
        type=str,
        help="Light frame FITS file",
    )
    _add_master_arguments(select_parser)
    select_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def _run_calibrate(args: argparse.Namespace) -> int:
    settings = CalibrationSettings(
        debloom=args.debloom,
        defective_policy=args.defective,
        hot_pixels=not args.no_hot_pixels,
        hot_pixel_sigma=args.hot_sigma,
        missing_master_policy=args.on_missing,
        required_masters=tuple(args.require or ()),
        workers=args.workers,
    )
    settings.validate()

    catalog = _catalog_from_args(args)
    if len(catalog) == 0:
        print_warning("No master frames given: lights will only be copied")

    result = calibrate_files(
        args.lights,
        catalog,
        settings,
        args.out,
        detect=args.stars == "auto",
        overwrite=args.overwrite,
        quiet=args.quiet,
    )

    if not args.quiet:
        print_batch_summary(result, args.out)

    # Frames that were not calibrated are always listed
    for outcome in result.outcomes:
        if args.verbose or outcome.status is not FrameStatus.CALIBRATED:
            print_frame_outcome(outcome)

    if result.aborted:
        print_error("Batch aborted: a required master is missing")
        return 1
    if not result.outputs:
        print_error("No frames were calibrated")
        return 1
    print_success(f"{len(result.outputs)} calibrated frame(s) written")
    return 0


def _run_select(args: argparse.Namespace) -> int:
    catalog = _catalog_from_args(args)
    _, info = read_light(args.light)
    selection = select_masters(info, catalog)

    print_selection(info, selection)
    return 0


def main() -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    setup_terminal()

    try:
        if args.command == "calibrate":
            if not args.quiet:
                print_banner(get_version())
            return _run_calibrate(args)
        if args.command == "select":
            return _run_select(args)
    except Exception as e:
        print_error(f"{args.command} failed: {e}")
        logger.exception("%s failed: %s", args.command, e)
        return 1

    parser.print_help()
    return 1
