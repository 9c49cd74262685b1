"""
Command-line interface for chronophoto.

Usage:
    python -m chronophoto "frames/*.jpg" --output out.jpg [options]
    chronophoto "frames/*.jpg" --output out.jpg [options]
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from .cli_output import (
    PipelineProgress,
    Symbols,
    format_bytes,
    print_banner,
    print_error,
    print_header,
    print_info,
    print_metric,
    print_path,
    print_success,
    print_summary_box,
    print_warning,
    setup_terminal,
)
from .config import (
    BackgroundConfig,
    BackgroundKind,
    ChronoConfig,
    ChronoResult,
    CompositeMode,
    Compression,
    OutlierConfig,
    OutlierKind,
    OutlierSelect,
    SliceConfig,
)
from .exceptions import ChronoError
from .io import FrameStream, write_image
from .processor import ChronoProcessor, slice_budget
from .report import write_report
from .slicer import write_time_slices
from .staging import TempStore
from .utils import (
    format_duration,
    get_platform_info,
    get_timestamp_iso,
    get_version,
    get_version_banner,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    OutlierKind.NONE: 50.0,
    OutlierKind.ABSOLUTE: 50.0,
    OutlierKind.RELATIVE: 0.2,
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def run_chrono(
    pattern: str,
    output: str | Path,
    outlier_output: str | Path | None = None,
    config: ChronoConfig | None = None,
    temp_dir: str | Path | None = None,
    keep_temp: bool = False,
    quality: int = 95,
    report_path: str | Path | None = None,
    quiet: bool = False,
) -> ChronoResult:
    """
    Execute the full compositing pipeline.

    Parameters
    ----------
    pattern : str
        Glob pattern of the input frames. Matches are processed in
        lexicographic order.
    output : str or Path
        Composite image path.
    outlier_output : str or Path, optional
        Outlier mask image path. Not written when omitted.
    config : ChronoConfig, optional
        Configuration. Uses defaults if not provided.
    temp_dir : str or Path, optional
        Directory for time slices. Defaults to ``<system temp>/chronophoto``.
    keep_temp : bool, default False
        Keep the time slices after a successful run.
    quality : int, default 95
        JPEG quality of the written images.
    report_path : str or Path, optional
        Write a run record here (Markdown for ``.md``, JSON otherwise).
    quiet : bool, default False
        If True, suppress colored output (use logging only).

    Returns
    -------
    ChronoResult
        Run record with output paths and statistics.

    Raises
    ------
    ChronoError
        On any failure. Time slices written before the failure are kept and
        the temp directory is reported.
    """
    start_time = time.time()

    if config is None:
        config = ChronoConfig()
    config.validate()

    if not quiet:
        setup_terminal()
        print_banner(get_version())
        print_header(f"Pattern: {pattern}")
        print_metric("Mode", config.mode.value)
        print_metric("Background", config.background.kind.value)
        if config.outlier.enabled:
            print_metric("Outliers", f"{config.outlier.kind.value} > {config.outlier.threshold}")
        else:
            print_metric("Outliers", "disabled")
        print_metric("Compression", config.compression.value)

    logger.info(get_version_banner())

    result = ChronoResult(
        pattern=pattern,
        config=config,
        version=get_version(),
        platform=get_platform_info(),
    )

    progress = PipelineProgress(total_stages=4, quiet=quiet)

    # --- Stage 1: Discovery ---
    progress.start_stage(1, "Frame Discovery", Symbols.CAMERA)
    stream = FrameStream.from_pattern(pattern)
    result.inputs = stream.sources
    progress.complete_stage(f"{len(stream)} frames found")

    store = TempStore(temp_dir)
    result.temp_dir = str(store.path)

    try:
        # --- Stage 2: Transpose ---
        progress.start_stage(2, "Time Slicing", Symbols.SLICE)
        progress.update_detail(f"Temp directory: {store.path}")
        t0 = time.time()
        slices = write_time_slices(
            stream,
            store.path,
            config.compression,
            frame_count=len(stream),
            budget_bytes=slice_budget(config.slicing.budget_bytes, config.workers),
            chunk_count=config.slicing.chunks,
            rows_per_chunk=config.slicing.rows,
            show_progress=not quiet,
        )
        store.register(slices.paths)
        slice_seconds = time.time() - t0

        temp_bytes = sum(p.stat().st_size for p in slices.paths)
        result.frame_count = slices.frame_count
        result.layout = slices.layout.describe()
        result.n_slices = len(slices)
        progress.update_detail(f"Layout: {result.layout}")
        progress.update_detail(f"{len(slices)} slices, {format_bytes(temp_bytes)} on disk")
        progress.complete_stage(f"{slices.frame_count} frames sliced")

        # --- Stage 3: Aggregation ---
        progress.start_stage(3, "Compositing", Symbols.STAR)
        t0 = time.time()
        processor = ChronoProcessor(config)
        chrono = processor.process(
            slices.layout,
            slices.paths,
            frame_count=slices.frame_count,
            show_progress=not quiet,
        )
        composite_seconds = time.time() - t0
        progress.update_detail(
            f"Outlier pixels: {chrono.outlier_pixels} ({chrono.outlier_fraction:.2%})"
        )
        progress.complete_stage()

        # --- Stage 4: Outputs ---
        progress.start_stage(4, "Writing Outputs", Symbols.DISK)
        composite_path = write_image(output, chrono.composite, quality=quality)
        result.outputs["composite"] = str(composite_path)
        progress.update_detail(f"Composite: {composite_path.name}")
        if outlier_output is not None:
            mask_path = write_image(outlier_output, chrono.mask, quality=quality)
            result.outputs["outlier_mask"] = str(mask_path)
            progress.update_detail(f"Outlier mask: {mask_path.name}")
        progress.complete_stage()

    except ChronoError as e:
        progress.fail_stage(f"Failed: {e}")
        leftovers = store.leftovers()
        if leftovers:
            logger.warning("Keeping %d time slices in %s", len(leftovers), store.path)
            if not quiet:
                print_warning(f"{len(leftovers)} time slices left in {store.path}")
        raise

    if keep_temp:
        logger.info("Keeping %d time slices in %s", len(slices), store.path)
    else:
        failures = store.cleanup()
        if not quiet:
            if failures:
                print_warning(f"{failures} time slices could not be deleted from {store.path}")
            else:
                print_success(f"{Symbols.BROOM} Removed {len(slices)} time slices")

    elapsed = time.time() - start_time
    result.timestamp = get_timestamp_iso()
    result.stats = {
        "outlier_pixels": chrono.outlier_pixels,
        "outlier_fraction": chrono.outlier_fraction,
        "temp_bytes": temp_bytes,
        "slice_time_s": slice_seconds,
        "composite_time_s": composite_seconds,
        "processing_time_s": elapsed,
    }

    if report_path is not None:
        written = write_report(result, report_path)
        result.outputs["report"] = str(written)

    if not quiet:
        summary_lines = [
            f"Frames: {result.frame_count} ({result.layout})",
            f"Time slices: {result.n_slices}",
            f"Outlier pixels: {chrono.outlier_pixels}",
            f"Processing time: {format_duration(elapsed)}",
        ]
        print_summary_box(summary_lines, title=f"{Symbols.STAR} Complete {Symbols.STAR}")
        print_path("Output", result.outputs["composite"])
        if "outlier_mask" in result.outputs:
            print_path("Outlier mask", result.outputs["outlier_mask"])
        if keep_temp:
            print_info(f"Time slices kept in {store.path}")

    logger.info("Processing complete in %s", format_duration(elapsed))

    return result


def build_config(args: argparse.Namespace) -> ChronoConfig:
    """Build a run configuration from parsed arguments."""
    outlier_kind = OutlierKind(args.outlier)
    threshold = args.threshold if args.threshold is not None else DEFAULT_THRESHOLDS[outlier_kind]

    return ChronoConfig(
        mode=CompositeMode(args.mode),
        background=BackgroundConfig(
            kind=BackgroundKind(args.background),
            frame_index=args.background_frame,
        ),
        outlier=OutlierConfig(
            kind=outlier_kind,
            threshold=threshold,
            select=OutlierSelect(args.select),
        ),
        compression=Compression(args.compression),
        slicing=SliceConfig(
            budget_mb=args.budget_mb,
            chunks=args.chunks,
            rows=args.rows,
        ),
        workers=args.workers,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="chronophoto",
        description="Composite time-lapse frames into a long-exposure image with outlier detection",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"chronophoto {get_version()}",
    )
    parser.add_argument(
        "pattern",
        type=str,
        help="Glob pattern of the input frames, in quotes (e.g. 'night/IMG_*.jpg')",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        required=True,
        help="Composite image path",
    )
    parser.add_argument(
        "--outlier-output",
        type=str,
        default=None,
        metavar="FILE",
        help="Outlier mask image path (default: not written)",
    )
    parser.add_argument(
        "--temp-dir",
        type=str,
        default=None,
        metavar="DIR",
        help="Directory for time slices (default: <system temp>/chronophoto)",
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in CompositeMode],
        default=CompositeMode.LIGHTEN.value,
        help="Compositing mode (default: lighten)",
    )
    parser.add_argument(
        "--background",
        type=str,
        choices=[b.value for b in BackgroundKind],
        default=BackgroundKind.MEDIAN.value,
        help="Background reference for outlier detection (default: median)",
    )
    parser.add_argument(
        "--background-frame",
        type=int,
        default=0,
        metavar="N",
        help="Reference frame index for --background frame (default: 0)",
    )
    parser.add_argument(
        "--outlier",
        type=str,
        choices=[k.value for k in OutlierKind],
        default=OutlierKind.ABSOLUTE.value,
        help="Outlier threshold interpretation (default: absolute)",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Outlier threshold: sample units for absolute (default: 50), "
             "fraction of the max sample for relative (default: 0.2)",
    )
    parser.add_argument(
        "--select",
        type=str,
        choices=[s.value for s in OutlierSelect],
        default=OutlierSelect.EXTREME.value,
        help="Outlier sample kept by --mode outlier (default: extreme)",
    )
    parser.add_argument(
        "--compression",
        type=str,
        choices=[c.value for c in Compression],
        default=Compression.NONE.value,
        help="Time-slice compression (default: none)",
    )

    sizing = parser.add_mutually_exclusive_group()
    sizing.add_argument(
        "--budget-mb",
        type=float,
        default=256.0,
        help=(
            "Compositing memory budget in MiB, shared by the workers; each time "
            "slice gets budget/workers. Median and outlier buffers add a few "
            "times that per worker (default: 256)"
        ),
    )
    sizing.add_argument(
        "--chunks",
        type=int,
        default=None,
        help="Number of time slices",
    )
    sizing.add_argument(
        "--rows",
        type=int,
        default=None,
        help="Image rows per time slice",
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of parallel workers for compositing (default: auto = CPU count - 1)",
    )
    parser.add_argument(
        "--quality",
        type=int,
        default=95,
        help="JPEG output quality (default: 95)",
    )
    parser.add_argument(
        "--keep-temp",
        action="store_true",
        help="Keep time slices after a successful run",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a run record (.md for Markdown, JSON otherwise)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress colored output (use logging only)",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        config = build_config(args)
        run_chrono(
            args.pattern,
            args.output,
            outlier_output=args.outlier_output,
            config=config,
            temp_dir=args.temp_dir,
            keep_temp=args.keep_temp,
            quality=args.quality,
            report_path=args.report,
            quiet=args.quiet,
        )
        return 0

    except ChronoError as e:
        print_error(f"Compositing failed: {e}")
        logger.error("Compositing failed: %s", e)
        return 1

    except Exception as e:
        print_error(f"Compositing failed: {e}")
        logger.exception("Compositing failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
