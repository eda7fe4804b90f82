#!/usr/bin/env python3
"""
image2nord
Recolour images to the Nord palette, optionally guided by a segmentation model.

Usage:
  image2nord INPUT [OUTPUT] [--model M.onnx --labels a,b,c] [--dither S]
             [--kernel K] [--serpentine] [--metric cie76|ciede2000]
             [--background HEX] [--override label=nord8,nord9] [--auto]
             [--workers N] [--debug]

Input:
  A Pillow-readable image. Alpha is preserved unless
  --background is given, in which case it is flattened onto that colour.

Output:
  PNG. If OUTPUT is omitted, writes <stem>_nord.png next to INPUT.

Exit status:
  0 image written, 1 mapping failed, 2 bad input or configuration.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .analysis import auto_adjust, image_information
from .colour_convert import split_channels
from .config import MappingConfig, parse_override
from .constants import DEFAULT_KERNEL, DEFAULT_LABELS, DEFAULT_METRIC, KERNELS, METRICS
from .errors import ConfigurationError, NordMapError
from .image_io import default_output_path, load_image, save_image
from .orchestrator import Orchestrator
from .palette_data import Palette, nord_palette, palette_summary
from .segmentation import ModelSpec, SegmentationAdapter
from .utils import (
    colour_usage_report,
    debug_log,
    error,
    format_seconds_compact,
    key_value_pairs_to_string,
    log,
    print_banner,
    print_config_line,
)


def _default_workers() -> int:
    """Leave a core or two free for the system."""
    n = os.cpu_count() or 4
    reserve = 1 if n <= 6 else 2
    return max(1, n - reserve)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image2nord",
        description="Recolour an image to the Nord palette.",
    )
    parser.add_argument("src", type=Path, nargs="?", help="Input image")
    parser.add_argument("dst", type=Path, nargs="?", help="Output PNG")
    parser.add_argument("--model", type=Path, default=None, help="ONNX segmentation model")
    parser.add_argument(
        "--labels",
        default=",".join(DEFAULT_LABELS),
        help="Comma-separated class names, in model output order",
    )
    parser.add_argument(
        "--input-size", type=int, default=None, help="Model input side (if dynamic)"
    )
    parser.add_argument(
        "--no-segmentation", action="store_true", help="Ignore the model even if given"
    )
    parser.add_argument(
        "--dither", type=float, default=1.0, help="Dither strength 0..1 (0 disables)"
    )
    parser.add_argument(
        "--kernel", choices=sorted(KERNELS), default=DEFAULT_KERNEL, help="Diffusion kernel"
    )
    parser.add_argument(
        "--serpentine", action="store_true", help="Alternate scan direction per row"
    )
    parser.add_argument("--metric", choices=METRICS, default=DEFAULT_METRIC)
    parser.add_argument(
        "--background", default=None, help="Flatten transparency onto this hex colour"
    )
    parser.add_argument(
        "--override",
        action="append",
        default=[],
        metavar="LABEL=ENTRIES",
        help="Palette subset for a class, e.g. sky=nord8,nord9 (repeatable)",
    )
    parser.add_argument(
        "--auto", action="store_true", help="Pick dithering from the image content"
    )
    parser.add_argument(
        "--workers", type=int, default=_default_workers(), help="Internal workers"
    )
    parser.add_argument(
        "--list-palette", action="store_true", help="Print the palette and exit"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose mapping details")
    return parser


def config_from_args(args: argparse.Namespace) -> MappingConfig:
    overrides = dict(parse_override(text) for text in args.override)
    return MappingConfig(
        segmentation=not args.no_segmentation,
        dither_strength=float(args.dither),
        kernel=args.kernel,
        serpentine=bool(args.serpentine),
        metric=args.metric,
        class_overrides=overrides,
        background=args.background,
        workers=max(1, int(args.workers)),
        progress=True,
        debug=bool(args.debug),
    )


def adapter_from_args(args: argparse.Namespace, config: MappingConfig) -> SegmentationAdapter:
    labels = tuple(s.strip() for s in str(args.labels).split(",") if s.strip())
    if args.model is None or args.no_segmentation:
        return SegmentationAdapter.disabled(ModelSpec(labels=labels))
    # Imported here so onnxruntime is only needed when a model is given
    from .onnx_model import load_onnx_model

    return load_onnx_model(
        args.model,
        labels,
        input_size=args.input_size,
        timeout=config.segmentation_timeout,
    )


def print_palette(palette: Palette) -> None:
    for group, names in palette_summary(palette).items():
        log(f"{group}:")
        for name in names:
            log(f"  {palette[palette.index_of(name)].hex}  {name}")


# Per-file processing


def process_file(
    src_path: Path,
    out_path: Optional[Path],
    palette: Palette,
    config: MappingConfig,
    adapter: SegmentationAdapter,
    auto: bool,
) -> Path:
    """load -> optional auto-adjust -> map -> save -> report."""
    t_start = time.perf_counter()
    if out_path is None:
        out_path = default_output_path(src_path)

    print_banner(src_path.name)
    image = load_image(src_path)

    if auto:
        rgb, alpha = split_channels(image)
        info = image_information(rgb, alpha)
        config = auto_adjust(config, info)
        log(
            key_value_pairs_to_string(
                [
                    ("Brightness", f"{info.brightness_scale:.1f}/9"),
                    ("Uniques", info.unique_colours),
                    ("Dither", float(config.dither_strength)),
                ]
            )
        )

    result = Orchestrator(palette, config, adapter).run(image, image_id=src_path.name)
    t_after_map = time.perf_counter()

    written = save_image(out_path, result.rgb)
    height, width = result.indices.shape

    log(f"Wrote {written.name} | size={width}x{height}")
    if result.stats.segmentation_used:
        log("Segmentation: used")
    elif config.debug and result.stats.segmentation_reason:
        debug_log(f"segmentation: {result.stats.segmentation_reason}")
    log("Colours used:")
    alpha = result.rgb[..., 3] if result.rgb.shape[-1] == 4 else None
    for hex_code, name, count in colour_usage_report(
        result.rgb[..., :3], alpha, palette.name_of_hex()
    ):
        log(f"  {hex_code}  {name}: {count:,}")
    if config.debug:
        debug_log(
            key_value_pairs_to_string(
                [
                    ("dE mean", result.stats.mean_distance),
                    ("dE max", result.stats.max_distance),
                    ("Map", format_seconds_compact(result.stats.seconds)),
                    ("Save", format_seconds_compact(time.perf_counter() - t_after_map)),
                ]
            )
        )
    log(f"Total time {format_seconds_compact(time.perf_counter() - t_start)}")
    return written


# Entry point


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    palette = nord_palette()

    if args.list_palette:
        print_palette(palette)
        return 0
    if args.src is None:
        parser.error("the following arguments are required: src")

    src: Path = args.src
    if not src.exists():
        error(f"not found: {src}")
        return 2
    if src.is_dir():
        error(f"expected an image file, got a folder: {src}")
        return 2

    try:
        config = config_from_args(args)
        adapter = adapter_from_args(args, config)
        # Fail on bad options before any image is touched
        Orchestrator(palette, config, adapter)
    except ConfigurationError as exc:
        error(str(exc))
        return 2

    print_config_line(
        "run",
        [
            ("Workers", config.workers),
            ("Model", adapter.name if adapter.enabled else "-"),
        ],
        debug=False,
    )

    try:
        process_file(src, args.dst, palette, config, adapter, args.auto)
    except NordMapError as exc:
        error(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
