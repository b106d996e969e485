"""
Command line interface for texgauss.

Reads a texture, runs the Gaussianization pipeline and writes the Gaussian
image, the inverse LUT image and the decorrelation parameters.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from . import __version__
from .config import UNIT_RANGE_MEAN, UNIT_RANGE_STD, PrecomputeConfig
from .decorrelation import FALLBACK_NONE
from .errors import InputError
from .io_utils import default_prefixes, load_image, path_directory, write_artifacts
from .pipeline import GaussianizationPipeline


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="texgauss",
        description="Precompute a Gaussianized texture and inverse LUTs for tiling and blending",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write rock-gaussian.tif, rock-lut.tif and the decorrelation blob next to it
  texgauss -i textures/rock.png -o textures/

  # Match the [0, 1] Gaussian (mean 0.5, std 1/6) of the original renderer
  texgauss -i rock.png --unit-range

  # Exact per-pixel rank mapping, no color decorrelation
  texgauss -i rock.png --mapping rank --no-decorrelation
        """,
    )

    parser.add_argument("-i", "--in-file", help="Input texture (opens a file dialog if omitted)")
    parser.add_argument(
        "-o",
        "--out-dir",
        default="./",
        help="Output directory; a file path selects its parent (default: ./)",
    )
    parser.add_argument("--img-prefix", help="Name of the Gaussian image (default: <input>-gaussian)")
    parser.add_argument("--lut-prefix", help="Name of the LUT outputs (default: <input>-lut)")

    transform_group = parser.add_argument_group("Transform Options")
    transform_group.add_argument(
        "--lut-resolution",
        type=int,
        default=256,
        help="Number of entries in each lookup table (default: 256)",
    )
    transform_group.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads (default: CPU count)",
    )
    transform_group.add_argument(
        "--mapping",
        choices=["lut", "rank"],
        default="lut",
        help="Map pixels through the forward LUT or by exact rank (default: lut)",
    )
    transform_group.add_argument(
        "--no-decorrelation",
        action="store_true",
        help="Skip channel decorrelation (identity transform)",
    )
    transform_group.add_argument(
        "--unit-range",
        action="store_true",
        help="Target a Gaussian with mean 0.5 and std 1/6 and a +-3 sigma inverse LUT",
    )
    transform_group.add_argument(
        "--lut-sigma-range",
        type=float,
        default=None,
        help="Inverse LUT spans mean +- K std (default: exact range of the ranks)",
    )

    parser.add_argument("--version", action="version", version=f"texgauss {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser


def _config_from_args(args: argparse.Namespace) -> PrecomputeConfig:
    kwargs = {
        "lut_resolution": args.lut_resolution,
        "decorrelate": not args.no_decorrelation,
        "mapping": args.mapping,
        "inverse_sigma_range": args.lut_sigma_range,
    }
    if args.workers is not None:
        kwargs["workers"] = args.workers
    if args.unit_range:
        kwargs["gaussian_mean"] = UNIT_RANGE_MEAN
        kwargs["gaussian_std"] = UNIT_RANGE_STD
        if args.lut_sigma_range is None:
            kwargs["inverse_sigma_range"] = 3.0
    return PrecomputeConfig(**kwargs)


def _pick_input_file() -> Path:
    """Ask for the input texture with a Tk file dialog."""
    try:
        import tkinter as tk
        from tkinter import filedialog
    except ImportError as e:
        raise InputError("No input file specified") from e

    try:
        root = tk.Tk()
    except tk.TclError as e:
        raise InputError("No input file specified") from e
    root.withdraw()
    try:
        selected = filedialog.askopenfilename(
            title="Select input texture", initialdir=str(Path.cwd())
        )
    finally:
        root.destroy()
    if not selected:
        raise InputError("No input file specified")
    return Path(selected)


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    try:
        input_path = Path(args.in_file) if args.in_file else _pick_input_file()
        if not input_path.exists():
            print(f"Error: Input file '{input_path}' not found", file=sys.stderr)
            sys.exit(1)

        out_dir = path_directory(args.out_dir)
        default_img, default_lut = default_prefixes(input_path)
        img_prefix = args.img_prefix or default_img
        lut_prefix = args.lut_prefix or default_lut

        image = load_image(input_path)

        print(f"Processing {input_path}...")
        start = time.perf_counter()
        result = GaussianizationPipeline(config).process(image)
        print(f"Finished processing. Took {time.perf_counter() - start:.3f}s")

        if result.transform.fallback != FALLBACK_NONE:
            print(f"Decorrelation fallback: {result.transform.fallback}")

        print(
            f"Writing output to {img_prefix}.tif and {lut_prefix}.tif in directory {out_dir}"
        )
        paths = write_artifacts(result, out_dir, img_prefix, lut_prefix)

        if args.verbose:
            for kind, path in paths.items():
                print(f"  {kind}: {path}")

    except Exception as e:
        print(f"Error processing image: {e}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
