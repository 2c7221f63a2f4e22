"""Command-line interface: turn an image into a lithophane mesh file."""
import argparse
import logging
import os
import sys

from lithomesh.config import (
    DEFAULT_BLACK_DEPTH,
    DEFAULT_PRECISION,
    DEFAULT_STEP,
    DEFAULT_TOLERANCE,
    DEFAULT_WHITE_DEPTH,
    DEFAULT_WINDING,
    DEFAULT_WORKERS,
    GenerationSettings,
)
from lithomesh.errors import LithomeshError
from lithomesh.logging_config import setup_logging
from lithomesh.pipeline import generate_lithophane
from lithomesh.preprocess import load_samples

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="lithomesh",
        description="Map every pixel of an image through X, Y and Z formulas and save the resulting mesh.",
    )
    parser.add_argument("-i", "--input", required=True, help="Input image")
    parser.add_argument("-o", "--output", required=True, help="Output mesh (.stl, .obj, .ply); must not exist")
    parser.add_argument("x_expression", help="Formula for X over x, y, w, h, s, d")
    parser.add_argument("y_expression", help="Formula for Y")
    parser.add_argument("z_expression", help="Formula for Z")
    parser.add_argument("--precision", default=DEFAULT_PRECISION.value, choices=["single", "double"])
    parser.add_argument("--tolerance", type=float, default=DEFAULT_TOLERANCE,
                        help="Distance under which vertices along an edge count as one point")
    parser.add_argument("--step", type=int, default=DEFAULT_STEP, help="Use every n-th pixel (preview)")
    parser.add_argument("--winding", default=DEFAULT_WINDING.value, choices=["grid", "reversed", "outward"])
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    parser.add_argument("--white-depth", type=float, default=DEFAULT_WHITE_DEPTH)
    parser.add_argument("--black-depth", type=float, default=DEFAULT_BLACK_DEPTH)
    parser.add_argument("--surface-only", action="store_true", help="Skip thickening into a solid")
    parser.add_argument("--normalize", action="store_true", help="Apply CLAHE to the image first")
    parser.add_argument("--denoise", action="store_true", help="Apply a median blur to the image first")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", help="Also append log messages to this file")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    if os.path.exists(args.output):
        print(f"Error opening output file \"{args.output}\": file already exists", file=sys.stderr)
        return 1

    try:
        samples = load_samples(args.input, normalize_hist=args.normalize, denoise=args.denoise)
    except FileNotFoundError as e:
        print(f"Error opening image file \"{args.input}\": {e}", file=sys.stderr)
        return 1

    try:
        settings = GenerationSettings.from_mapping(vars(args))
        mesh = generate_lithophane(
            args.x_expression,
            args.y_expression,
            args.z_expression,
            samples,
            settings,
            white_depth=args.white_depth,
            black_depth=args.black_depth,
            surface_only=args.surface_only,
        )
    except LithomeshError as e:
        print(f"Error generating mesh: {e}", file=sys.stderr)
        return 1

    try:
        mesh.export(args.output)
    except (OSError, ValueError) as e:
        print(f"Error saving mesh to \"{args.output}\": {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
