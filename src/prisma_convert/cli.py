"""Command line entry point: ``prisma-convert IN_FILE OUT_FOLDER``."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn, Sequence

from .config import OUTPUT_FORMATS, PRODUCT_FLAGS, ConvertConfig, load_config
from .convert import convert_prisma
from .errors import PrismaConvertError
from .writers import describe_outputs

logger = logging.getLogger(__name__)


def _die(msg: str, code: int = 2) -> NoReturn:
    print(f"[prisma-convert] {msg}", file=sys.stderr)
    raise SystemExit(code)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prisma-convert",
        description="Convert a PRISMA L1/L2 HDF5 file into georeferenced rasters.",
    )
    parser.add_argument("in_file", type=Path, help="PRISMA .he5 input file.")
    parser.add_argument("out_folder", type=Path, help="Folder receiving the outputs.")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON configuration file; command line options override its values.",
    )
    parser.add_argument(
        "--products",
        nargs="+",
        type=str.upper,
        choices=[flag.upper() for flag in PRODUCT_FLAGS],
        default=None,
        metavar="PRODUCT",
        help="Raster products to create (default: VNIR SWIR). "
        f"Choices: {', '.join(flag.upper() for flag in PRODUCT_FLAGS)}.",
    )
    parser.add_argument(
        "--source",
        type=str.upper,
        choices=["HCO", "HRC"],
        default=None,
        help="L1 head type to read (HCO coregistered or HRC with smile matrices).",
    )
    parser.add_argument(
        "--no-base-georef",
        dest="base_georef",
        action="store_false",
        default=None,
        help="Skip the GLT; write north-up arrays without georeferencing.",
    )
    parser.add_argument(
        "--join-priority",
        type=str.upper,
        choices=["VNIR", "SWIR"],
        default=None,
        help="Spectrometer kept in the VNIR/SWIR overlap of the FULL cube.",
    )
    parser.add_argument(
        "--selbands-vnir",
        nargs="+",
        type=float,
        default=None,
        metavar="NM",
        help="Keep only the VNIR bands nearest to these wavelengths.",
    )
    parser.add_argument(
        "--selbands-swir",
        nargs="+",
        type=float,
        default=None,
        metavar="NM",
        help="Keep only the SWIR bands nearest to these wavelengths.",
    )
    parser.add_argument(
        "--apply-errmatrix",
        action="store_true",
        default=None,
        help="Set pixels flagged in the error matrix to no-data.",
    )
    parser.add_argument(
        "--err-threshold",
        type=float,
        default=None,
        help="Error codes above this value are masked (default 1).",
    )
    parser.add_argument(
        "--pixel-size",
        type=float,
        default=None,
        help="Output pixel size in degrees (default: native spacing).",
    )
    parser.add_argument(
        "--format",
        dest="out_format",
        choices=sorted(OUTPUT_FORMATS.values()),
        default=None,
        help="Raster format (default GTiff).",
    )
    parser.add_argument(
        "--atcor",
        action="store_true",
        default=None,
        help="Write ATCOR wavelength tables.",
    )
    parser.add_argument(
        "--atcor-columns",
        nargs="+",
        type=int,
        default=None,
        metavar="COL",
        help="Detector columns for per-column (smile) ATCOR tables; HRC only.",
    )
    parser.add_argument(
        "--indexes",
        nargs="+",
        default=None,
        metavar="INDEX",
        help="Spectral indexes by name (e.g. NDVI) or as NAME=formula.",
    )
    parser.add_argument(
        "--l2-file",
        default=None,
        help="L2 file of the same acquisition whose geolocation replaces the L1 one.",
    )
    parser.add_argument(
        "--basename",
        default=None,
        help="Output file prefix (default: input file stem).",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        default=None,
        help="Replace existing outputs instead of skipping them.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ConvertConfig:
    """Merge the optional config file with command line overrides."""

    config = load_config(args.config) if args.config else ConvertConfig()
    overrides = {
        "source": args.source,
        "base_georef": args.base_georef,
        "join_priority": args.join_priority,
        "selbands_vnir": args.selbands_vnir,
        "selbands_swir": args.selbands_swir,
        "apply_errmatrix": args.apply_errmatrix,
        "err_threshold": args.err_threshold,
        "pixel_size": args.pixel_size,
        "out_format": args.out_format,
        "atcor": args.atcor,
        "atcor_columns": args.atcor_columns,
        "indexes": args.indexes,
        "l2_file": args.l2_file,
        "basename": args.basename,
        "overwrite": args.overwrite,
    }
    if args.products is not None:
        requested = set(args.products)
        overrides.update({flag: flag.upper() in requested for flag in PRODUCT_FLAGS})
    return config.with_overrides(**overrides)


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("prisma_convert").setLevel(logging.DEBUG)

    try:
        config = config_from_args(args)
    except (OSError, ValueError) as exc:
        _die(f"invalid configuration: {exc}")

    try:
        result = convert_prisma(args.in_file, args.out_folder, config)
    except (PrismaConvertError, OSError, ValueError) as exc:
        _die(str(exc))

    summary = describe_outputs(result.outputs)
    if not summary.empty:
        logger.info("Outputs:\n%s", summary.to_string(index=False))
    for name, reason in result.skipped.items():
        logger.info("Skipped %s: %s", name, reason)


if __name__ == "__main__":  # pragma: no cover
    main()
