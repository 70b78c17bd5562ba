"""
Command line interface for regrider.

Usage:
    python -m regrider -g grids.bin -d 128 -o grids_128.bin
    python -m regrider -v velociraptor.hdf5 -d 64 -o velociraptor_64.hdf5
    python -m regrider -c regrid.yaml --threads 8
"""

import argparse
import sys
from typing import Any, Dict, List, Optional

from regrider.config import InputFormat, RegridConfig, load_yaml
from regrider.errors import ConfigurationError, RegridError
from regrider.kernels import FilterType
from regrider.logging_utils import setup_logging
from regrider.regrid import run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="regrider",
        description="Downsample gbpTrees and VELOCIraptor grids using FFT filtering",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Downsample every grid of a gbpTrees file to 128³
  regrider -g grids.bin -d 128 -o grids_128.bin

  # Downsample a VELOCIraptor file with a Gaussian filter
  regrider -v snap.hdf5 -d 64 -o snap_64.hdf5 --filter gaussian

  # Take everything from a YAML config, overriding the thread count
  regrider -c regrid.yaml --threads 4
""",
    )
    parser.add_argument("-d", "--dim", type=int, help="new grid dimension")
    parser.add_argument("-g", "--gbptrees", help="input gbpTrees grid file")
    parser.add_argument("-v", "--velociraptor", help="input VELOCIraptor grid file")
    parser.add_argument("-o", "--output", help="output file name")
    parser.add_argument("-c", "--config", help="YAML config file")
    parser.add_argument(
        "--filter",
        choices=[f.value for f in FilterType],
        help="smoothing kernel (default: real_top_hat)",
    )
    parser.add_argument(
        "--radius-factor",
        type=float,
        help="filter scale as a fraction of the new cell size (default: 0.5)",
    )
    parser.add_argument("--threads", type=int, help="worker threads (default: all)")
    parser.add_argument("--verbose", action="store_true", help="log debug output")
    parser.add_argument("--quiet", action="store_true", help="only log warnings and errors")
    return parser


def config_from_args(args: argparse.Namespace) -> RegridConfig:
    """
    Merge an optional YAML config with command-line options.

    Raises:
        ConfigurationError: On conflicting or missing options
    """
    if args.gbptrees and args.velociraptor:
        raise ConfigurationError(
            "Must specify either gbpTrees or VELOCIraptor file. Not both..."
        )

    data: Dict[str, Any] = load_yaml(args.config) if args.config else {}

    if args.gbptrees:
        data.update(input_format=InputFormat.GBPTREES, input_path=args.gbptrees)
    elif args.velociraptor:
        data.update(input_format=InputFormat.VELOCIRAPTOR, input_path=args.velociraptor)

    overrides = {
        "new_dim": args.dim,
        "output_path": args.output,
        "filter_type": args.filter,
        "radius_factor": args.radius_factor,
        "n_threads": args.threads,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})

    if data.get("new_dim") is None:
        raise ConfigurationError("Must specify new grid dimension...")
    if data.get("input_path") is None or data.get("input_format") is None:
        raise ConfigurationError("Must specify a gbpTrees or VELOCIraptor input file...")
    if data.get("output_path") is None:
        raise ConfigurationError("Must specify an output file...")

    return RegridConfig.from_dict(data)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    if not config.input_path.exists():
        print(f"❌ Input file not found: {config.input_path}", file=sys.stderr)
        return 1

    setup_logging(verbose=args.verbose, quiet=args.quiet)

    if not args.quiet:
        print(config.summary())
        print("=" * 70)

    try:
        run(config)
    except (RegridError, OSError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    if not args.quiet:
        print("=" * 70)
        print(f"✓ Wrote {config.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
