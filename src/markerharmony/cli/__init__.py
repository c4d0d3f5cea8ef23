"""
markerharmony CLI - Cross-platform marker panel harmonization.

Commands:
    markerharmony harmonize  - Filter, z-score, compare and rank panel markers per dataset
    markerharmony enrich     - Hypergeometric enrichment of the panel in target gene lists
"""

import argparse
import logging
import sys
from typing import Optional, List

from markerharmony import __version__


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for markerharmony."""
    parser = argparse.ArgumentParser(
        prog="markerharmony",
        description="Harmonize a marker panel across microarray, single-cell and proteomics datasets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  harmonize     Filter, z-score, compare and rank panel markers per dataset
  enrich        Hypergeometric enrichment of the panel in target gene lists

Examples:
  markerharmony harmonize --config harmonize.yaml --workers 3
  markerharmony harmonize --input gse5281.csv --metadata samples.csv --panel markers.csv \\
      --group-column pathology --reference low --extreme high --output results/gse5281
  markerharmony enrich --panel markers.csv --targets de_array.txt de_csf.txt \\
      --population-size 20000 --output results/enrichment.csv
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from markerharmony.cli import harmonize, enrich
    harmonize.register_parser(subparsers)
    enrich.register_parser(subparsers)

    raw_args = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(raw_args)
    parsed_args._raw_args = raw_args

    if parsed_args.command is None:
        parser.print_help()
        return 0

    _configure_logging(parsed_args.verbose)

    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
