"""
markerharmony enrich command - panel enrichment in independent target lists.

Usage:
    markerharmony enrich --panel markers.csv \\
        --targets de_microarray.txt de_snrna.txt de_csf.txt \\
        --population-size 20000 --output results/enrichment.csv

Each target file is labelled by its file stem. Benjamini-Hochberg adjusted
p-values are computed across the target lists.
"""

import argparse
import logging
from pathlib import Path

from markerharmony.cli._validators import _positive_int
from markerharmony.core.exceptions import MarkerHarmonyError
from markerharmony.io.loaders import load_gene_list, load_marker_panel
from markerharmony.io.writers import write_enrichment
from markerharmony.validation.enrichment_tests import DEFAULT_POPULATION_SIZE, enrich_many

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the enrich subcommand."""
    parser = subparsers.add_parser(
        "enrich",
        help="Hypergeometric enrichment of the panel in target gene lists",
        description="Test whether the marker panel is over-represented in each target list",
    )
    parser.add_argument("--panel", "-p", type=Path, required=True,
                        help="Marker panel file (CSV/TSV/one id per line)")
    parser.add_argument("--panel-column", default=None,
                        help="Panel column holding marker ids (default: first column)")
    parser.add_argument("--targets", "-t", type=Path, nargs="+", required=True,
                        help="Target gene/protein list files, one test per file")
    parser.add_argument("--population-size", "-N", type=_positive_int,
                        default=DEFAULT_POPULATION_SIZE,
                        help=f"Total distinguishable genes/proteins (default: {DEFAULT_POPULATION_SIZE})")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/enrichment.csv"),
                        help="Output CSV")
    parser.set_defaults(func=run_enrich)


def run_enrich(args: argparse.Namespace) -> int:
    """Execute the enrich command."""
    panel = load_marker_panel(args.panel, column=args.panel_column)

    targets = {}
    for path in args.targets:
        label = path.stem
        if label in targets:
            logger.error(f"Two target files share the label '{label}'")
            return 1
        targets[label] = load_gene_list(path)

    try:
        report = enrich_many(panel, targets, population_size=args.population_size)
    except MarkerHarmonyError as e:
        logger.error(str(e))
        return 1

    write_enrichment(report, args.output)

    print(f"\n{'='*70}")
    print(f"  Enrichment of {panel.name} ({len(panel)} markers), N = {args.population_size}")
    print(f"{'='*70}")
    for result, adj in zip(report, report.adj_p_values):
        print(
            f"  {result.label}: {result.overlap}/{result.query_size} in target "
            f"(m={result.target_size}, expected {result.expected:.2f}, "
            f"fold {result.fold_enrichment:.2f}), p={result.p_value:.3g}, adj p={adj:.3g}"
        )
    print()

    return 0
