"""
markerharmony harmonize command - per-dataset panel normalization and ranking.

Usage:
    markerharmony harmonize --config harmonize.yaml
    markerharmony harmonize --input gse5281.csv --metadata samples.csv \\
        --panel markers.csv --group-column pathology --reference low --extreme high

Outputs (per dataset, under --output):
    {name}.zscores.csv / {name}.flags.csv   standardized panel matrix
    {name}.rows.csv / {name}.columns.csv    heatmap row ranking and column layout
    {name}.differential.csv                 moderated two-group comparison
    lookup_misses.csv                       panel markers not measured, per dataset
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

from markerharmony.cli._validators import _fraction, _positive_int
from markerharmony.cli.config import (
    DatasetEntry,
    build_dataset_entries,
    load_config,
    merge_config_with_args,
)
from markerharmony.core.exceptions import MarkerHarmonyError
from markerharmony.io.loaders import load_expression_csv, load_id_map, load_marker_panel
from markerharmony.io.writers import write_differential, write_ranked_order, write_zscores
from markerharmony.pipeline import DATASET_PRESETS, DatasetConfig, run_datasets

logger = logging.getLogger(__name__)


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the harmonize subcommand."""
    parser = subparsers.add_parser(
        "harmonize",
        help="Filter, z-score, compare and rank panel markers per dataset",
        description="Run the marker harmonization pipeline on one or more datasets",
    )
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="YAML/JSON config describing the panel and datasets")
    parser.add_argument("--panel", "-p", type=Path, default=None,
                        help="Marker panel file (CSV/TSV/one id per line)")
    parser.add_argument("--panel-column", default=None,
                        help="Panel column holding marker ids (default: first column)")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/harmonized"),
                        help="Output directory")
    parser.add_argument("--workers", "-j", type=_positive_int, default=1,
                        help="Datasets processed in parallel")

    single = parser.add_argument_group("single dataset (when no datasets are configured)")
    single.add_argument("--input", "-i", type=Path, default=None,
                        help="Expression table (first column = feature ids)")
    single.add_argument("--metadata", "-m", type=Path, default=None,
                        help="Sample metadata table (first column = sample ids)")
    single.add_argument("--name", default=None,
                        help="Dataset name (default: input file stem)")
    single.add_argument("--preset", choices=sorted(DATASET_PRESETS), default=None,
                        help="Platform defaults")
    single.add_argument("--group-column", default=None,
                        help="Metadata column with sample groups")
    single.add_argument("--reference", default=None,
                        help="Reference (baseline) group")
    single.add_argument("--extreme", default=None,
                        help="Extreme group compared against the reference")
    single.add_argument("--missingness-threshold", type=_fraction, default=None,
                        help="Drop markers missing in more than this fraction of samples")
    single.add_argument("--id-map", type=Path, default=None,
                        help="Two-column raw id → canonical id table for deduplication")
    single.add_argument("--column-key", default=None,
                        help="Metadata column ordering samples within each group")
    single.add_argument("--group-order", nargs="+", default=None,
                        help="Explicit left-to-right group order")
    single.add_argument("--bin-column", default=None,
                        help="Continuous metadata column to bin into --group-column")
    single.add_argument("--n-bins", type=_positive_int, default=None,
                        help="Quantile bins for --bin-column")
    single.add_argument("--no-compare", action="store_true",
                        help="Skip the moderated two-group comparison")

    parser.set_defaults(func=run_harmonize)


def _single_dataset_entry(args: argparse.Namespace) -> DatasetEntry:
    missing = [
        flag for flag, value in (
            ("--input", args.input),
            ("--group-column", args.group_column),
            ("--reference", args.reference),
            ("--extreme", args.extreme),
        ) if value is None
    ]
    if missing:
        raise ValueError(f"Without configured datasets, {', '.join(missing)} are required")

    values = {
        'name': args.name or args.input.stem,
        'group_column': args.group_column,
        'reference_group': args.reference,
        'extreme_group': args.extreme,
    }
    optional = {
        'missingness_threshold': args.missingness_threshold,
        'column_key': args.column_key,
        'group_order': args.group_order,
        'bin_column': args.bin_column,
        'n_bins': args.n_bins,
    }
    values.update({k: v for k, v in optional.items() if v is not None})
    if args.no_compare:
        values['compare'] = False
    if args.id_map is not None:
        values['dedup_key'] = load_id_map(args.id_map)

    config = (
        DatasetConfig.from_preset(args.preset, **values) if args.preset else DatasetConfig(**values)
    )
    return DatasetEntry(config=config, expression=args.input, metadata=args.metadata)


def _write_outputs(results, output_dir: Path) -> None:
    misses = []
    for result in results:
        misses.extend(
            {'dataset': result.name, 'marker': miss.marker} for miss in result.lookup_misses
        )
        if not result.ok:
            continue
        base = output_dir / result.name
        write_zscores(result.zscores, base)
        write_ranked_order(result.ranked, base)
        if result.differential is not None:
            write_differential(result.differential, Path(str(base) + ".differential.csv"))

    misses_path = output_dir / "lookup_misses.csv"
    pd.DataFrame(misses, columns=['dataset', 'marker']).to_csv(misses_path, index=False)
    logger.info(f"Wrote {misses_path}")


def run_harmonize(args: argparse.Namespace) -> int:
    """Execute the harmonize command."""
    config = {}
    if args.config is not None:
        try:
            config = load_config(args.config)
        except (FileNotFoundError, ValueError) as e:
            logger.error(str(e))
            return 1
        args = merge_config_with_args(config, args, getattr(args, '_raw_args', None))

    if args.panel is None:
        logger.error("A marker panel is required (--panel or 'panel' in the config)")
        return 1

    try:
        if config.get('datasets'):
            entries = build_dataset_entries(config, base_dir=args.config.parent)
        else:
            entries = [_single_dataset_entry(args)]
    except (MarkerHarmonyError, ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    try:
        panel = load_marker_panel(args.panel, column=args.panel_column)
        datasets = [
            (load_expression_csv(entry.expression, entry.metadata), entry.config)
            for entry in entries
        ]
    except (ValueError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    results = run_datasets(datasets, panel, max_workers=args.workers)

    args.output.mkdir(parents=True, exist_ok=True)
    _write_outputs(results, args.output)

    print(f"\n{'='*70}")
    print(f"  Marker panel: {panel.name} ({len(panel)} markers)")
    print(f"{'='*70}")
    for result in results:
        if result.ok:
            n_sig = (
                len(result.differential.significant_features())
                if result.differential is not None else None
            )
            print(
                f"  {result.name}: {len(result.effective_panel)}/{len(panel)} markers retained, "
                f"{len(result.lookup_misses)} not measured"
                + (f", {n_sig} significant ({result.differential.contrast_name})"
                   if n_sig is not None else "")
            )
        else:
            print(f"  {result.name}: FAILED - {result.error}")
    print(f"\n  Results written to {args.output}\n")

    return 0 if all(r.ok for r in results) else 1
