"""
I/O for the harmonization engine: delimited-text loaders and result writers.

Key Functions:
    - load_expression_csv: Platform-normalized matrix (+ sample metadata)
    - load_marker_panel: Marker panel from CSV/TSV/text
    - load_gene_list: Target identifiers for enrichment
    - load_id_map: Raw id to canonical id table for deduplication
    - write_zscores, write_differential, write_enrichment, write_ranked_order
"""

from markerharmony.io.loaders import (
    load_expression_csv,
    load_gene_list,
    load_id_map,
    load_marker_panel,
    load_sample_metadata,
)
from markerharmony.io.writers import (
    write_differential,
    write_enrichment,
    write_ranked_order,
    write_zscores,
)

__all__ = [
    'load_expression_csv',
    'load_gene_list',
    'load_id_map',
    'load_marker_panel',
    'load_sample_metadata',
    'write_differential',
    'write_enrichment',
    'write_ranked_order',
    'write_zscores',
]
