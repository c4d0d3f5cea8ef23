"""
Configuration file support for the markerharmony CLI.

Supports YAML and JSON config files with CLI argument override. A config
describes the shared marker panel and one entry per dataset:

    panel: markers/astrocyte_panel.csv
    panel_column: symbol
    output: results/harmonized
    workers: 3
    datasets:
      - name: GSE5281
        preset: microarray
        expression: data/gse5281_rma.csv
        metadata: data/gse5281_samples.csv
        group_column: pathology
        reference_group: low
        extreme_group: high
        id_map: data/gse5281_probe_to_symbol.csv
      - name: CSF
        preset: csf_proteomics
        expression: data/csf_olink.csv
        metadata: data/csf_samples.csv
        group_column: ptau_decile
        bin_column: ptau
        reference_group: Q1
        extreme_group: Q10
"""

import json
from argparse import Namespace
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from markerharmony.core.exceptions import ConfigurationError
from markerharmony.io.loaders import load_id_map
from markerharmony.pipeline import DATASET_PRESETS, DatasetConfig


@dataclass
class DatasetEntry:
    """One dataset from a config file: where its files are and how to run it."""
    config: DatasetConfig
    expression: Path
    metadata: Optional[Path] = None


_PATH_KEYS = ('expression', 'metadata', 'id_map')
_DATASET_FIELDS = {f.name for f in fields(DatasetConfig)}
_TOP_LEVEL_KEYS = {'panel', 'panel_column', 'output', 'workers', 'datasets'}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("harmonize.yaml"))
        >>> config['datasets'][0]['preset']
        'microarray'
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Check a loaded config for structural problems.

    Returns:
        List of error messages (empty when the config is usable)
    """
    errors = []

    unknown = set(config) - _TOP_LEVEL_KEYS
    if unknown:
        errors.append(f"Unknown top-level keys: {sorted(unknown)}")

    workers = config.get('workers')
    if workers is not None and (not isinstance(workers, int) or workers < 1):
        errors.append(f"workers must be a positive integer, got {workers!r}")

    datasets = config.get('datasets', [])
    if not isinstance(datasets, list):
        errors.append("datasets must be a list")
        return errors

    names = []
    for i, entry in enumerate(datasets):
        where = f"datasets[{i}]"
        if not isinstance(entry, dict):
            errors.append(f"{where} must be a mapping")
            continue
        name = entry.get('name')
        where = f"datasets[{i}] ({name})" if name else where
        names.append(name)
        for key in ('name', 'expression', 'group_column', 'reference_group', 'extreme_group'):
            if key not in entry:
                errors.append(f"{where}: missing required key '{key}'")
        preset = entry.get('preset')
        if preset is not None and preset not in DATASET_PRESETS:
            errors.append(f"{where}: unknown preset '{preset}'")
        allowed = _DATASET_FIELDS | set(_PATH_KEYS) | {'preset'}
        extra = set(entry) - allowed
        if extra:
            errors.append(f"{where}: unknown keys {sorted(extra)}")

    duplicates = sorted({n for n in names if n is not None and names.count(n) > 1})
    if duplicates:
        errors.append(f"Duplicate dataset names: {duplicates}")

    return errors


def build_dataset_entries(config: Dict[str, Any], base_dir: Optional[Path] = None) -> List[DatasetEntry]:
    """
    Turn the ``datasets`` section into DatasetEntry objects.

    Relative paths resolve against ``base_dir`` (the config file's directory).

    Raises:
        ConfigurationError: If the config does not validate
    """
    errors = validate_config(config)
    if errors:
        raise ConfigurationError("Invalid config:\n" + "\n".join(f"  - {e}" for e in errors))

    def resolve(value: Any) -> Path:
        path = Path(value)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return path

    entries = []
    for raw in config.get('datasets', []):
        values = {k: v for k, v in raw.items() if k in _DATASET_FIELDS}
        id_map = raw.get('id_map')
        if id_map is not None:
            values['dedup_key'] = load_id_map(resolve(id_map))
        preset = raw.get('preset')
        dataset_config = (
            DatasetConfig.from_preset(preset, **values) if preset else DatasetConfig(**values)
        )
        entries.append(DatasetEntry(
            config=dataset_config,
            expression=resolve(raw['expression']),
            metadata=resolve(raw['metadata']) if raw.get('metadata') else None,
        ))
    return entries


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    short_to_long = {
        'i': 'input',
        'm': 'metadata',
        'p': 'panel',
        'o': 'output',
        'j': 'workers',
    }
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in short_to_long:
            explicit.add(short_to_long[arg[1]])
    return explicit


def merge_config_with_args(config: Dict[str, Any], args: Namespace, cli_args: Optional[List[str]] = None) -> Namespace:
    """
    Merge config file top-level values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values

    Examples:
        >>> config = load_config(Path("harmonize.yaml"))
        >>> args = parser.parse_args(["--output", "scratch"])
        >>> merged = merge_config_with_args(config, args, ["--output", "scratch"])
        >>> # merged.output from CLI, merged.panel from config
    """
    explicit_args = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    simple_mappings = {
        'panel': 'panel',
        'panel_column': 'panel_column',
        'output': 'output',
        'workers': 'workers',
    }

    for config_key, arg_name in simple_mappings.items():
        if config_key not in config or not hasattr(merged, arg_name):
            continue
        config_value = config[config_key]
        if config_value is not None and arg_name in ('panel', 'output'):
            config_value = Path(config_value)
        setattr(merged, arg_name, _merge_value(
            getattr(merged, arg_name),
            config_value,
            arg_name in explicit_args,
        ))

    return merged
