#!/usr/bin/env python3
"""
Configuration loader for the fetal multi-atlas segmentation pipeline.

Handles:
- Loading YAML configuration files
- Merging study configs with the packaged defaults
- Environment variable substitution (${FETALREF}, ${CRKIT}, ...)
- Configuration validation
- Conversion to an immutable PipelineConfig passed to every stage
"""

import dataclasses
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from fetalmas.naming import LabelScheme


DEFAULT_CONFIG_PATH = Path(__file__).parent / 'configs' / 'default.yaml'

VOLUME_BACKENDS = ('crkit', 'nibabel')


class PipelineError(Exception):
    """Base class for errors that abort a run before any subject is processed."""
    pass


class ConfigurationError(PipelineError):
    """Raised when configuration is invalid or missing required parameters."""
    pass


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Parameters
    ----------
    file_path : Path
        Path to YAML file

    Returns
    -------
    dict
        Loaded configuration

    Raises
    ------
    ConfigurationError
        If file doesn't exist or YAML is invalid
    """
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            config = yaml.safe_load(f)
        return config if config is not None else {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}")


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two configuration dictionaries.

    Parameters
    ----------
    base : dict
        Base configuration (defaults)
    override : dict
        Override configuration (study-specific)

    Returns
    -------
    dict
        Merged configuration (override takes precedence)
    """
    merged = base.copy()

    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def substitute_variables(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Substitute environment variables and config references in strings.

    Supports:
    - ${ENV_VAR} - environment variables
    - ${section.key} - references to other config values

    Unresolvable references are left in place so validation can report them.
    """
    pattern = re.compile(r'\$\{([^}]+)\}')

    def substitute_string(value: str, ctx: Dict[str, Any]) -> str:
        def replacer(match):
            var_path = match.group(1)

            if var_path in os.environ:
                return os.environ[var_path]

            try:
                val = ctx
                for part in var_path.split('.'):
                    val = val[part]
                return str(val)
            except (KeyError, TypeError):
                return match.group(0)

        return pattern.sub(replacer, value)

    def process_value(value: Any, ctx: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return substitute_string(value, ctx)
        elif isinstance(value, dict):
            return {k: process_value(v, ctx) for k, v in value.items()}
        elif isinstance(value, list):
            return [process_value(item, ctx) for item in value]
        else:
            return value

    # Iterate substitution to resolve chained references (e.g., A -> B -> ENV)
    result = config
    for _ in range(5):
        resolved = process_value(result, result)
        if resolved == result:
            break
        result = resolved

    return result


def _unresolved(value: Any) -> bool:
    return isinstance(value, str) and '${' in value


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration has all required parameters.

    Raises
    ------
    ConfigurationError
        If required parameters are missing or invalid
    """
    for section in ('paths', 'tools', 'labels', 'stages', 'registration', 'fusion', 'pvc', 'parcellation'):
        if not isinstance(config.get(section), dict):
            raise ConfigurationError(f"Missing configuration section: {section}")

    atlas_root = config['paths'].get('atlas_root')
    if not atlas_root or _unresolved(atlas_root):
        raise ConfigurationError(
            f"paths.atlas_root is not set (got {atlas_root!r}). "
            "Export FETALREF or set paths.atlas_root in the study config."
        )

    for tool in ('registration', 'resample', 'fusion', 'algebra', 'relabel', 'pvc', 'volume'):
        if tool not in config['tools']:
            raise ConfigurationError(f"Missing required tool: tools.{tool}")

    schemes = config['labels'].get('schemes')
    if not schemes:
        raise ConfigurationError("labels.schemes must list at least one label suffix")

    prefix = str(config['labels'].get('output_prefix', ''))
    if not prefix or '/' in prefix or '\\' in prefix:
        raise ConfigurationError(
            f"labels.output_prefix must be non-empty and contain no path separators, got {prefix!r}"
        )

    for key in ('block_size', 'overlap'):
        value = config['fusion'].get(key)
        if not isinstance(value, list) or len(value) != 3:
            raise ConfigurationError(f"fusion.{key} must be a list of three integers, got {value!r}")

    backend = config['pvc'].get('volume_backend', 'crkit')
    if backend not in VOLUME_BACKENDS:
        raise ConfigurationError(
            f"pvc.volume_backend must be one of {VOLUME_BACKENDS}, got {backend!r}"
        )

    cp_labels = config['parcellation'].get('cortical_plate_labels')
    if not isinstance(cp_labels, list) or not cp_labels:
        raise ConfigurationError("parcellation.cortical_plate_labels must be a non-empty list")


def load_config(config_path: Optional[Path] = None, validate: bool = True) -> Dict[str, Any]:
    """
    Load and process configuration file.

    This is the main entry point for loading configs. It:
    1. Loads the packaged default config (or default.yaml beside the study config)
    2. Merges the study config over it
    3. Substitutes variables
    4. Validates the result

    Parameters
    ----------
    config_path : Path, optional
        Study-specific configuration file. Defaults only when omitted.
    validate : bool
        Whether to validate the configuration

    Returns
    -------
    dict
        Processed configuration
    """
    default_path = DEFAULT_CONFIG_PATH
    study_config: Dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        study_config = load_yaml(config_path)
        local_default = config_path.parent / 'default.yaml'
        if local_default.exists() and local_default != config_path:
            default_path = local_default

    config = merge_configs(load_yaml(default_path), study_config)
    config = substitute_variables(config)

    if validate:
        validate_config(config)

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a value from config using dot notation.

    Examples
    --------
    >>> get_config_value(config, 'pvc.monitored_label')
    112
    >>> get_config_value(config, 'missing.key', default=0)
    0
    """
    try:
        value = config
        for part in key_path.split('.'):
            value = value[part]
        return value
    except (KeyError, TypeError):
        return default


@dataclass(frozen=True)
class ToolPaths:
    """Executables for the external collaborators."""
    registration: str
    resample: str
    fusion: str
    algebra: str
    relabel: str
    pvc: str
    volume: str


@dataclass(frozen=True)
class RegistrationParams:
    """ANTS parameters shared by every atlas-to-subject registration."""
    dimension: int = 3
    metric_weight: int = 1
    metric_radius: int = 2
    regularization: str = 'Gauss[3,0]'
    affine_metric: str = 'MI'
    iterations: str = '100x100x20'
    transformation: str = 'SyN[0.4]'


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable run configuration.

    Built once at startup from the YAML configuration and the command line,
    then passed explicitly to every stage.
    """
    atlas_root: Path
    atlas_manifest: Path
    tools: ToolPaths
    label_suffixes: Tuple[str, ...] = ('tissue', 'tissueWMZ', 'regional')
    output_prefix: str = 'MAS'
    tissue_marker: str = 'tissue'
    primary_tissue: str = 'tissue'
    regional: str = 'regional'
    segmentation: bool = True
    pvc: bool = True
    registration: RegistrationParams = RegistrationParams()
    block_size: Tuple[int, int, int] = (16, 16, 16)
    overlap: Tuple[int, int, int] = (1, 1, 1)
    pvc_strength: float = 0.1
    monitored_label: int = 112
    min_reduction: float = 2.0
    volume_backend: str = 'crkit'
    cortical_plate_labels: Tuple[int, ...] = (112, 113)
    strict: bool = False
    max_threads: int = 1

    @property
    def schemes(self) -> List[LabelScheme]:
        return [LabelScheme(suffix, self.output_prefix) for suffix in self.label_suffixes]

    def scheme(self, suffix: str) -> LabelScheme:
        return LabelScheme(suffix, self.output_prefix)

    def is_tissue_scheme(self, scheme: LabelScheme) -> bool:
        return self.tissue_marker in scheme.suffix

    def with_overrides(self, **changes: Any) -> 'PipelineConfig':
        """Return a copy with the given fields replaced (None values are ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'PipelineConfig':
        """
        Build the run configuration from a processed config dict.

        Raises
        ------
        ConfigurationError
            If a value has the wrong type or a section has unknown keys
        """
        paths = config['paths']
        labels = config['labels']
        stages = config.get('stages', {})
        pvc = config['pvc']

        try:
            return cls(
                atlas_root=Path(paths['atlas_root']),
                atlas_manifest=Path(paths.get('atlas_manifest', Path(paths['atlas_root']) / 'tlist.txt')),
                tools=ToolPaths(**{k: str(v) for k, v in config['tools'].items() if k in ToolPaths.__dataclass_fields__}),
                label_suffixes=tuple(str(s) for s in labels['schemes']),
                output_prefix=str(labels.get('output_prefix', 'MAS')),
                tissue_marker=str(labels.get('tissue_marker', 'tissue')),
                primary_tissue=str(labels.get('primary_tissue', 'tissue')),
                regional=str(labels.get('regional', 'regional')),
                segmentation=bool(stages.get('segmentation', True)),
                pvc=bool(stages.get('pvc', True)),
                registration=RegistrationParams(**config['registration']),
                block_size=tuple(int(v) for v in config['fusion']['block_size']),
                overlap=tuple(int(v) for v in config['fusion']['overlap']),
                pvc_strength=float(pvc.get('strength', 0.1)),
                monitored_label=int(pvc.get('monitored_label', 112)),
                min_reduction=float(pvc.get('min_reduction', 2.0)),
                volume_backend=str(pvc.get('volume_backend', 'crkit')),
                cortical_plate_labels=tuple(int(v) for v in config['parcellation']['cortical_plate_labels']),
                strict=bool(get_config_value(config, 'execution.strict', False)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e
