"""
Configuration utilities for bpmai-convert
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import toml


MODES = ('full', 'filtered')
ENGINES = ('signavio', 'command')


@dataclass
class ConversionConfig:
    """Parameters of one batch run."""
    source_dir: Optional[str] = None
    dest_dir: Optional[str] = None
    index_path: Optional[str] = None
    language_filter: str = 'en'
    prefix_filter: str = 'bpmn20'
    mode: str = 'full'
    metadata_marker: str = '.meta.json'
    output_extension: str = '.bpmn'
    companion_extension: str = '.svg'
    coarse_resume: bool = False
    engine: str = 'signavio'
    engine_command: Optional[str] = None
    log_level: str = 'INFO'
    log_file: Optional[str] = None
    show_progress: bool = True

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ConversionConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**config)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def merged(self, overrides: Dict[str, Any]) -> 'ConversionConfig':
        """Copy with every non-``None`` override applied."""
        values = self.to_dict()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ConversionConfig.from_dict(values)

    def validate(self) -> 'ConversionConfig':
        if not self.source_dir:
            raise ValueError("source_dir is required")
        if not self.dest_dir:
            raise ValueError("dest_dir is required")
        if self.mode not in MODES:
            raise ValueError(f"Unsupported mode: {self.mode} (expected one of {MODES})")
        if self.engine not in ENGINES:
            raise ValueError(f"Unsupported engine: {self.engine} (expected one of {ENGINES})")
        if self.engine == 'command' and not self.engine_command:
            raise ValueError("engine_command is required for the 'command' engine")
        return self


def _config_format(config_path: Path) -> str:
    suffix = config_path.suffix.lower()
    if suffix not in ('.toml', '.json'):
        raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")
    return suffix


def load_config(config_path) -> Dict[str, Any]:
    """Read a flat TOML or JSON table of ``ConversionConfig`` fields."""
    config_path = Path(config_path)
    fmt = _config_format(config_path)
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    text = config_path.read_text(encoding='utf-8')
    config = toml.loads(text) if fmt == '.toml' else json.loads(text)
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {config_path} does not hold a table")
    return config


def save_config(config: Dict[str, Any], config_path):
    """
    Write ``config`` as TOML or JSON, chosen by the file suffix.

    ``None`` values are left out since TOML has no null; loading the file
    back falls through to the dataclass defaults for them.
    """
    config_path = Path(config_path)
    fmt = _config_format(config_path)
    config = {k: v for k, v in config.items() if v is not None}

    config_path.parent.mkdir(parents=True, exist_ok=True)
    text = toml.dumps(config) if fmt == '.toml' else json.dumps(config, indent=2) + '\n'
    config_path.write_text(text, encoding='utf-8')
