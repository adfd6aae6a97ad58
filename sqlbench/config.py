"""
Run configuration for the benchmark runner.

Defaults live in DEFAULT_CONFIG; an optional JSON file and then command line
flags override them. The merged result is a frozen RunConfig that is passed
explicitly into the runner and every workload.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .connection import DEFAULT_DRIVER

PASSWORD_ENV = "SQLBENCH_PASSWORD"
DRIVER_ENV = "SQLBENCH_DRIVER"

DEFAULT_CONFIG = {
    'server': 'localhost',
    'database': 'tempdb',
    'duration_seconds': 60,
    'output_dir': 'results',
    'enable_sort': False,
    'enable_index': False,
    'skip_warmup': False,
    'driver': DEFAULT_DRIVER,
    'username': None,
    'login_timeout': 15,
    'query_timeout': 600,
    'warmup_settle_seconds': 2.0,
}


@dataclass(frozen=True)
class RunConfig:
    """Everything a single benchmark run needs to know."""
    server: str = DEFAULT_CONFIG['server']
    database: str = DEFAULT_CONFIG['database']
    duration_seconds: int = DEFAULT_CONFIG['duration_seconds']
    output_dir: Path = Path(DEFAULT_CONFIG['output_dir'])
    enable_sort: bool = False
    enable_index: bool = False
    skip_warmup: bool = False
    driver: str = DEFAULT_DRIVER
    username: Optional[str] = None
    password: Optional[str] = None
    login_timeout: int = DEFAULT_CONFIG['login_timeout']
    query_timeout: int = DEFAULT_CONFIG['query_timeout']
    warmup_settle_seconds: float = DEFAULT_CONFIG['warmup_settle_seconds']

    def __post_init__(self):
        # DurationSeconds is persisted and read back as an integer column
        if isinstance(self.duration_seconds, bool) or not isinstance(self.duration_seconds, int):
            raise ValueError(f"duration_seconds must be an integer, got {self.duration_seconds!r}")
        if self.duration_seconds < 1:
            raise ValueError(f"duration_seconds must be >= 1, got {self.duration_seconds}")
        if not isinstance(self.output_dir, Path):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

    @property
    def features(self) -> set:
        enabled = set()
        if self.enable_sort:
            enabled.add('sort')
        if self.enable_index:
            enabled.add('index')
        return enabled


def load_config(config_file: Optional[Path] = None,
                overrides: Optional[Dict[str, Any]] = None) -> RunConfig:
    """Merge defaults, an optional JSON file and explicit overrides."""
    merged = dict(DEFAULT_CONFIG)
    merged['driver'] = os.environ.get(DRIVER_ENV, merged['driver'])

    if config_file:
        with open(config_file) as f:
            file_config = json.load(f)
        unknown = set(file_config) - set(DEFAULT_CONFIG)
        if unknown:
            raise ValueError(f"Unknown configuration keys in {config_file}: {sorted(unknown)}")
        merged.update(file_config)

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    merged['password'] = os.environ.get(PASSWORD_ENV)
    known = {f.name for f in fields(RunConfig)}
    return RunConfig(**{k: v for k, v in merged.items() if k in known})
