"""
Runner configuration, loadable from YAML and overridable from the environment.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

ENV_PREFIX = "STEPY_"


@dataclass
class RunnerConfig:
    # Seconds between steps; at or below 1/100 the driver only yields a frame
    step_delay: float = 0.1
    # Prefix for error messages, conventionally the script's file name
    error_prefix: str = "main_script.py"
    # Run the host's scene reset before each script
    reset_scene: bool = True
    max_call_depth: int = 100

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> 'RunnerConfig':
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        # Accept kebab-case keys as written in YAML files
        normalized = {str(k).replace('-', '_'): v for k, v in data.items()}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")
        cfg = cls()
        return replace(cfg, **{k: cls._coerce(k, v) for k, v in normalized.items()})

    @classmethod
    def from_yaml(cls, path: str | Path) -> 'RunnerConfig':
        text = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(text)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ValueError(f"config file {path} must contain a mapping")
        return cls.from_mapping(data)

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> 'RunnerConfig':
        """Return a copy with STEPY_<FIELD> environment variables applied."""
        env = os.environ if environ is None else environ
        updates = {}
        for f in fields(self):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                updates[f.name] = self._coerce(f.name, yaml.safe_load(raw) if raw.strip() else raw)
        return replace(self, **updates) if updates else self

    @classmethod
    def _coerce(cls, key: str, value: Any) -> Any:
        match key:
            case "step_delay":
                delay = float(value)
                if delay < 0:
                    raise ValueError("step_delay must not be negative")
                return delay
            case "max_call_depth":
                depth = int(value)
                if depth < 1:
                    raise ValueError("max_call_depth must be at least 1")
                return depth
            case "reset_scene":
                if not isinstance(value, bool):
                    raise ValueError("reset_scene must be true or false")
                return value
            case "error_prefix":
                return str(value)
        return value
