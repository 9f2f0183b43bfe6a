"""
Runtime configuration for methodhub.

Settings come from defaults, then METHODHUB_* environment variables, or from a
YAML file. Malformed environment values fall back to the defaults.
"""
import os
import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Mapping

import yaml

from methodhub.hub_datatypes import RegisteringBehavior, InvalidArgument

ENV_PREFIX = "METHODHUB_"

_TRUTHY = {"1", "true", "yes", "on"}


def debug_enabled() -> bool:
    return os.environ.get(ENV_PREFIX + "DEBUG", "").strip().lower() in _TRUTHY


def _dbg(*parts):
    if debug_enabled():
        try:
            print("[DBG]", *parts, file=sys.stderr)
        except Exception:
            pass


@dataclass(frozen=True)
class HubConfig:
    """Settings for a MethodHub and its registration store and type oracle."""
    behavior: RegisteringBehavior = RegisteringBehavior.CLASS_AND_METHOD_NAME
    # Attempts against the store lock before giving up with InternalConsistencyError.
    store_retries: int = 100
    # Seconds to wait on each attempt.
    store_retry_wait: float = 0.05
    # Maximum number of cached hierarchy trees; None keeps every tree.
    type_cache_size: Optional[int] = 4096
    debug: bool = False

    def __post_init__(self):
        object.__setattr__(self, "behavior", RegisteringBehavior.parse(self.behavior))
        if self.store_retries < 1:
            raise InvalidArgument("store_retries must be at least 1")
        if self.store_retry_wait < 0:
            raise InvalidArgument("store_retry_wait must not be negative")
        if self.type_cache_size is not None and self.type_cache_size < 1:
            raise InvalidArgument("type_cache_size must be positive or None")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'HubConfig':
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        raw = env.get(ENV_PREFIX + "BEHAVIOR")
        if raw:
            try:
                values["behavior"] = RegisteringBehavior.parse(raw)
            except InvalidArgument:
                pass

        raw = env.get(ENV_PREFIX + "STORE_RETRIES")
        if raw is not None:
            try:
                if int(raw) >= 1:
                    values["store_retries"] = int(raw)
            except ValueError:
                pass

        raw = env.get(ENV_PREFIX + "STORE_RETRY_WAIT")
        if raw is not None:
            try:
                if float(raw) >= 0:
                    values["store_retry_wait"] = float(raw)
            except ValueError:
                pass

        raw = env.get(ENV_PREFIX + "TYPE_CACHE_SIZE")
        if raw is not None:
            text = raw.strip().lower()
            if text in ("", "none", "unbounded"):
                values["type_cache_size"] = None
            else:
                try:
                    if int(text) >= 1:
                        values["type_cache_size"] = int(text)
                except ValueError:
                    pass

        raw = env.get(ENV_PREFIX + "DEBUG")
        if raw is not None:
            values["debug"] = raw.strip().lower() in _TRUTHY

        return cls(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'HubConfig':
        if not isinstance(data, Mapping):
            raise InvalidArgument(f"Configuration must be a mapping, not {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        # Accept kebab-case keys as written in YAML files.
        values = {str(k).replace("-", "_"): v for k, v in data.items()}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidArgument(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**values)

    @classmethod
    def from_file(cls, path) -> 'HubConfig':
        """Loads settings from a YAML file; a `methodhub:` section is used when present."""
        text = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(text) or {}
        if isinstance(data, Mapping) and isinstance(data.get("methodhub"), Mapping):
            data = data["methodhub"]
        return cls.from_mapping(data)

    def with_overrides(self, **changes) -> 'HubConfig':
        return replace(self, **changes)
