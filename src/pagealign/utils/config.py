"""User configuration (~/.pagealign/config.json) and per-run audit options."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_DIR = Path.home() / ".pagealign"
CONFIG_FILE = CONFIG_DIR / "config.json"

OBJDUMP_ENV_VAR = "PAGEALIGN_OBJDUMP"
OBJDUMP_CONFIG_KEY = "objdump_path"
CONCURRENCY_CONFIG_KEY = "max_concurrency"
TIMEOUT_CONFIG_KEY = "resolution_timeout"
FLOORS_CONFIG_KEY = "dependency_floors"

DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_RESOLUTION_TIMEOUT = 120.0


@lru_cache(maxsize=1)
def load_config() -> dict[str, Any]:
    """Load configuration data from disk (cached)."""

    if not CONFIG_FILE.exists():
        return {}

    try:
        data = json.loads(CONFIG_FILE.read_text())
    except (OSError, ValueError):
        return {}

    return data if isinstance(data, dict) else {}


def get_config_value(key: str, default: Any | None = None) -> Any | None:
    """Fetch a configuration value by key."""

    return load_config().get(key, default)


def reload_config() -> None:
    """Force the cached configuration to be reloaded on next access."""

    load_config.cache_clear()


def _positive_number(value: Any, default: float) -> float:
    # bool is an int subclass; "true" is not a concurrency limit
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value if value > 0 else default


class AuditOptions(BaseModel):
    """Settings for a single compliance run.

    Computed once by the caller and passed down explicitly; nothing here is
    stored globally.
    """

    tool_path: Path | None = None
    """Explicit path to llvm-objdump; None means probe the NDK installs."""

    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    """Upper bound on simultaneous alignment inspections."""

    resolution_timeout: float = Field(default=DEFAULT_RESOLUTION_TIMEOUT, gt=0)
    """Seconds allowed for Gradle dependency resolution."""

    dependency_floors: dict[str, str | None] = Field(default_factory=dict)
    """Extra group:name -> minimum compliant version entries (None: no fix)."""

    @classmethod
    def from_config(
        cls,
        *,
        tool_path: Path | None = None,
        max_concurrency: int | None = None,
        resolution_timeout: float | None = None,
    ) -> AuditOptions:
        """Build options from explicit values, falling back to the config file."""

        if tool_path is None:
            configured = get_config_value(OBJDUMP_CONFIG_KEY)
            if isinstance(configured, str) and configured:
                tool_path = Path(configured).expanduser()

        if max_concurrency is None:
            max_concurrency = int(
                _positive_number(
                    get_config_value(CONCURRENCY_CONFIG_KEY), DEFAULT_MAX_CONCURRENCY
                )
            )

        if resolution_timeout is None:
            resolution_timeout = float(
                _positive_number(
                    get_config_value(TIMEOUT_CONFIG_KEY), DEFAULT_RESOLUTION_TIMEOUT
                )
            )

        floors = get_config_value(FLOORS_CONFIG_KEY)
        if not isinstance(floors, dict):
            floors = {}

        return cls(
            tool_path=tool_path,
            max_concurrency=max_concurrency,
            resolution_timeout=resolution_timeout,
            dependency_floors={
                str(module): None if version is None else str(version)
                for module, version in floors.items()
            },
        )
