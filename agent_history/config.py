"""User configuration loaded from an optional TOML file.

Example ``~/.config/agent-history/config.toml``::

    [general]
    db_path = "~/.local/share/agent-history/index.db"
    workers = 4
    hash_policy = "auto"

    [agents]
    enabled = ["claude-code", "codex"]

    [agents.codex]
    data_dir = "~/work/codex-sessions"

    [search]
    relevance_weight = 0.8
    recency_weight = 0.2
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "agent-history" / "config.toml"
DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "agent-history" / "index.db"

CONFIG_ENV = "AGENT_HISTORY_CONFIG"
DB_ENV = "AGENT_HISTORY_DB"

# "auto": hash whenever size is unchanged. "mtime": trust an unchanged
# size and mtime unless the mtime is too close to the last parse.
HASH_POLICIES = ("auto", "mtime")


def _default_workers() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    workers: int = field(default_factory=_default_workers)

    # Change detection
    hash_policy: str = "auto"
    racy_window: float = 2.0  # seconds
    active_window: int = 300  # seconds since last write that still count as live

    # Adapters: empty means every registered agent
    enabled_agents: list[str] = field(default_factory=list)
    agent_roots: dict[str, Path] = field(default_factory=dict)

    # Search ranking
    relevance_weight: float = 0.8
    recency_weight: float = 0.2
    recency_half_life_days: float = 30.0
    max_results: int = 50


def load_settings(path: Path | None = None, env: dict | None = None) -> Settings:
    """Load settings from TOML, then apply environment overrides.

    A missing file yields defaults. A malformed file raises ConfigError.
    """
    env = os.environ if env is None else env
    if path is None:
        path = Path(env[CONFIG_ENV]).expanduser() if env.get(CONFIG_ENV) else DEFAULT_CONFIG_PATH

    data: dict = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        logger.debug(f"Loaded config from {path}")

    settings = settings_from_dict(data)

    if env.get(DB_ENV):
        settings.db_path = Path(env[DB_ENV]).expanduser()

    return settings


def settings_from_dict(data: dict) -> Settings:
    settings = Settings()
    general = data.get("general", {})
    agents = data.get("agents", {})
    search = data.get("search", {})

    try:
        if "db_path" in general:
            settings.db_path = Path(general["db_path"]).expanduser()
        if "workers" in general:
            settings.workers = max(1, int(general["workers"]))
        if "racy_window" in general:
            settings.racy_window = float(general["racy_window"])
        if "active_window" in general:
            settings.active_window = int(general["active_window"])
        if "hash_policy" in general:
            settings.hash_policy = str(general["hash_policy"])

        if "enabled" in agents:
            settings.enabled_agents = [str(a) for a in agents["enabled"]]
        for name, section in agents.items():
            if isinstance(section, dict) and section.get("data_dir"):
                settings.agent_roots[name] = Path(section["data_dir"]).expanduser()

        if "relevance_weight" in search:
            settings.relevance_weight = float(search["relevance_weight"])
        if "recency_weight" in search:
            settings.recency_weight = float(search["recency_weight"])
        if "recency_half_life_days" in search:
            settings.recency_half_life_days = float(search["recency_half_life_days"])
        if "max_results" in search:
            settings.max_results = int(search["max_results"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e

    if settings.hash_policy not in HASH_POLICIES:
        raise ConfigError(
            f"hash_policy must be one of {', '.join(HASH_POLICIES)}, got {settings.hash_policy!r}"
        )

    return settings
