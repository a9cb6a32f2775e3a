"""Configuration loading from environment variables and mnemo.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_MEMORY_DIR = Path.home() / ".mnemo" / "memories"
_CONFIG_FILENAME = "mnemo.toml"


@dataclass
class MaintenanceConfig:
    """Periodic relevance maintenance."""

    decay_interval: int = 6 * 3600
    archive_cron: str = "0 3 * * *"
    archive_days: int = 90


@dataclass
class ConsolidationConfig:
    """Duplicate detection and near-duplicate merging."""

    similarity_threshold: float = 0.85
    duplicate_window_minutes: int = 5
    duplicate_similarity: float = 0.85


@dataclass
class MnemoConfig:
    """Top-level configuration, passed explicitly to MemoryStore."""

    memory_dir: Path = _DEFAULT_MEMORY_DIR
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MnemoConfig:
    """Load configuration from environment variables and optional mnemo.toml.

    Priority: environment variables > mnemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".mnemo" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    maintenance_data = file_data.get("maintenance", {})
    consolidation_data = file_data.get("consolidation", {})

    memory_dir = os.getenv("MNEMO_MEMORY_DIR", file_data.get("memory_dir"))
    config = MnemoConfig(
        memory_dir=Path(memory_dir).expanduser() if memory_dir else _DEFAULT_MEMORY_DIR,
        maintenance=MaintenanceConfig(
            decay_interval=int(
                os.getenv("MNEMO_DECAY_INTERVAL", maintenance_data.get("decay_interval", 6 * 3600))
            ),
            archive_cron=maintenance_data.get("archive_cron", "0 3 * * *"),
            archive_days=int(
                os.getenv("MNEMO_ARCHIVE_DAYS", maintenance_data.get("archive_days", 90))
            ),
        ),
        consolidation=ConsolidationConfig(
            similarity_threshold=float(
                os.getenv(
                    "MNEMO_SIMILARITY_THRESHOLD",
                    consolidation_data.get("similarity_threshold", 0.85),
                )
            ),
            duplicate_window_minutes=int(consolidation_data.get("duplicate_window_minutes", 5)),
            duplicate_similarity=float(consolidation_data.get("duplicate_similarity", 0.85)),
        ),
        log_level=os.getenv("MNEMO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
