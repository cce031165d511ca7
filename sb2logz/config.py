"""Analyzer configuration: defaults, optional YAML file, command line overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml

from .path_index import build_blacklist

logger = logging.getLogger("config")

CATEGORIES = ("mapped", "passed", "disabled", "errors")


@dataclass
class AnalyzerConfig:
    blacklist_disabled: bool = False
    blacklist_extend: List[str] = field(default_factory=list)
    verbose: bool = False
    full_detail: bool = False
    categories: List[str] = field(default_factory=lambda: list(CATEGORIES))
    accounting_file: Optional[str] = None
    clock_ticks: Optional[int] = None
    process_diagram: Optional[str] = None
    call_graph: Optional[str] = None
    report_file: Optional[str] = None
    progress_interval: int = 10000

    FALLBACK_DEFAULTS = {
        "blacklist_disabled": False,
        "blacklist_extend": [],
        "verbose": False,
        "full_detail": False,
        "categories": list(CATEGORIES),
        "progress_interval": 10000,
    }

    @property
    def blacklist(self) -> FrozenSet[str]:
        return build_blacklist(self.blacklist_disabled, self.blacklist_extend)

    def shows(self, category: str) -> bool:
        return category in self.categories

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalyzerConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        values = {k: (list(v) if isinstance(v, list) else v) for k, v in d.items() if k in known}
        if isinstance(values.get("blacklist_extend"), str):
            values["blacklist_extend"] = split_list(values["blacklist_extend"])
        if isinstance(values.get("categories"), str):
            values["categories"] = split_list(values["categories"])
        return cls(**values)


def split_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def load_config(config_path: Optional[str] = None) -> AnalyzerConfig:
    """Load configuration from YAML file ('sb2logz' section), falling back to defaults."""
    if not config_path:
        return AnalyzerConfig.from_dict(dict(AnalyzerConfig.FALLBACK_DEFAULTS))

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    logger.info("Loading config from: %s", config_file)
    with open(config_file, "r") as f:
        user_config = yaml.safe_load(f)

    if not user_config or "sb2logz" not in user_config:
        logger.warning("Config file has no 'sb2logz' section. Using defaults.")
        return AnalyzerConfig.from_dict(dict(AnalyzerConfig.FALLBACK_DEFAULTS))

    config = dict(AnalyzerConfig.FALLBACK_DEFAULTS)
    config.update(user_config["sb2logz"] or {})
    return AnalyzerConfig.from_dict(config)
