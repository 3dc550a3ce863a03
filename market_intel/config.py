"""
Runtime settings for the scraping pipeline.

Settings come from constructor arguments, ``MARKET_INTEL_*`` environment
variables (a ``.env`` file is honoured), or a YAML mapping with the same
keys as the dataclass fields.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

ENV_PREFIX = "MARKET_INTEL_"

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"


@dataclass
class ScraperSettings:
    """Defaults applied to scrape requests and batches."""
    timeout_ms: int = 30000
    retries: int = 2
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_jitter: float = 0.25
    concurrency: int = 3
    chunk_delay: float = 2.0
    max_rate_limit_wait: float = 5 * 60  # seconds
    enrichment_timeout: float = 20.0
    default_wait_for_ms: int = 2000
    sweep_delay: float = 1.0
    formats: List[str] = field(default_factory=lambda: ["markdown", "html"])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScraperSettings":
        """Build settings from a mapping, rejecting unknown keys."""
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {}
        for key, raw in data.items():
            values[key] = _coerce(known[key].type, raw, key)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ScraperSettings":
        """Build settings from MARKET_INTEL_* environment variables."""
        environ = os.environ if environ is None else environ
        data = {}
        for f in fields(cls):
            env_key = ENV_PREFIX + f.name.upper()
            if env_key in environ:
                data[f.name] = environ[env_key]
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: Path) -> "ScraperSettings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path) as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")
        return cls.from_dict(config)


def _coerce(type_hint: Any, raw: Any, key: str) -> Any:
    """Convert env/YAML values to the field's declared type."""
    hint = str(type_hint)
    try:
        if hint in ("int", "<class 'int'>"):
            return int(raw)
        if hint in ("float", "<class 'float'>"):
            return float(raw)
        if hint.startswith("List") or hint.startswith("typing.List"):
            if isinstance(raw, str):
                return [item.strip() for item in raw.split(",") if item.strip()]
            return list(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {key}: {raw!r}") from e
    return raw


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    logger = logging.getLogger("market_intel")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    return logger
