"""
cycleproof configuration

Loads config from:
  1. Defaults
  2. Global config (CLI --config or $CYCLEPROOF_HOME/config.json, default
     ~/.cycleproof/config.json)
  3. Workspace override (<workspace>/.cycleproof/config.json)
  4. Environment variables (CYCLEPROOF_PROVER, CYCLEPROOF_PROOF_KIND,
     CYCLEPROOF_MAX_WORKERS, CYCLEPROOF_LOG_LEVEL)
"""
from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigError
from .types import ProofKind

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "prover": "transcript",
    "proof_kind": "compressed",
    "max_workers": 4,
    "log_level": "WARNING",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config(config_path: Optional[Path] = None, workspace: Optional[Path] = None) -> dict:
    """Load layered config.

    ``config_path`` replaces the global layer. The global layer is skipped
    under pytest unless a path is given explicitly, so tests never read the
    user's home directory.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    is_pytest = bool(os.environ.get("PYTEST_CURRENT_TEST"))
    home = Path(os.environ["CYCLEPROOF_HOME"]) if os.environ.get("CYCLEPROOF_HOME") else None
    default_global_path = (home or (Path.home() / ".cycleproof")) / "config.json"

    global_path: Optional[Path] = Path(config_path) if config_path else default_global_path
    if is_pytest and config_path is None:
        global_path = None
    if global_path is not None:
        if global_path.exists():
            config = _merge(config, _read_json(global_path))
        elif config_path is not None:
            raise ConfigError(f"config file not found: {global_path}")

    if workspace:
        ws_config_path = Path(workspace) / ".cycleproof" / "config.json"
        if ws_config_path.exists():
            config = _merge(config, _read_json(ws_config_path))

    _apply_env_overrides(config)
    return validate_config(config)


def _read_json(path: Path) -> dict:
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("could not read config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("ignoring config %s: top level is not an object", path)
        return {}
    logger.debug("loaded config from %s", path)
    return data


def _merge(base: dict, override: dict) -> dict:
    """Deep merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict) -> None:
    prover = os.environ.get("CYCLEPROOF_PROVER")
    if prover:
        config["prover"] = prover

    proof_kind = os.environ.get("CYCLEPROOF_PROOF_KIND")
    if proof_kind:
        config["proof_kind"] = proof_kind

    max_workers = os.environ.get("CYCLEPROOF_MAX_WORKERS")
    if max_workers:
        try:
            config["max_workers"] = int(max_workers)
        except ValueError as exc:
            raise ConfigError(f"invalid CYCLEPROOF_MAX_WORKERS={max_workers!r}") from exc

    log_level = os.environ.get("CYCLEPROOF_LOG_LEVEL")
    if log_level:
        config["log_level"] = log_level


def validate_config(config: dict) -> dict:
    if not isinstance(config.get("prover"), str) or not config["prover"]:
        raise ConfigError("prover must be a non-empty string")
    try:
        config["proof_kind"] = ProofKind(str(config.get("proof_kind", "")).lower()).value
    except ValueError as exc:
        raise ConfigError(
            f"proof_kind must be one of {[k.value for k in ProofKind]}, got {config.get('proof_kind')!r}"
        ) from exc
    workers = config.get("max_workers")
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigError(f"max_workers must be a positive integer, got {workers!r}")
    level = str(config.get("log_level", "")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {LOG_LEVELS}, got {config.get('log_level')!r}")
    config["log_level"] = level
    return config
