"""
apkpatch/core/config.py — Typed configuration loader for apkpatch.

Loads config/apkpatch.yaml and validates all values into typed dataclasses.
All downstream modules import from this module; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


# ──────────────────────────────────────────────
# Dataclass hierarchy, mirrors apkpatch.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class ToolsConfig:
    """Locations, versions and download sources of the bundled Java tools."""

    java: str = "java"
    tools_dir: str = "~/.cache/apkpatch/tools"
    apktool_version: str = "2.9.3"
    apktool_url: str = (
        "https://github.com/iBotPeaches/Apktool/releases/download/"
        "v{version}/apktool_{version}.jar"
    )
    uber_apk_signer_version: str = "1.3.0"
    uber_apk_signer_url: str = (
        "https://github.com/patrickfav/uber-apk-signer/releases/download/"
        "v{version}/uber-apk-signer-{version}.jar"
    )
    download_timeout_s: int = 60

    @property
    def resolved_tools_dir(self) -> Path:
        """Return the tools directory as an absolute Path, expanding ~ if needed."""
        return Path(os.path.expanduser(self.tools_dir))

    @property
    def apktool_jar(self) -> Path:
        return self.resolved_tools_dir / f"apktool-{self.apktool_version}.jar"

    @property
    def uber_apk_signer_jar(self) -> Path:
        return self.resolved_tools_dir / f"uber-apk-signer-{self.uber_apk_signer_version}.jar"


@dataclass(frozen=True)
class PipelineConfig:
    """Run-level defaults for the patch pipeline."""

    wait: bool = False
    keep_tmp_dir: bool = False
    tmp_dir_prefix: str = "apkpatch-"
    zipalign: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    """Logging and run journal configuration."""

    level: str = "INFO"
    journal_dir: str = "logs"


@dataclass(frozen=True)
class PatchConfig:
    """Root configuration object — single source of truth for all settings."""

    tools: ToolsConfig = field(default_factory=ToolsConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_default_config() -> Path | None:
    """Walk up from this file looking for ``config/apkpatch.yaml``."""
    here = Path(__file__).resolve()
    for parent in [here.parent.parent.parent, here.parent.parent]:
        candidate = parent / "config" / "apkpatch.yaml"
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Path | str | None = None,
    overrides: dict | None = None,
) -> PatchConfig:
    """
    Load, validate, and return a PatchConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. APKPATCH_CONFIG environment variable
    3. ``config/apkpatch.yaml`` relative to the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to an ``apkpatch.yaml`` file.
        overrides: Optional nested dict applied on top of the file, used by
            the CLI for flags such as ``--wait``.

    Returns:
        A fully populated and frozen :class:`PatchConfig` instance.

    Raises:
        ValueError: If a YAML field has an unknown name, invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Config file not found: {resolved_path}")
    elif "APKPATCH_CONFIG" in os.environ:
        resolved_path = Path(os.environ["APKPATCH_CONFIG"])
        if not resolved_path.exists():
            raise FileNotFoundError(
                f"APKPATCH_CONFIG points to missing file: {resolved_path}"
            )
    else:
        resolved_path = _find_default_config()

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    if overrides:
        raw = _merge(raw, overrides)

    try:
        tools_cfg = ToolsConfig(**(raw.get("tools") or {}))
        pipeline_cfg = PipelineConfig(**(raw.get("pipeline") or {}))
        log_cfg = LoggingConfig(**(raw.get("logging") or {}))
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    _validate_config(tools_cfg, pipeline_cfg, log_cfg)

    config = PatchConfig(tools=tools_cfg, pipeline=pipeline_cfg, logging=log_cfg)
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(
    tools: ToolsConfig,
    pipeline: PipelineConfig,
    log: LoggingConfig,
) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    if tools.download_timeout_s <= 0:
        raise ValueError(
            f"tools.download_timeout_s must be positive, got {tools.download_timeout_s}"
        )
    for name in ("apktool_version", "uber_apk_signer_version", "java"):
        if not str(getattr(tools, name)).strip():
            raise ValueError(f"tools.{name} must not be empty")
    for name in ("apktool_url", "uber_apk_signer_url"):
        if "{version}" not in getattr(tools, name):
            raise ValueError(f"tools.{name} must contain a '{{version}}' placeholder")
    for name in ("wait", "keep_tmp_dir", "zipalign"):
        if not isinstance(getattr(pipeline, name), bool):
            raise ValueError(f"pipeline.{name} must be a boolean")
    if log.level.upper() not in _LOG_LEVELS:
        raise ValueError(
            f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{log.level}'"
        )
