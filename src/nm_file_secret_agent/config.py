"""Config file loading and validation for nm-file-secret-agent.

A config file holds a list of mapping entries under ``entry``::

    # config.toml
    [[entry]]
    match_id = "My Wifi"
    match_setting = "802-11-wireless-security"
    key = "psk"
    file = "/run/secrets/wifi-psk"

``.toml`` files are parsed as TOML, everything else as YAML with the same
structure. Relative ``file`` paths are resolved against the config file's
location.
"""

from __future__ import annotations

import logging
import tomllib
import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from nm_file_secret_agent.errors import ConfigError
from nm_file_secret_agent.mapping.store import MappingStore
from nm_file_secret_agent.models import MappingEntry

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NM_FILE_SECRET_AGENT_CONF"
ENTRY_SECTIONS = ("entry", "entries")


def load_config(path: str | Path) -> MappingStore:
    """Load a config file into a MappingStore.

    Raises:
        ConfigError: If the file cannot be read, parsed, or validated.
    """
    config_path = Path(path).resolve()
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        text = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e

    data = _parse(config_path, text)
    store = MappingStore(_parse_entries(config_path, data))
    logger.debug("Loaded %d mapping entries from %s", len(store), config_path)
    return store


def _parse(config_path: Path, text: str) -> dict[str, Any]:
    """Parse TOML or YAML text into a mapping."""
    if config_path.suffix == ".toml":
        try:
            data: Any = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
    else:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a mapping in {config_path}, got {type(data).__name__}"
        )
    return data


def _parse_entries(config_path: Path, data: dict[str, Any]) -> list[MappingEntry]:
    present = [section for section in ENTRY_SECTIONS if section in data]
    if len(present) > 1:
        raise ConfigError(
            f"Config file must use only one of {', '.join(ENTRY_SECTIONS)}: {config_path}"
        )
    unknown = set(data) - set(ENTRY_SECTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown top-level key(s) {', '.join(sorted(unknown))} in {config_path}"
        )

    raw_entries: Any = data[present[0]] if present else []
    if not isinstance(raw_entries, list):
        raise ConfigError(f"'{present[0]}' must be a list: {config_path}")

    base = config_path.parent
    entries: list[MappingEntry] = []
    for i, raw in enumerate(raw_entries):
        if not isinstance(raw, dict):
            raise ConfigError(f"Entry {i} in {config_path} must be a mapping")
        try:
            entry = MappingEntry.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid entry at index {i} in {config_path}: {e}") from e
        source = str(base / entry.source)
        entries.append(entry.model_copy(update={"source": source}))

    return entries


def validate_store(store: MappingStore) -> list[str]:
    """Check that a loaded store is usable.

    Every entry's file must currently be readable. A ``match_uuid`` that is
    not a UUID is reported as a warning because it can never match.

    Returns:
        The warning messages, for the caller to report.

    Raises:
        ConfigError: If an entry's file cannot be opened for reading.
    """
    warnings: list[str] = []
    for i, entry in enumerate(store):
        try:
            with open(entry.source, "rb"):
                pass
        except OSError as e:
            raise ConfigError(
                f"Could not open file backing secret {entry.key!r} of entry {i} "
                f"at {entry.source}: {e.strerror}"
            ) from e

        if entry.match_uuid is not None:
            try:
                uuid.UUID(entry.match_uuid)
            except ValueError:
                message = (
                    f"match_uuid value {entry.match_uuid} of config entry {i} is not "
                    f"a valid uuid and will prevent the entry from matching anything"
                )
                warnings.append(message)

    return warnings

