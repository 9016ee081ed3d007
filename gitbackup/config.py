"""
Configuration file loading

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from .base import (
    DEFAULT_API_TIMEOUT,
    ORGANIZATION_TYPE,
    USER_TYPE,
    ConfigurationError,
    Target,
)
from .filters import InclusionFilter
from .git_ops import DEFAULT_GIT_TIMEOUT
from .mirror import TEMP_DIRNAME
from .runner import DEFAULT_PROVIDER_CONCURRENCY
from .token_discovery import CredentialResolver

TYPE_ALIASES = {
    "users": USER_TYPE,
    "user": USER_TYPE,
    "orgs": ORGANIZATION_TYPE,
    "org": ORGANIZATION_TYPE,
    "organization": ORGANIZATION_TYPE,
    "organizations": ORGANIZATION_TYPE,
}

REQUIRED_TARGET_FIELDS = ("name", "source", "entity")
INTEGER_SETTINGS = ("workers", "target_workers", "provider_concurrency")
TARGET_FIELDS = {f.name for f in fields(Target)}


@dataclass
class BackupSettings:
    workers: int = 4
    target_workers: int = 1
    api_timeout: float = DEFAULT_API_TIMEOUT
    git_timeout: float = DEFAULT_GIT_TIMEOUT
    provider_concurrency: int = DEFAULT_PROVIDER_CONCURRENCY


@dataclass
class BackupConfig:
    backup_directory: Path
    targets: List[Target]
    settings: BackupSettings = field(default_factory=BackupSettings)


def load_config(config_path, discover_credentials: bool = True) -> BackupConfig:
    """
    Load and validate a YAML configuration file.

    Args:
        config_path: Path to the configuration file
        discover_credentials: Fill in missing tokens/passwords from the
            environment, CLI tools and .netrc

    Raises:
        ConfigurationError: The file is missing, unreadable or invalid
    """
    path = Path(config_path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"The config file {path} doesn't exist")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"The config file {path} cannot be read: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"The config file {path} cannot be parsed: {e}"
        ) from e

    config = parse_config(data, discover_credentials=discover_credentials)
    logger.info(
        f"[CONFIG] Loaded {len(config.targets)} targets from {path}, "
        f"backing up to {config.backup_directory}"
    )
    return config


def parse_config(data: Any, discover_credentials: bool = True) -> BackupConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("The configuration must be a mapping")

    backup_directory = data.get("backup_directory")
    if not isinstance(backup_directory, str) or not backup_directory.strip():
        raise ConfigurationError('"backup_directory" must be a non-empty string')

    raw_targets = data.get("targets")
    if not isinstance(raw_targets, list):
        raise ConfigurationError('"targets" must be a list of targets')

    targets = []
    seen_names = set()
    resolver = CredentialResolver() if discover_credentials else None
    for index, entry in enumerate(raw_targets):
        target = parse_target(entry, index)
        if target.name in seen_names:
            raise ConfigurationError(f'Target name "{target.name}" is used twice')
        seen_names.add(target.name)
        if discover_credentials:
            target = resolve_credentials(target, resolver)
        targets.append(target)

    return BackupConfig(
        backup_directory=Path(backup_directory).expanduser(),
        targets=targets,
        settings=parse_settings(data.get("settings")),
    )


def _string_field(entry: Dict[str, Any], key: str, label: str) -> Optional[str]:
    value = entry.get(key)
    if value is None:
        return None
    # YAML turns numeric-looking passwords into numbers
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ConfigurationError(f'{label}: "{key}" must be a string')
    return value or None


def parse_target(entry: Any, index: int = 0) -> Target:
    label = f"Target #{index + 1}"
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{label} must be a mapping")

    if isinstance(entry.get("name"), str) and entry["name"]:
        label = f'Target "{entry["name"]}"'

    for key in REQUIRED_TARGET_FIELDS:
        if not _string_field(entry, key, label):
            raise ConfigurationError(f'{label}: "{key}" is required')

    unknown = sorted(set(entry) - TARGET_FIELDS)
    if unknown:
        logger.warning(f"[CONFIG] {label}: ignoring unknown fields {', '.join(unknown)}")

    values = {key: _string_field(entry, key, label) for key in TARGET_FIELDS}

    name = values["name"]
    if name in (".", "..") or "/" in name or "\\" in name:
        raise ConfigurationError(f'{label}: "name" must be usable as a directory name')
    if name == TEMP_DIRNAME:
        raise ConfigurationError(f'{label}: "name" {TEMP_DIRNAME!r} is reserved')

    raw_type = (values["type"] or USER_TYPE).lower()
    if raw_type not in TYPE_ALIASES:
        raise ConfigurationError(
            f'{label}: "type" must be one of {", ".join(sorted(TYPE_ALIASES))}'
        )
    values["type"] = TYPE_ALIASES[raw_type]
    values["source"] = values["source"].lower()

    target = Target(**values)
    if target.skip and target.only:
        logger.warning(
            f'[CONFIG] {label}: both "skip" and "only" are set, only "skip" is applied'
        )
    InclusionFilter.for_target(target)
    return target


def resolve_credentials(
    target: Target, resolver: Optional[CredentialResolver] = None
) -> Target:
    """
    Fill in a missing token or password from the standard locations.

    Pass the same resolver for every target of a run so each host is looked
    up only once.
    """
    return (resolver or CredentialResolver()).resolve(target)


def parse_settings(data: Any) -> BackupSettings:
    settings = BackupSettings()
    if data is None:
        return settings
    if not isinstance(data, dict):
        raise ConfigurationError('"settings" must be a mapping')

    for key, value in data.items():
        if not hasattr(settings, key):
            raise ConfigurationError(f'Unknown setting "{key}"')
        is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
        if not is_number or value <= 0:
            raise ConfigurationError(f'Setting "{key}" must be a positive number')
        if key in INTEGER_SETTINGS:
            if int(value) != value:
                raise ConfigurationError(f'Setting "{key}" must be a whole number')
            value = int(value)
        setattr(settings, key, value)

    return settings
