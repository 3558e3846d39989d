"""Structural validation of build configurations."""
from __future__ import annotations

import logging

from .config_loader import BuildConfig, DependencyConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def collect_config_errors(config: BuildConfig) -> list[str]:
    """Return every structural problem found in ``config``."""

    errors: list[str] = []
    if not config.version:
        errors.append("Build configuration must have a version field")

    keys = list(config.deps)
    for key, dep in config.deps.items():
        errors.extend(_dependency_errors(key, dep, keys))
    return errors


def _dependency_errors(key: str, dep: DependencyConfig, keys: list[str]) -> list[str]:
    prefix = f'deps["{key}"]'
    errors: list[str] = []

    if not dep.name:
        errors.append(f"{prefix} is missing required field: name")

    if dep.git is None:
        errors.append(f"{prefix} is missing required field: git (must be a mapping)")
    else:
        if not dep.git.url:
            errors.append(f"{prefix}.git is missing required field: url")
        if not isinstance(dep.git.shallow, bool):
            errors.append(f"{prefix}.git.shallow must be a boolean")
        if not isinstance(dep.git.init_submodules, bool):
            errors.append(f"{prefix}.git.initSubmodules must be a boolean")

    has_version = dep.default_version is not None
    has_branch = dep.branch is not None
    if not has_version and not has_branch:
        errors.append(
            f"{prefix} must have either defaultVersion or branch specified. "
            "If defaultVersion is null, branch is required."
        )
    elif has_version and has_branch:
        errors.append(f"{prefix} must not specify both defaultVersion and branch")

    if not isinstance(dep.deps, (list, tuple)):
        errors.append(f"{prefix}.deps must be a list")
    else:
        available = ", ".join(keys)
        for ref in dep.deps:
            if ref not in keys:
                errors.append(
                    f'{prefix}.deps references unknown dependency "{ref}". Available dependencies: {available}'
                )
    return errors


def validate_config(config: BuildConfig) -> None:
    """Raise :class:`ConfigurationError` listing every violation in ``config``."""

    errors = collect_config_errors(config)
    if errors:
        logger.error("configuration validation failed with %d error(s)", len(errors))
        raise ConfigurationError(errors)
    logger.info("build configuration validated (%d dependencies)", len(config.deps))
