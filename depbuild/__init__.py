"""Build native third-party dependencies from Git in dependency order."""
from __future__ import annotations

from importlib import import_module

from .errors import (
    AggregateToolError,
    BuildAbortedError,
    BuildWorkerError,
    CircularDependencyError,
    ConfigurationError,
    DepbuildError,
    PublicationError,
    RepositoryError,
    ToolError,
)
from .orchestrator import BuildOrchestrator, BuildReport, BuildResult, BuildStage

__version__ = "0.1.0"

_cli_module = import_module(f"{__name__}.cli")
main = _cli_module.main

__all__ = [
    "AggregateToolError",
    "BuildAbortedError",
    "BuildOrchestrator",
    "BuildReport",
    "BuildResult",
    "BuildStage",
    "BuildWorkerError",
    "CircularDependencyError",
    "ConfigurationError",
    "DepbuildError",
    "PublicationError",
    "RepositoryError",
    "ToolError",
    "main",
]
