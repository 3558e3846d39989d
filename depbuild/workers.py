"""Build worker plugin interface and registry.

A build worker performs the actual compile/install steps for one dependency.
It receives a prepared source tree and never runs Git itself. Workers are
addressed by the ``runner`` field of a dependency, either a dotted module
path (``package.module`` or ``package.module:attribute``) or a path to a
``.py`` file relative to the build root. The registry resolves every runner
up front so a misconfigured path is reported before any build starts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from importlib import import_module
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Protocol, runtime_checkable
import logging

from .command_runner import CommandRunner
from .config_loader import BuildConfig
from .errors import BuildWorkerError
from .repository import sanitize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuildOptions:
    repo_root: Path
    artifacts_root: Path
    force: bool = False
    environment: Mapping[str, str] = field(default_factory=dict)
    runner: CommandRunner | None = None
    mode: str = "debug"


@dataclass(slots=True)
class WorkerResult:
    ok: bool
    name: str | None = None
    skipped: bool = False
    version: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any, *, dep_name: str) -> "WorkerResult":
        if isinstance(value, WorkerResult):
            return value
        if not isinstance(value, Mapping):
            raise BuildWorkerError(dep_name, f"build worker returned {type(value).__name__}, expected a mapping")
        known = {"ok", "name", "skipped", "version"}
        version = value.get("version")
        name = value.get("name")
        return cls(
            ok=bool(value.get("ok", False)),
            name=str(name) if name else None,
            skipped=bool(value.get("skipped", False)),
            version=str(version) if version else None,
            details={str(key): item for key, item in value.items() if key not in known},
        )


@runtime_checkable
class BuildWorker(Protocol):
    """Anything exposing ``build(options)``: a module, class instance or object."""

    def build(self, options: BuildOptions) -> WorkerResult | Mapping[str, Any]:
        ...


def _public_exports(target: Any) -> list[str]:
    return sorted(name for name in dir(target) if not name.startswith("_"))


def _is_path_reference(runner: str) -> bool:
    return runner.endswith(".py") or "/" in runner or "\\" in runner


def _load_from_path(runner: str, *, base_dir: Path, dep_name: str) -> Any:
    path = Path(runner)
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    if not path.is_file():
        raise BuildWorkerError(dep_name, f'build worker "{runner}" not found at {path}')
    module_name = f"depbuild_worker_{sanitize_name(dep_name).replace('-', '_').replace('.', '_')}"
    spec = spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise BuildWorkerError(dep_name, f'cannot import build worker from "{path}"')
    module = module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise BuildWorkerError(dep_name, f'importing build worker "{path}" failed: {exc}') from exc
    return module


def load_worker(runner: str, *, base_dir: Path, dep_name: str) -> BuildWorker:
    """Import the worker named by ``runner`` and check it exposes ``build``."""

    if _is_path_reference(runner):
        target: Any = _load_from_path(runner, base_dir=base_dir, dep_name=dep_name)
    else:
        module_name, _, attribute = runner.partition(":")
        try:
            target = import_module(module_name)
        except ImportError as exc:
            raise BuildWorkerError(dep_name, f'cannot import build worker module "{module_name}": {exc}') from exc
        if attribute:
            if not hasattr(target, attribute):
                raise BuildWorkerError(
                    dep_name,
                    f'build worker module "{module_name}" has no attribute "{attribute}". '
                    f"Available exports: {', '.join(_public_exports(target))}",
                )
            target = getattr(target, attribute)
            if isinstance(target, type):
                target = target()

    if not callable(getattr(target, "build", None)):
        raise BuildWorkerError(
            dep_name,
            f'build worker "{runner}" does not export a "build" function. '
            f"Available exports: {', '.join(_public_exports(target)) or '<none>'}",
        )
    logger.debug("loaded build worker for '%s' from %s", dep_name, runner)
    return target


WorkerLoader = Callable[..., BuildWorker]


class WorkerRegistry:
    """Maps dependency keys to their build workers."""

    def __init__(self, workers: Mapping[str, BuildWorker] | None = None) -> None:
        self._workers: Dict[str, BuildWorker] = {}
        for key, worker in (workers or {}).items():
            self.register(key, worker)

    @classmethod
    def from_config(
        cls,
        config: BuildConfig,
        keys: Iterable[str],
        *,
        base_dir: Path,
        loader: "WorkerLoader | None" = None,
    ) -> "WorkerRegistry":
        return cls().resolve(config, keys, base_dir=base_dir, loader=loader or load_worker)

    def register(self, key: str, worker: BuildWorker) -> None:
        if not isinstance(worker, BuildWorker):
            raise BuildWorkerError(key, f"{worker!r} does not implement build(options)")
        self._workers[key] = worker

    def get(self, key: str) -> BuildWorker:
        worker = self._workers.get(key)
        if worker is None:
            available = ", ".join(sorted(self._workers)) or "<none>"
            raise BuildWorkerError(key, f"no build worker registered. Registered: {available}")
        return worker

    def __contains__(self, key: object) -> bool:
        return key in self._workers

    def __iter__(self) -> Iterator[str]:
        return iter(self._workers)

    def resolve(
        self,
        config: BuildConfig,
        keys: Iterable[str],
        *,
        base_dir: Path,
        loader: WorkerLoader = load_worker,
    ) -> "WorkerRegistry":
        """Load workers for ``keys`` that are not registered yet.

        Skipped and unknown keys are ignored; the orchestrator reports those.
        """

        for key in keys:
            if key in self._workers:
                continue
            dep = config.get_dependency(key)
            if dep is None or dep.skip:
                continue
            if not dep.runner:
                raise BuildWorkerError(key, 'dependency is missing a "runner" field')
            self.register(key, loader(dep.runner, base_dir=base_dir, dep_name=key))
        return self
