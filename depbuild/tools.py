"""Build tool loading with scoped environment overlays.

A tool prepares the environment a build worker runs in: it locates an
executable, checks its version and contributes variables such as ``PATH``.
Tools never modify :data:`os.environ`. Each one returns an overlay that the
:class:`ToolSession` accumulates and hands to the worker, so nothing leaks into
the next dependency's build.

Tool modules live in ``<build_root>/tools`` and export
``configure_tool(environment, spec)``. Specs that name a ``program`` instead of
a ``tool_file`` are handled by :func:`configure_executable`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple
import logging
import os
import shutil

from .command_runner import CommandRunner, SubprocessCommandRunner
from .config_loader import ToolSpec
from .errors import ToolError
from .repository import sanitize_name
from .toolcheck import compare_versions, parse_version

logger = logging.getLogger(__name__)

Cleanup = Callable[[], None]


@dataclass(slots=True)
class ToolResult:
    ok: bool
    version: str | None = None
    path: str | None = None
    environment: Dict[str, str] = field(default_factory=dict)
    reason: str | None = None
    hint: str | None = None
    cleanup: Cleanup | None = None

    @classmethod
    def coerce(cls, value: Any, *, tool: str) -> "ToolResult":
        if isinstance(value, ToolResult):
            return value
        if not isinstance(value, Mapping):
            raise ToolError(tool, f"configure_tool returned {type(value).__name__}, expected a mapping")
        cleanup = value.get("cleanup")
        if cleanup is not None and not callable(cleanup):
            raise ToolError(tool, "cleanup must be callable")
        environment = value.get("environment") or {}
        return cls(
            ok=bool(value.get("ok", False)),
            version=str(value["version"]) if value.get("version") else None,
            path=str(value["path"]) if value.get("path") else None,
            environment={str(key): str(item) for key, item in environment.items()},
            reason=value.get("reason"),
            hint=value.get("hint"),
            cleanup=cleanup,
        )


def prepend_to_path(environment: Mapping[str, str], directory: str, *, variable: str = "PATH") -> str:
    """Return ``variable`` with ``directory`` moved to the front, without duplicates."""
    current = environment.get(variable, "")
    parts = [part for part in current.split(os.pathsep) if part and part != directory]
    return os.pathsep.join([directory, *parts])


def append_to_env(environment: Mapping[str, str], variable: str, value: str, *, separator: str = os.pathsep) -> str:
    current = environment.get(variable, "")
    values = [part for part in current.split(separator) if part]
    if value not in values:
        values.append(value)
    return separator.join(values)


def configure_executable(
    environment: Mapping[str, str],
    spec: ToolSpec,
    *,
    runner: CommandRunner,
) -> ToolResult:
    """Locate ``spec.program`` and put its directory first on ``PATH``."""

    program = spec.program or spec.name
    resolved = shutil.which(program, path=environment.get("PATH"))
    if resolved is None:
        return ToolResult(ok=False, reason=f"{program} not found on PATH", hint=spec.options.get("hint"))

    version: str | None = None
    version_args = spec.options.get("versionArgs", spec.options.get("version_args", ["--version"]))
    if isinstance(version_args, str):
        version_args = [version_args]
    if spec.minimum_version or spec.options.get("detectVersion", False):
        result = runner.run([resolved, *version_args], env=environment, check=False, note=f"{spec.name} version")
        if not result.ok:
            return ToolResult(ok=False, path=resolved, reason=f"failed to get {program} version")
        version = parse_version(result.output())
        if spec.minimum_version:
            if version is None:
                return ToolResult(ok=False, path=resolved, reason=f"could not parse {program} version")
            if compare_versions(version, spec.minimum_version) < 0:
                return ToolResult(
                    ok=False,
                    version=version,
                    path=resolved,
                    reason=f"{program} {version} is older than required {spec.minimum_version}",
                    hint=f"Update {program} to {spec.minimum_version} or newer",
                )

    directory = str(Path(resolved).parent)
    return ToolResult(
        ok=True,
        version=version,
        path=resolved,
        environment={"PATH": prepend_to_path(environment, directory)},
    )


class ToolSession:
    """Environment overlay and cleanups produced by the tools of one build."""

    def __init__(self, base_environment: Mapping[str, str] | None = None) -> None:
        self._base = dict(os.environ if base_environment is None else base_environment)
        self._overlay: Dict[str, str] = {}
        self._cleanups: List[Tuple[str, Cleanup]] = []
        self.results: Dict[str, ToolResult] = {}
        self._closed = False

    @property
    def environment(self) -> Dict[str, str]:
        """Variables set by tools; pass this to the worker and its commands."""
        return dict(self._overlay)

    def view(self) -> Dict[str, str]:
        merged = dict(self._base)
        merged.update(self._overlay)
        return merged

    def add(self, name: str, result: ToolResult) -> None:
        self.results[name] = result
        self._overlay.update(result.environment)
        if result.cleanup is not None:
            self._cleanups.append((name, result.cleanup))

    @property
    def closed(self) -> bool:
        return self._closed

    def cleanup(self) -> None:
        """Run tool cleanups in reverse order. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        logger.info("cleaning up %d tool(s)", len(self._cleanups))
        for name, cleanup in reversed(self._cleanups):
            logger.debug("running cleanup for tool '%s'", name)
            try:
                cleanup()
            except Exception as exc:
                logger.warning("cleanup for tool '%s' failed: %s", name, exc)
        self._cleanups.clear()
        self._overlay.clear()

    def __enter__(self) -> "ToolSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


ToolConfigurer = Callable[[Mapping[str, str], ToolSpec], Any]


class ToolLoader:
    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        base_environment: Mapping[str, str] | None = None,
    ) -> None:
        self._runner = runner or SubprocessCommandRunner()
        self._base_environment = base_environment

    def load(self, specs: Iterable[ToolSpec], tools_dir: Path) -> ToolSession:
        """Configure every tool in ``specs`` and return the resulting session.

        A failing tool raises :class:`ToolError` after the tools configured so
        far have been cleaned up.
        """

        specs = list(specs)
        session = ToolSession(self._base_environment)
        if not specs:
            logger.info("no tools to load")
            return session

        logger.info("loading %d tool(s)", len(specs))
        try:
            for spec in specs:
                result = self._configure(spec, Path(tools_dir), session.view())
                if result is None:
                    continue
                if not result.ok:
                    logger.error("tool '%s' configuration failed: %s", spec.name, result.reason)
                    reason = result.reason or "unknown error"
                    if result.hint:
                        reason = f"{reason} (hint: {result.hint})"
                    raise ToolError(spec.name, reason)
                logger.info("tool '%s' configured (version=%s, path=%s)", spec.name, result.version, result.path)
                session.add(spec.name, result)
        except BaseException:
            session.cleanup()
            raise
        return session

    def _configure(self, spec: ToolSpec, tools_dir: Path, environment: Dict[str, str]) -> ToolResult | None:
        if not spec.tool_file:
            return configure_executable(environment, spec, runner=self._runner)

        configure = self._load_configurer(spec, tools_dir)
        if configure is None:
            return None
        try:
            value = configure(environment, spec)
        except ToolError:
            raise
        except Exception as exc:
            raise ToolError(spec.name, f'"{spec.tool_file}" raised {type(exc).__name__}: {exc}') from exc
        return ToolResult.coerce(value, tool=spec.name)

    def _load_configurer(self, spec: ToolSpec, tools_dir: Path) -> ToolConfigurer | None:
        path = Path(spec.tool_file or "")
        if not path.is_absolute():
            path = tools_dir / path
        if not path.is_file():
            raise ToolError(spec.name, f"tool file not found at {path}")
        module_name = f"depbuild_tool_{sanitize_name(spec.name).replace('-', '_').replace('.', '_')}"
        module_spec = spec_from_file_location(module_name, path)
        if module_spec is None or module_spec.loader is None:
            raise ToolError(spec.name, f'cannot import tool module "{path}"')
        module = module_from_spec(module_spec)
        try:
            module_spec.loader.exec_module(module)
        except Exception as exc:
            raise ToolError(spec.name, f'importing "{path}" failed: {exc}') from exc
        configure = getattr(module, "configure_tool", None)
        if not callable(configure):
            logger.warning("tool module %s does not export configure_tool, skipping", path)
            return None
        return configure
