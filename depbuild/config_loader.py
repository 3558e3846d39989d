"""Configuration loading and the dependency data model."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence
import json
import tomllib

try:  # Optional dependency for YAML support
    import yaml
except ModuleNotFoundError:  # pragma: no cover - exercised when PyYAML absent
    yaml = None

from .errors import ConfigurationError


ConfigLoader = Callable[[Any], Mapping[str, Any]]


def _raise_yaml_missing() -> Mapping[str, Any]:
    raise RuntimeError("PyYAML is required to load YAML configuration files. Install with `pip install PyYAML`.")


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream) if yaml else _raise_yaml_missing(),
    ".yml": lambda stream: yaml.safe_load(stream) if yaml else _raise_yaml_missing(),
}


def load_config_file(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ValueError(f"Unsupported configuration file extension: {suffix}. Supported: {supported}")
    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"
    with path.open(mode, **kwargs) as handle:
        data = loader(handle)
    if not isinstance(data, Mapping):
        raise TypeError(f"Configuration file '{path}' must contain a mapping at the root")
    return data


def _lookup(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key; configs mix camelCase and snake_case."""
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass(slots=True)
class GitSource:
    url: Any
    shallow: Any
    init_submodules: Any

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GitSource":
        return cls(
            url=data.get("url"),
            shallow=data.get("shallow"),
            init_submodules=_lookup(data, "initSubmodules", "init_submodules"),
        )


@dataclass(slots=True)
class ToolSpec:
    name: str
    tool_file: str | None = None
    program: str | None = None
    minimum_version: str | None = None
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any, *, owner: str) -> "ToolSpec":
        if isinstance(value, str):
            text = value.strip()
            if not text:
                raise ConfigurationError([f'deps["{owner}"].tools entries cannot be empty strings'])
            return cls(name=text, program=text)
        if not isinstance(value, Mapping):
            raise ConfigurationError([f'deps["{owner}"].tools entries must be strings or mappings'])
        known = {"name", "toolFile", "tool_file", "program", "minimumVersion", "minimum_version"}
        tool_file = _lookup(value, "toolFile", "tool_file")
        program = value.get("program")
        name = value.get("name") or program or tool_file
        if not name:
            raise ConfigurationError([f'deps["{owner}"].tools entries must include a name'])
        if not tool_file and not program:
            raise ConfigurationError([f'deps["{owner}"].tools["{name}"] needs either toolFile or program'])
        minimum_version = _lookup(value, "minimumVersion", "minimum_version")
        return cls(
            name=str(name),
            tool_file=str(tool_file) if tool_file else None,
            program=str(program) if program else None,
            minimum_version=str(minimum_version) if minimum_version else None,
            options={str(key): item for key, item in value.items() if key not in known},
        )


@dataclass(slots=True)
class GlobRule:
    pattern: str
    folder: str | None = None
    move_to_root: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobRule":
        pattern = data.get("pattern")
        if not pattern:
            raise ConfigurationError(["outConfig glob entries require a pattern"])
        folder = data.get("folder")
        return cls(
            pattern=str(pattern),
            folder=str(folder) if folder else None,
            move_to_root=bool(_lookup(data, "moveToRoot", "move_to_root", default=False)),
        )


@dataclass(slots=True)
class OutConfig:
    out_dir: str = "{name}"
    clear_release: bool = False
    includes: List[GlobRule] = field(default_factory=list)
    archive: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OutConfig":
        includes: List[GlobRule] = []
        for group in data.get("include") or []:
            if not isinstance(group, Mapping):
                raise ConfigurationError(["outConfig.include entries must be mappings"])
            for glob_entry in group.get("globs") or []:
                if not isinstance(glob_entry, Mapping):
                    raise ConfigurationError(["outConfig.include globs must be mappings"])
                includes.append(GlobRule.from_mapping(glob_entry))
        archive = data.get("archive")
        return cls(
            out_dir=str(_lookup(data, "outDir", "out_dir", default="{name}") or "{name}"),
            clear_release=bool(_lookup(data, "clearRelease", "clear_release", default=False)),
            includes=includes,
            archive=str(archive) if archive else None,
        )


@dataclass(slots=True)
class DependencyConfig:
    key: str
    name: Any = None
    git: GitSource | None = None
    default_version: Any = None
    branch: Any = None
    deps: Any = field(default_factory=list)
    runner: str | None = None
    tools: List[ToolSpec] = field(default_factory=list)
    skip: bool = False
    out_config: OutConfig | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, key: str, data: Mapping[str, Any]) -> "DependencyConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError([f'deps["{key}"] must be a mapping'])
        git_section = data.get("git")
        tools_section = data.get("tools") or []
        if isinstance(tools_section, (str, bytes)) or not isinstance(tools_section, Sequence):
            raise ConfigurationError([f'deps["{key}"].tools must be a list'])
        out_section = _lookup(data, "outConfig", "out_config")
        if out_section is not None and not isinstance(out_section, Mapping):
            raise ConfigurationError([f'deps["{key}"].outConfig must be a mapping'])
        deps = data.get("deps")
        runner = data.get("runner")
        return cls(
            key=key,
            name=data.get("name"),
            git=GitSource.from_mapping(git_section) if isinstance(git_section, Mapping) else None,
            default_version=_lookup(data, "defaultVersion", "default_version"),
            branch=data.get("branch"),
            deps=[] if deps is None else deps,
            runner=str(runner) if runner else None,
            tools=[ToolSpec.from_value(item, owner=key) for item in tools_section],
            skip=data.get("skip") is True,
            out_config=OutConfig.from_mapping(out_section) if out_section is not None else None,
            raw=data,
        )

    @property
    def dep_keys(self) -> List[str]:
        if isinstance(self.deps, (list, tuple)):
            return [str(item) for item in self.deps]
        return []

    @property
    def artifacts_dir_name(self) -> str:
        return str(self.name) if self.name else self.key


@dataclass(slots=True)
class GlobalSettings:
    log_level: str = "info"
    log_file: str | None = None
    build_root: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalSettings":
        section = data.get("global", {})
        if not isinstance(section, Mapping):
            section = {}
        log_file = _lookup(section, "logFile", "log_file")
        build_root = _lookup(section, "buildRoot", "build_root")
        return cls(
            log_level=str(_lookup(section, "logLevel", "log_level", default="info")),
            log_file=str(log_file) if log_file else None,
            build_root=str(build_root) if build_root else None,
        )


@dataclass(slots=True)
class BuildConfig:
    version: Any
    deps: Dict[str, DependencyConfig] = field(default_factory=dict)
    releases_root: str | None = None
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    toolchain: List[Mapping[str, Any]] = field(default_factory=list)
    source: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: Path | None = None) -> "BuildConfig":
        deps_section = data.get("deps")
        if not isinstance(deps_section, Mapping):
            raise ConfigurationError(["Build configuration must have a deps mapping"])
        deps = {
            str(key): DependencyConfig.from_mapping(str(key), value)
            for key, value in deps_section.items()
        }
        toolchain = data.get("toolchain") or []
        if not isinstance(toolchain, Sequence) or isinstance(toolchain, (str, bytes)):
            raise ConfigurationError(["toolchain must be a list of requirement tables"])
        releases_root = _lookup(data, "releasesRoot", "releases_root")
        return cls(
            version=data.get("version"),
            deps=deps,
            releases_root=str(releases_root) if releases_root else None,
            settings=GlobalSettings.from_mapping(data),
            toolchain=[entry for entry in toolchain if isinstance(entry, Mapping)],
            source=source,
        )

    def get_dependency(self, key: str) -> DependencyConfig | None:
        return self.deps.get(key)


def load_build_config(path: Path) -> BuildConfig:
    """Load a :class:`BuildConfig` from a JSON, TOML or YAML file."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Build configuration not found: {path}")
    return BuildConfig.from_mapping(load_config_file(path), source=path.resolve())
