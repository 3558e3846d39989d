"""Copy built artifacts into the release layout."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List
import logging
import os
import platform as _platform
import shutil
import sys
import tarfile
import tempfile

import zstandard as zstd

from .config_loader import DependencyConfig, GlobRule
from .errors import PublicationError

logger = logging.getLogger(__name__)

_OS_NAMES = {
    "win32": "win",
    "cygwin": "win",
    "linux": "linux",
    "darwin": "darwin",
    "freebsd": "freebsd",
    "openbsd": "openbsd",
    "sunos5": "sunos",
    "aix": "aix",
}

_ARCH_NAMES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "armv7l": "arm",
    "ppc64le": "ppc64",
    "ppc64": "ppc64",
    "s390x": "s390x",
}

_ARCHIVE_SUFFIXES = {"tar.zst": ".tar.zst", "zst": ".tar.zst", "tzst": ".tar.zst"}


def os_name(platform: str | None = None) -> str:
    name = platform or sys.platform
    for prefix, mapped in _OS_NAMES.items():
        if name.startswith(prefix):
            return mapped
    return name


def platform_arch(machine: str | None = None) -> str:
    name = (machine or _platform.machine()).lower()
    return _ARCH_NAMES.get(name, name)


def render_out_dir(
    template: str,
    *,
    name: str,
    version: str | None,
    platform: str | None = None,
    machine: str | None = None,
) -> str:
    """Substitute the ``{name}``, ``{os}``, ``{platform}``, ``{version}`` and ``{ver}`` placeholders.

    Without a version the version placeholders disappear together with the
    ``/`` in front of them, so ``{name}/{version}`` becomes ``{name}``.
    """

    out_dir = template or "{name}"
    out_dir = out_dir.replace("{name}", name)
    out_dir = out_dir.replace("{os}", os_name(platform))
    out_dir = out_dir.replace("{platform}", platform_arch(machine))
    if version:
        out_dir = out_dir.replace("{version}", version).replace("{ver}", version)
    else:
        for placeholder in ("/{version}", "/{ver}", "{version}", "{ver}"):
            out_dir = out_dir.replace(placeholder, "")
    return out_dir


def list_files(directory: Path) -> List[str]:
    """Return every file below ``directory`` as a sorted relative POSIX path."""
    root = Path(directory)
    if not root.is_dir():
        return []
    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file())


@dataclass(slots=True)
class PublishResult:
    ok: bool
    release_dir: Path | None = None
    copied_files: List[str] = field(default_factory=list)
    archive: Path | None = None


def _is_root_folder(folder: str | None) -> bool:
    return not folder or folder in {"/", "."}


class ReleasePublisher:
    def __init__(self, *, platform: str | None = None, machine: str | None = None) -> None:
        self._platform = platform
        self._machine = machine

    def publish(
        self,
        *,
        dep_name: str,
        dep_config: DependencyConfig,
        version: str | None,
        artifacts_root: Path,
        artifacts_dir_name: str | None,
        releases_root: str | Path,
        build_root: Path,
    ) -> PublishResult:
        """Copy the configured artifacts of ``dep_name`` into the releases tree.

        Raises :class:`PublicationError` when copying or archiving fails.
        """

        out_config = dep_config.out_config
        if out_config is None:
            logger.warning("no outConfig for '%s', skipping release copy", dep_name)
            return PublishResult(ok=True)

        releases = (Path(build_root) / releases_root).resolve()
        out_dir = render_out_dir(
            out_config.out_dir,
            name=dep_config.artifacts_dir_name,
            version=version,
            platform=self._platform,
            machine=self._machine,
        )
        release_dir = (releases / out_dir).resolve()
        logger.info("preparing release directory %s for '%s' (version=%s)", release_dir, dep_name, version or "none")

        try:
            if out_config.clear_release and release_dir.exists():
                logger.info("clearing existing release directory %s", release_dir)
                shutil.rmtree(release_dir)
            release_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PublicationError(f"[{dep_name}] cannot prepare release directory {release_dir}: {exc}") from exc

        if not out_config.includes:
            logger.warning("outConfig for '%s' has no includes, nothing to copy", dep_name)
            return PublishResult(ok=True, release_dir=release_dir)

        source_root = Path(artifacts_root) / (artifacts_dir_name or dep_name)
        copied: List[str] = []
        for rule in out_config.includes:
            copied.extend(self._copy_matches(dep_name, rule, source_root, release_dir))
        logger.info("release copy for '%s' completed (%d file(s))", dep_name, len(copied))

        archive = None
        if out_config.archive:
            archive = self._archive(dep_name, out_config.archive, release_dir)
        return PublishResult(ok=True, release_dir=release_dir, copied_files=copied, archive=archive)

    def _copy_matches(self, dep_name: str, rule: GlobRule, source_root: Path, release_dir: Path) -> List[str]:
        root_folder = _is_root_folder(rule.folder)
        source = source_root if root_folder else source_root / str(rule.folder)
        target = release_dir if root_folder or rule.move_to_root else release_dir / str(rule.folder)
        logger.debug("copying %s/%s to %s", source, rule.pattern, target)

        copied: List[str] = []
        if not source.is_dir():
            logger.warning("source folder %s for '%s' does not exist", source, dep_name)
            return copied
        try:
            matches = sorted(source.glob(rule.pattern))
        except (OSError, ValueError, NotImplementedError) as exc:
            raise PublicationError(f"[{dep_name}] invalid include pattern '{rule.pattern}' in {source}: {exc}") from exc
        for match in matches:
            if not match.is_file():
                continue
            destination = target / match.relative_to(source)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(match, destination)
            except OSError as exc:
                raise PublicationError(f"[{dep_name}] failed to copy {match} to {destination}: {exc}") from exc
            copied.append(destination.relative_to(release_dir).as_posix())
        return copied

    def _archive(self, dep_name: str, archive_format: str, release_dir: Path) -> Path:
        suffix = _ARCHIVE_SUFFIXES.get(archive_format.strip().lower())
        if suffix is None:
            raise PublicationError(f"[{dep_name}] unsupported release archive format '{archive_format}'")
        target = release_dir.with_name(release_dir.name + suffix)
        logger.info("packing %s into %s", release_dir, target)
        try:
            with tempfile.NamedTemporaryFile(dir=target.parent, suffix=".tar", delete=False) as handle:
                temp_tar = Path(handle.name)
            try:
                with tarfile.open(temp_tar, mode="w", format=tarfile.PAX_FORMAT) as tar:
                    for item in sorted(release_dir.iterdir()):
                        tar.add(item, arcname=item.name)
                compressor = zstd.ZstdCompressor(
                    level=19,
                    threads=min(os.cpu_count() or 1, 8),
                    write_checksum=True,
                    write_content_size=True,
                )
                with temp_tar.open("rb") as src, target.open("wb") as dst:
                    compressor.copy_stream(src, dst)
            finally:
                temp_tar.unlink(missing_ok=True)
        except (OSError, tarfile.TarError, zstd.ZstdError) as exc:
            raise PublicationError(f"[{dep_name}] failed to archive {release_dir}: {exc}") from exc
        return target
