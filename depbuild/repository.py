"""Bring a dependency's source tree to the state a build expects."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import re
import shutil

from .config_loader import DependencyConfig
from .errors import RepositoryError
from .git_manager import GitManager

logger = logging.getLogger(__name__)

_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_name(name: str) -> str:
    return _UNSAFE_CHARACTERS.sub("-", name)


def repository_path(git_root: Path, dep_name: str) -> Path:
    """Return where ``dep_name`` is checked out below ``git_root``."""
    return (Path(git_root) / sanitize_name(dep_name)).resolve()


def toggle_v_prefix(ref: str) -> str:
    """``1.2.3`` becomes ``v1.2.3`` and ``v1.2.3`` becomes ``1.2.3``."""
    return ref[1:] if ref.startswith("v") else f"v{ref}"


@dataclass(slots=True)
class RepositoryState:
    repo_root: Path
    version: str | None
    branch: str | None
    reused: bool
    ref: str | None = None
    ref_type: str | None = None
    commit: str | None = None

    @property
    def skipped(self) -> bool:
        """True when the clone was skipped because the tree already existed."""
        return self.reused


class RepositoryPreparer:
    """Clone, check out and initialise submodules for one dependency at a time."""

    def __init__(self, git: GitManager) -> None:
        self._git = git

    def prepare(
        self,
        *,
        config: DependencyConfig,
        dep_name: str,
        git_root: Path,
        force: bool = False,
        shallow: bool = True,
        init_submodules: bool = False,
    ) -> RepositoryState:
        if config.git is None or not config.git.url:
            raise RepositoryError(dep_name, "prepare", "configuration is missing git.url")

        git_root = Path(git_root)
        git_root.mkdir(parents=True, exist_ok=True)
        repo_root = repository_path(git_root, dep_name)
        logger.info(
            "preparing repository for '%s' at %s (force=%s, shallow=%s, submodules=%s)",
            dep_name,
            repo_root,
            force,
            shallow,
            init_submodules,
        )

        if force and repo_root.exists():
            logger.info("force enabled, removing existing repository %s", repo_root)
            shutil.rmtree(repo_root)

        clone = self._git.clone(str(config.git.url), repo_root, shallow=shallow)
        if not clone.ok:
            raise RepositoryError(
                dep_name,
                "clone",
                f"failed to clone {config.git.url}",
                output=clone.output() or "unknown error",
            )

        version = str(config.default_version).strip() if config.default_version is not None else None
        branch = str(config.branch).strip() if config.branch is not None else None
        if version:
            candidates = [version, toggle_v_prefix(version)]
            try_tags = True
            target = version
        elif branch:
            candidates = [branch]
            try_tags = False
            target = branch
        else:
            raise RepositoryError(dep_name, "checkout", "either defaultVersion or branch must be specified")

        outcome = self._git.checkout_ref(repo_root, candidates, try_tags=try_tags)
        if not outcome.ok:
            raise RepositoryError(
                dep_name,
                "checkout",
                f'failed to check out reference "{target}"',
                attempts=outcome.attempts,
            )
        logger.info("checked out %s '%s' for '%s'", outcome.ref_type, outcome.ref, dep_name)

        if init_submodules:
            submodules = self._git.update_submodules(repo_root)
            if not submodules.ok:
                raise RepositoryError(
                    dep_name,
                    "submodules",
                    "failed to initialise submodules",
                    output=submodules.output() or "unknown error",
                )

        state = RepositoryState(
            repo_root=repo_root,
            version=version or None,
            branch=branch or None,
            reused=clone.skipped,
            ref=outcome.ref,
            ref_type=outcome.ref_type,
            commit=self._git.head_commit(repo_root),
        )
        logger.info("repository for '%s' ready (reused=%s, commit=%s)", dep_name, state.reused, state.commit)
        return state
