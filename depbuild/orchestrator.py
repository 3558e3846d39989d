"""Sequential, fail-fast build orchestration.

``BuildOrchestrator`` validates the configuration, resolves the build order and
then walks it one dependency at a time::

    PENDING -> PREPARING_REPOSITORY -> LOADING_TOOLS -> BUILDING
            -> CLEANING_TOOLS -> PUBLISHING -> DONE

``SKIPPED`` is reached directly from ``PENDING``. Any error moves the current
dependency to ``FAILED`` and ends the run; later dependencies may rely on the
artifacts of earlier ones, so nothing after a failure is attempted.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple
import logging

from .command_runner import CommandRunner, SubprocessCommandRunner
from .config_loader import BuildConfig, DependencyConfig
from .dependency_graph import expand_with_prerequisites, resolve_build_order, select_targets
from .errors import BuildAbortedError, BuildWorkerError, ConfigurationError, DepbuildError, PublicationError
from .git_manager import GitManager
from .release import ReleasePublisher, list_files
from .repository import RepositoryPreparer, RepositoryState
from .tools import ToolLoader
from .validation import validate_config
from .workers import BuildOptions, WorkerRegistry, WorkerResult

logger = logging.getLogger(__name__)

GIT_DIR_NAME = ".git.temp"
ARTIFACTS_DIR_NAME = "artifacts"
TOOLS_DIR_NAME = "tools"


class BuildStage(str, Enum):
    PENDING = "pending"
    PREPARING_REPOSITORY = "preparing-repository"
    LOADING_TOOLS = "loading-tools"
    BUILDING = "building"
    CLEANING_TOOLS = "cleaning-tools"
    PUBLISHING = "publishing"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BuildResult:
    ok: bool
    name: str
    version: str | None = None
    branch: str | None = None
    error: str | None = None
    skipped: bool = False
    reason: str | None = None
    release_dir: Path | None = None
    released_files: Tuple[str, ...] | None = None
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class BuildReport:
    """Results of the dependencies processed so far and the error that ended the run."""

    results: List[BuildResult] = field(default_factory=list)
    error: BaseException | None = None
    failed_key: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def successful(self) -> List[BuildResult]:
        return [result for result in self.results if result.ok]


@dataclass(slots=True)
class _Progress:
    key: str
    stage: BuildStage = BuildStage.PENDING

    def advance(self, stage: BuildStage) -> None:
        logger.debug("'%s': %s -> %s", self.key, self.stage.value, stage.value)
        self.stage = stage


@dataclass(slots=True)
class _RunContext:
    config: BuildConfig
    build_root: Path
    git_root: Path
    artifacts_root: Path
    tools_dir: Path
    force: bool
    copy_to_releases: bool
    mode: str
    dry_run: bool


class BuildOrchestrator:
    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        registry: WorkerRegistry | None = None,
        tool_loader: ToolLoader | None = None,
        publisher: ReleasePublisher | None = None,
        git: GitManager | None = None,
    ) -> None:
        self._runner = runner or SubprocessCommandRunner()
        self._registry = registry or WorkerRegistry()
        self._tool_loader = tool_loader or ToolLoader(self._runner)
        self._publisher = publisher or ReleasePublisher()
        self._preparer = RepositoryPreparer(git or GitManager(self._runner))

    def plan(
        self,
        config: BuildConfig,
        *,
        only: Iterable[str] | None = None,
        include_prerequisites: bool = False,
    ) -> List[str]:
        """Validate ``config`` and return the keys a run would process, in order."""

        validate_config(config)
        order = resolve_build_order(config)
        if only is None:
            return order

        requested = list(only)
        if include_prerequisites:
            requested = expand_with_prerequisites(config, requested)
            logger.info("selection expanded with prerequisites: %s", requested)
        selected, missing = select_targets(order, requested)
        for key in missing:
            logger.warning("requested dependency '%s' is not part of the build graph, ignoring", key)
        logger.info("building selected dependencies: %s", selected)
        return selected

    def execute(
        self,
        config: BuildConfig,
        build_root: Path,
        *,
        force: bool = False,
        copy_to_releases: bool = False,
        only: Iterable[str] | None = None,
        include_prerequisites: bool = False,
        mode: str = "debug",
        dry_run: bool = False,
    ) -> BuildReport:
        """Build the selected dependencies and report what happened.

        Configuration and graph errors propagate unchanged. Errors raised while
        processing a dependency end the run and are stored on the report
        together with every result recorded before them.
        """

        logger.info("starting build orchestration (config version=%s, force=%s, mode=%s)", config.version, force, mode)
        order = self.plan(config, only=only, include_prerequisites=include_prerequisites)

        if dry_run and force:
            logger.warning("dry run: ignoring force, existing repositories are kept")
            force = False

        build_root = Path(build_root).resolve()
        context = _RunContext(
            config=config,
            build_root=build_root,
            git_root=build_root / GIT_DIR_NAME,
            artifacts_root=build_root / ARTIFACTS_DIR_NAME,
            tools_dir=build_root / TOOLS_DIR_NAME,
            force=force,
            copy_to_releases=copy_to_releases,
            mode=mode,
            dry_run=dry_run,
        )
        context.git_root.mkdir(parents=True, exist_ok=True)
        context.artifacts_root.mkdir(parents=True, exist_ok=True)

        report = BuildReport()
        if not dry_run:
            try:
                self._registry.resolve(config, order, base_dir=build_root)
            except BuildWorkerError as exc:
                logger.error("failed to resolve build worker for '%s': %s", exc.dep_name, exc)
                self._record_failure(report, exc.dep_name, exc, BuildStage.PENDING)
                return report

        for key in order:
            progress = _Progress(key)
            logger.info("processing dependency '%s'", key)
            try:
                result = self._process(key, context, progress)
            except DepbuildError as exc:
                self._record_failure(report, key, exc, progress.stage)
                return report
            except Exception as exc:
                logger.exception("unexpected error while processing '%s'", key)
                self._record_failure(report, key, exc, progress.stage)
                return report
            report.results.append(result)

        logger.info(
            "build orchestration complete: %d processed, %d successful",
            len(report.results),
            len(report.successful),
        )
        return report

    def run(self, config: BuildConfig, build_root: Path, **kwargs: Any) -> List[BuildResult]:
        """Like :meth:`execute` but raise :class:`BuildAbortedError` on failure."""
        report = self.execute(config, build_root, **kwargs)
        if report.error is not None:
            raise BuildAbortedError(report) from report.error
        return report.results

    def _record_failure(self, report: BuildReport, key: str, error: BaseException, stage: BuildStage) -> None:
        logger.error("'%s' failed while %s: %s", key, stage.value, error)
        report.results.append(
            BuildResult(
                ok=False,
                name=key,
                error=f"[{stage.value}] {error}",
                reason=f"{stage.value} failed",
                details={"stage": stage.value, "final_stage": BuildStage.FAILED.value},
            )
        )
        report.error = error
        report.failed_key = key

    def _process(self, key: str, context: _RunContext, progress: _Progress) -> BuildResult:
        dep = context.config.get_dependency(key)
        if dep is None:
            raise ConfigurationError([f'Dependency "{key}" not found in configuration'])
        if dep.skip:
            progress.advance(BuildStage.SKIPPED)
            logger.info("skipping '%s' (marked as skip)", key)
            return BuildResult(ok=True, name=key, skipped=True, reason="marked as skip")

        progress.advance(BuildStage.PREPARING_REPOSITORY)
        git = dep.git
        state = self._preparer.prepare(
            config=dep,
            dep_name=key,
            git_root=context.git_root,
            force=context.force,
            shallow=git.shallow is not False if git else True,
            init_submodules=bool(git.init_submodules) if git else False,
        )

        artifacts_dir = context.artifacts_root / dep.artifacts_dir_name
        artifacts_dir.mkdir(parents=True, exist_ok=True)

        if context.dry_run:
            progress.advance(BuildStage.DONE)
            return self._merge(key, state, WorkerResult(ok=True, skipped=True), reason="dry run")

        worker = self._registry.get(key)

        progress.advance(BuildStage.LOADING_TOOLS)
        session = self._tool_loader.load(dep.tools, context.tools_dir)
        try:
            progress.advance(BuildStage.BUILDING)
            options = BuildOptions(
                repo_root=state.repo_root,
                artifacts_root=artifacts_dir,
                force=context.force,
                environment=session.environment,
                runner=self._runner,
                mode=context.mode,
            )
            logger.info("building '%s' from %s", key, state.repo_root)
            try:
                raw = worker.build(options)
            except DepbuildError:
                raise
            except Exception as exc:
                raise BuildWorkerError(key, f"build worker raised {type(exc).__name__}: {exc}") from exc
            outcome = WorkerResult.coerce(raw, dep_name=key)
            if not outcome.ok:
                reason = outcome.details.get("error") or outcome.details.get("reason") or "no reason given"
                raise BuildWorkerError(key, f"build worker reported failure: {reason}")
            logger.info("build of '%s' completed (skipped=%s)", key, outcome.skipped)
        except BaseException:
            session.cleanup()
            raise
        progress.advance(BuildStage.CLEANING_TOOLS)
        session.cleanup()

        result = self._merge(key, state, outcome)
        if context.copy_to_releases and context.config.releases_root:
            progress.advance(BuildStage.PUBLISHING)
            result = self._publish(key, dep, state, result, context)

        progress.advance(BuildStage.DONE)
        return result

    def _merge(
        self,
        key: str,
        state: RepositoryState,
        outcome: WorkerResult,
        *,
        reason: str | None = None,
    ) -> BuildResult:
        details: Dict[str, Any] = dict(outcome.details)
        details.setdefault("repo_root", str(state.repo_root))
        if state.commit:
            details.setdefault("commit", state.commit)
        if state.ref_type:
            details.setdefault("ref_type", state.ref_type)
        return BuildResult(
            ok=True,
            name=key,
            version=state.version,
            branch=state.branch,
            skipped=outcome.skipped,
            reason=reason,
            details=details,
        )

    def _publish(
        self,
        key: str,
        dep: DependencyConfig,
        state: RepositoryState,
        result: BuildResult,
        context: _RunContext,
    ) -> BuildResult:
        logger.info("copying artifacts of '%s' to releases", key)
        try:
            published = self._publisher.publish(
                dep_name=key,
                dep_config=dep,
                version=state.version,
                artifacts_root=context.artifacts_root,
                artifacts_dir_name=dep.artifacts_dir_name,
                releases_root=str(context.config.releases_root),
                build_root=context.build_root,
            )
            if not published.ok or published.release_dir is None:
                return result
            released = tuple(list_files(published.release_dir))
        except (PublicationError, OSError) as exc:
            logger.error("release publication for '%s' failed, build result kept: %s", key, exc)
            return result

        logger.info("released %d file(s) for '%s' to %s", len(released), key, published.release_dir)
        for name in released:
            logger.debug("released file: %s", name)
        details = dict(result.details)
        if published.archive is not None:
            details["archive"] = str(published.archive)
        return replace(result, release_dir=published.release_dir, released_files=released, details=details)
