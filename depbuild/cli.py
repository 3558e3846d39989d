"""Command line interface for the dependency build orchestrator."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List, Sequence
import logging
import sys

from .command_runner import RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import BuildConfig, load_build_config
from .dependency_graph import resolve_build_order
from .errors import AggregateToolError, DepbuildError
from .logging_setup import configure_logging
from .orchestrator import BuildOrchestrator, BuildReport
from .toolcheck import ToolReport, ToolRequirement, ensure_tooling
from .validation import validate_config

DEFAULT_CONFIG_NAME = "buildConfig.json"
RULE = "=" * 70

logger = logging.getLogger(__name__)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="depbuild", description="Build native dependencies in dependency order")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Clone, build and publish dependencies")
    _add_config_argument(build_parser)
    build_parser.add_argument("--build-root", help="Directory holding .git.temp, artifacts and tools")
    build_parser.add_argument("--mode", choices=["debug", "release"], default="debug", help="Select the build mode")
    build_parser.add_argument(
        "--force",
        action="store_true",
        help="Force a clean rebuild by removing and recloning dependencies",
    )
    build_parser.add_argument(
        "--only",
        nargs="+",
        action="append",
        default=[],
        metavar="KEY",
        help="Build only these dependency keys (comma-separated or repeated)",
    )
    build_parser.add_argument(
        "--with-deps",
        action="store_true",
        help="Also build every prerequisite of the --only selection",
    )
    build_parser.add_argument("--toolcheck", action="store_true", help="Only run toolchain validation and exit")
    build_parser.add_argument(
        "--copy-to-releases",
        action="store_true",
        help="Copy artifacts into the releases tree after each build",
    )
    build_parser.add_argument("--dry-run", action="store_true", help="Print git commands without executing them")

    validate_parser = subparsers.add_parser("validate", help="Validate the build configuration")
    _add_config_argument(validate_parser)

    order_parser = subparsers.add_parser("order", help="Print the resolved build order")
    _add_config_argument(order_parser)

    return parser.parse_args(list(argv))


def _add_config_argument(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_NAME,
        help=f"Path to the build configuration (default: ./{DEFAULT_CONFIG_NAME})",
    )


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path.cwd()

    try:
        config = load_build_config(_resolve_config_path(args.config, workspace))
        configure_logging(config.settings.log_level, config.settings.log_file)
        if args.command == "build":
            return _handle_build(args, config, workspace)
        if args.command == "validate":
            return _handle_validate(config)
        if args.command == "order":
            return _handle_order(config)
    except (DepbuildError, FileNotFoundError, ValueError, TypeError) as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    raise ValueError(f"Unknown command: {args.command}")


def _resolve_config_path(value: str, workspace: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else workspace / path


def _resolve_build_root(args: Namespace, config: BuildConfig, workspace: Path) -> Path:
    if args.build_root:
        return _resolve_config_path(args.build_root, workspace)
    base = config.source.parent if config.source is not None else workspace
    if config.settings.build_root:
        return (base / config.settings.build_root).resolve()
    return base


def _collect_only(groups: Sequence[Sequence[str]]) -> List[str] | None:
    keys: List[str] = []
    for group in groups:
        for value in group:
            keys.extend(part.strip() for part in value.split(",") if part.strip())
    return keys or None


def _print_tool_summary(reports: Sequence[ToolReport]) -> None:
    satisfied = [report for report in reports if report.ok]
    unsatisfied = [report for report in reports if not report.ok]
    print(f"\n{RULE}\nTOOLCHAIN VALIDATION\n{RULE}")
    if satisfied:
        print("\nSatisfied requirements:")
        for report in satisfied:
            version = f" (v{report.version})" if report.version else ""
            print(f"  + {report.name}{version}")
            if report.path:
                print(f"    {report.path}")
    if unsatisfied:
        print("\nUnsatisfied requirements:")
        for report in unsatisfied:
            optional = "" if report.required else " (optional)"
            print(f"  - {report.name}{optional}")
            if report.reason:
                print(f"    Reason: {report.reason}")
            if report.version:
                print(f"    Found: v{report.version}")
            if report.hint:
                print(f"    Hint: {report.hint}")
    print(f"\n{RULE}\nSummary: {len(satisfied)} satisfied, {len(unsatisfied)} unsatisfied\n{RULE}\n")


def _print_build_summary(report: BuildReport) -> None:
    print(f"\n{RULE}\nBUILD SUMMARY\n{RULE}")
    for result in report.results:
        if not result.ok:
            status = "Failed"
        elif result.skipped:
            status = "Skipped"
        else:
            status = "Complete"
        print(f"{result.name:<30} {status}")
        if result.version:
            print(f"  Version: {result.version}")
        elif result.branch:
            print(f"  Branch: {result.branch}")
        if result.release_dir is not None:
            print(f"  Release: {result.release_dir} ({len(result.released_files or ())} file(s))")
        if not result.ok and result.error:
            print(f"  Error: {result.error}")
    print(f"{RULE}\n")


def _run_toolcheck(config: BuildConfig) -> bool:
    requirements = [ToolRequirement.from_mapping(entry) for entry in config.toolchain]
    try:
        reports = ensure_tooling(requirements, SubprocessCommandRunner())
        failed = False
    except AggregateToolError as exc:
        reports = exc.reports
        failed = True
    _print_tool_summary(reports)
    return not failed


def _handle_build(args: Namespace, config: BuildConfig, workspace: Path) -> int:
    tooling_ok = _run_toolcheck(config)
    if args.toolcheck:
        logger.info("toolcheck mode: exiting after toolchain validation")
        return 0 if tooling_ok else 1
    if not tooling_ok:
        logger.error("tooling requirements not met")
        return 1

    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()

    build_root = _resolve_build_root(args, config, workspace)
    logger.info("beginning build orchestration (mode=%s, build root=%s)", args.mode, build_root)
    orchestrator = BuildOrchestrator(runner)
    report = orchestrator.execute(
        config,
        build_root,
        force=args.force,
        copy_to_releases=args.copy_to_releases,
        only=_collect_only(args.only),
        include_prerequisites=args.with_deps,
        mode=args.mode,
        dry_run=args.dry_run,
    )

    _print_build_summary(report)
    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=build_root):
            print(line)
    if report.error is not None:
        print(f"error: build aborted at '{report.failed_key}': {report.error}", file=sys.stderr)
        return 1
    return 0


def _handle_validate(config: BuildConfig) -> int:
    validate_config(config)
    order = resolve_build_order(config)
    print("Validation successful")
    print(f"Build order: {', '.join(order) if order else '<empty>'}")
    return 0


def _handle_order(config: BuildConfig) -> int:
    validate_config(config)
    for key in resolve_build_order(config):
        print(key)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
