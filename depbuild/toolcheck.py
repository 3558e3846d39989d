"""Host toolchain validation run before any repository or build work."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence
import logging
import re
import shutil
import sys

from .command_runner import CommandRunner
from .errors import AggregateToolError

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"v?(\d+(?:\.\d+)+|\d+)")


def parse_version(text: str, *, pattern: str | None = None) -> str | None:
    """Extract the first version-looking token from command output.

    Dotted versions win over bare integers so ``ninja 1.12.1`` and
    ``cmake version 3.28.3`` both parse as expected.
    """

    if pattern:
        match = re.search(pattern, text)
        return match.group(1) if match else None
    candidates = [match.group(1) for match in _VERSION_PATTERN.finditer(text)]
    for candidate in candidates:
        if "." in candidate:
            return candidate
    return candidates[0] if candidates else None


def _normalize(version: str) -> List[int]:
    cleaned = str(version).strip().lstrip("vV")
    parts: List[int] = []
    for segment in cleaned.split("."):
        digits = re.match(r"\d+", segment)
        if digits:
            parts.append(int(digits.group(0)))
    return parts


def compare_versions(actual: str, expected: str) -> int:
    """Return -1, 0 or 1 comparing dotted versions numerically."""
    left = _normalize(actual)
    right = _normalize(expected)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    return (left > right) - (left < right)


@dataclass(slots=True)
class ToolRequirement:
    name: str
    program: str | None = None
    version_args: Sequence[str] = ("--version",)
    minimum_version: str | None = None
    platforms: Sequence[str] | None = None
    required: bool = True
    hint: str | None = None
    version_pattern: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ToolRequirement":
        name = data.get("name") or data.get("program")
        if not name:
            raise ValueError("toolchain entries require a name or program")
        version_args = data.get("versionArgs", data.get("version_args", ("--version",)))
        if isinstance(version_args, str):
            version_args = [version_args]
        platforms = data.get("platforms")
        minimum = data.get("minimumVersion", data.get("minimum_version"))
        return cls(
            name=str(name),
            program=str(data.get("program") or name),
            version_args=tuple(str(arg) for arg in version_args),
            minimum_version=str(minimum) if minimum else None,
            platforms=[str(item) for item in platforms] if platforms else None,
            required=bool(data.get("required", True)),
            hint=str(data["hint"]) if data.get("hint") else None,
            version_pattern=data.get("versionPattern", data.get("version_pattern")),
        )

    def applies_to(self, platform: str) -> bool:
        return not self.platforms or platform in self.platforms


@dataclass(slots=True)
class ToolReport:
    name: str
    ok: bool
    required: bool = True
    version: str | None = None
    path: str | None = None
    reason: str | None = None
    output: str = ""
    hint: str | None = None

    def describe(self) -> str:
        lines = [f"{self.name}: {self.reason or 'ok'}"]
        if self.path:
            lines.append(f"    located at {self.path}")
        if self.output:
            lines.append(f"    output: {self.output}")
        if self.hint:
            lines.append(f"    hint: {self.hint}")
        return "\n".join(lines)


def check_tool(
    requirement: ToolRequirement,
    runner: CommandRunner,
    *,
    environment: Mapping[str, str] | None = None,
) -> ToolReport:
    program = requirement.program or requirement.name
    search_path = environment.get("PATH") if environment else None
    resolved = shutil.which(program, path=search_path)
    base = {"name": requirement.name, "required": requirement.required, "hint": requirement.hint}
    if resolved is None:
        return ToolReport(ok=False, reason=f'command "{program}" was not found on PATH', **base)

    result = runner.run([resolved, *requirement.version_args], env=environment, check=False)
    output = result.output()
    if not result.ok:
        return ToolReport(
            ok=False,
            path=resolved,
            reason=f"{program} exited with status {result.returncode}",
            output=output,
            **base,
        )

    version = parse_version(output, pattern=requirement.version_pattern)
    if requirement.minimum_version:
        if version is None:
            return ToolReport(
                ok=False,
                path=resolved,
                reason=f"{program} did not report a version in the expected format",
                output=output,
                **base,
            )
        if compare_versions(version, requirement.minimum_version) < 0:
            return ToolReport(
                ok=False,
                version=version,
                path=resolved,
                reason=f"{program} {version} is older than required minimum {requirement.minimum_version}",
                **base,
            )
    return ToolReport(ok=True, version=version, path=resolved, **base)


def ensure_tooling(
    requirements: Iterable[ToolRequirement],
    runner: CommandRunner,
    *,
    platform: str | None = None,
) -> List[ToolReport]:
    """Check every applicable requirement; raise if a required one fails."""

    current = platform or sys.platform
    applicable = [req for req in requirements if req.applies_to(current)]
    logger.info("checking %d toolchain requirement(s) on %s", len(applicable), current)
    reports = [check_tool(req, runner) for req in applicable]
    for report in reports:
        if report.ok:
            logger.info("tool %s satisfied (version=%s, path=%s)", report.name, report.version, report.path)
        else:
            logger.warning("tool %s unsatisfied: %s", report.name, report.reason)
    failures = [report for report in reports if not report.ok and report.required]
    if failures:
        raise AggregateToolError(failures, reports)
    return reports
