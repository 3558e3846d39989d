"""Exception hierarchy raised by the orchestration pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .orchestrator import BuildReport
    from .toolcheck import ToolReport


class DepbuildError(RuntimeError):
    """Base class for every error the orchestrator reports to users."""


class ConfigurationError(DepbuildError):
    """Raised when the build configuration is malformed.

    ``errors`` holds every individual violation; the message joins them.
    """

    def __init__(self, errors: Iterable[str], *, header: str = "Build configuration validation failed") -> None:
        self.errors: List[str] = [str(error) for error in errors]
        details = "\n  ".join(self.errors)
        super().__init__(f"{header}:\n  {details}" if self.errors else header)


class CircularDependencyError(ConfigurationError):
    """Raised when the active dependency graph contains cycles."""

    def __init__(self, cycles: Sequence[Sequence[str]]) -> None:
        self.cycles: List[List[str]] = [list(cycle) for cycle in cycles]
        super().__init__(
            [" -> ".join(cycle) for cycle in self.cycles],
            header="Circular dependencies detected, cycles found",
        )


@dataclass(frozen=True, slots=True)
class CheckoutAttempt:
    """A single failed step while trying to check out a ref."""

    ref: str
    ref_type: str
    step: str
    output: str = ""

    def describe(self) -> str:
        line = f"{self.ref} {self.ref_type} {self.step}"
        if self.output:
            indented = "\n    ".join(self.output.splitlines())
            line = f"{line}\n    {indented}"
        return line


class RepositoryError(DepbuildError):
    """Raised when a dependency's source tree cannot be brought to the required state."""

    def __init__(
        self,
        dep_name: str,
        step: str,
        message: str,
        *,
        attempts: Sequence[CheckoutAttempt] = (),
        output: str = "",
    ) -> None:
        self.dep_name = dep_name
        self.step = step
        self.attempts: List[CheckoutAttempt] = list(attempts)
        self.output = output
        text = f"[{dep_name}] {step}: {message}"
        if self.attempts:
            text += "\nAttempts:\n" + "\n".join(f"  - {attempt.describe()}" for attempt in self.attempts)
        if output:
            text += f"\n{output}"
        super().__init__(text)


class BuildWorkerError(DepbuildError):
    """Raised for any failure signalled by, or while loading, a build worker."""

    def __init__(self, dep_name: str, message: str) -> None:
        self.dep_name = dep_name
        super().__init__(f"[{dep_name}] {message}")


class PublicationError(DepbuildError):
    """Raised when release publication fails. Never fatal to a build."""


class ToolError(DepbuildError):
    """Raised when a build tool cannot be loaded or configured."""

    def __init__(self, tool: str, reason: str) -> None:
        self.tool = tool
        self.reason = reason
        super().__init__(f"Failed to configure tool '{tool}': {reason}")


class AggregateToolError(DepbuildError):
    """Raised when one or more required host tools fail their checks."""

    def __init__(self, failures: Sequence["ToolReport"], reports: Sequence["ToolReport"]) -> None:
        self.failures = list(failures)
        self.reports = list(reports)
        details = "\n".join(f"  - {report.describe()}" for report in self.failures)
        super().__init__(f"One or more tooling checks failed:\n{details}")


class BuildAbortedError(DepbuildError):
    """Raised when a run stops at a failing dependency.

    The partial :class:`~depbuild.orchestrator.BuildReport` travels with the
    exception so callers can still summarise what was built.
    """

    def __init__(self, report: "BuildReport") -> None:
        self.report = report
        cause = report.error
        failed = report.failed_key or "<unknown>"
        super().__init__(f"Build aborted at '{failed}': {cause}")
