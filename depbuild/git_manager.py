"""Git primitives used to prepare dependency source trees."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Sequence
import logging

import pygit2

from .command_runner import CommandResult, CommandRunner
from .errors import CheckoutAttempt

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CloneResult:
    path: Path
    skipped: bool
    result: CommandResult | None = None

    @property
    def ok(self) -> bool:
        return self.skipped or (self.result is not None and self.result.ok)

    def output(self) -> str:
        return self.result.output() if self.result is not None else ""


@dataclass(slots=True)
class CheckoutOutcome:
    ok: bool
    ref: str | None = None
    ref_type: str | None = None
    attempts: List[CheckoutAttempt] = field(default_factory=list)


def unique_refs(refs: Iterable[str | None]) -> List[str]:
    """Strip, drop empty values and de-duplicate while keeping order."""
    seen: set[str] = set()
    ordered: List[str] = []
    for ref in refs:
        if ref is None:
            continue
        text = str(ref).strip()
        if text and text not in seen:
            seen.add(text)
            ordered.append(text)
    return ordered


class GitManager:
    def __init__(self, runner: CommandRunner, *, environment: Mapping[str, str] | None = None) -> None:
        self._runner = runner
        self._environment = environment

    def _git(self, args: Sequence[str], *, cwd: Path | None, note: str | None = None) -> CommandResult:
        return self._runner.run(["git", *args], cwd=cwd, env=self._environment, check=False, note=note)

    def clone(
        self,
        url: str,
        destination: Path,
        *,
        shallow: bool = True,
        extra_args: Sequence[str] = (),
    ) -> CloneResult:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            logger.info("repository already exists at %s, skipping clone", destination)
            return CloneResult(path=destination, skipped=True)

        args: List[str] = ["clone"]
        if shallow:
            args.extend(["--depth", "1"])
        args.extend([url, str(destination), *extra_args])
        logger.info("cloning %s into %s (shallow=%s)", url, destination, shallow)
        result = self._git(args, cwd=None, note="clone")
        return CloneResult(path=destination, skipped=False, result=result)

    def fetch_tag(self, repo_path: Path, ref: str) -> CommandResult:
        return self._git(["fetch", "--depth", "1", "origin", "tag", ref], cwd=repo_path, note="fetch tag")

    def fetch_branch(self, repo_path: Path, ref: str) -> CommandResult:
        return self._git(["fetch", "--depth", "1", "origin", ref], cwd=repo_path, note="fetch branch")

    def checkout(self, repo_path: Path, ref: str, *, detach: bool = False) -> CommandResult:
        args = ["checkout"]
        if detach:
            args.append("--detach")
        args.append(ref)
        return self._git(args, cwd=repo_path, note="checkout")

    def update_submodules(self, repo_path: Path, *, recursive: bool = True) -> CommandResult:
        args = ["submodule", "update", "--init"]
        if recursive:
            args.append("--recursive")
        logger.info("updating submodules in %s", repo_path)
        return self._git(args, cwd=repo_path, note="submodules")

    def _checkout_tag(self, repo_path: Path, ref: str) -> tuple[bool, str]:
        outputs: List[str] = []
        for variant in (f"tags/{ref}", ref):
            result = self.checkout(repo_path, variant, detach=True)
            if result.ok:
                return True, result.output()
            outputs.append(result.output())
        return False, "\n".join(text for text in outputs if text)

    def checkout_ref(
        self,
        repo_path: Path,
        candidates: Iterable[str],
        *,
        try_tags: bool = True,
    ) -> CheckoutOutcome:
        """Check out the first candidate that can be fetched.

        Each candidate is tried as a tag (when ``try_tags``) and then as a
        branch. Every failed step is kept in the outcome's ``attempts``.
        """

        attempts: List[CheckoutAttempt] = []
        refs = unique_refs(candidates)
        if not refs:
            return CheckoutOutcome(ok=True)

        for ref in refs:
            if try_tags:
                tag_fetch = self.fetch_tag(repo_path, ref)
                if tag_fetch.ok:
                    checked_out, output = self._checkout_tag(repo_path, ref)
                    if checked_out:
                        return CheckoutOutcome(ok=True, ref=ref, ref_type="tag", attempts=attempts)
                    attempts.append(CheckoutAttempt(ref=ref, ref_type="tag", step="checkout", output=output))
                else:
                    attempts.append(CheckoutAttempt(ref=ref, ref_type="tag", step="fetch", output=tag_fetch.output()))

            branch_fetch = self.fetch_branch(repo_path, ref)
            if not branch_fetch.ok:
                attempts.append(CheckoutAttempt(ref=ref, ref_type="branch", step="fetch", output=branch_fetch.output()))
                continue
            branch_checkout = self.checkout(repo_path, ref)
            if branch_checkout.ok:
                return CheckoutOutcome(ok=True, ref=ref, ref_type="branch", attempts=attempts)
            attempts.append(
                CheckoutAttempt(ref=ref, ref_type="branch", step="checkout", output=branch_checkout.output())
            )

        return CheckoutOutcome(ok=False, attempts=attempts)

    def head_commit(self, repo_path: Path) -> str | None:
        """Return the checked-out commit id, or ``None`` when unavailable."""
        if not (Path(repo_path) / ".git").exists():
            return None
        try:
            repository = pygit2.Repository(str(repo_path))
            if repository.head_is_unborn:
                return None
            return str(repository.head.target)
        except (pygit2.GitError, KeyError) as exc:
            logger.debug("unable to read HEAD of %s: %s", repo_path, exc)
            return None
