from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

import pygit2

from depbuild.command_runner import CommandError, CommandResult, CommandRunner
from depbuild.git_manager import GitManager, unique_refs


class ScriptedGitRunner(CommandRunner):
    """Succeeds for every command except those listed in ``failures``.

    Failures raise :class:`CommandError` for checked runs like the real runner.

    ``git clone`` creates its destination directory like the real command.
    """

    def __init__(self, *, failures: set[tuple[str, ...]] | None = None) -> None:
        self.failures = failures or set()
        self.history: list[dict] = []

    def run(self, command, *, cwd=None, env=None, check=True, note=None):  # type: ignore[override]
        cmd_list = [str(part) for part in command]
        self.history.append({"command": cmd_list, "cwd": cwd, "env": env, "note": note})
        if tuple(cmd_list) in self.failures:
            result = CommandResult(command=cmd_list, returncode=1, stdout="", stderr=f"fatal: {' '.join(cmd_list[1:3])}")
            if check:
                raise CommandError(result)
            return result
        if cmd_list[:2] == ["git", "clone"]:
            Path(cmd_list[-1]).mkdir(parents=True, exist_ok=True)
        return CommandResult(command=cmd_list, returncode=0, stdout="", stderr="")

    @property
    def commands(self) -> list[list[str]]:
        return [record["command"] for record in self.history]


class GitManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.repo_path = self.root / "demo"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_shallow_clone_uses_depth_one(self) -> None:
        runner = ScriptedGitRunner()
        manager = GitManager(runner)

        result = manager.clone("https://example.com/demo.git", self.repo_path)

        self.assertTrue(result.ok)
        self.assertFalse(result.skipped)
        self.assertEqual(
            runner.commands,
            [["git", "clone", "--depth", "1", "https://example.com/demo.git", str(self.repo_path)]],
        )

    def test_full_clone_omits_depth(self) -> None:
        runner = ScriptedGitRunner()

        GitManager(runner).clone("https://example.com/demo.git", self.repo_path, shallow=False)

        self.assertEqual(runner.commands[0], ["git", "clone", "https://example.com/demo.git", str(self.repo_path)])

    def test_clone_is_skipped_when_destination_exists(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner()

        result = GitManager(runner).clone("https://example.com/demo.git", self.repo_path)

        self.assertTrue(result.ok)
        self.assertTrue(result.skipped)
        self.assertEqual(runner.commands, [])

    def test_checkout_ref_falls_back_to_toggled_tag(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner(
            failures={
                ("git", "fetch", "--depth", "1", "origin", "tag", "1.2.3"),
                ("git", "fetch", "--depth", "1", "origin", "1.2.3"),
            }
        )

        outcome = GitManager(runner).checkout_ref(self.repo_path, ["1.2.3", "v1.2.3"])

        self.assertTrue(outcome.ok)
        self.assertEqual((outcome.ref, outcome.ref_type), ("v1.2.3", "tag"))
        self.assertEqual(
            runner.commands,
            [
                ["git", "fetch", "--depth", "1", "origin", "tag", "1.2.3"],
                ["git", "fetch", "--depth", "1", "origin", "1.2.3"],
                ["git", "fetch", "--depth", "1", "origin", "tag", "v1.2.3"],
                ["git", "checkout", "--detach", "tags/v1.2.3"],
            ],
        )
        self.assertEqual([(a.ref, a.ref_type, a.step) for a in outcome.attempts], [
            ("1.2.3", "tag", "fetch"),
            ("1.2.3", "branch", "fetch"),
        ])
        for record in runner.history:
            self.assertEqual(record["cwd"], self.repo_path)

    def test_tag_checkout_retries_without_tags_prefix(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner(failures={("git", "checkout", "--detach", "tags/v2.0")})

        outcome = GitManager(runner).checkout_ref(self.repo_path, ["v2.0"])

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.ref_type, "tag")
        self.assertEqual(runner.commands[-1], ["git", "checkout", "--detach", "v2.0"])

    def test_branch_checkout_skips_tag_attempts(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner()

        outcome = GitManager(runner).checkout_ref(self.repo_path, ["main"], try_tags=False)

        self.assertTrue(outcome.ok)
        self.assertEqual((outcome.ref, outcome.ref_type), ("main", "branch"))
        self.assertEqual(
            runner.commands,
            [["git", "fetch", "--depth", "1", "origin", "main"], ["git", "checkout", "main"]],
        )

    def test_exhausted_candidates_report_every_attempt(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner(
            failures={
                ("git", "fetch", "--depth", "1", "origin", "tag", "9.9"),
                ("git", "fetch", "--depth", "1", "origin", "9.9"),
                ("git", "fetch", "--depth", "1", "origin", "tag", "v9.9"),
                ("git", "fetch", "--depth", "1", "origin", "v9.9"),
            }
        )

        outcome = GitManager(runner).checkout_ref(self.repo_path, ["9.9", "v9.9"])

        self.assertFalse(outcome.ok)
        self.assertEqual(len(outcome.attempts), 4)
        self.assertTrue(all(attempt.output.startswith("fatal:") for attempt in outcome.attempts))

    def test_submodule_update_is_recursive(self) -> None:
        self.repo_path.mkdir()
        runner = ScriptedGitRunner()

        result = GitManager(runner).update_submodules(self.repo_path)

        self.assertTrue(result.ok)
        self.assertEqual(runner.commands, [["git", "submodule", "update", "--init", "--recursive"]])

    def test_environment_overlay_is_passed_to_git(self) -> None:
        runner = ScriptedGitRunner()

        GitManager(runner, environment={"GIT_TERMINAL_PROMPT": "0"}).clone("https://example.com/x.git", self.repo_path)

        self.assertEqual(runner.history[0]["env"], {"GIT_TERMINAL_PROMPT": "0"})

    def test_unique_refs_strips_and_deduplicates(self) -> None:
        self.assertEqual(unique_refs([" main ", None, "", "main", "dev"]), ["main", "dev"])


class HeadCommitTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.repo_path = Path(self.temp_dir.name) / "repo"
        self.manager = GitManager(ScriptedGitRunner())

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_returns_none_without_repository(self) -> None:
        self.repo_path.mkdir()

        self.assertIsNone(self.manager.head_commit(self.repo_path))

    def test_returns_none_for_unborn_head(self) -> None:
        pygit2.init_repository(str(self.repo_path))

        self.assertIsNone(self.manager.head_commit(self.repo_path))

    def test_reads_checked_out_commit(self) -> None:
        repository = pygit2.init_repository(str(self.repo_path))
        signature = pygit2.Signature("Build Bot", "build@example.com")
        tree = repository.TreeBuilder().write()
        commit = repository.create_commit("HEAD", signature, signature, "initial", tree, [])

        self.assertEqual(self.manager.head_commit(self.repo_path), str(commit))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
