from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Any, Dict
import io
import json
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from depbuild import cli

from tests.test_git_manager import ScriptedGitRunner


def dependency(name: str, **extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "name": name,
        "git": {"url": f"https://example.com/{name}.git", "shallow": True, "initSubmodules": False},
        "defaultVersion": "1.0.0",
        "branch": None,
        "runner": f"workers/{name}.py",
    }
    data.update(extra)
    return data


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.config_path = self.root / "buildConfig.json"
        workers = self.root / "workers"
        workers.mkdir()
        for name in ("zlib", "png"):
            (workers / f"{name}.py").write_text(
                textwrap.dedent(
                    f"""
                    def build(options):
                        (options.artifacts_root / "{name}.lib").write_text("{name}")
                        return {{"ok": True}}
                    """
                ),
                encoding="utf-8",
            )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _write_config(self, deps: Dict[str, Any], **extra: Any) -> None:
        self.config_path.write_text(json.dumps({"version": "1", "deps": deps, **extra}), encoding="utf-8")

    def _main(self, *argv: str) -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = cli.main([argv[0], "--config", str(self.config_path), *argv[1:]])
        return code, stdout.getvalue(), stderr.getvalue()

    def test_order_prints_resolved_keys(self) -> None:
        self._write_config({"png": dependency("png", deps=["zlib"]), "zlib": dependency("zlib")})

        code, stdout, _ = self._main("order")

        self.assertEqual(code, 0)
        self.assertEqual(stdout.split(), ["zlib", "png"])

    def test_validate_reports_success(self) -> None:
        self._write_config({"zlib": dependency("zlib")})

        code, stdout, _ = self._main("validate")

        self.assertEqual(code, 0)
        self.assertIn("Validation successful", stdout)
        self.assertIn("Build order: zlib", stdout)

    def test_invalid_configuration_exits_non_zero(self) -> None:
        self._write_config({"zlib": dependency("zlib", defaultVersion=None)})

        code, _, stderr = self._main("validate")

        self.assertEqual(code, 1)
        self.assertIn("either defaultVersion or branch", stderr)

    def test_missing_configuration_file(self) -> None:
        code, _, stderr = self._main("order")

        self.assertEqual(code, 1)
        self.assertIn("not found", stderr)

    def test_toolcheck_only_stops_after_validation(self) -> None:
        self._write_config(
            {"zlib": dependency("zlib")},
            toolchain=[{"name": "phantom", "program": "depbuild-no-such-tool", "hint": "install phantom"}],
        )

        with patch("depbuild.cli.BuildOrchestrator") as orchestrator:
            code, stdout, _ = self._main("build", "--toolcheck")

        self.assertEqual(code, 1)
        orchestrator.assert_not_called()
        self.assertIn("TOOLCHAIN VALIDATION", stdout)
        self.assertIn("Hint: install phantom", stdout)

    def test_failed_toolcheck_blocks_the_build(self) -> None:
        self._write_config(
            {"zlib": dependency("zlib")},
            toolchain=[{"name": "phantom", "program": "depbuild-no-such-tool"}],
        )

        with patch("depbuild.cli.BuildOrchestrator") as orchestrator:
            code, _, _ = self._main("build")

        self.assertEqual(code, 1)
        orchestrator.assert_not_called()

    def test_build_runs_workers_and_prints_summary(self) -> None:
        self._write_config({"png": dependency("png", deps=["zlib"]), "zlib": dependency("zlib")})

        with patch("depbuild.cli.SubprocessCommandRunner", return_value=ScriptedGitRunner()):
            code, stdout, _ = self._main("build", "--mode", "release")

        self.assertEqual(code, 0)
        self.assertIn("BUILD SUMMARY", stdout)
        self.assertRegex(stdout, r"zlib\s+Complete")
        self.assertRegex(stdout, r"png\s+Complete")
        self.assertTrue((self.root / "artifacts" / "png" / "png.lib").exists())

    def test_build_only_selection(self) -> None:
        self._write_config({"png": dependency("png", deps=["zlib"]), "zlib": dependency("zlib")})

        with patch("depbuild.cli.SubprocessCommandRunner", return_value=ScriptedGitRunner()):
            code, stdout, _ = self._main("build", "--only", "png", "--with-deps")

        self.assertEqual(code, 0)
        self.assertTrue((self.root / "artifacts" / "zlib" / "zlib.lib").exists())
        self.assertTrue((self.root / "artifacts" / "png" / "png.lib").exists())

    def test_build_failure_exits_non_zero(self) -> None:
        (self.root / "workers" / "zlib.py").write_text("def build(options):\n    return {'ok': False}\n", encoding="utf-8")
        self._write_config({"png": dependency("png", deps=["zlib"]), "zlib": dependency("zlib")})

        with patch("depbuild.cli.SubprocessCommandRunner", return_value=ScriptedGitRunner()):
            code, stdout, stderr = self._main("build")

        self.assertEqual(code, 1)
        self.assertRegex(stdout, r"zlib\s+Failed")
        self.assertNotIn("png ", stdout)
        self.assertIn("build aborted at 'zlib'", stderr)

    def test_dry_run_prints_git_commands(self) -> None:
        self._write_config({"zlib": dependency("zlib")})

        code, stdout, _ = self._main("build", "--dry-run", "--build-root", str(self.root / "out"))

        self.assertEqual(code, 0)
        self.assertIn("[dry-run] clone", stdout)
        self.assertIn("https://example.com/zlib.git", stdout)
        self.assertFalse((self.root / "artifacts").exists())

    def test_collect_only_splits_commas(self) -> None:
        self.assertEqual(cli._collect_only([["a,b"], ["c"]]), ["a", "b", "c"])
        self.assertIsNone(cli._collect_only([]))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
