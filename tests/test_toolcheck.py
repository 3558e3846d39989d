from __future__ import annotations

import unittest
from unittest import mock

from depbuild.command_runner import CommandResult
from depbuild.errors import AggregateToolError
from depbuild.toolcheck import (
    ToolRequirement,
    check_tool,
    compare_versions,
    ensure_tooling,
    parse_version,
)


def _runner(stdout: str = "", returncode: int = 0) -> mock.Mock:
    runner = mock.Mock()
    runner.run.return_value = CommandResult(command=["tool"], returncode=returncode, stdout=stdout, stderr="")
    return runner


class VersionHelperTests(unittest.TestCase):
    def test_parse_version_prefers_dotted_tokens(self) -> None:
        self.assertEqual(parse_version("cmake version 3.28.3\n\nCMake suite maintained by Kitware"), "3.28.3")
        self.assertEqual(parse_version("git version 2.43.0.windows.1"), "2.43.0")
        self.assertEqual(parse_version("Python 3 build 12 v3.12.1"), "3.12.1")
        self.assertEqual(parse_version("release 17"), "17")
        self.assertIsNone(parse_version("no digits here"))

    def test_parse_version_with_custom_pattern(self) -> None:
        self.assertEqual(parse_version("rustc 1.79.0 (129f3b996 2024-06-10)", pattern=r"rustc (\S+)"), "1.79.0")
        self.assertIsNone(parse_version("cargo", pattern=r"rustc (\S+)"))

    def test_compare_versions_pads_missing_segments(self) -> None:
        self.assertEqual(compare_versions("1.12", "1.12.0"), 0)
        self.assertEqual(compare_versions("v1.12.1", "1.12.0"), 1)
        self.assertEqual(compare_versions("1.9.9", "1.10"), -1)
        self.assertEqual(compare_versions("3.10.0rc1", "3.10"), 0)


class CheckToolTests(unittest.TestCase):
    def test_missing_executable(self) -> None:
        with mock.patch("depbuild.toolcheck.shutil.which", return_value=None):
            report = check_tool(ToolRequirement(name="ninja", hint="install ninja"), _runner())

        self.assertFalse(report.ok)
        self.assertIn("was not found on PATH", report.reason)
        self.assertIn("hint: install ninja", report.describe())

    def test_version_below_minimum(self) -> None:
        requirement = ToolRequirement(name="cmake", minimum_version="3.29")

        with mock.patch("depbuild.toolcheck.shutil.which", return_value="/usr/bin/cmake"):
            report = check_tool(requirement, _runner("cmake version 3.28.3"))

        self.assertFalse(report.ok)
        self.assertEqual(report.version, "3.28.3")
        self.assertIn("older than required minimum 3.29", report.reason)

    def test_satisfied_requirement(self) -> None:
        runner = _runner("ninja 1.12.1")
        requirement = ToolRequirement(name="ninja", minimum_version="1.12.0")

        with mock.patch("depbuild.toolcheck.shutil.which", return_value="/usr/bin/ninja"):
            report = check_tool(requirement, runner)

        self.assertTrue(report.ok)
        self.assertEqual((report.version, report.path), ("1.12.1", "/usr/bin/ninja"))
        runner.run.assert_called_once_with(["/usr/bin/ninja", "--version"], env=None, check=False)

    def test_failing_version_command(self) -> None:
        with mock.patch("depbuild.toolcheck.shutil.which", return_value="/usr/bin/cargo"):
            report = check_tool(ToolRequirement(name="cargo"), _runner("boom", returncode=2))

        self.assertFalse(report.ok)
        self.assertIn("exited with status 2", report.reason)

    def test_unparseable_version_with_minimum(self) -> None:
        with mock.patch("depbuild.toolcheck.shutil.which", return_value="/usr/bin/tool"):
            report = check_tool(ToolRequirement(name="tool", minimum_version="1.0"), _runner("unknown"))

        self.assertFalse(report.ok)
        self.assertIn("expected format", report.reason)


class EnsureToolingTests(unittest.TestCase):
    def test_raises_with_every_required_failure(self) -> None:
        requirements = [
            ToolRequirement(name="git"),
            ToolRequirement(name="ninja"),
            ToolRequirement(name="ccache", required=False),
            ToolRequirement(name="msvc", platforms=["win32"]),
        ]
        available = {"git": "/usr/bin/git"}

        with mock.patch("depbuild.toolcheck.shutil.which", side_effect=lambda program, path=None: available.get(program)):
            with self.assertRaises(AggregateToolError) as ctx:
                ensure_tooling(requirements, _runner("git version 2.43.0"), platform="linux")

        error = ctx.exception
        self.assertEqual([report.name for report in error.failures], ["ninja"])
        self.assertEqual([report.name for report in error.reports], ["git", "ninja", "ccache"])
        self.assertIn("ninja", str(error))

    def test_returns_reports_when_satisfied(self) -> None:
        with mock.patch("depbuild.toolcheck.shutil.which", return_value="/usr/bin/git"):
            reports = ensure_tooling([ToolRequirement(name="git")], _runner("git version 2.43.0"), platform="linux")

        self.assertEqual(len(reports), 1)
        self.assertTrue(reports[0].ok)

    def test_requirement_from_mapping(self) -> None:
        requirement = ToolRequirement.from_mapping(
            {"name": "Python", "program": "python3", "minimumVersion": 3.1, "platforms": ["linux"], "versionArgs": "-V"}
        )

        self.assertEqual(requirement.program, "python3")
        self.assertEqual(requirement.minimum_version, "3.1")
        self.assertEqual(tuple(requirement.version_args), ("-V",))
        self.assertTrue(requirement.applies_to("linux"))
        self.assertFalse(requirement.applies_to("darwin"))

    def test_requirement_needs_a_name(self) -> None:
        with self.assertRaises(ValueError):
            ToolRequirement.from_mapping({"required": True})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
