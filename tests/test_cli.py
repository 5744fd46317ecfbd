from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock
import io
import json
import os
import stat
import sys
import tempfile
import textwrap
import unittest

from tiebuild import cli
from tiebuild.config_loader import SIDE_FILENAME, read_settings
from tiebuild.script import SCRIPT_FILENAME


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name).resolve()
        self.home = root / "home"
        self.home.mkdir()
        self.config_dir = root / "config"
        self.config_dir.mkdir()
        self.project = root / "project"
        self.project.mkdir()

        environ = {key: value for key, value in os.environ.items() if key not in {"TIECC_DIR", "TIEBUILD_CONFIG_DIR"}}
        patches = [
            mock.patch.dict(os.environ, environ, clear=True),
            mock.patch.object(Path, "home", return_value=self.home),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def run_cli(self, *argv: str) -> tuple[int, str]:
        stdout = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(io.StringIO()):
            code = cli.main(["-C", str(self.config_dir), *argv])
        return code, stdout.getvalue()

    def add_build_tool(self) -> Path:
        tool = self.project / "tmake"
        tool.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        tool.chmod(tool.stat().st_mode | stat.S_IXUSR)
        (self.project / ".Tiecode").mkdir()
        return tool


class ToolchainCommandTests(CliTestCase):
    def test_compile_dry_run_prints_command(self) -> None:
        self.add_build_tool()

        code, output = self.run_cli("compile", "--project-dir", str(self.project), "--dry-run", "-o", "dist/out", "-X", "fast")

        self.assertEqual(code, 0)
        self.assertIn("[dry-run]", output)
        self.assertIn(f"(cwd={self.project})", output)
        self.assertIn("compile --output dist/out --tiecc-dir .Tiecode fast", output)

    def test_create_dry_run_passes_name(self) -> None:
        self.add_build_tool()

        code, output = self.run_cli("create", "demo", "--project-dir", str(self.project), "-n")

        self.assertEqual(code, 0)
        self.assertIn("create demo", output)

    def test_missing_build_tool_exits_with_configuration_error(self) -> None:
        code, output = self.run_cli("build", "--project-dir", str(self.project), "--dry-run")

        self.assertEqual(code, 2)
        self.assertIn("Error: Build tool not found", output)
        self.assertNotIn("[dry-run]", output)

    def test_save_defaults_is_skipped_in_dry_run(self) -> None:
        self.add_build_tool()

        code, output = self.run_cli("compile", "--project-dir", str(self.project), "-n", "--optimize", "3", "--save-defaults")

        self.assertEqual(code, 0)
        self.assertIn("would save build defaults", output)
        self.assertFalse((self.project / SCRIPT_FILENAME).exists())

    @unittest.skipIf(sys.platform == "win32", "uses a POSIX shell script as the build tool")
    def test_save_defaults_writes_build_script(self) -> None:
        self.add_build_tool()

        code, _ = self.run_cli(
            "compile",
            "--project-dir",
            str(self.project),
            "-o",
            "out",
            "--optimize",
            "3",
            "--release",
            "--save-defaults",
        )

        self.assertEqual(code, 0)
        settings = read_settings(self.project)
        assert settings is not None and settings.compiler is not None and settings.basic_info is not None
        self.assertEqual(settings.basic_info.output_dir, "out")
        self.assertEqual(settings.compiler.optimize_level, 3)
        self.assertEqual(settings.compiler.log_level, "info")
        self.assertTrue(settings.compiler.release_mode)

    @unittest.skipIf(sys.platform == "win32", "uses a POSIX shell script as the build tool")
    def test_failing_build_tool_exits_with_one(self) -> None:
        tool = self.add_build_tool()
        tool.write_text("#!/bin/sh\necho 'error: failed' >&2\nexit 4\n", encoding="utf-8")

        code, output = self.run_cli("clean", "--project-dir", str(self.project))

        self.assertEqual(code, 1)
        self.assertIn("Error: Toolchain exited with code 4", output)

    def test_invalid_global_configuration(self) -> None:
        (self.config_dir / "config.json").write_text('{"colour": "always"}', encoding="utf-8")

        code, output = self.run_cli("version", "--project-dir", str(self.project), "-n")

        self.assertEqual(code, 2)
        self.assertIn("unknown keys: colour", output)

    def test_global_configuration_from_yaml(self) -> None:
        compiler_dir = self.home / "sdk"
        compiler_dir.mkdir()
        (self.config_dir / "config.yaml").write_text(f"toolchain_dir: '{compiler_dir.as_posix()}'\n", encoding="utf-8")
        (self.project / "tmake").write_text("", encoding="utf-8")

        code, output = self.run_cli("compile", "--project-dir", str(self.project), "-n")

        self.assertEqual(code, 0)
        self.assertIn(f"--tiecc-dir {os.path.normpath(str(compiler_dir))}", output)


class ConfigCommandTests(CliTestCase):
    def test_show_without_configuration(self) -> None:
        code, output = self.run_cli("config", "show", "--project-dir", str(self.project))

        self.assertEqual(code, 0)
        self.assertIn("null", output)
        self.assertIn("Resolved build tool: <not found>", output)

    def test_show_reports_script_and_side_file(self) -> None:
        (self.project / SCRIPT_FILENAME).write_text(
            textwrap.dedent(
                """
                设置变量("项目名称", "demo")
                设置优化级别(2)
                """
            ),
            encoding="utf-8",
        )
        (self.project / "bin").mkdir()
        (self.project / "bin" / "tmake").write_text("", encoding="utf-8")
        (self.project / SIDE_FILENAME).write_text(json.dumps({"tmakePath": "bin/tmake"}), encoding="utf-8")

        code, output = self.run_cli("config", "show", "--project-dir", str(self.project))

        self.assertEqual(code, 0)
        self.assertIn('"name": "demo"', output)
        self.assertIn('"optimize_level": 2', output)
        self.assertIn(f"Resolved build tool: {self.project / 'bin' / 'tmake'}", output)

    def test_validate_without_configuration(self) -> None:
        code, output = self.run_cli("config", "validate", "--project-dir", str(self.project))

        self.assertEqual(code, 2)
        self.assertIn("No build configuration found", output)

    def test_validate_reports_missing_paths(self) -> None:
        (self.project / SIDE_FILENAME).write_text(json.dumps({"compilerPath": "missing"}), encoding="utf-8")

        code, output = self.run_cli("config", "validate", "--project-dir", str(self.project))

        self.assertEqual(code, 2)
        self.assertIn("compilerPath: Directory does not exist", output)

    def test_validate_accepts_existing_paths(self) -> None:
        (self.project / "sdk").mkdir()
        (self.project / SIDE_FILENAME).write_text(json.dumps({"compilerPath": "sdk"}), encoding="utf-8")

        code, output = self.run_cli("config", "validate", "--project-dir", str(self.project))

        self.assertEqual(code, 0)
        self.assertIn("Configuration OK", output)

    def test_set_toolchain_merges_side_file(self) -> None:
        (self.project / "sdk").mkdir()
        (self.project / SIDE_FILENAME).write_text(
            json.dumps({"tmakePath": "tools/tmake", "theme": "dark"}),
            encoding="utf-8",
        )

        code, output = self.run_cli("config", "set-toolchain", "--project-dir", str(self.project), "--compiler-path", "sdk")

        self.assertEqual(code, 0)
        self.assertIn("Toolchain paths saved", output)
        data = json.loads((self.project / SIDE_FILENAME).read_text(encoding="utf-8"))
        self.assertEqual(data, {"tmakePath": "tools/tmake", "theme": "dark", "compilerPath": "sdk"})
        self.assertFalse((self.project / SCRIPT_FILENAME).exists())

    def test_set_toolchain_rejects_missing_directory(self) -> None:
        code, output = self.run_cli("config", "set-toolchain", "--project-dir", str(self.project), "--compiler-path", "nope")

        self.assertEqual(code, 2)
        self.assertIn("compilerPath: Directory does not exist", output)
        self.assertFalse((self.project / SIDE_FILENAME).exists())

    def test_set_toolchain_requires_a_path(self) -> None:
        code, output = self.run_cli("config", "set-toolchain", "--project-dir", str(self.project))

        self.assertEqual(code, 2)
        self.assertIn("Provide at least one", output)

    def test_set_toolchain_dry_run_does_not_write(self) -> None:
        (self.project / "sdk").mkdir()

        code, output = self.run_cli("config", "set-toolchain", "--project-dir", str(self.project), "--compiler-path", "sdk", "-n")

        self.assertEqual(code, 0)
        self.assertIn("[dry-run] would write", output)
        self.assertFalse((self.project / SIDE_FILENAME).exists())


if __name__ == "__main__":
    unittest.main()
