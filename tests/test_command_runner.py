from __future__ import annotations

from pathlib import Path
import sys
import tempfile
import textwrap
import unittest

from core.command_runner import (
    CommandLine,
    RecordingCommandRunner,
    SubprocessCommandRunner,
    quote_token,
)


class CommandLineTests(unittest.TestCase):
    def test_quotes_tokens_with_spaces(self) -> None:
        self.assertEqual(quote_token("C:/Program Files/tmake.exe"), '"C:/Program Files/tmake.exe"')
        self.assertEqual(quote_token("tmake"), "tmake")
        self.assertEqual(quote_token('"already quoted"'), '"already quoted"')

    def test_render_quotes_every_token_with_spaces(self) -> None:
        command = CommandLine("/opt/tie code/tmake", ["compile", "--output", "my dist"])
        self.assertEqual(command.render(), '"/opt/tie code/tmake" compile --output "my dist"')

    def test_tokens_are_passed_unquoted(self) -> None:
        command = CommandLine("/opt/tie code/tmake", ["create", "demo; rm -rf /"])
        self.assertEqual(command.tokens(), ["/opt/tie code/tmake", "create", "demo; rm -rf /"])


class RecordingCommandRunnerTests(unittest.TestCase):
    def test_records_commands_without_running_them(self) -> None:
        runner = RecordingCommandRunner()
        process = runner.spawn(CommandLine("tmake", ["clean"]), cwd=Path("/work"), env={"A": "1"})

        self.assertEqual(process.wait(), 0)
        self.assertEqual(process.stdout.read(), b"")
        self.assertEqual(len(runner.commands), 1)
        record = runner.commands[0]
        self.assertEqual(record.command, ["tmake", "clean"])
        self.assertEqual(record.cwd, "/work")
        self.assertEqual(record.env, {"A": "1"})

    def test_iter_formatted_uses_workspace_when_cwd_missing(self) -> None:
        runner = RecordingCommandRunner()
        runner.spawn(CommandLine("tmake", ["version"]))
        lines = list(runner.iter_formatted(workspace=Path("/proj")))
        self.assertEqual(lines, ["[dry-run] (cwd=/proj) tmake version"])


class SubprocessCommandRunnerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_spawn_captures_both_streams(self) -> None:
        script = self.root / "emit.py"
        script.write_text(
            textwrap.dedent(
                """
                import os
                import sys
                sys.stdout.write("out:" + os.environ.get("TIEBUILD_TEST", "") + "\\n")
                sys.stderr.write("err\\n")
                """
            )
        )
        runner = SubprocessCommandRunner()
        process = runner.spawn(
            CommandLine(sys.executable, [str(script)]),
            cwd=self.root,
            env={"TIEBUILD_TEST": "yes"},
        )
        stdout = process.stdout.read()
        stderr = process.stderr.read()
        self.assertEqual(process.wait(), 0)
        self.assertEqual(stdout.strip(), b"out:yes")
        self.assertEqual(stderr.strip(), b"err")

    def test_shell_metacharacters_reach_the_child_as_one_argument(self) -> None:
        script = self.root / "argv.py"
        script.write_text("import sys\nprint(repr(sys.argv[1:]))\n")
        marker = self.root / "marker"
        runner = SubprocessCommandRunner()

        process = runner.spawn(
            CommandLine(sys.executable, [str(script), f"demo; touch {marker}", "$(echo x) & echo y"]),
            cwd=self.root,
        )
        stdout = process.stdout.read()
        process.stderr.read()

        self.assertEqual(process.wait(), 0)
        self.assertEqual(stdout.decode().strip(), repr([f"demo; touch {marker}", "$(echo x) & echo y"]))
        self.assertFalse(marker.exists())


if __name__ == "__main__":
    unittest.main()
