from __future__ import annotations

from pathlib import Path
import io
import os
import sys
import tempfile
import textwrap
import threading
import unittest

from core.command_runner import CommandLine, CommandRunner, ProcessHandle
from core.console import RecordingConsole
from tiebuild.environment import library_search_variable
from tiebuild.errors import ErrorKind, SupervisorBusyError
from tiebuild.output import Stage
from tiebuild.supervisor import ProcessSupervisor, ResolvedInvocation, RunState, crash_hint


class _FakeProcess(ProcessHandle):
    def __init__(self, exit_code: int, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self.pid = None
        self._exit_code = exit_code

    def wait(self, timeout: float | None = None) -> int:
        return self._exit_code

    def poll(self) -> int | None:
        return self._exit_code

    def terminate(self) -> None:
        return None


class _FakeRunner(CommandRunner):
    def __init__(self, process: ProcessHandle | None = None, error: Exception | None = None) -> None:
        self.process = process
        self.error = error
        self.calls: list[tuple[CommandLine, Path | None, dict]] = []

    def spawn(self, command, *, cwd=None, env=None):
        self.calls.append((command, cwd, dict(env or {})))
        if self.error is not None:
            raise self.error
        assert self.process is not None
        return self.process


class RealProcessTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _script(self, body: str) -> ResolvedInvocation:
        script = self.root / "tool.py"
        script.write_text(textwrap.dedent(body), encoding="utf-8")
        return ResolvedInvocation.create(Path(sys.executable), [str(script)], self.root)

    def test_missing_executable_is_a_spawn_failure(self) -> None:
        supervisor = ProcessSupervisor()
        received = []
        invocation = ResolvedInvocation.create(self.root / "no-such-tmake", ["compile"], self.root)

        result = supervisor.run(invocation, on_line=received.append)

        self.assertFalse(result.succeeded)
        self.assertIsNone(result.exit_code)
        self.assertIs(result.error_kind, ErrorKind.SPAWN_FAILED)
        self.assertIs(result.state, RunState.ERRORED)
        self.assertIn("no-such-tmake", result.message or "")
        self.assertEqual(result.lines, [])
        self.assertEqual(received, [])
        self.assertIs(supervisor.state, RunState.IDLE)

    def test_unterminated_last_line_is_flushed_at_exit(self) -> None:
        invocation = self._script(
            """
            import sys
            sys.stdout.write("Compiling a.t\\nCompiling b.t")
            sys.stdout.flush()
            """
        )
        received = []

        result = ProcessSupervisor().run(invocation, on_line=received.append)

        self.assertTrue(result.succeeded)
        self.assertEqual(result.exit_code, 0)
        self.assertIs(result.state, RunState.SUCCEEDED)
        self.assertIsNone(result.error_kind)
        self.assertEqual([line.raw for line in result.lines], ["Compiling a.t", "Compiling b.t"])
        self.assertEqual([line.raw for line in received], ["Compiling a.t", "Compiling b.t"])
        self.assertEqual(result.stdout, "Compiling a.t\nCompiling b.t")

    def test_non_zero_exit_is_a_toolchain_failure(self) -> None:
        invocation = self._script(
            """
            import sys
            sys.stderr.write("error: broken\\n")
            sys.exit(3)
            """
        )

        result = ProcessSupervisor().run(invocation)

        self.assertFalse(result.succeeded)
        self.assertEqual(result.exit_code, 3)
        self.assertIs(result.state, RunState.FAILED)
        self.assertIs(result.error_kind, ErrorKind.TOOLCHAIN_FAILURE)
        self.assertEqual(result.stderr, "error: broken\n")
        self.assertEqual(result.lines[0].stream, "stderr")
        self.assertIs(result.lines[0].stage, Stage.NATIVE_BACKEND)

    def test_captured_text_keeps_line_terminators(self) -> None:
        invocation = self._script(
            """
            import sys
            sys.stdout.buffer.write(b"first\\r\\nsecond\\n\\nlast\\n")
            """
        )

        result = ProcessSupervisor().run(invocation)

        self.assertEqual(result.stdout, "first\r\nsecond\n\nlast\n")
        self.assertEqual(result.stderr, "")

    @unittest.skipIf(sys.platform == "win32", "execute permission bits are POSIX only")
    def test_non_executable_tool_is_a_spawn_failure(self) -> None:
        tool = self.root / "tmake"
        tool.write_text("#!/bin/sh\necho never\n", encoding="utf-8")
        tool.chmod(0o644)
        received = []

        result = ProcessSupervisor().run(ResolvedInvocation.create(tool, ["compile"], self.root), on_line=received.append)

        self.assertFalse(result.succeeded)
        self.assertIsNone(result.exit_code)
        self.assertIs(result.state, RunState.ERRORED)
        self.assertIs(result.error_kind, ErrorKind.SPAWN_FAILED)
        self.assertIn("Permission denied", result.message or "")
        self.assertEqual(result.lines, [])
        self.assertEqual(received, [])

    def test_shell_metacharacters_are_not_interpreted(self) -> None:
        marker = self.root / "marker"
        script = self.root / "tool.py"
        script.write_text("import sys\nprint(sys.argv[1])\n", encoding="utf-8")
        name = f"demo;touch {marker}"

        result = ProcessSupervisor().run(ResolvedInvocation.create(Path(sys.executable), [str(script), name], self.root))

        self.assertTrue(result.succeeded)
        self.assertEqual([line.raw for line in result.lines], [name])
        self.assertFalse(marker.exists())

    def test_legacy_encoded_output_is_decoded(self) -> None:
        invocation = self._script(
            """
            import sys
            sys.stdout.buffer.write("编译成功\\n".encode("gbk"))
            """
        )

        result = ProcessSupervisor().run(invocation)

        self.assertEqual([line.raw for line in result.lines], ["编译成功"])

    def test_state_transitions(self) -> None:
        states = []
        supervisor = ProcessSupervisor(on_state=states.append)
        supervisor.run(self._script("print('hi')\n"))
        self.assertEqual(states, [RunState.STARTING, RunState.RUNNING, RunState.SUCCEEDED, RunState.IDLE])

    @unittest.skipIf(sys.platform == "win32", "process-group termination is POSIX only")
    def test_stop_cancels_active_run_and_rejects_second_start(self) -> None:
        invocation = self._script(
            """
            import time
            print("started", flush=True)
            time.sleep(30)
            """
        )
        started = threading.Event()
        supervisor = ProcessSupervisor()

        handle = supervisor.start(invocation, on_line=lambda line: started.set())
        self.assertTrue(started.wait(10))
        self.assertIs(supervisor.state, RunState.RUNNING)
        with self.assertRaises(SupervisorBusyError):
            supervisor.start(invocation)

        self.assertTrue(supervisor.stop())
        result = handle.wait(10)

        assert result is not None
        self.assertFalse(result.succeeded)
        self.assertIs(result.state, RunState.FAILED)
        self.assertIs(result.error_kind, ErrorKind.CANCELLED)
        self.assertIs(supervisor.state, RunState.IDLE)
        self.assertFalse(supervisor.stop())


class FakeRunnerTests(unittest.TestCase):
    def test_crash_status_maps_to_native_crash(self) -> None:
        for code in (3221225781, -1073741571, 0xC0000005, -1073741819):
            with self.subTest(code=code):
                runner = _FakeRunner(_FakeProcess(code))
                console = RecordingConsole()
                supervisor = ProcessSupervisor(runner, console=console, verify_executable=False)

                result = supervisor.run(ResolvedInvocation.create(Path("tiecc.exe"), [], Path(".")))

                self.assertIs(result.error_kind, ErrorKind.NATIVE_CRASH)
                self.assertIs(result.state, RunState.FAILED)
                self.assertIn("crashed", result.message or "")
                self.assertEqual(len(console.messages("error")), 1)

    def test_crash_hint_ignores_ordinary_codes(self) -> None:
        self.assertIsNone(crash_hint(1))
        self.assertIsNone(crash_hint(-9))
        self.assertIsNotNone(crash_hint(0xC00000FD))

    def test_os_error_from_spawn_is_a_spawn_failure(self) -> None:
        runner = _FakeRunner(error=PermissionError("permission denied"))
        supervisor = ProcessSupervisor(runner, verify_executable=False)

        result = supervisor.run(ResolvedInvocation.create(Path("tmake"), ["build"], Path(".")))

        self.assertIs(result.error_kind, ErrorKind.SPAWN_FAILED)
        self.assertIsNone(result.exit_code)
        self.assertEqual(result.message, "permission denied")
        self.assertIs(supervisor.state, RunState.IDLE)

    def test_value_error_from_spawn_is_a_spawn_failure(self) -> None:
        states = []
        runner = _FakeRunner(error=ValueError("embedded null byte"))
        supervisor = ProcessSupervisor(runner, verify_executable=False, on_state=states.append)

        result = supervisor.run(ResolvedInvocation.create(Path("tmake"), ["create", "a\x00b"], Path(".")))

        self.assertFalse(result.succeeded)
        self.assertIs(result.state, RunState.ERRORED)
        self.assertIs(result.error_kind, ErrorKind.SPAWN_FAILED)
        self.assertIsNone(result.exit_code)
        self.assertEqual(result.message, "embedded null byte")
        self.assertIs(supervisor.state, RunState.IDLE)
        self.assertEqual(states, [RunState.STARTING, RunState.ERRORED, RunState.IDLE])

    def test_environment_prepends_executable_directory(self) -> None:
        runner = _FakeRunner(_FakeProcess(0))
        supervisor = ProcessSupervisor(runner, verify_executable=False)
        executable = Path(tempfile.gettempdir()) / "toolchain" / "tmake"

        supervisor.run(ResolvedInvocation.create(executable, ["compile"], Path("."), env={"EXTRA": "1"}))

        command, cwd, env = runner.calls[0]
        self.assertEqual(command.tokens(), [str(executable), "compile"])
        self.assertEqual(cwd, Path("."))
        self.assertEqual(env["EXTRA"], "1")
        variable = library_search_variable()
        self.assertEqual(env[variable].split(os.pathsep)[0], str(executable.parent))

    def test_callback_errors_do_not_stop_collection(self) -> None:
        runner = _FakeRunner(_FakeProcess(0, stdout=b"one\ntwo\n"))
        console = RecordingConsole()
        supervisor = ProcessSupervisor(runner, console=console, verify_executable=False)

        def explode(line) -> None:
            raise RuntimeError("display closed")

        result = supervisor.run(ResolvedInvocation.create(Path("tmake"), [], Path(".")), on_line=explode)

        self.assertTrue(result.succeeded)
        self.assertEqual(len(result.lines), 2)
        self.assertEqual(len(console.messages("error")), 2)


if __name__ == "__main__":
    unittest.main()
