import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import pytest

from stack_deployer.backends.runner import CommandRunner
from stack_deployer.errors import CollaboratorTimeout

SRC_DIR = Path(__file__).resolve().parent.parent / "src"


class TestCommandRunner:
    def test_captures_output_and_status(self):
        runner = CommandRunner(stream_output=False)
        result = runner.run(
            [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"]
        )
        assert result.stdout == "out"
        assert result.stderr == "err"
        assert result.exit_status == 3
        assert not result.ok

    def test_extra_env_is_visible_to_child(self):
        runner = CommandRunner(stream_output=False)
        result = runner.run(
            [sys.executable, "-c", "import os; print(os.environ['ANSIBLE_NOCOLOR'])"],
            env={"ANSIBLE_NOCOLOR": "1"},
        )
        assert result.stdout == "1"

    def test_missing_binary_is_exit_127(self):
        result = CommandRunner(stream_output=False).run(["definitely-not-a-real-tool-xyz"])
        assert result.exit_status == 127
        assert "not found" in result.stderr

    def test_missing_working_directory_is_not_command_not_found(self, tmp_path):
        result = CommandRunner(stream_output=False).run(
            [sys.executable, "-c", "pass"], cwd=tmp_path / "terraform"
        )
        assert result.exit_status != 127
        assert not result.ok
        assert "working directory not found" in result.stderr
        assert "command not found" not in result.stderr

    def test_mutating_run_captures_output_through_log_files(self, tmp_path):
        runner = CommandRunner(stream_output=False, log_dir=tmp_path)
        result = runner.run(
            [sys.executable, "-c", "import sys; print('applied'); print('warn', file=sys.stderr); sys.exit(2)"],
            mutating=True,
        )
        assert result.stdout == "applied"
        assert result.stderr == "warn"
        assert result.exit_status == 2
        assert len(list(tmp_path.glob("*.out"))) == 1

    def test_timeout_stops_waiting(self, tmp_path):
        runner = CommandRunner(stream_output=False, log_dir=tmp_path)
        started = time.monotonic()
        with pytest.raises(CollaboratorTimeout) as excinfo:
            runner.run([sys.executable, "-c", "import time; time.sleep(3)"], timeout=0.5, mutating=True)
        assert time.monotonic() - started < 2.5
        assert "NOT stopped" in excinfo.value.remediation
        assert "0.5s" in excinfo.value.cause
        assert str(tmp_path) in excinfo.value.remediation

    @pytest.mark.skipif(os.name == "nt", reason="relies on POSIX sessions")
    def test_timed_out_child_outlives_the_orchestrator(self, tmp_path):
        marker = tmp_path / "finished"
        child = textwrap.dedent(
            """
            import sys, time
            for _ in range(15):
                print("still applying", flush=True)
                time.sleep(0.1)
            open(sys.argv[1], "w").close()
            """
        )
        parent = tmp_path / "parent.py"
        parent.write_text(
            textwrap.dedent(
                """
                import sys
                from stack_deployer.backends.runner import CommandRunner
                from stack_deployer.errors import CollaboratorTimeout

                runner = CommandRunner(stream_output=True, log_dir=sys.argv[3])
                try:
                    runner.run([sys.executable, "-c", sys.argv[1], sys.argv[2]], timeout=0.3, mutating=True)
                except CollaboratorTimeout:
                    sys.exit(3)
                """
            )
        )
        env = dict(os.environ, PYTHONPATH=str(SRC_DIR))
        completed = subprocess.run(
            [sys.executable, str(parent), child, str(marker), str(tmp_path / "logs")],
            env=env,
            capture_output=True,
            timeout=30,
        )
        assert completed.returncode == 3

        deadline = time.monotonic() + 10
        while not marker.exists() and time.monotonic() < deadline:
            time.sleep(0.1)
        assert marker.exists()
        logged = next((tmp_path / "logs").glob("*.out")).read_text()
        assert logged.count("still applying") == 15
