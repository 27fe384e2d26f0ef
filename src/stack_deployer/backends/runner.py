"""Local command execution for the external control-plane tools."""

from __future__ import annotations

import os
import selectors
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Union

from ..errors import CollaboratorTimeout
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Result of executing a local command."""

    command: List[str]
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class CommandRunner:
    """
    Runs collaborator CLIs (terraform, ansible-playbook, ...) as child processes.

    Output is streamed to the terminal while being captured. When `timeout`
    expires the runner stops waiting and raises CollaboratorTimeout, but the
    child is left running: it may already be mutating remote state.
    Mutating children write to files under `log_dir` rather than pipes, so
    they keep running and logging after the orchestrator exits.
    """

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        stream_output: bool = True,
        log_dir: Optional[Path] = None,
    ) -> None:
        self.env = env
        self.stream_output = stream_output
        self.log_dir = Path(log_dir) if log_dir else None

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        mutating: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """
        Execute `command` and wait for it.

        Args:
            command: argv list, no shell involved
            cwd: working directory for the child
            timeout: seconds to wait, None waits for completion
            mutating: start the child in its own session, writing to log
                files it owns, so neither a terminal interrupt nor the
                orchestrator exiting can stop it
            env: extra environment variables merged over os.environ
        """
        argv = [str(part) for part in command]
        logger.debug("$ %s (cwd=%s)", " ".join(argv), cwd or ".")

        if cwd and not Path(cwd).is_dir():
            logger.error("❌ working directory not found: %s", cwd)
            return CommandResult(
                command=argv,
                stdout="",
                stderr=f"working directory not found: {cwd} (run from the project root)",
                exit_status=1,
            )

        if mutating:
            return self._run_detached(argv, cwd, timeout, env)

        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=self._get_env(env),
            )
        except FileNotFoundError:
            return _not_found(argv)

        if os.name == "nt":
            # selectors cannot watch pipes on Windows.
            try:
                stdout, stderr = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired as exc:
                raise CollaboratorTimeout(argv, timeout or 0) from exc
            if self.stream_output:
                sys.stdout.write(stdout)
                sys.stderr.write(stderr)
            return CommandResult(argv, stdout.strip(), stderr.strip(), process.returncode)

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []
        start_time = time.monotonic()

        sel = selectors.DefaultSelector()
        sel.register(process.stdout, selectors.EVENT_READ, stdout_chunks)
        sel.register(process.stderr, selectors.EVENT_READ, stderr_chunks)
        try:
            while sel.get_map():
                if timeout is not None and time.monotonic() - start_time > timeout:
                    logger.warning("⏱️  %s still running after %gs; leaving it in place", argv[0], timeout)
                    raise CollaboratorTimeout(argv, timeout)
                for key, _ in sel.select(timeout=0.2):
                    line = key.fileobj.readline()
                    if not line:
                        sel.unregister(key.fileobj)
                        continue
                    key.data.append(line)
                    if self.stream_output:
                        target = sys.stdout if key.data is stdout_chunks else sys.stderr
                        target.write(line)
                        target.flush()
        finally:
            sel.close()

        remaining = None
        if timeout is not None:
            remaining = max(timeout - (time.monotonic() - start_time), 0.1)
        try:
            exit_status = process.wait(timeout=remaining)
        except subprocess.TimeoutExpired as exc:
            raise CollaboratorTimeout(argv, timeout or 0) from exc

        return CommandResult(
            command=argv,
            stdout="".join(stdout_chunks).strip(),
            stderr="".join(stderr_chunks).strip(),
            exit_status=exit_status,
        )

    def _run_detached(
        self,
        argv: List[str],
        cwd: Optional[Union[str, Path]],
        timeout: Optional[float],
        env: Optional[Dict[str, str]],
    ) -> CommandResult:
        """Run a mutating child against log files, tailing them to the terminal."""
        log_dir = self._get_log_dir()
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        stem = f"{Path(argv[0]).name}_{stamp}"
        out_path = log_dir / f"{stem}.out"
        err_path = log_dir / f"{stem}.err"

        with open(out_path, "w", encoding="utf-8") as out_file, open(
            err_path, "w", encoding="utf-8"
        ) as err_file:
            try:
                process = subprocess.Popen(
                    argv,
                    stdout=out_file,
                    stderr=err_file,
                    stdin=subprocess.DEVNULL,
                    cwd=str(cwd) if cwd else None,
                    env=self._get_env(env),
                    start_new_session=True,
                )
            except FileNotFoundError:
                return _not_found(argv)

        start_time = time.monotonic()
        with open(out_path, encoding="utf-8", errors="replace") as out_tail, open(
            err_path, encoding="utf-8", errors="replace"
        ) as err_tail:
            stdout_chunks: List[str] = []
            stderr_chunks: List[str] = []
            while True:
                finished = process.poll() is not None
                self._drain(out_tail, stdout_chunks, sys.stdout)
                self._drain(err_tail, stderr_chunks, sys.stderr)
                if finished:
                    break
                if timeout is not None and time.monotonic() - start_time > timeout:
                    logger.warning(
                        "⏱️  %s still running after %gs; leaving it in place (pid %d, output in %s)",
                        argv[0], timeout, process.pid, out_path,
                    )
                    raise CollaboratorTimeout(argv, timeout, log_path=out_path)
                time.sleep(0.2)

        return CommandResult(
            command=argv,
            stdout="".join(stdout_chunks).strip(),
            stderr="".join(stderr_chunks).strip(),
            exit_status=process.returncode,
        )

    def _drain(self, tail: TextIO, chunks: List[str], target: TextIO) -> None:
        text = tail.read()
        if not text:
            return
        chunks.append(text)
        if self.stream_output:
            target.write(text)
            target.flush()

    def _get_log_dir(self) -> Path:
        if self.log_dir is None:
            self.log_dir = Path(tempfile.mkdtemp(prefix="stack-deployer-"))
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return self.log_dir

    def _get_env(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        if extra:
            env.update(extra)
        return env


def _not_found(argv: List[str]) -> CommandResult:
    logger.error("❌ %s: command not found", argv[0])
    return CommandResult(
        command=argv,
        stdout="",
        stderr=f"{argv[0]}: command not found",
        exit_status=127,
    )
