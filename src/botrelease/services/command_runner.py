"""Subprocess execution service for BotRelease."""

import subprocess
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from botrelease.errors import PipelineError


class CommandRunner:
    """Runs external commands with consistent error handling.

    Commands are logged verbatim, so secrets must travel through ``env`` and
    never through ``cmd``. There is no retry: a failed command fails the run.
    """

    TAIL_LINES = 40

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        self.logger.debug("Executing: %s", cmd_str)
        effective_timeout = timeout if timeout is not None else self.default_timeout

        try:
            result = self.subprocess.run(
                cmd,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
                env=env,
            )
        except FileNotFoundError as exc:
            raise PipelineError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise PipelineError(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise PipelineError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0 or not check:
            return result

        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {cmd_str}"
        if stderr:
            message = f"{message}\n{stderr}"
        raise PipelineError(message)

    def stream(
        self,
        cmd: List[str],
        on_line: Optional[Callable[[str], None]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> "StreamResult":
        """Run ``cmd`` merging stderr into stdout and feed each line to ``on_line``.

        Blocks until the process exits. The last lines are kept so callers can
        report them when the command fails.
        """
        cmd_str = " ".join(cmd)
        self.logger.debug("Streaming: %s", cmd_str)

        try:
            process = self.subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                env=env,
            )
        except FileNotFoundError as exc:
            raise PipelineError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except OSError as exc:
            raise PipelineError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        tail: Deque[str] = deque(maxlen=self.TAIL_LINES)
        if process.stdout is not None:
            for line in process.stdout:
                cleaned = line.rstrip()
                if not cleaned:
                    continue
                tail.append(cleaned)
                self.logger.debug(cleaned)
                if on_line is not None:
                    on_line(cleaned)

        returncode = process.wait()
        return StreamResult(returncode=returncode, tail=list(tail))


class StreamResult:
    __slots__ = ("returncode", "tail")

    def __init__(self, returncode: int, tail: List[str]):
        self.returncode = returncode
        self.tail = tail
