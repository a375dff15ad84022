#
# Copyright (C) 2022 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import os
import signal
import tempfile
import threading
from dataclasses import dataclass, field
from subprocess import Popen, TimeoutExpired
from typing import IO, Dict, List, Optional

from gpprof.exceptions import EngineCommandError, EngineStartFailure, EngineStopFailure
from gpprof.log import get_logger_adapter
from gpprof.utils import start_process
from gpprof.utils.fs import free_disk_space, is_executable_file

logger = get_logger_adapter(__name__)

EVENT_CPU = "cpu"
EVENT_WALL = "wall"
FORMAT_COLLAPSED = "collapsed"


@dataclass
class EngineCommand:
    action: str
    options: Dict[str, str] = field(default_factory=dict)
    flags: List[str] = field(default_factory=list)


def parse_command(command: str) -> EngineCommand:
    """
    Parses a command in async-profiler's syntax: an action followed by comma-separated "key=value" options
    and bare flags, e.g "start,event=cpu,interval=10000000,file=/tmp/out,collapsed".
    """
    action, *params = command.split(",")
    parsed = EngineCommand(action.strip())
    for param in params:
        key, sep, value = param.partition("=")
        if sep:
            parsed.options[key] = value
        elif param:
            parsed.flags.append(param)
    return parsed


class SamplingEngine:
    """
    A process-wide sampling engine, controlled by textual commands. Implementations write the trace to the
    "file" named in the start command, as a side effect; execute() returns the engine's textual reply.
    """

    def execute(self, command: str) -> str:
        raise NotImplementedError


class PySpyEngine(SamplingEngine):
    """
    Samples the current process with a py-spy executable, running as a child process for the duration
    of the session.
    """

    EVENT_ARGS = {
        EVENT_CPU: [],
        EVENT_WALL: ["--idle"],
    }
    # our format tags -> py-spy's --format values
    OUTPUT_FORMATS = {FORMAT_COLLAPSED: "raw"}
    MIN_FREE_DISK = 250 * 1024

    # py-spy fails fast if it can't attach (permissions, unsupported interpreter). if it's still alive
    # after this grace period, we consider it started. The grace period counts toward the session duration.
    _START_GRACE_S = 0.2
    _STOP_TIMEOUT_S = 10

    def __init__(self, path: str, target_pid: Optional[int] = None):
        self._path = path
        self._target_pid = target_pid if target_pid is not None else os.getpid()
        self._process: Optional[Popen] = None
        self._stderr: Optional[IO[bytes]] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def execute(self, command: str) -> str:
        parsed = parse_command(command)
        with self._lock:
            if parsed.action == "start":
                return self._start(command, parsed)
            elif parsed.action == "stop":
                return self._stop(command)
            elif parsed.action == "status":
                return "Profiler is running\n" if self._process is not None else "Profiler is not active\n"
            else:
                raise EngineCommandError(command, f"Unknown action {parsed.action!r}")

    def _make_command(self, event: str, rate: int, output_format: str, output_path: str) -> List[str]:
        return [
            self._path,
            "record",
            "--pid",
            str(self._target_pid),
            "--rate",
            str(rate),
            "--format",
            self.OUTPUT_FORMATS[output_format],
            "--output",
            output_path,
            "--nonblocking",
        ] + self.EVENT_ARGS[event]

    def _start(self, command: str, parsed: EngineCommand) -> str:
        if self._process is not None:
            raise EngineStartFailure(command, "Profiler already started")

        event = parsed.options.get("event", EVENT_CPU)
        if event not in self.EVENT_ARGS:
            raise EngineStartFailure(command, f"Unsupported event {event!r}")

        try:
            interval = int(parsed.options.get("interval", ""))
        except ValueError:
            raise EngineStartFailure(command, "interval is missing or not an integer") from None
        if interval <= 0:
            raise EngineStartFailure(command, f"interval must be positive, got {interval}")

        output_path = parsed.options.get("file")
        if not output_path:
            raise EngineStartFailure(command, "Output file is not specified")

        output_formats = [flag for flag in parsed.flags if flag in self.OUTPUT_FORMATS]
        if len(output_formats) != 1:
            raise EngineStartFailure(command, f"Expected exactly one output format of {list(self.OUTPUT_FORMATS)}")

        # the path may come from the fallback location, which isn't checked when it's resolved.
        if not is_executable_file(self._path):
            raise EngineStartFailure(command, f"Engine executable {self._path!r} is missing or not executable")

        free_disk = free_disk_space(os.path.dirname(output_path))
        if free_disk < self.MIN_FREE_DISK:
            raise EngineStartFailure(command, f"Not enough free disk space: {free_disk} bytes (path: {output_path})")

        # interval is in nanoseconds, py-spy takes a rate in Hz.
        rate = max(1, round(1_000_000_000 / interval))
        cmd = self._make_command(event, rate, output_formats[0], output_path)
        # a file rather than a pipe, nobody reads stderr while sampling and a full pipe would block py-spy.
        stderr = tempfile.TemporaryFile()
        try:
            process = start_process(cmd, stdout=stderr, stderr=stderr)
        except OSError as e:
            stderr.close()
            raise EngineStartFailure(command, f"Failed to execute the engine: {e}") from e

        try:
            process.wait(timeout=self._START_GRACE_S)
        except TimeoutExpired:
            self._process = process
            self._stderr = stderr
            logger.debug("Engine started", pid=process.pid, rate=rate, event=event)
            return ""

        output = self._read_and_close(stderr)
        raise EngineStartFailure(command, "Engine exited during startup", process.returncode, cmd, output)

    def _stop(self, command: str) -> str:
        process, stderr = self._process, self._stderr
        if process is None or stderr is None:
            raise EngineStopFailure(command, "Profiler is not active")
        self._process = self._stderr = None

        # SIGINT makes py-spy stop sampling and write out what it has collected so far.
        if process.poll() is None:
            process.send_signal(signal.SIGINT)
        try:
            process.wait(timeout=self._STOP_TIMEOUT_S)
        except TimeoutExpired:
            process.kill()
            process.wait()
            output = self._read_and_close(stderr)
            raise EngineStopFailure(
                command,
                f"Engine did not stop within {self._STOP_TIMEOUT_S} seconds",
                process.returncode,
                process.args,
                output,
            ) from None

        output = self._read_and_close(stderr)
        if process.returncode not in (0, -signal.SIGINT):
            raise EngineStopFailure(command, "Engine exited with an error", process.returncode, process.args, output)

        logger.debug("Engine stopped", pid=process.pid)
        return ""

    @staticmethod
    def _read_and_close(stderr: IO[bytes]) -> str:
        with stderr:
            stderr.seek(0)
            return stderr.read().decode("utf-8", errors="replace")
