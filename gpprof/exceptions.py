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
import signal
from typing import List, Optional, Sequence, Union


class ProfilingError(Exception):
    pass


class UnsupportedPlatform(ProfilingError):
    def __init__(self, os_name: str, arch: str):
        super().__init__(f"Unsupported platform: {os_name}/{arch}")
        self.os_name = os_name
        self.arch = arch


class EngineResolutionFailure(ProfilingError):
    pass


class InvalidDuration(ProfilingError):
    def __init__(self, duration: float, reason: str = "duration must be positive"):
        super().__init__(f"Invalid profiling duration {duration!r}: {reason}")
        self.duration = duration


class SessionBusy(ProfilingError):
    def __init__(self) -> None:
        super().__init__("Another profiling session is already running")


class EngineCommandError(ProfilingError):
    """
    The sampling engine rejected a command. When the engine runs as a child process, its exit code and
    (truncated) output are kept as well.
    """

    # Enough characters for 200 long lines
    MAX_STDIO_LENGTH = 120 * 200

    def __init__(
        self,
        command: str,
        reason: str,
        returncode: Optional[int] = None,
        cmd: Union[str, Sequence[str], None] = None,
        stderr: Optional[str] = None,
    ):
        self.command = command
        self.reason = reason
        self.returncode = returncode
        self.cmd = cmd
        self.stderr = stderr
        super().__init__(str(self))

    def _truncate_stdio(self, stdio: str) -> str:
        if len(stdio) > self.MAX_STDIO_LENGTH:
            stdio = stdio[: self.MAX_STDIO_LENGTH - 3] + "..."
        return stdio

    def __str__(self) -> str:
        base = f"Engine command {self.command!r} failed: {self.reason}"
        if self.returncode is not None:
            if self.returncode < 0:
                try:
                    base += f"\n{self.cmd!r} died with {signal.Signals(-self.returncode)!r}."
                except ValueError:
                    base += f"\n{self.cmd!r} died with unknown signal {-self.returncode}."
            else:
                base += f"\n{self.cmd!r} returned exit status {self.returncode}."
        if self.stderr:
            base += f"\nstderr: {self._truncate_stdio(self.stderr)}"
        return base


class EngineStartFailure(EngineCommandError):
    pass


class EngineStopFailure(EngineCommandError):
    pass


class PartialProfile(EngineStopFailure):
    """
    The engine failed to stop, but the trace it left behind was converted: the sink holds a complete profile,
    which may be missing the last samples.
    """

    def __init__(self, stop_error: EngineStopFailure, samples: int):
        super().__init__(
            stop_error.command, stop_error.reason, stop_error.returncode, stop_error.cmd, stop_error.stderr
        )
        self.samples = samples


class TraceReadFailure(ProfilingError):
    pass


class EncodeFailure(ProfilingError):
    pass


class SinkWriteFailure(ProfilingError):
    pass


class SessionFailure(ProfilingError):
    """
    Raised when a session hit more than one error, e.g the engine failed to stop and the (partial) trace
    it left could not be converted either.
    """

    def __init__(self, errors: List[ProfilingError]):
        assert len(errors) > 1, "use the error itself when there's only one"
        super().__init__("; ".join(f"{type(e).__name__}: {e}" for e in errors))
        self.errors = errors
