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
import enum
import math
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from gpprof.convert import ConversionPipeline
from gpprof.engine import EVENT_CPU, FORMAT_COLLAPSED, EngineHandle, SamplingEngine, get_engine_handle
from gpprof.exceptions import (
    EngineCommandError,
    EngineStartFailure,
    EngineStopFailure,
    InvalidDuration,
    PartialProfile,
    ProfilingError,
    SessionBusy,
    SessionFailure,
)
from gpprof.log import get_logger_adapter
from gpprof.state import get_state
from gpprof.workspace import TraceFileManager, get_workspace

logger = get_logger_adapter(__name__)

# interval between samples, in nanoseconds (100 Hz)
DEFAULT_INTERVAL_NS = 10_000_000
STOP_COMMAND = "stop"


def build_start_command(
    dst: str, event: str = EVENT_CPU, interval: int = DEFAULT_INTERVAL_NS, output_format: str = FORMAT_COLLAPSED
) -> str:
    return f"start,event={event},interval={interval},file={dst},{output_format}"


class BusyPolicy(str, enum.Enum):
    """
    What a session does when another one is running: fail with SessionBusy, or wait for its turn.
    """

    REJECT = "reject"
    WAIT = "wait"


class SessionPhase(enum.Enum):
    CREATED = "created"
    SAMPLING = "sampling"
    STOPPING = "stopping"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProfilingSession:
    session_id: str
    duration: float
    trace_path: Optional[str] = None
    phase: SessionPhase = SessionPhase.CREATED


def _as_stop_failure(e: EngineCommandError) -> EngineStopFailure:
    if isinstance(e, EngineStopFailure):
        return e
    return EngineStopFailure(e.command, e.reason, e.returncode, e.cmd, e.stderr)


class CPUProfiler:
    """
    Runs CPU profiling sessions against the process-wide sampling engine: start, sleep for the requested
    duration, stop, then convert the trace to gzipped pprof into the given sink.

    The engine has no notion of concurrent sessions, so a session holds the profiler's lock from allocating
    its trace file until the trace file is released.
    """

    def __init__(
        self,
        engine_handle: Optional[EngineHandle] = None,
        trace_files: Optional[TraceFileManager] = None,
        pipeline: Optional[ConversionPipeline] = None,
        busy_policy: BusyPolicy = BusyPolicy.REJECT,
        max_duration: Optional[float] = None,
        interval_ns: int = DEFAULT_INTERVAL_NS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine_handle = engine_handle if engine_handle is not None else get_engine_handle()
        self._trace_files = trace_files if trace_files is not None else TraceFileManager(get_workspace())
        self._interval_ns = interval_ns
        self._pipeline = pipeline if pipeline is not None else ConversionPipeline(interval_ns)
        self._busy_policy = busy_policy
        self._max_duration = max_duration
        self._sleep = sleep
        self._lock = threading.Lock()
        self.last_session: Optional[ProfilingSession] = None

    @property
    def busy_policy(self) -> BusyPolicy:
        return self._busy_policy

    def _validate_duration(self, duration: float) -> None:
        # "not > 0" rather than "<= 0", so NaN is rejected as well
        if not duration > 0 or math.isinf(duration):
            raise InvalidDuration(duration)
        if self._max_duration is not None and duration > self._max_duration:
            raise InvalidDuration(duration, f"exceeds the maximum of {self._max_duration} seconds")

    def run(self, duration: float, sink: BinaryIO) -> int:
        """
        Profiles the process for 'duration' seconds and writes the gzipped pprof profile into 'sink'.
        Returns the number of samples in the profile.
        """
        self._validate_duration(duration)
        engine = self._engine_handle.get()

        if self._busy_policy is BusyPolicy.WAIT:
            self._lock.acquire()
        elif not self._lock.acquire(blocking=False):
            logger.warning("Rejecting a profiling request, another session is running")
            raise SessionBusy()

        state = get_state()
        session = ProfilingSession(state.init_new_session(), duration)
        self.last_session = session
        try:
            with self._trace_files.allocated() as trace_path:
                session.trace_path = trace_path
                return self._run_session(engine, session, sink)
        except BaseException:
            session.phase = SessionPhase.FAILED
            raise
        finally:
            state.set_session_id(None)
            self._lock.release()

    def _run_session(self, engine: SamplingEngine, session: ProfilingSession, sink: BinaryIO) -> int:
        assert session.trace_path is not None
        start_command = build_start_command(session.trace_path, interval=self._interval_ns)
        # the sampling window opens when the engine spawns, before its start command returns.
        started = time.monotonic()
        try:
            engine.execute(start_command)
        except EngineStartFailure:
            logger.exception("Failed to start the sampling engine")
            raise
        except EngineCommandError as e:
            logger.exception("Failed to start the sampling engine")
            raise EngineStartFailure(e.command, e.reason, e.returncode, e.cmd, e.stderr) from e

        session.phase = SessionPhase.SAMPLING
        logger.info(f"Profiling for {session.duration} seconds", trace_path=session.trace_path)
        stop_error: Optional[EngineStopFailure] = None
        try:
            self._sleep(max(0.0, session.duration - (time.monotonic() - started)))
        finally:
            session.phase = SessionPhase.STOPPING
            try:
                engine.execute(STOP_COMMAND)
            except EngineCommandError as e:
                stop_error = _as_stop_failure(e)
                logger.warning(f"Failed to stop the sampling engine, converting what it wrote: {stop_error}")
        sampled_ns = int((time.monotonic() - started) * 1_000_000_000)

        session.phase = SessionPhase.CONVERTING
        try:
            samples = self._pipeline.convert(session.trace_path, sink, sampled_ns)
        except ProfilingError as e:
            logger.error(f"Failed to convert the trace: {e}")
            if stop_error is not None:
                raise SessionFailure([stop_error, e]) from e
            raise

        if stop_error is not None:
            raise PartialProfile(stop_error, samples) from stop_error

        session.phase = SessionPhase.COMPLETED
        logger.info(f"Finished profiling, {samples} samples collected")
        return samples
