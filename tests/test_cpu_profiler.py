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
import io
import os
import threading
from typing import Any, Callable, List

import pytest

from gpprof.convert import ConversionPipeline
from gpprof.cpu_profiler import DEFAULT_INTERVAL_NS, BusyPolicy, CPUProfiler, SessionPhase, build_start_command
from gpprof.engine import EngineHandle, EngineLocator, EngineState
from gpprof.exceptions import (
    EngineResolutionFailure,
    EngineStartFailure,
    EngineStopFailure,
    InvalidDuration,
    PartialProfile,
    SessionBusy,
    SessionFailure,
    TraceReadFailure,
    UnsupportedPlatform,
)
from gpprof.state import get_state
from gpprof.workspace import TempWorkspace, TraceFileManager
from tests import SAMPLE_TRACE_STACKS
from tests.utils import FailingLocator, FailingTraceReader, FakeEngine, decode_profile, profile_stacks

DURATION = 0.1
# scheduling slack on loaded machines
TIMING_TOLERANCE = 0.5

MakeProfiler = Callable[..., CPUProfiler]


def failing_conversion() -> ConversionPipeline:
    return ConversionPipeline(DEFAULT_INTERVAL_NS, reader_factory=lambda path: FailingTraceReader(path, 2))


def run_in_thread(profiler: CPUProfiler, duration: float, errors: List[BaseException]) -> threading.Thread:
    def _run() -> None:
        try:
            profiler.run(duration, io.BytesIO())
        except BaseException as e:
            errors.append(e)

    thread = threading.Thread(target=_run)
    thread.start()
    return thread


def test_profile(profiler: CPUProfiler, fake_engine: FakeEngine, workspace: TempWorkspace) -> None:
    sink = io.BytesIO()
    samples = profiler.run(DURATION, sink)

    assert samples == sum(SAMPLE_TRACE_STACKS.values())
    profile = decode_profile(sink.getvalue())
    assert profile_stacks(profile) == SAMPLE_TRACE_STACKS
    assert profile.period == DEFAULT_INTERVAL_NS
    assert profile.duration_nanos >= DURATION * 1_000_000_000

    assert fake_engine.actions == ["start", "stop"]
    session = profiler.last_session
    assert session is not None
    assert session.phase is SessionPhase.COMPLETED
    assert session.trace_path is not None
    assert not os.path.exists(session.trace_path)
    assert os.listdir(workspace.path) == []
    assert get_state().session_id is None


def test_start_command(profiler: CPUProfiler, fake_engine: FakeEngine) -> None:
    profiler.run(DURATION, io.BytesIO())

    assert profiler.last_session is not None
    trace_path = profiler.last_session.trace_path
    assert fake_engine.start_commands == [f"start,event=cpu,interval=10000000,file={trace_path},collapsed"]
    assert build_start_command("/tmp/out") == "start,event=cpu,interval=10000000,file=/tmp/out,collapsed"


def test_session_timing(profiler: CPUProfiler, fake_engine: FakeEngine) -> None:
    profiler.run(DURATION, io.BytesIO())

    elapsed = fake_engine.time_of("stop") - fake_engine.time_of("start")
    assert DURATION - 0.01 <= elapsed <= DURATION + TIMING_TOLERANCE


def test_slow_start_counts_toward_duration(make_profiler: MakeProfiler, workspace: TempWorkspace) -> None:
    duration = 0.5
    engine = FakeEngine(start_delay=0.3)
    locator = EngineLocator(workspace, explicit_path="/fake/py-spy")
    profiler = make_profiler(engine_handle=EngineHandle(locator, engine_factory=lambda path: engine))
    sink = io.BytesIO()

    profiler.run(duration, sink)

    # stopped once the requested duration has passed since the engine was asked to start
    elapsed = engine.time_of("stop") - engine.time_of("start")
    assert duration - 0.05 <= elapsed <= duration + 0.15
    assert decode_profile(sink.getvalue()).duration_nanos >= duration * 1_000_000_000


@pytest.mark.parametrize("start_fails", [False, True])
@pytest.mark.parametrize("conversion_fails", [False, True])
def test_trace_file_removed(
    make_profiler: MakeProfiler,
    fake_engine: FakeEngine,
    workspace: TempWorkspace,
    start_fails: bool,
    conversion_fails: bool,
) -> None:
    if start_fails:
        fake_engine.fail_start = "Permission denied"
    profiler = make_profiler(pipeline=failing_conversion() if conversion_fails else None)

    if start_fails:
        with pytest.raises(EngineStartFailure, match="Permission denied"):
            profiler.run(DURATION, io.BytesIO())
        # a session that failed to start is never stopped
        assert fake_engine.actions == ["start"]
    elif conversion_fails:
        with pytest.raises(TraceReadFailure):
            profiler.run(DURATION, io.BytesIO())
        assert fake_engine.actions == ["start", "stop"]
    else:
        profiler.run(DURATION, io.BytesIO())

    session = profiler.last_session
    assert session is not None
    assert session.trace_path is not None
    assert not os.path.exists(session.trace_path)
    assert os.listdir(workspace.path) == []
    assert session.phase is (SessionPhase.FAILED if start_fails or conversion_fails else SessionPhase.COMPLETED)


@pytest.mark.parametrize("duration", [0, -1, float("nan"), float("inf"), 601])
def test_invalid_duration(
    make_profiler: MakeProfiler,
    fake_engine: FakeEngine,
    engine_handle: EngineHandle,
    workspace: TempWorkspace,
    duration: float,
) -> None:
    profiler = make_profiler(max_duration=600)

    with pytest.raises(InvalidDuration):
        profiler.run(duration, io.BytesIO())

    assert fake_engine.commands == []
    assert profiler.last_session is None
    assert os.listdir(workspace.path) == []
    assert engine_handle.state is EngineState.UNINITIALIZED


def test_resolution_failure(trace_files: TraceFileManager, workspace: TempWorkspace) -> None:
    locator = FailingLocator(EngineResolutionFailure("Failed to extract py-spy-linux-x64"))
    profiler = CPUProfiler(engine_handle=EngineHandle(locator), trace_files=trace_files)

    for _ in range(2):
        with pytest.raises(EngineResolutionFailure):
            profiler.run(DURATION, io.BytesIO())

    # retried by every session
    assert locator.calls == 2
    assert profiler.last_session is None
    assert os.listdir(workspace.path) == []


def test_unsupported_platform(trace_files: TraceFileManager, workspace: TempWorkspace) -> None:
    locator = FailingLocator(UnsupportedPlatform("linux", "riscv64"))
    profiler = CPUProfiler(engine_handle=EngineHandle(locator), trace_files=trace_files)

    for _ in range(2):
        with pytest.raises(UnsupportedPlatform):
            profiler.run(DURATION, io.BytesIO())

    # remembered after the first attempt
    assert locator.calls == 1
    assert os.listdir(workspace.path) == []


def test_busy_reject(profiler: CPUProfiler, fake_engine: FakeEngine) -> None:
    assert profiler.busy_policy is BusyPolicy.REJECT
    errors: List[BaseException] = []
    thread = run_in_thread(profiler, 1.0, errors)
    try:
        assert fake_engine.started.wait(5)
        with pytest.raises(SessionBusy):
            profiler.run(DURATION, io.BytesIO())
    finally:
        thread.join()

    assert errors == []
    # the rejected request never reached the engine
    assert fake_engine.actions == ["start", "stop"]


def test_busy_wait(make_profiler: MakeProfiler, fake_engine: FakeEngine) -> None:
    profiler = make_profiler(busy_policy=BusyPolicy.WAIT)
    errors: List[BaseException] = []
    first = run_in_thread(profiler, 0.3, errors)
    assert fake_engine.started.wait(5)
    second = run_in_thread(profiler, DURATION, errors)
    first.join()
    second.join()

    assert errors == []
    assert fake_engine.actions == ["start", "stop", "start", "stop"]


def test_stop_failure(profiler: CPUProfiler, fake_engine: FakeEngine) -> None:
    fake_engine.fail_stop = "Engine exited with an error"
    sink = io.BytesIO()

    with pytest.raises(PartialProfile) as e:
        profiler.run(DURATION, sink)

    # whatever the engine wrote was still converted
    assert isinstance(e.value, EngineStopFailure)
    assert e.value.samples == sum(SAMPLE_TRACE_STACKS.values())
    assert profile_stacks(decode_profile(sink.getvalue())) == SAMPLE_TRACE_STACKS
    assert profiler.last_session is not None
    assert profiler.last_session.phase is SessionPhase.FAILED


def test_stop_and_conversion_failure(make_profiler: MakeProfiler, fake_engine: FakeEngine) -> None:
    fake_engine.fail_stop = "Engine exited with an error"
    profiler = make_profiler(pipeline=failing_conversion())

    with pytest.raises(SessionFailure) as e:
        profiler.run(DURATION, io.BytesIO())

    assert [type(error) for error in e.value.errors] == [EngineStopFailure, TraceReadFailure]


def test_interrupted_sleep_stops_engine(
    make_profiler: MakeProfiler, fake_engine: FakeEngine, workspace: TempWorkspace
) -> None:
    def interrupted_sleep(duration: float) -> Any:
        raise KeyboardInterrupt

    profiler = make_profiler(sleep=interrupted_sleep)

    with pytest.raises(KeyboardInterrupt):
        profiler.run(DURATION, io.BytesIO())

    assert fake_engine.actions == ["start", "stop"]
    assert not fake_engine.running
    assert os.listdir(workspace.path) == []


def test_session_after_failure(profiler: CPUProfiler, fake_engine: FakeEngine) -> None:
    fake_engine.fail_start = "Permission denied"
    with pytest.raises(EngineStartFailure):
        profiler.run(DURATION, io.BytesIO())

    fake_engine.fail_start = None
    assert profiler.run(DURATION, io.BytesIO()) == sum(SAMPLE_TRACE_STACKS.values())
