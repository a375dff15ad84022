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
import gzip
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

from gpprof.engine import EngineLocator
from gpprof.engine.native import SamplingEngine, parse_command
from gpprof.exceptions import EngineStartFailure, EngineStopFailure, TraceReadFailure
from gpprof.gpprof_types import SampleRecord
from gpprof.pprof import get_profile_class
from gpprof.utils.collapsed_format import CollapsedTraceReader
from tests import SAMPLE_TRACE

GZIP_MAGIC = b"\x1f\x8b"


class FakeEngine(SamplingEngine):
    """
    Scripted engine: records every command with the time it arrived, and writes a fixed trace when stopped.
    """

    def __init__(self, trace: str = SAMPLE_TRACE, start_delay: float = 0.0):
        self.trace = trace
        self.start_delay = start_delay
        self.commands: List[Tuple[str, float]] = []
        self.start_commands: List[str] = []
        self.fail_start: Optional[str] = None
        self.fail_stop: Optional[str] = None
        self.running = False
        self.started = threading.Event()
        self._output_path: Optional[str] = None

    def execute(self, command: str) -> str:
        parsed = parse_command(command)
        self.commands.append((parsed.action, time.monotonic()))
        if parsed.action == "start":
            if self.fail_start is not None:
                raise EngineStartFailure(command, self.fail_start)
            if self.running:
                raise EngineStartFailure(command, "Profiler already started")
            # a real engine spends time spawning before its start command returns
            time.sleep(self.start_delay)
            self.start_commands.append(command)
            self._output_path = parsed.options["file"]
            self.running = True
            self.started.set()
            return ""
        elif parsed.action == "stop":
            if not self.running:
                raise EngineStopFailure(command, "Profiler is not active")
            self.running = False
            assert self._output_path is not None
            Path(self._output_path).write_text(self.trace)
            if self.fail_stop is not None:
                raise EngineStopFailure(command, self.fail_stop)
            return ""
        raise AssertionError(f"unexpected command {command!r}")

    @property
    def actions(self) -> List[str]:
        return [action for action, _ in self.commands]

    def time_of(self, action: str, index: int = 0) -> float:
        return [t for a, t in self.commands if a == action][index]


class FailingLocator(EngineLocator):
    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    def resolve(self) -> str:
        self.calls += 1
        raise self.error


class FailingTraceReader(CollapsedTraceReader):
    """
    Reads like the real reader, then fails when it gets to record number 'fail_at' (1-based).
    """

    instances: List["FailingTraceReader"] = []

    def __init__(self, path: str, fail_at: int):
        super().__init__(path)
        self._fail_at = fail_at
        self.was_closed = False
        FailingTraceReader.instances.append(self)

    def close(self) -> None:
        self.was_closed = True
        super().close()

    def __iter__(self) -> Iterator[SampleRecord]:
        for index, record in enumerate(super().__iter__(), start=1):
            if index == self._fail_at:
                raise TraceReadFailure(f"injected failure at record {index}")
            yield record


def decode_profile(data: bytes) -> Any:
    """
    Parses a pprof profile, gunzipping it first if needed (HTTP clients may have decoded it already).
    """
    if data[:2] == GZIP_MAGIC:
        data = gzip.decompress(data)
    return get_profile_class().FromString(data)


def profile_stacks(profile: Any) -> Counter:
    """
    Returns the samples of a pprof profile as {(root function, ..., leaf function): sample count}.
    """
    functions = {function.id: profile.string_table[function.name] for function in profile.function}
    locations = {location.id: functions[location.line[0].function_id] for location in profile.location}
    stacks: Counter = Counter()
    for sample in profile.sample:
        stack = tuple(locations[location_id] for location_id in reversed(sample.location_id))
        stacks[stack] += sample.value[0]
    return stacks


def is_complete_gzip(data: bytes) -> bool:
    try:
        gzip.decompress(data)
    except (OSError, EOFError):
        return False
    return True
