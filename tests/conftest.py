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
from pathlib import Path
from typing import Any, Callable, Iterator

from pytest import fixture

from gpprof.cpu_profiler import CPUProfiler
from gpprof.engine import EngineHandle, EngineLocator
from gpprof.workspace import TempWorkspace, TraceFileManager
from tests.utils import FakeEngine

FAKE_ENGINE_PATH = "/fake/py-spy"


@fixture
def workspace(tmp_path: Path) -> Iterator[TempWorkspace]:
    workspace = TempWorkspace(parent_dir=str(tmp_path))
    try:
        yield workspace
    finally:
        workspace.cleanup()


@fixture
def trace_files(workspace: TempWorkspace) -> TraceFileManager:
    return TraceFileManager(workspace)


@fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@fixture
def engine_handle(workspace: TempWorkspace, fake_engine: FakeEngine) -> EngineHandle:
    locator = EngineLocator(workspace, explicit_path=FAKE_ENGINE_PATH)
    return EngineHandle(locator, engine_factory=lambda path: fake_engine)


@fixture
def make_profiler(engine_handle: EngineHandle, trace_files: TraceFileManager) -> Callable[..., CPUProfiler]:
    """
    Builds a CPUProfiler over the fake engine; keyword arguments are passed on to CPUProfiler.
    """

    def _make(**kwargs: Any) -> CPUProfiler:
        kwargs.setdefault("engine_handle", engine_handle)
        kwargs.setdefault("trace_files", trace_files)
        return CPUProfiler(**kwargs)

    return _make


@fixture
def profiler(make_profiler: Callable[..., CPUProfiler]) -> CPUProfiler:
    return make_profiler()
