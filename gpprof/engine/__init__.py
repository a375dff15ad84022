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
from gpprof.engine.locator import (
    ENGINE_SUFFIXES,
    EngineHandle,
    EngineLocator,
    EngineState,
    get_engine_handle,
    get_engine_suffix,
)
from gpprof.engine.native import EVENT_CPU, EVENT_WALL, FORMAT_COLLAPSED, PySpyEngine, SamplingEngine

__all__ = [
    "ENGINE_SUFFIXES",
    "EVENT_CPU",
    "EVENT_WALL",
    "FORMAT_COLLAPSED",
    "EngineHandle",
    "EngineLocator",
    "EngineState",
    "PySpyEngine",
    "SamplingEngine",
    "get_engine_handle",
    "get_engine_suffix",
]
