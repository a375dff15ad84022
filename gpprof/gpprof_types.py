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

from dataclasses import dataclass
from typing import Tuple

import configargparse


@dataclass(frozen=True)
class Frame:
    name: str
    filename: str = ""
    line: int = 0


@dataclass(frozen=True)
class SampleRecord:
    """
    One stack as recorded by the sampling engine, and the number of times it was sampled.
    Frames are ordered root first, like in the collapsed format.
    """

    frames: Tuple[Frame, ...]
    count: int


def positive_integer(value_str: str) -> int:
    value = int(value_str)
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive integer value: {!r}".format(value))
    return value


def positive_float(value_str: str) -> float:
    value = float(value_str)
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive value: {!r}".format(value))
    return value


def port_number(value_str: str) -> int:
    value = int(value_str)
    if value < 0 or value >= 0x10000:
        raise configargparse.ArgumentTypeError(f"invalid port {value!r} (out of range 0-65535)")
    return value
