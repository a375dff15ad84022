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
"""
Encoding of samples into the pprof format (perftools.profiles.Profile, see
https://github.com/google/pprof/blob/main/proto/profile.proto).

The message classes are built at runtime from a descriptor registered in the protobuf descriptor pool,
so no generated code is needed.
"""
import functools
import threading
import time
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Type

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import EncodeError

from gpprof.exceptions import EncodeFailure
from gpprof.gpprof_types import Frame, SampleRecord

PROTO_FILE_NAME = "gpprof/profile.proto"
PROTO_PACKAGE = "perftools.profiles"

_FieldDescriptorProto = descriptor_pb2.FieldDescriptorProto
_REPEATED = _FieldDescriptorProto.LABEL_REPEATED
_INT64 = _FieldDescriptorProto.TYPE_INT64
_UINT64 = _FieldDescriptorProto.TYPE_UINT64
_BOOL = _FieldDescriptorProto.TYPE_BOOL
_STRING = _FieldDescriptorProto.TYPE_STRING
_MESSAGE = _FieldDescriptorProto.TYPE_MESSAGE

# message name -> [(field name, number, type, repeated, message type name)]
_PROFILE_MESSAGES: List[Tuple[str, List[Tuple[str, int, int, bool, Optional[str]]]]] = [
    (
        "Profile",
        [
            ("sample_type", 1, _MESSAGE, True, "ValueType"),
            ("sample", 2, _MESSAGE, True, "Sample"),
            ("mapping", 3, _MESSAGE, True, "Mapping"),
            ("location", 4, _MESSAGE, True, "Location"),
            ("function", 5, _MESSAGE, True, "Function"),
            ("string_table", 6, _STRING, True, None),
            ("drop_frames", 7, _INT64, False, None),
            ("keep_frames", 8, _INT64, False, None),
            ("time_nanos", 9, _INT64, False, None),
            ("duration_nanos", 10, _INT64, False, None),
            ("period_type", 11, _MESSAGE, False, "ValueType"),
            ("period", 12, _INT64, False, None),
            ("comment", 13, _INT64, True, None),
            ("default_sample_type", 14, _INT64, False, None),
        ],
    ),
    ("ValueType", [("type", 1, _INT64, False, None), ("unit", 2, _INT64, False, None)]),
    (
        "Sample",
        [
            ("location_id", 1, _UINT64, True, None),
            ("value", 2, _INT64, True, None),
            ("label", 3, _MESSAGE, True, "Label"),
        ],
    ),
    (
        "Label",
        [
            ("key", 1, _INT64, False, None),
            ("str", 2, _INT64, False, None),
            ("num", 3, _INT64, False, None),
            ("num_unit", 4, _INT64, False, None),
        ],
    ),
    (
        "Mapping",
        [
            ("id", 1, _UINT64, False, None),
            ("memory_start", 2, _UINT64, False, None),
            ("memory_limit", 3, _UINT64, False, None),
            ("file_offset", 4, _UINT64, False, None),
            ("filename", 5, _INT64, False, None),
            ("build_id", 6, _INT64, False, None),
            ("has_functions", 7, _BOOL, False, None),
            ("has_filenames", 8, _BOOL, False, None),
            ("has_line_numbers", 9, _BOOL, False, None),
            ("has_inline_frames", 10, _BOOL, False, None),
        ],
    ),
    (
        "Location",
        [
            ("id", 1, _UINT64, False, None),
            ("mapping_id", 2, _UINT64, False, None),
            ("address", 3, _UINT64, False, None),
            ("line", 4, _MESSAGE, True, "Line"),
            ("is_folded", 5, _BOOL, False, None),
        ],
    ),
    ("Line", [("function_id", 1, _UINT64, False, None), ("line", 2, _INT64, False, None)]),
    (
        "Function",
        [
            ("id", 1, _UINT64, False, None),
            ("name", 2, _INT64, False, None),
            ("system_name", 3, _INT64, False, None),
            ("filename", 4, _INT64, False, None),
            ("start_line", 5, _INT64, False, None),
        ],
    ),
]

_registration_lock = threading.Lock()


def _register_profile_descriptor(pool: descriptor_pool.DescriptorPool) -> None:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = PROTO_FILE_NAME
    file_proto.package = PROTO_PACKAGE
    file_proto.syntax = "proto3"

    for message_name, fields in _PROFILE_MESSAGES:
        message = file_proto.message_type.add()
        message.name = message_name
        for field_name, number, field_type, repeated, type_name in fields:
            field = message.field.add()
            field.name = field_name
            field.number = number
            field.type = field_type
            field.label = _REPEATED if repeated else _FieldDescriptorProto.LABEL_OPTIONAL
            if type_name is not None:
                field.type_name = f".{PROTO_PACKAGE}.{type_name}"

    pool.Add(file_proto)


@functools.lru_cache(maxsize=1)
def get_profile_class() -> Type[Any]:
    """
    Returns the message class of perftools.profiles.Profile, registering its descriptor on first use.
    """
    pool = descriptor_pool.Default()
    with _registration_lock:
        try:
            pool.FindFileByName(PROTO_FILE_NAME)
        except KeyError:
            _register_profile_descriptor(pool)
    return message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{PROTO_PACKAGE}.Profile"))


class PprofEncoder:
    """
    Accumulates sample records and serializes them as a single pprof Profile.
    Each record contributes one Sample with two values: the sample count, and the CPU time it stands for
    (count * period).
    """

    SAMPLE_TYPES = [("samples", "count"), ("cpu", "nanoseconds")]
    PERIOD_TYPE = ("cpu", "nanoseconds")

    def __init__(self, period_ns: int, duration_ns: int = 0, time_ns: Optional[int] = None):
        self._profile = get_profile_class()()
        self._period_ns = period_ns
        # string_table[0] must be ""
        self._strings: Dict[str, int] = {}
        self._string_id("")
        self._functions: Dict[Tuple[str, str], int] = {}
        self._locations: Dict[Frame, int] = {}
        self._samples = 0

        for type_, unit in self.SAMPLE_TYPES:
            value_type = self._profile.sample_type.add()
            value_type.type = self._string_id(type_)
            value_type.unit = self._string_id(unit)
        self._profile.period_type.type = self._string_id(self.PERIOD_TYPE[0])
        self._profile.period_type.unit = self._string_id(self.PERIOD_TYPE[1])
        self._profile.period = period_ns
        self._profile.duration_nanos = duration_ns
        self._profile.time_nanos = time_ns if time_ns is not None else time.time_ns()

    @property
    def samples_count(self) -> int:
        return self._samples

    def _string_id(self, s: str) -> int:
        string_id = self._strings.get(s)
        if string_id is None:
            string_id = len(self._profile.string_table)
            self._profile.string_table.append(s)
            self._strings[s] = string_id
        return string_id

    def _function_id(self, frame: Frame) -> int:
        key = (frame.name, frame.filename)
        function_id = self._functions.get(key)
        if function_id is None:
            function = self._profile.function.add()
            # ids are 1-based, 0 means "none" in pprof.
            function.id = function_id = len(self._profile.function)
            function.name = function.system_name = self._string_id(frame.name)
            function.filename = self._string_id(frame.filename)
            self._functions[key] = function_id
        return function_id

    def _location_id(self, frame: Frame) -> int:
        location_id = self._locations.get(frame)
        if location_id is None:
            location = self._profile.location.add()
            location.id = location_id = len(self._profile.location)
            line = location.line.add()
            line.function_id = self._function_id(frame)
            line.line = frame.line
            self._locations[frame] = location_id
        return location_id

    def add(self, record: SampleRecord) -> None:
        try:
            sample = self._profile.sample.add()
            # pprof lists locations leaf first; collapsed stacks are root first.
            sample.location_id.extend(self._location_id(frame) for frame in reversed(record.frames))
            sample.value.extend([record.count, record.count * self._period_ns])
        except (TypeError, ValueError) as e:
            raise EncodeFailure(f"Failed to encode sample {record!r}: {e}") from e
        self._samples += record.count

    def write(self, stream: BinaryIO) -> None:
        try:
            data = self._profile.SerializeToString()
        except EncodeError as e:
            raise EncodeFailure(f"Failed to serialize profile: {e}") from e
        stream.write(data)
