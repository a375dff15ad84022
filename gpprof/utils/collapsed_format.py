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
import re
from types import TracebackType
from typing import IO, Iterator, Optional, Type

from gpprof.exceptions import TraceReadFailure
from gpprof.gpprof_types import Frame, SampleRecord

# py-spy frames look like "function (path/to/file.py:123)"; the line is omitted for some native frames.
_FRAME_RE = re.compile(r"^(?P<name>.*?) \((?P<filename>[^()]+?)(?::(?P<line>\d+))?\)$")


def parse_frame(frame: str) -> Frame:
    m = _FRAME_RE.match(frame)
    if m is None:
        return Frame(frame)
    line = m.group("line")
    return Frame(m.group("name"), m.group("filename"), int(line) if line is not None else 0)


def parse_one_collapsed_line(line: str) -> SampleRecord:
    """
    Parses a "frame;frame;...;frame count" line. Raises ValueError if it's malformed.
    """
    stack, _, count_str = line.rpartition(" ")
    if not stack:
        raise ValueError("missing stack or count")
    count = int(count_str)
    if count <= 0:
        raise ValueError(f"non-positive count {count}")
    frames = tuple(parse_frame(frame) for frame in stack.split(";"))
    if any(frame.name == "" for frame in frames):
        raise ValueError("empty frame")
    return SampleRecord(frames, count)


class CollapsedTraceReader:
    """
    Reads a collapsed-format trace file, one SampleRecord per line. Malformed content fails the whole read:
    a trace we can't fully parse isn't converted partially.
    """

    def __init__(self, path: str):
        self._path = path
        self._file: Optional[IO[str]] = None

    def __enter__(self) -> "CollapsedTraceReader":
        try:
            self._file = open(self._path, "r", encoding="utf-8", errors="replace")
        except OSError as e:
            raise TraceReadFailure(f"Failed to open trace {self._path}: {e}") from e
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __iter__(self) -> Iterator[SampleRecord]:
        assert self._file is not None, "reader is not open"
        try:
            for line_number, line in enumerate(self._file, start=1):
                line = line.strip()
                if line == "" or line.startswith("#"):
                    continue
                try:
                    yield parse_one_collapsed_line(line)
                except ValueError as e:
                    raise TraceReadFailure(f"bad stack in {self._path} line {line_number}: {e}") from e
        except OSError as e:
            raise TraceReadFailure(f"Failed to read trace {self._path}: {e}") from e
