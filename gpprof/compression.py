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
import zlib
from types import TracebackType
from typing import BinaryIO, Optional, Type

from gpprof.exceptions import SinkWriteFailure

# 16 + MAX_WBITS tells zlib to emit the gzip header and trailer (RFC 1952) instead of zlib's.
_GZIP_WBITS = 16 + zlib.MAX_WBITS


class GzipStream:
    """
    Write-through gzip framing over a binary sink.

    Unlike gzip.GzipFile, closing isn't implicit: the trailer (CRC & size) is written only by finish().
    abandon() discards the compressor, so a stream that failed midway can't be mistaken for a complete one.
    As a context manager, it finishes on success and abandons on error.
    """

    def __init__(self, sink: BinaryIO, compresslevel: int = 9):
        self._sink = sink
        self._compressor: Optional["zlib._Compress"] = zlib.compressobj(compresslevel, zlib.DEFLATED, _GZIP_WBITS)

    def __enter__(self) -> "GzipStream":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_type is None:
            self.finish()
        else:
            self.abandon()

    @property
    def closed(self) -> bool:
        return self._compressor is None

    def _write_to_sink(self, data: bytes) -> None:
        if not data:
            return
        try:
            self._sink.write(data)
        except (OSError, ValueError) as e:
            # ValueError is what file objects raise when written after close
            raise SinkWriteFailure(f"Failed to write to the output stream: {e}") from e

    def write(self, data: bytes) -> int:
        assert self._compressor is not None, "write() on a finished stream"
        self._write_to_sink(self._compressor.compress(data))
        return len(data)

    def finish(self) -> None:
        if self._compressor is None:
            return
        compressor, self._compressor = self._compressor, None
        self._write_to_sink(compressor.flush(zlib.Z_FINISH))
        try:
            self._sink.flush()
        except (OSError, ValueError) as e:
            raise SinkWriteFailure(f"Failed to flush the output stream: {e}") from e

    def abandon(self) -> None:
        self._compressor = None
