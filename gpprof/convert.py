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
from typing import BinaryIO, Callable, ContextManager, Iterable

from gpprof.compression import GzipStream
from gpprof.gpprof_types import SampleRecord
from gpprof.log import get_logger_adapter
from gpprof.pprof import PprofEncoder
from gpprof.utils.collapsed_format import CollapsedTraceReader

logger = get_logger_adapter(__name__)

TraceReaderFactory = Callable[[str], ContextManager[Iterable[SampleRecord]]]
EncoderFactory = Callable[[int, int], PprofEncoder]


class ConversionPipeline:
    """
    Raw trace -> pprof -> gzip, written to a caller-supplied sink.

    The reader and the gzip stream are released in reverse order of acquisition. On any error the gzip stream
    is abandoned without a trailer; since the encoder only emits once all records were read, the sink usually
    receives nothing at all in that case.
    """

    def __init__(
        self,
        period_ns: int,
        reader_factory: TraceReaderFactory = CollapsedTraceReader,
        encoder_factory: EncoderFactory = PprofEncoder,
    ):
        self._period_ns = period_ns
        self._reader_factory = reader_factory
        self._encoder_factory = encoder_factory

    def convert(self, trace_path: str, sink: BinaryIO, duration_ns: int = 0) -> int:
        """
        Returns the number of samples written.
        """
        with self._reader_factory(trace_path) as reader, GzipStream(sink) as stream:
            encoder = self._encoder_factory(self._period_ns, duration_ns)
            for record in reader:
                encoder.add(record)
            encoder.write(stream)  # type: ignore[arg-type]

        logger.debug("Converted trace", path=trace_path, samples=encoder.samples_count)
        return encoder.samples_count
