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
import logging
import logging.handlers
import os
import re
import sys
import time
from logging import LogRecord
from typing import Any, Mapping, MutableMapping, Tuple

from gpprof.state import get_state

SESSION_ID_KEY = "session_id"
LOGGER_NAME_RE = re.compile(r"gpprof(?:\..+)?")

# keyword arguments of the logging methods themselves; everything else passed to the adapter is an "extra" field.
_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")


def get_logger_adapter(logger_name: str) -> logging.LoggerAdapter:
    # Validate the name starts with gpprof (the root logger name), so logging parent logger propagation will work.
    assert LOGGER_NAME_RE.match(logger_name) is not None, "logger name must start with 'gpprof'"
    return GpprofExtraAdapter(logging.getLogger(logger_name))


class GpprofExtraAdapter(logging.LoggerAdapter):
    """
    Lets callers attach structured fields as keyword arguments, e.g logger.info("Started", path=path).
    The fields are gathered in record.extra, and rendered by GpprofFormatter.
    """

    def __init__(self, logger: logging.Logger) -> None:
        super().__init__(logger, {})

    def get_extra(self, **kwargs: Any) -> Mapping[str, Any]:
        # here we add fields which change during the lifetime of the process.
        assert SESSION_ID_KEY not in kwargs
        return {**kwargs, SESSION_ID_KEY: get_state().session_id}

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        logging_kwargs = {k: kwargs.pop(k) for k in _LOGGING_KWARGS if k in kwargs}
        extra = dict(logging_kwargs.pop("extra", None) or {})
        extra.update(kwargs)
        logging_kwargs["extra"] = {"extra": self.get_extra(**extra)}
        return msg, logging_kwargs


class _ExtraFormatter(logging.Formatter):
    FILTERED_EXTRA_KEYS = [SESSION_ID_KEY]  # don't print those fields locally

    def format(self, record: LogRecord) -> str:
        formatted = super().format(record)

        formatted_extra = ", ".join(
            f"{k}={v}" for k, v in record.__dict__.get("extra", {}).items() if k not in self.FILTERED_EXTRA_KEYS
        )
        if formatted_extra:
            formatted = f"{formatted} ({formatted_extra})"

        return formatted


class _UTCFormatter(logging.Formatter):
    # Patch formatTime to be GMT (UTC) for all formatters,
    # see https://docs.python.org/3/library/logging.html?highlight=formattime#logging.Formatter.formatTime
    converter = time.gmtime


class GpprofFormatter(_ExtraFormatter, _UTCFormatter):
    pass


def initial_root_logger_setup(
    stream_level: int,
    log_file_path: str,
    rotate_max_bytes: int,
    rotate_backup_count: int,
) -> logging.LoggerAdapter:
    logger_adapter = get_logger_adapter("gpprof")
    logger_adapter.logger.setLevel(logging.DEBUG)

    stream_handler = logging.StreamHandler(stream=sys.stdout)
    stream_handler.setLevel(stream_level)
    if stream_level < logging.INFO:
        stream_handler.setFormatter(GpprofFormatter("[%(asctime)s] %(levelname)s: %(name)s: %(message)s"))
    else:
        stream_handler.setFormatter(GpprofFormatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
    logger_adapter.logger.addHandler(stream_handler)

    os.makedirs(os.path.dirname(log_file_path), exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file_path,
        maxBytes=rotate_max_bytes,
        backupCount=rotate_backup_count,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(GpprofFormatter("[%(asctime)s] %(levelname)s: %(name)s: %(message)s"))
    logger_adapter.logger.addHandler(file_handler)

    return logger_adapter
