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
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from gpprof.log import get_logger_adapter
from gpprof.utils import TemporaryDirectoryWithMode, remove_path

logger = get_logger_adapter(__name__)


class TempWorkspace:
    """
    A directory private to this process, holding the extracted engine executable and the trace files of
    sessions. It's removed when the process exits (or when cleanup() is called).
    """

    WORKSPACE_PREFIX = "gpprof-"
    WORKSPACE_MODE = 0o700

    def __init__(self, parent_dir: Optional[str] = None):
        self._tmpdir = TemporaryDirectoryWithMode(
            prefix=self.WORKSPACE_PREFIX, dir=parent_dir, mode=self.WORKSPACE_MODE
        )
        self.path = os.path.abspath(self._tmpdir.name)
        logger.debug("Created workspace", path=self.path)

    def join(self, name: str) -> str:
        return os.path.join(self.path, name)

    def cleanup(self) -> None:
        self._tmpdir.cleanup()


_workspace: Optional[TempWorkspace] = None
_workspace_lock = threading.Lock()


def get_workspace() -> TempWorkspace:
    global _workspace
    with _workspace_lock:
        if _workspace is None:
            _workspace = TempWorkspace()
        return _workspace


class TraceFileManager:
    """
    Allocates one uniquely named trace file per session inside the workspace, and removes it afterwards.
    """

    TRACE_PREFIX = "profile-"
    TRACE_SUFFIX = ".collapsed"

    def __init__(self, workspace: TempWorkspace):
        self._workspace = workspace

    def allocate(self) -> str:
        # mkstemp creates the file exclusively (O_EXCL) with mode 0600, so names never collide.
        fd, path = tempfile.mkstemp(prefix=self.TRACE_PREFIX, suffix=self.TRACE_SUFFIX, dir=self._workspace.path)
        os.close(fd)
        return os.path.abspath(path)

    def release(self, path: str) -> None:
        # a failure here must not hide the outcome of the session, which was already decided.
        try:
            remove_path(path, missing_ok=True)
        except OSError:
            logger.exception("Failed to remove trace file", path=path)

    @contextmanager
    def allocated(self) -> Iterator[str]:
        path = self.allocate()
        try:
            yield path
        finally:
            self.release(path)
