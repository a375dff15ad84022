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
import enum
import os
import threading
from typing import Callable, Dict, Optional, Tuple

from importlib_resources.abc import Traversable

from gpprof.engine.native import PySpyEngine, SamplingEngine
from gpprof.exceptions import EngineResolutionFailure, UnsupportedPlatform
from gpprof.log import get_logger_adapter
from gpprof.platform import get_os_and_arch
from gpprof.utils import embedded_resource
from gpprof.utils.fs import safe_copy_stream
from gpprof.workspace import TempWorkspace, get_workspace

logger = get_logger_adapter(__name__)

ENGINE_BASE_NAME = "py-spy"
ENGINE_VERSION = "0.3.14"
# where we look for the engine when it wasn't packaged, relative to the working directory.
FALLBACK_DIRECTORY_NAME = f"{ENGINE_BASE_NAME}-{ENGINE_VERSION}"
ENGINE_MODE = 0o755

# (platform family, architecture) -> suffix of the engine artifact built for it.
# both spellings of each architecture are listed, as reported by different systems.
ENGINE_SUFFIXES: Dict[Tuple[str, str], str] = {
    ("linux", "x86_64"): "-linux-x64",
    ("linux", "amd64"): "-linux-x64",
    ("linux", "aarch64"): "-linux-arm64",
    ("linux", "arm64"): "-linux-arm64",
    # a universal binary on macOS
    ("darwin", "x86_64"): "-macos",
    ("darwin", "arm64"): "-macos",
    ("darwin", "aarch64"): "-macos",
}


def get_engine_suffix(os_name: str, arch: str) -> str:
    try:
        return ENGINE_SUFFIXES[(os_name, arch)]
    except KeyError:
        raise UnsupportedPlatform(os_name, arch) from None


class EngineLocator:
    """
    Finds the engine executable matching the running platform. A packaged copy is extracted into the
    workspace; otherwise we point to the conventional location under the working directory.
    """

    def __init__(
        self,
        workspace: TempWorkspace,
        explicit_path: Optional[str] = None,
        get_platform: Callable[[], Tuple[str, str]] = get_os_and_arch,
        find_resource: Callable[[str], Optional[Traversable]] = embedded_resource,
        get_cwd: Callable[[], str] = os.getcwd,
    ):
        self._workspace = workspace
        self._explicit_path = explicit_path
        self._get_platform = get_platform
        self._find_resource = find_resource
        self._get_cwd = get_cwd

    def resolve(self) -> str:
        if self._explicit_path is not None:
            return os.path.abspath(self._explicit_path)

        os_name, arch = self._get_platform()
        artifact_name = f"{ENGINE_BASE_NAME}{get_engine_suffix(os_name, arch)}"

        resource = self._find_resource(f"engine/{artifact_name}")
        if resource is None:
            # not verified here; the engine reports a missing executable when it's started.
            path = os.path.join(self._get_cwd(), FALLBACK_DIRECTORY_NAME, artifact_name)
            logger.info(f"Packaged engine {artifact_name} not found, using {path}")
            return path

        path = self._workspace.join(ENGINE_BASE_NAME)
        try:
            self._extract(resource, path)
        except OSError as e:
            raise EngineResolutionFailure(f"Failed to extract {artifact_name} to {path}: {e}") from e
        logger.debug(f"Extracted {artifact_name}", path=path)
        return path

    @staticmethod
    def _extract(resource: Traversable, path: str) -> None:
        with resource.open("rb") as src:
            safe_copy_stream(src, path, ENGINE_MODE)


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


class EngineHandle:
    """
    The loaded engine, shared by the whole process. Resolution happens once; an unsupported platform is
    remembered as a permanent failure, while other resolution errors are retried on the next use.
    """

    def __init__(
        self,
        locator: EngineLocator,
        engine_factory: Callable[[str], SamplingEngine] = PySpyEngine,
    ):
        self._locator = locator
        self._engine_factory = engine_factory
        self._lock = threading.Lock()
        self._engine: Optional[SamplingEngine] = None
        self._failure: Optional[UnsupportedPlatform] = None
        self.state = EngineState.UNINITIALIZED
        self.path: Optional[str] = None

    def get(self) -> SamplingEngine:
        with self._lock:
            if self.state is EngineState.READY:
                assert self._engine is not None
                return self._engine

            if self.state is EngineState.FAILED:
                assert self._failure is not None
                raise UnsupportedPlatform(self._failure.os_name, self._failure.arch)

            try:
                path = self._locator.resolve()
            except UnsupportedPlatform as e:
                logger.error(str(e))
                self._failure = e
                self.state = EngineState.FAILED
                raise

            self._engine = self._engine_factory(path)
            self.path = path
            self.state = EngineState.READY
            logger.info("Sampling engine resolved", path=path)
            return self._engine


_engine_handle: Optional[EngineHandle] = None
_engine_handle_lock = threading.Lock()


def get_engine_handle(explicit_path: Optional[str] = None) -> EngineHandle:
    """
    Returns the process-wide handle, creating it on first use. 'explicit_path' only matters for that first call.
    """
    global _engine_handle
    with _engine_handle_lock:
        if _engine_handle is None:
            _engine_handle = EngineHandle(EngineLocator(get_workspace(), explicit_path=explicit_path))
        return _engine_handle
