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
import subprocess
from pathlib import Path
from subprocess import Popen
from tempfile import TemporaryDirectory
from typing import Any, List, Optional, Union

import importlib_resources
from importlib_resources.abc import Traversable

from gpprof.log import get_logger_adapter

logger = get_logger_adapter(__name__)


def embedded_resource(relative_path: str) -> Optional[Traversable]:
    """
    Looks up a file shipped inside the gpprof.resources package. Returns None if it wasn't packaged
    (e.g an architecture we didn't build for, or running from a source checkout).
    """
    *relative_directory, basename = relative_path.split("/")
    package = ".".join(["gpprof", "resources"] + relative_directory)
    try:
        resource = importlib_resources.files(package).joinpath(basename)
    except ModuleNotFoundError:
        return None
    return resource if resource.is_file() else None


def start_process(cmd: Union[str, List[str]], **kwargs: Any) -> Popen:
    cmd_text = " ".join(cmd) if isinstance(cmd, list) else cmd
    logger.debug(f"Running command: ({cmd_text})")
    if isinstance(cmd, str):
        cmd = [cmd]

    return Popen(
        cmd,
        stdout=kwargs.pop("stdout", subprocess.PIPE),
        stderr=kwargs.pop("stderr", subprocess.PIPE),
        # own process group, so signals sent to our terminal don't reach the child directly.
        preexec_fn=kwargs.pop("preexec_fn", os.setpgrp),
        **kwargs,
    )


def remove_path(path: Union[str, Path], missing_ok: bool = False) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        if not missing_ok:
            raise


class TemporaryDirectoryWithMode(TemporaryDirectory):
    def __init__(self, *args: Any, mode: int = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if mode is not None:
            os.chmod(self.name, mode)
