#
# Copyright (C) 2023 Intel Corporation
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
import shutil
from typing import BinaryIO

import psutil

from gpprof.utils import remove_path


def safe_copy_stream(src: BinaryIO, dst: str, mode: int) -> None:
    """
    Safely copies the contents of 'src' to 'dst', replacing 'dst' if it exists. Safely means that writing 'dst'
    is performed at a temporary location, and the file is then moved, making the filesystem-level change atomic.
    """
    dst_tmp = f"{dst}.tmp"
    try:
        with open(dst_tmp, "wb") as f:
            shutil.copyfileobj(src, f)
        # after writing, because the packaged file may have been extracted as 0600
        os.chmod(dst_tmp, mode)
        os.replace(dst_tmp, dst)
    except BaseException:
        remove_path(dst_tmp, missing_ok=True)
        raise


def is_executable_file(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def free_disk_space(path: str) -> int:
    return psutil.disk_usage(path).free
